"""
planforge: unit tests for tolerant oracle reply parsing

File: tests/unit/providers/test_response_parser.py

Purpose
- Validate payload extraction from noisy replies and coercion into result models.

What this test file should cover
- Each extraction strategy (strict JSON, fenced JSON/YAML, brace slice, scan).
- Deterministic default identifiers and attribution.
- Error taxonomy when nothing parses.
"""

from __future__ import annotations

import pytest

from planforge.providers.base import ProviderResponseError
from planforge.providers.response_parser import (
    compile_result_from_payload,
    generate_result_from_payload,
    parse_compile_response,
    parse_response_payload,
)


@pytest.mark.parametrize(
    "raw_text",
    [
        '{"children": []}',
        'Here you go:\n```json\n{"children": []}\n```\nThanks',
        "```yaml\nchildren: []\n```",
        'Sure! {"children": []} Hope that helps.',
        '{"noise": true  trailing {"children": []}',
    ],
    ids=["strict", "fenced-json", "fenced-yaml", "brace-slice", "scan"],
)
def test_payload_extraction_strategies(raw_text: str) -> None:
    payload = parse_response_payload(raw_text)

    assert payload == {"children": []}


def test_fenced_json_is_preferred_over_yaml() -> None:
    raw_text = "```yaml\nsource: yaml\n```\n```json\n{\"source\": \"json\"}\n```"

    assert parse_response_payload(raw_text) == {"source": "json"}


def test_unparseable_reply_raises_response_error() -> None:
    with pytest.raises(ProviderResponseError) as excinfo:
        parse_response_payload("I could not decide", provider="completion")

    assert excinfo.value.code == "response_invalid"
    assert excinfo.value.provider == "completion"
    assert "failed to parse a JSON object from oracle response" in str(excinfo.value)


def test_compile_payload_coercion_defaults() -> None:
    result = compile_result_from_payload(
        {
            "children": [
                {"name": " routes ", "isLeaf": "yes", "content": "Routes", "files": "routes.py", "outputPath": "/src/api/"},
                "not a child",
            ],
            "questions": ["Which database?", {"question": "Auth?", "options": [{"label": "JWT"}, "Sessions"]}],
            "considerations": ["Rate limits matter"],
            "interfaces": [{"name": "User", "definition": "class User"}, {"definition": "nameless"}],
            "constraints": ["Use UTC", {"rule": "No globals", "important": True, "source": "root"}],
            "suggestions": [{"rule": "Prefer dataclasses"}],
            "utilities": [{"name": "slugify", "signature": "(text) -> str", "location": "utils.py"}],
        },
        node_path="api",
    )

    (child,) = result.children
    assert child.name == "routes"
    assert child.is_leaf
    assert child.spec_text == "Routes"
    assert child.files == ("routes.py",)
    assert child.output_path == "src/api"
    assert [question.id for question in result.questions] == ["q1", "q2"]
    assert result.questions[1].options == ("JWT", "Sessions")
    assert result.considerations[0].id == "c1"
    assert list(result.interfaces) == ["User"]
    assert result.interfaces["User"].declaring_node == "api"
    assert [(entry.rule, entry.declaring_node, entry.important) for entry in result.constraints] == [
        ("Use UTC", "api", False),
        ("No globals", "root", True),
    ]
    assert result.suggestions[0].declaring_node == "api"
    assert result.utilities[0].location == "utils.py"


def test_interfaces_accept_a_mapping() -> None:
    result = compile_result_from_payload(
        {"interfaces": {"Todo": "class Todo", "Repo": {"definition": "class Repo", "declaring_node": "db"}}},
        node_path="api",
    )

    assert result.interfaces["Todo"].definition == "class Todo"
    assert result.interfaces["Todo"].declaring_node == "api"
    assert result.interfaces["Repo"].declaring_node == "db"


def test_child_context_block_is_coerced() -> None:
    result = compile_result_from_payload(
        {"children": [{"name": "db", "spec": "db { x }", "context": {"constraints": ["Use SQLite"]}}]},
        node_path="root",
    )

    context = result.children[0].context
    assert context is not None
    assert context.constraints[0].rule == "Use SQLite"


def test_generate_files_as_mapping_or_list() -> None:
    from_mapping = generate_result_from_payload({"files": {"a.py": "print(1)\n", " ": "skipped"}})
    from_list = generate_result_from_payload(
        {"files": [{"path": "b.py", "content": "x = 1\n"}, {"content": "no path"}], "questions": ["Why?"]}
    )

    assert [(item.path, item.content) for item in from_mapping.files] == [("a.py", "print(1)\n")]
    assert [item.path for item in from_list.files] == ["b.py"]
    assert from_list.questions[0].question == "Why?"


def test_parse_compile_response_end_to_end() -> None:
    result = parse_compile_response(
        'Plan:\n```json\n{"children": [{"name": "cli", "spec": "cli"}]}\n```',
        node_path="root",
    )

    assert [child.name for child in result.children] == ["cli"]
    assert not result.children[0].is_leaf
