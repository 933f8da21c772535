"""Scripted oracle documents, replies and sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from planforge.compiler.negotiation import ActionKind
from planforge.providers.base import (
    CompileRequest,
    GenerateRequest,
    ProviderError,
    SessionProvider,
)
from planforge.providers.scripted import (
    OracleScript,
    ScriptedProvider,
    ScriptedSessionProvider,
    ScriptLoadError,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_unknown_sections_are_rejected() -> None:
    with pytest.raises(ScriptLoadError, match="unknown script sections: replies"):
        ScriptedProvider.from_mapping({"compile": {}, "replies": {}})


@pytest.mark.parametrize(
    ("document", "message"),
    [
        ({"compile": ["root"]}, "compile: expected mapping keyed by node path"),
        ({"compile": {"root": "children"}}, "compile.root: expected mapping"),
        ({"actions": {"root": "gen_node"}}, "actions.root: expected list of turns"),
        ({"actions": {"root": ["gen_node"]}}, r"actions.root\[0\]: expected list of actions"),
    ],
)
def test_malformed_sections(document: dict[str, object], message: str) -> None:
    with pytest.raises(ScriptLoadError, match=message):
        ScriptedProvider.from_mapping(document)


def test_action_scripts_select_the_session_provider() -> None:
    plain = ScriptedProvider.from_mapping({"compile": {"root": {}}})
    session = ScriptedProvider.from_mapping(
        {"actions": {"root": [{"kind": "gen_node", "name": "api", "spec": "api"}]}}
    )

    assert not isinstance(plain, SessionProvider)
    assert isinstance(session, ScriptedSessionProvider)
    assert isinstance(session, SessionProvider)
    (turn,) = session.script.actions["root"]
    assert turn[0].kind == ActionKind.GEN_NODE


@pytest.mark.asyncio
async def test_compile_and_generate_replies() -> None:
    provider = ScriptedProvider.from_mapping(
        {
            "compile": {"root": {"children": [{"name": "api", "spec": "api { x }"}]}},
            "generate": {"api/models": {"files": {"models.py": "class Model: ...\n"}}},
        }
    )

    compiled = await provider.compile(CompileRequest(spec="root", node_path="root"))
    unknown = await provider.compile(CompileRequest(spec="db", node_path="db"))
    generated = await provider.generate(GenerateRequest(spec="models", node_path="api/models"))

    assert [child.name for child in compiled.children] == ["api"]
    assert unknown.children == ()
    assert generated.files[0].path == "models.py"
    assert provider.compiled_paths == ["root", "db"]
    assert [request.node_path for request in provider.generate_requests] == ["api/models"]
    assert await provider.test_connection()


@pytest.mark.asyncio
async def test_scripted_failure_raises_provider_error() -> None:
    provider = ScriptedProvider.from_mapping({"failures": {"api": "upstream unavailable"}})

    with pytest.raises(ProviderError) as excinfo:
        await provider.compile(CompileRequest(spec="api", node_path="api"))

    assert str(excinfo.value) == (
        "provider=scripted code=scripted_failure retryable=false detail=upstream unavailable"
    )


@pytest.mark.asyncio
async def test_session_falls_back_to_compile_payload() -> None:
    script = OracleScript.from_mapping(
        {
            "compile": {
                "root": {
                    "children": [
                        {"name": "api", "spec": "api { x }"},
                        {"name": "cli", "is_leaf": True, "spec": "CLI", "files": ["cli.py"]},
                    ]
                }
            }
        }
    )
    session_provider = ScriptedSessionProvider(script)
    session = session_provider.open_session(CompileRequest(spec="root", node_path="root"))

    first = await session.next_actions(())
    second = await session.next_actions(())

    assert [(action.kind, action.name) for action in first] == [
        (ActionKind.GEN_NODE, "api"),
        (ActionKind.GEN_LEAF, "cli"),
    ]
    assert first[1].files == ("cli.py",)
    assert tuple(second) == ()
    assert session_provider.sessions["root"] is session
    assert session_provider.compiled_paths == ["root"]


def test_from_file_reads_yaml_and_json(tmp_path: Path) -> None:
    yaml_script = tmp_path / "oracle.yaml"
    yaml_script.write_text("compile:\n  root:\n    children: []\n", encoding="utf-8")
    json_script = tmp_path / "oracle.json"
    json_script.write_text('{"failures": {"root": "boom"}}', encoding="utf-8")
    empty_script = tmp_path / "empty.yaml"
    empty_script.write_text("", encoding="utf-8")

    assert "root" in ScriptedProvider.from_file(yaml_script).script.compile
    assert ScriptedProvider.from_file(json_script).script.failures == {"root": "boom"}
    assert ScriptedProvider.from_file(empty_script).script.compile == {}


def test_from_file_errors(tmp_path: Path) -> None:
    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")

    with pytest.raises(ScriptLoadError, match="unable to read script"):
        ScriptedProvider.from_file(tmp_path / "missing.yaml")
    with pytest.raises(ScriptLoadError, match="must contain a mapping"):
        ScriptedProvider.from_file(listing)
    with pytest.raises(ScriptLoadError, match="invalid script"):
        ScriptedProvider.from_file(broken)
