"""
planforge: tolerant oracle response parsing

File: src/planforge/providers/response_parser.py

Purpose
- Coerce loosely structured oracle text into the strict compile/generate result schema.

Parse order
1. strict JSON document;
2. fenced blocks (``json`` or unlabeled first, then ``yaml``/``yml``);
3. the substring from the first ``{`` to the last ``}``;
4. a raw-decode scan for the first embedded JSON object.

Functional requirements
- Pure functions; exhaustion raises ``ProviderResponseError``.
- Bare strings are accepted wherever a constraint or suggestion object is expected.
- Missing identifiers are derived deterministically so identical replies persist identically.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Final

import yaml

from planforge.domain.models import (
    ChildSpec,
    Consideration,
    ConstraintEntry,
    GeneratedFile,
    InterfaceEntry,
    NodeContext,
    Question,
    SuggestionEntry,
    UtilityEntry,
)
from planforge.providers.base import CompileResult, GenerateResult, ProviderResponseError

_FENCED_BLOCK_RE: Final[re.Pattern[str]] = re.compile(
    r"(?P<fence>`{3,})(?P<lang>[^\n`]*)\n(?P<body>.*?)(?:\n(?P=fence))",
    flags=re.DOTALL,
)
_SNIPPET_CHARS: Final[int] = 200


def parse_response_payload(raw_text: str, *, provider: str = "provider") -> dict[str, object]:
    """Extract the first JSON/YAML object from ``raw_text``."""

    text = raw_text.strip()
    parsed = _try_json(text)
    if parsed is not None:
        return parsed

    fenced = list(_FENCED_BLOCK_RE.finditer(raw_text))
    for match in fenced:
        if match.group("lang").strip().lower() in {"", "json"}:
            parsed = _try_json(match.group("body").strip())
            if parsed is not None:
                return parsed
    for match in fenced:
        if match.group("lang").strip().lower() in {"yaml", "yml"}:
            parsed = _try_yaml(match.group("body"))
            if parsed is not None:
                return parsed

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end > start:
        parsed = _try_json(raw_text[start : end + 1])
        if parsed is not None:
            return parsed

    decoder = json.JSONDecoder()
    for index, character in enumerate(raw_text):
        if character != "{":
            continue
        try:
            candidate, _ = decoder.raw_decode(raw_text[index:])
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, Mapping):
            return {str(key): value for key, value in candidate.items()}

    snippet = raw_text[:_SNIPPET_CHARS]
    raise ProviderResponseError(
        f"failed to parse a JSON object from oracle response: {snippet}...",
        provider=provider,
    )


def _try_json(text: str) -> dict[str, object] | None:
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, Mapping):
        return None
    return {str(key): value for key, value in parsed.items()}


def _try_yaml(text: str) -> dict[str, object] | None:
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError:
        return None
    if not isinstance(parsed, Mapping):
        return None
    return {str(key): value for key, value in parsed.items()}


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _items(payload: Mapping[str, object], key: str) -> list[object]:
    value = payload.get(key)
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        return [value]
    return list(value)


def _text(value: object, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    return str(value)


def _str_tuple(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if isinstance(value, Sequence):
        return tuple(_text(item) for item in value if _text(item).strip())
    return ()


def _flag(mapping: Mapping[str, object], *keys: str) -> bool:
    for key in keys:
        if key in mapping:
            value = mapping[key]
            if isinstance(value, str):
                return value.strip().lower() in {"true", "yes", "1"}
            return bool(value)
    return False


def _interfaces(payload: Mapping[str, object], node_path: str) -> dict[str, InterfaceEntry]:
    raw = payload.get("interfaces")
    interfaces: dict[str, InterfaceEntry] = {}
    if isinstance(raw, Mapping):
        for name, value in raw.items():
            if isinstance(value, Mapping):
                definition = _text(value.get("definition"))
                source = _text(value.get("declaring_node", value.get("source")), node_path)
            else:
                definition, source = _text(value), node_path
            interfaces.setdefault(str(name), InterfaceEntry(definition, source or node_path))
        return interfaces
    for item in _items(payload, "interfaces"):
        if not isinstance(item, Mapping):
            continue
        name = _text(item.get("name")).strip()
        if not name:
            continue
        source = _text(item.get("declaring_node", item.get("source")), node_path) or node_path
        interfaces.setdefault(name, InterfaceEntry(_text(item.get("definition")), source))
    return interfaces


def _constraints(payload: Mapping[str, object], node_path: str) -> tuple[ConstraintEntry, ...]:
    entries: list[ConstraintEntry] = []
    for item in _items(payload, "constraints"):
        if isinstance(item, str):
            rule, source, important = item, node_path, False
        elif isinstance(item, Mapping):
            rule = _text(item.get("rule"))
            source = _text(item.get("declaring_node", item.get("source")), node_path) or node_path
            important = _flag(item, "important")
        else:
            continue
        if rule.strip():
            entries.append(ConstraintEntry(rule=rule.strip(), declaring_node=source, important=important))
    return tuple(entries)


def _suggestions(payload: Mapping[str, object], node_path: str) -> tuple[SuggestionEntry, ...]:
    entries: list[SuggestionEntry] = []
    for item in _items(payload, "suggestions"):
        if isinstance(item, str):
            rule, source = item, node_path
        elif isinstance(item, Mapping):
            rule = _text(item.get("rule"))
            source = _text(item.get("declaring_node", item.get("source")), node_path) or node_path
        else:
            continue
        if rule.strip():
            entries.append(SuggestionEntry(rule=rule.strip(), declaring_node=source))
    return tuple(entries)


def _utilities(payload: Mapping[str, object], node_path: str) -> tuple[UtilityEntry, ...]:
    entries: list[UtilityEntry] = []
    for item in _items(payload, "utilities"):
        if not isinstance(item, Mapping):
            continue
        name = _text(item.get("name")).strip()
        if not name:
            continue
        entries.append(
            UtilityEntry(
                name=name,
                signature=_text(item.get("signature")),
                location=_text(item.get("location")),
                declaring_node=_text(item.get("declaring_node", item.get("source")), node_path)
                or node_path,
            )
        )
    return tuple(entries)


def _questions(payload: Mapping[str, object]) -> tuple[Question, ...]:
    questions: list[Question] = []
    for index, item in enumerate(_items(payload, "questions"), start=1):
        if isinstance(item, str):
            item = {"question": item}
        if not isinstance(item, Mapping):
            continue
        text = _text(item.get("question")).strip()
        if not text:
            continue
        options: list[str] = []
        for option in _items(item, "options"):
            label = option.get("label") if isinstance(option, Mapping) else option
            if _text(label).strip():
                options.append(_text(label).strip())
        answer = item.get("answer")
        questions.append(
            Question(
                id=_text(item.get("id")).strip() or f"q{index}",
                question=text,
                context=_text(item.get("context")),
                assumption=_text(item.get("assumption")),
                impact=_text(item.get("impact")),
                options=tuple(options),
                answer=None if answer is None else _text(answer),
            )
        )
    return tuple(questions)


def _considerations(payload: Mapping[str, object]) -> tuple[Consideration, ...]:
    considerations: list[Consideration] = []
    for index, item in enumerate(_items(payload, "considerations"), start=1):
        if isinstance(item, str):
            item = {"note": item}
        if not isinstance(item, Mapping):
            continue
        note = _text(item.get("note")).strip()
        if not note:
            continue
        considerations.append(
            Consideration(
                id=_text(item.get("id")).strip() or f"c{index}",
                note=note,
                blocking=_flag(item, "blocking"),
            )
        )
    return tuple(considerations)


def context_from_payload(payload: Mapping[str, object], *, node_path: str) -> NodeContext:
    """Coerce a per-child context block; ancestry is filled in by the context builder."""

    return NodeContext(
        interfaces=_interfaces(payload, node_path),
        constraints=_constraints(payload, node_path),
        suggestions=_suggestions(payload, node_path),
        utilities=_utilities(payload, node_path),
    )


def _children(payload: Mapping[str, object], node_path: str) -> tuple[ChildSpec, ...]:
    children: list[ChildSpec] = []
    for item in _items(payload, "children"):
        if not isinstance(item, Mapping):
            continue
        raw_context = item.get("context")
        children.append(
            ChildSpec(
                name=_text(item.get("name")).strip(),
                is_leaf=_flag(item, "is_leaf", "isLeaf"),
                spec_text=_text(item.get("spec", item.get("content", item.get("prompt")))),
                context=(
                    context_from_payload(raw_context, node_path=node_path)
                    if isinstance(raw_context, Mapping)
                    else None
                ),
                files=_str_tuple(item.get("files")),
                commands=_str_tuple(item.get("commands")),
                output_path=_text(item.get("output_path", item.get("outputPath"))).strip().strip("/"),
            )
        )
    return tuple(children)


def compile_result_from_payload(payload: Mapping[str, object], *, node_path: str) -> CompileResult:
    """Build a ``CompileResult``; declarations without a source are attributed to ``node_path``."""

    return CompileResult(
        children=_children(payload, node_path),
        questions=_questions(payload),
        considerations=_considerations(payload),
        interfaces=_interfaces(payload, node_path),
        constraints=_constraints(payload, node_path),
        suggestions=_suggestions(payload, node_path),
        utilities=_utilities(payload, node_path),
    )


def generate_result_from_payload(payload: Mapping[str, object]) -> GenerateResult:
    files: list[GeneratedFile] = []
    raw_files = payload.get("files")
    if isinstance(raw_files, Mapping):
        pairs = [(str(path), content) for path, content in raw_files.items()]
    else:
        pairs = [
            (_text(item.get("path")), item.get("content"))
            for item in _items(payload, "files")
            if isinstance(item, Mapping)
        ]
    for path, content in pairs:
        if path.strip():
            files.append(GeneratedFile(path=path.strip(), content=_text(content)))
    return GenerateResult(
        files=tuple(files),
        questions=_questions(payload),
        considerations=_considerations(payload),
    )


def parse_compile_response(
    raw_text: str, *, node_path: str, provider: str = "provider"
) -> CompileResult:
    return compile_result_from_payload(
        parse_response_payload(raw_text, provider=provider), node_path=node_path
    )


def parse_generate_response(raw_text: str, *, provider: str = "provider") -> GenerateResult:
    return generate_result_from_payload(parse_response_payload(raw_text, provider=provider))


__all__ = [
    "compile_result_from_payload",
    "context_from_payload",
    "generate_result_from_payload",
    "parse_compile_response",
    "parse_generate_response",
    "parse_response_payload",
]
