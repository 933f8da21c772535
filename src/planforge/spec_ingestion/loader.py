"""
planforge: spec tree loader

File: src/planforge/spec_ingestion/loader.py

Purpose
- Load a typed spec tree from a YAML or JSON description.

Document shape
- Top level is either a list of entries or a mapping with ``children``.
- Entries are mappings keyed by one of ``module``, ``filter``, ``prose`` or
  ``include``; modules and filters accept ``parameters`` (mapping) and
  ``children`` (list). A bare string entry is prose.
- Optional ``line`` / ``end_line`` record where the entry came from in the
  original document so plan artifacts can be traced back.

Functional requirements
- Errors identify the offending entry by its position in the tree.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Final

import yaml

from planforge.domain.spec_tree import (
    IncludeNode,
    ModuleNode,
    ParameterNode,
    ProseNode,
    QueryFilterNode,
    RootNode,
    SourceRange,
)

if TYPE_CHECKING:
    from planforge.domain.spec_tree import SpecNode

_ENTRY_KINDS: Final[tuple[str, ...]] = ("module", "filter", "prose", "include")
_ENTRY_KEYS: Final[frozenset[str]] = frozenset(
    {*_ENTRY_KINDS, "parameters", "children", "line", "end_line"}
)


class SpecLoadError(ValueError):
    """Structured spec-tree loading failure."""

    def __init__(self, *, path: Path, entry: str, message: str) -> None:
        self.path = path
        self.entry = entry
        self.message = message
        super().__init__(f"{path} [{entry}] {message}")


def load_spec_tree(path: Path | str) -> RootNode:
    """Read ``path`` (YAML or JSON) and return the typed root node."""

    source_path = Path(path)
    try:
        raw_text = source_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SpecLoadError(path=source_path, entry="<file>", message=f"unable to read: {exc}") from exc
    return parse_spec_tree(raw_text, source_file=source_path)


def parse_spec_tree(raw_text: str, *, source_file: Path | str = "<memory>") -> RootNode:
    """Parse an in-memory YAML/JSON document into a typed root node."""

    file_path = Path(source_file)
    try:
        document = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise SpecLoadError(path=file_path, entry="<document>", message=f"invalid YAML: {exc}") from exc

    if document is None:
        return RootNode(source=SourceRange(file=file_path.as_posix()))
    if isinstance(document, Mapping):
        raw_children = document.get("children", [])
    else:
        raw_children = document
    builder = _TreeBuilder(file_path)
    children = builder.children(raw_children, "root")
    last_line = max((child.source.end_line for child in children), default=1)
    return RootNode(
        children=children,
        source=SourceRange(file=file_path.as_posix(), start_line=1, end_line=last_line),
    )


class _TreeBuilder:
    def __init__(self, path: Path) -> None:
        self._path = path
        self._file = path.as_posix()

    def fail(self, entry: str, message: str) -> SpecLoadError:
        return SpecLoadError(path=self._path, entry=entry, message=message)

    def children(self, raw: object, entry: str) -> tuple[SpecNode, ...]:
        if raw is None:
            return ()
        if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
            raise self.fail(entry, "children must be a list")
        return tuple(self.node(item, f"{entry}[{index}]") for index, item in enumerate(raw))

    def node(self, raw: object, entry: str) -> SpecNode:
        if isinstance(raw, str):
            return ProseNode(content=raw, source=SourceRange(file=self._file))
        if not isinstance(raw, Mapping):
            raise self.fail(entry, f"expected mapping or string, got {type(raw).__name__}")

        unknown = sorted(str(key) for key in raw if key not in _ENTRY_KEYS)
        if unknown:
            raise self.fail(entry, f"unknown keys: {', '.join(unknown)}")
        kinds = [kind for kind in _ENTRY_KINDS if kind in raw]
        if len(kinds) != 1:
            raise self.fail(entry, f"entry must define exactly one of: {', '.join(_ENTRY_KINDS)}")

        kind = kinds[0]
        value = raw[kind]
        source = self.source_range(raw, entry)
        if kind == "prose":
            return ProseNode(content=self.text(value, entry, kind), source=source)
        if kind == "include":
            return IncludeNode(path=self.text(value, entry, kind), source=source)

        parameters = self.parameters(raw.get("parameters"), entry, source)
        children = self.children(raw.get("children"), entry)
        if kind == "module":
            name = self.text(value, entry, kind)
            if "/" in name or ".." in name:
                raise self.fail(entry, f"module name {name!r} must not contain '/' or '..'")
            return ModuleNode(name=name, parameters=parameters, children=children, source=source)
        return QueryFilterNode(
            question=self.text(value, entry, kind),
            parameters=parameters,
            children=children,
            source=source,
        )

    def parameters(
        self, raw: object, entry: str, source: SourceRange
    ) -> tuple[ParameterNode, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, Mapping):
            raise self.fail(entry, "parameters must be a mapping")
        parsed: list[ParameterNode] = []
        for name, value in raw.items():
            if not isinstance(name, str) or not name.strip():
                raise self.fail(entry, "parameter names must be non-empty strings")
            if value is None:
                value = ""
            if not isinstance(value, (str, bool, int, float)):
                raise self.fail(entry, f"parameter {name!r} must be a string, number or boolean")
            parsed.append(ParameterNode(name=name, value=value, source=source))
        return tuple(parsed)

    def text(self, value: object, entry: str, kind: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise self.fail(entry, f"{kind} must be a non-empty string")
        return value if kind == "prose" else value.strip()

    def source_range(self, raw: Mapping[object, object], entry: str) -> SourceRange:
        start = raw.get("line", 1)
        end = raw.get("end_line", start)
        if isinstance(start, bool) or not isinstance(start, int) or start < 1:
            raise self.fail(entry, "line must be a positive integer")
        if isinstance(end, bool) or not isinstance(end, int) or end < start:
            raise self.fail(entry, "end_line must be an integer >= line")
        return SourceRange(file=self._file, start_line=start, end_line=end)


__all__ = ["SpecLoadError", "load_spec_tree", "parse_spec_tree"]
