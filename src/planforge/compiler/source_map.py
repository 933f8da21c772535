"""
planforge: plan source maps

File: src/planforge/compiler/source_map.py

Purpose
- Trace each line of a persisted plan file back to the spec source line it came from.

Functional requirements
- Sources are deduplicated; mappings are sorted by generated line on build.
- Parsing never raises on malformed content beyond ``ValueError``.
"""

from __future__ import annotations

import bisect
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from planforge.constants import SOURCE_MAP_VERSION

__all__ = [
    "SourceMap",
    "SourceMapBuilder",
    "SourceMapping",
    "get_contributing_sources",
    "lookup_source_location",
    "parse_source_map",
    "serialize_source_map",
]


@dataclass(frozen=True, slots=True)
class SourceMapping:
    generated_line: int
    source_index: int
    source_line: int

    def to_dict(self) -> dict[str, int]:
        return {
            "generated_line": self.generated_line,
            "source_index": self.source_index,
            "source_line": self.source_line,
        }


@dataclass(frozen=True, slots=True)
class SourceMap:
    file: str
    sources: tuple[str, ...] = ()
    mappings: tuple[SourceMapping, ...] = ()
    version: int = SOURCE_MAP_VERSION

    def to_dict(self) -> dict[str, object]:
        return {
            "version": self.version,
            "file": self.file,
            "sources": list(self.sources),
            "mappings": [mapping.to_dict() for mapping in self.mappings],
        }


@dataclass(slots=True)
class SourceMapBuilder:
    """Accumulates mappings for one generated plan file."""

    file: str
    _sources: list[str] = field(default_factory=list)
    _source_index: dict[str, int] = field(default_factory=dict)
    _mappings: list[SourceMapping] = field(default_factory=list)

    def _add_source(self, source_file: str) -> int:
        index = self._source_index.get(source_file)
        if index is None:
            index = len(self._sources)
            self._sources.append(source_file)
            self._source_index[source_file] = index
        return index

    def add_mapping(self, generated_line: int, source_file: str, source_line: int) -> None:
        if generated_line < 1 or source_line < 1:
            raise ValueError("line numbers are 1-based")
        self._mappings.append(
            SourceMapping(
                generated_line=generated_line,
                source_index=self._add_source(source_file),
                source_line=source_line,
            )
        )

    def add_range_mapping(
        self,
        generated_start_line: int,
        generated_end_line: int,
        source_file: str,
        source_start_line: int,
        source_end_line: int | None = None,
    ) -> None:
        """Map a run of generated lines onto consecutive source lines.

        When ``source_end_line`` is given, generated lines beyond the source span
        are clamped to its last line.
        """

        if generated_end_line < generated_start_line:
            raise ValueError("generated_end_line must be >= generated_start_line")
        for offset in range(generated_end_line - generated_start_line + 1):
            source_line = source_start_line + offset
            if source_end_line is not None:
                source_line = min(source_line, source_end_line)
            self.add_mapping(generated_start_line + offset, source_file, source_line)

    def build(self) -> SourceMap:
        ordered = sorted(self._mappings, key=lambda mapping: mapping.generated_line)
        return SourceMap(file=self.file, sources=tuple(self._sources), mappings=tuple(ordered))


def lookup_source_location(source_map: SourceMap, generated_line: int) -> tuple[str, int] | None:
    """Return ``(source_file, source_line)`` for ``generated_line`` or ``None``."""

    keys = [mapping.generated_line for mapping in source_map.mappings]
    position = bisect.bisect_left(keys, generated_line)
    if position >= len(keys) or keys[position] != generated_line:
        return None
    mapping = source_map.mappings[position]
    if not 0 <= mapping.source_index < len(source_map.sources):
        return None
    return source_map.sources[mapping.source_index], mapping.source_line


def get_contributing_sources(source_map: SourceMap) -> list[str]:
    return list(source_map.sources)


def serialize_source_map(source_map: SourceMap) -> str:
    return json.dumps(source_map.to_dict(), indent=2) + "\n"


def parse_source_map(content: str) -> SourceMap:
    """Parse serialized source-map JSON; raises ``ValueError`` on malformed input."""

    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ValueError(f"source map is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, Mapping):
        raise ValueError("source map must be a JSON object")

    file_name = data.get("file")
    sources = data.get("sources", [])
    raw_mappings = data.get("mappings", [])
    version = data.get("version", SOURCE_MAP_VERSION)
    if not isinstance(file_name, str):
        raise ValueError("source map 'file' must be a string")
    if not isinstance(version, int) or isinstance(version, bool):
        raise ValueError("source map 'version' must be an integer")
    if not isinstance(sources, Sequence) or not all(isinstance(item, str) for item in sources):
        raise ValueError("source map 'sources' must be an array of strings")
    if not isinstance(raw_mappings, Sequence):
        raise ValueError("source map 'mappings' must be an array")

    mappings: list[SourceMapping] = []
    for index, item in enumerate(raw_mappings):
        if not isinstance(item, Mapping):
            raise ValueError(f"source map mappings[{index}] must be an object")
        values = [item.get(key) for key in ("generated_line", "source_index", "source_line")]
        if not all(isinstance(value, int) and not isinstance(value, bool) for value in values):
            raise ValueError(f"source map mappings[{index}] must hold integer fields")
        mappings.append(SourceMapping(*values))
    mappings.sort(key=lambda mapping: mapping.generated_line)
    return SourceMap(file=file_name, sources=tuple(sources), mappings=tuple(mappings), version=version)
