"""
planforge: plan tree persistence

File: src/planforge/compiler/writer.py

Purpose
- Persist and read back the per-node plan artifacts under the storage root.

Layout
- Root node: ``root.plan`` plus ``root.plan.context.json``,
  ``root.plan.questions.json`` and ``root.plan.map.json`` at the storage root.
- Nested node ``a/b``: ``a/b/node.plan`` plus the same suffixes, and
  ``node.plan.leaf.json`` when the node is a leaf.

Functional requirements
- Writes are atomic and raise ``ArtifactIOError`` on failure.
- Reads return ``None`` for missing or corrupt artifacts.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from planforge.compiler.source_map import parse_source_map, serialize_source_map
from planforge.constants import (
    CONTEXT_ARTIFACT_SCHEMA_VERSION,
    CONTEXT_SUFFIX,
    LEAF_SUFFIX,
    NODE_PLAN_STEM,
    QUESTIONS_SUFFIX,
    ROOT_PLAN_STEM,
    ROOT_SENTINEL,
    SOURCE_MAP_SUFFIX,
)
from planforge.domain.models import (
    CacheRecord,
    ChildSpec,
    Consideration,
    ConstraintEntry,
    InterfaceEntry,
    LeafArtifact,
    NodeContext,
    Question,
    SuggestionEntry,
    UtilityEntry,
)
from planforge.utils.fs import atomic_write, safe_delete

if TYPE_CHECKING:
    from planforge.compiler.source_map import SourceMap
    from planforge.domain.models import JSONValue

PathLike = str | Path


class ArtifactIOError(OSError):
    """A plan artifact could not be written."""

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"failed to write {path}: {detail}")


@dataclass(frozen=True, slots=True)
class ContextArtifact:
    """Everything persisted about a compiled node besides its spec text."""

    context: NodeContext
    is_leaf: bool
    declared_interfaces: Mapping[str, InterfaceEntry] = field(default_factory=dict)
    declared_constraints: tuple[ConstraintEntry, ...] = ()
    declared_suggestions: tuple[SuggestionEntry, ...] = ()
    declared_utilities: tuple[UtilityEntry, ...] = ()
    children: tuple[ChildSpec, ...] = ()
    cache: CacheRecord | None = None
    schema_version: int = CONTEXT_ARTIFACT_SCHEMA_VERSION

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "schema_version": self.schema_version,
            "context": self.context.to_dict(),
            "is_leaf": self.is_leaf,
            "declared": {
                "interfaces": {
                    name: entry.to_dict() for name, entry in self.declared_interfaces.items()
                },
                "constraints": [entry.to_dict() for entry in self.declared_constraints],
                "suggestions": [entry.to_dict() for entry in self.declared_suggestions],
                "utilities": [entry.to_dict() for entry in self.declared_utilities],
            },
            "children": [child.to_dict() for child in self.children],
        }
        if self.cache is not None:
            payload["cache"] = self.cache.to_dict()
        return payload

    @classmethod
    def from_dict(cls, data: object, path: str = "ContextArtifact") -> ContextArtifact:
        if not isinstance(data, Mapping):
            raise ValueError(f"{path}: expected object")
        schema_version = data.get("schema_version")
        if schema_version != CONTEXT_ARTIFACT_SCHEMA_VERSION:
            raise ValueError(f"{path}.schema_version: unsupported value {schema_version!r}")
        is_leaf = data.get("is_leaf", False)
        if not isinstance(is_leaf, bool):
            raise ValueError(f"{path}.is_leaf: expected boolean")
        declared = data.get("declared", {})
        if not isinstance(declared, Mapping):
            raise ValueError(f"{path}.declared: expected object")
        raw_interfaces = declared.get("interfaces", {})
        if not isinstance(raw_interfaces, Mapping):
            raise ValueError(f"{path}.declared.interfaces: expected object")
        raw_children = data.get("children", [])
        if not isinstance(raw_children, list):
            raise ValueError(f"{path}.children: expected array")
        raw_cache = data.get("cache")
        return cls(
            context=NodeContext.from_dict(data.get("context", {}), f"{path}.context"),
            is_leaf=is_leaf,
            declared_interfaces={
                str(name): InterfaceEntry.from_dict(entry, f"{path}.declared.interfaces.{name}")
                for name, entry in raw_interfaces.items()
            },
            declared_constraints=tuple(
                ConstraintEntry.from_dict(item, f"{path}.declared.constraints[{index}]")
                for index, item in enumerate(_as_array(declared.get("constraints")))
            ),
            declared_suggestions=tuple(
                SuggestionEntry.from_dict(item, f"{path}.declared.suggestions[{index}]")
                for index, item in enumerate(_as_array(declared.get("suggestions")))
            ),
            declared_utilities=tuple(
                UtilityEntry.from_dict(item, f"{path}.declared.utilities[{index}]")
                for index, item in enumerate(_as_array(declared.get("utilities")))
            ),
            children=tuple(
                ChildSpec.from_dict(item, f"{path}.children[{index}]")
                for index, item in enumerate(raw_children)
            ),
            cache=None if raw_cache is None else CacheRecord.from_dict(raw_cache, f"{path}.cache"),
        )


@dataclass(frozen=True, slots=True)
class NodeQuestions:
    node_path: str
    questions: tuple[Question, ...] = ()
    considerations: tuple[Consideration, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "node_path": self.node_path,
            "questions": [question.to_dict() for question in self.questions],
            "considerations": [item.to_dict() for item in self.considerations],
        }

    @classmethod
    def from_dict(cls, data: object, path: str = "NodeQuestions") -> NodeQuestions:
        if not isinstance(data, Mapping):
            raise ValueError(f"{path}: expected object")
        node_path = data.get("node_path")
        if not isinstance(node_path, str):
            raise ValueError(f"{path}.node_path: expected string")
        return cls(
            node_path=node_path,
            questions=tuple(
                Question.from_dict(item, f"{path}.questions[{index}]")
                for index, item in enumerate(_as_array(data.get("questions")))
            ),
            considerations=tuple(
                Consideration.from_dict(item, f"{path}.considerations[{index}]")
                for index, item in enumerate(_as_array(data.get("considerations")))
            ),
        )


def _as_array(value: object) -> list[object]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("expected array")
    return value


# ---------------------------------------------------------------------------
# Path scheme
# ---------------------------------------------------------------------------


def node_directory(storage_root: PathLike, node_path: str) -> Path:
    if node_path == ROOT_SENTINEL:
        return Path(storage_root)
    return Path(storage_root).joinpath(*node_path.split("/"))


def _artifact_path(storage_root: PathLike, node_path: str, suffix: str = "") -> Path:
    stem = ROOT_PLAN_STEM if node_path == ROOT_SENTINEL else NODE_PLAN_STEM
    return node_directory(storage_root, node_path) / f"{stem}{suffix}"


def plan_path(storage_root: PathLike, node_path: str) -> Path:
    return _artifact_path(storage_root, node_path)


def context_path(storage_root: PathLike, node_path: str) -> Path:
    return _artifact_path(storage_root, node_path, CONTEXT_SUFFIX)


def questions_path(storage_root: PathLike, node_path: str) -> Path:
    return _artifact_path(storage_root, node_path, QUESTIONS_SUFFIX)


def source_map_path(storage_root: PathLike, node_path: str) -> Path:
    return _artifact_path(storage_root, node_path, SOURCE_MAP_SUFFIX)


def leaf_artifact_path(storage_root: PathLike, node_path: str) -> Path:
    return _artifact_path(storage_root, node_path, LEAF_SUFFIX)


# ---------------------------------------------------------------------------
# Reads and writes
# ---------------------------------------------------------------------------


def _write(path: Path, text: str) -> None:
    try:
        atomic_write(path, text)
    except OSError as exc:
        raise ArtifactIOError(path, str(exc)) from exc


def _write_json(path: Path, payload: Mapping[str, object]) -> None:
    _write(path, json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n")


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def _read_json(path: Path) -> object | None:
    text = _read_text(path)
    if text is None:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def write_plan_file(storage_root: PathLike, node_path: str, spec_text: str) -> Path:
    target = plan_path(storage_root, node_path)
    _write(target, spec_text)
    return target


def read_plan_file(storage_root: PathLike, node_path: str) -> str | None:
    return _read_text(plan_path(storage_root, node_path))


def write_context_file(storage_root: PathLike, node_path: str, artifact: ContextArtifact) -> Path:
    target = context_path(storage_root, node_path)
    _write_json(target, artifact.to_dict())
    return target


def read_context_file(storage_root: PathLike, node_path: str) -> ContextArtifact | None:
    data = _read_json(context_path(storage_root, node_path))
    if data is None:
        return None
    try:
        return ContextArtifact.from_dict(data)
    except ValueError:
        return None


def write_questions_file(storage_root: PathLike, node_path: str, questions: NodeQuestions) -> Path:
    target = questions_path(storage_root, node_path)
    _write_json(target, questions.to_dict())
    return target


def read_questions_file(storage_root: PathLike, node_path: str) -> NodeQuestions | None:
    data = _read_json(questions_path(storage_root, node_path))
    if data is None:
        return None
    try:
        return NodeQuestions.from_dict(data)
    except ValueError:
        return None


def write_leaf_artifact(storage_root: PathLike, node_path: str, artifact: LeafArtifact) -> Path:
    target = leaf_artifact_path(storage_root, node_path)
    _write_json(target, artifact.to_dict())
    return target


def read_leaf_artifact(storage_root: PathLike, node_path: str) -> LeafArtifact | None:
    data = _read_json(leaf_artifact_path(storage_root, node_path))
    if data is None:
        return None
    try:
        return LeafArtifact.from_dict(data)
    except ValueError:
        return None


def write_source_map(storage_root: PathLike, node_path: str, source_map: SourceMap) -> Path:
    target = source_map_path(storage_root, node_path)
    _write(target, serialize_source_map(source_map))
    return target


def read_source_map(storage_root: PathLike, node_path: str) -> SourceMap | None:
    text = _read_text(source_map_path(storage_root, node_path))
    if text is None:
        return None
    try:
        return parse_source_map(text)
    except ValueError:
        return None


def remove_artifact(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        raise ArtifactIOError(path, str(exc)) from exc


def prune_stale_children(storage_root: PathLike, node_path: str, keep: set[str]) -> list[str]:
    """Delete child node directories of ``node_path`` whose names are not in ``keep``.

    Only directories that hold a context artifact are considered plan nodes.
    Returns the pruned child names.
    """

    directory = node_directory(storage_root, node_path)
    if not directory.is_dir():
        return []
    pruned: list[str] = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_dir() or entry.is_symlink() or entry.name in keep:
            continue
        if not (entry / f"{NODE_PLAN_STEM}{CONTEXT_SUFFIX}").is_file():
            continue
        try:
            safe_delete(entry, storage_root)
        except OSError as exc:
            raise ArtifactIOError(entry, str(exc)) from exc
        pruned.append(entry.name)
    return pruned


__all__ = [
    "ArtifactIOError",
    "ContextArtifact",
    "NodeQuestions",
    "context_path",
    "leaf_artifact_path",
    "node_directory",
    "plan_path",
    "prune_stale_children",
    "questions_path",
    "read_context_file",
    "read_leaf_artifact",
    "read_plan_file",
    "read_questions_file",
    "read_source_map",
    "remove_artifact",
    "source_map_path",
    "write_context_file",
    "write_leaf_artifact",
    "write_plan_file",
    "write_questions_file",
    "write_source_map",
]
