"""Find the leaf nodes of a compiled plan tree."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from planforge.compiler.writer import (
    context_path,
    node_directory,
    read_context_file,
    read_leaf_artifact,
    read_plan_file,
)
from planforge.constants import CONTEXT_SUFFIX, NODE_PLAN_STEM, ROOT_PLAN_STEM, ROOT_SENTINEL
from planforge.domain.models import LeafArtifact, NodeContext

_NODE_CONTEXT_FILE = f"{NODE_PLAN_STEM}{CONTEXT_SUFFIX}"
_ROOT_CONTEXT_FILE = f"{ROOT_PLAN_STEM}{CONTEXT_SUFFIX}"


@dataclass(frozen=True, slots=True)
class LeafNode:
    node_path: str
    spec_text: str
    context: NodeContext = field(default_factory=NodeContext)
    artifact: LeafArtifact | None = None


def get_all_node_paths(storage_root: str | Path) -> list[str]:
    """Every node path with a context artifact, sorted; the root is ``"root"``."""

    root = Path(storage_root)
    if not root.is_dir():
        return []
    paths: list[str] = []
    if (root / _ROOT_CONTEXT_FILE).is_file():
        paths.append(ROOT_SENTINEL)
    for marker in root.rglob(_NODE_CONTEXT_FILE):
        relative = marker.parent.relative_to(root)
        if relative.parts:
            paths.append(relative.as_posix())
    return sorted(paths)


def _has_child_nodes(directory: Path) -> bool:
    return any(
        entry.is_dir() and (entry / _NODE_CONTEXT_FILE).is_file() for entry in directory.iterdir()
    )


def is_leaf_node(storage_root: str | Path, node_path: str) -> bool:
    """A node is a leaf when no child directory carries its own context artifact.

    Nodes whose artifact records a decomposition are never leaves, even when a
    halted run left them without compiled children.
    """

    if not context_path(storage_root, node_path).is_file():
        return False
    directory = node_directory(storage_root, node_path)
    if _has_child_nodes(directory):
        return False
    artifact = read_context_file(storage_root, node_path)
    return artifact is None or artifact.is_leaf


def discover_leaf_nodes(storage_root: str | Path) -> list[LeafNode]:
    leaves: list[LeafNode] = []
    for node_path in get_all_node_paths(storage_root):
        if not is_leaf_node(storage_root, node_path):
            continue
        artifact = read_context_file(storage_root, node_path)
        leaves.append(
            LeafNode(
                node_path=node_path,
                spec_text=read_plan_file(storage_root, node_path) or "",
                context=artifact.context if artifact is not None else NodeContext(),
                artifact=read_leaf_artifact(storage_root, node_path),
            )
        )
    return leaves


__all__ = ["LeafNode", "discover_leaf_nodes", "get_all_node_paths", "is_leaf_node"]
