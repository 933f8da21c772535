"""Typed specification tree consumed by the compiler.

Nodes are produced by a front-end (see ``planforge.spec_ingestion``) and are
read-only for the rest of the system.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TypeAlias

ParameterValue: TypeAlias = str | int | float | bool


@dataclass(frozen=True, slots=True)
class SourceRange:
    """Inclusive 1-based line span of a node within its source file."""

    file: str = "<memory>"
    start_line: int = 1
    end_line: int = 1

    def __post_init__(self) -> None:
        if self.start_line < 1:
            raise ValueError("SourceRange.start_line must be >= 1")
        if self.end_line < self.start_line:
            raise ValueError("SourceRange.end_line must be >= start_line")

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1


@dataclass(frozen=True, slots=True)
class ParameterNode:
    name: str
    value: ParameterValue
    source: SourceRange = field(default_factory=SourceRange)

    kind = "parameter"


@dataclass(frozen=True, slots=True)
class ProseNode:
    content: str
    source: SourceRange = field(default_factory=SourceRange)

    kind = "prose"


@dataclass(frozen=True, slots=True)
class IncludeNode:
    path: str
    source: SourceRange = field(default_factory=SourceRange)

    kind = "include"


@dataclass(frozen=True, slots=True)
class ModuleNode:
    name: str
    parameters: tuple[ParameterNode, ...] = ()
    children: tuple[SpecNode, ...] = ()
    source: SourceRange = field(default_factory=SourceRange)

    kind = "module"

    def parameter_map(self) -> dict[str, ParameterValue]:
        return {parameter.name: parameter.value for parameter in self.parameters}


@dataclass(frozen=True, slots=True)
class QueryFilterNode:
    """Conditional block introduced by a question string."""

    question: str
    parameters: tuple[ParameterNode, ...] = ()
    children: tuple[SpecNode, ...] = ()
    source: SourceRange = field(default_factory=SourceRange)

    kind = "query_filter"


@dataclass(frozen=True, slots=True)
class RootNode:
    children: tuple[SpecNode, ...] = ()
    source: SourceRange = field(default_factory=SourceRange)

    kind = "root"


SpecNode: TypeAlias = (
    RootNode | ModuleNode | QueryFilterNode | ProseNode | IncludeNode | ParameterNode
)
BlockNode: TypeAlias = RootNode | ModuleNode | QueryFilterNode


def is_decomposable(node: SpecNode) -> bool:
    """Return ``True`` for nodes the compiler may treat as separate plan units."""

    return isinstance(node, (ModuleNode, QueryFilterNode))


def has_nested_blocks(node: SpecNode) -> bool:
    """Return ``True`` when ``node`` directly contains a module or query filter."""

    if not isinstance(node, (RootNode, ModuleNode, QueryFilterNode)):
        return False
    return any(is_decomposable(child) for child in node.children)


def is_pure_container(node: SpecNode) -> bool:
    """Return ``True`` when ``node`` holds only modules (and parameters) and nothing else.

    Such a node is already decomposed by its author, so no oracle call is needed
    to split it.
    """

    if not isinstance(node, (RootNode, ModuleNode)):
        return False
    modules = [child for child in node.children if isinstance(child, ModuleNode)]
    if not modules:
        return False
    return all(isinstance(child, (ModuleNode, ParameterNode)) for child in node.children)


__all__ = [
    "BlockNode",
    "IncludeNode",
    "ModuleNode",
    "ParameterNode",
    "ParameterValue",
    "ProseNode",
    "QueryFilterNode",
    "RootNode",
    "SourceRange",
    "SpecNode",
    "has_nested_blocks",
    "is_decomposable",
    "is_pure_container",
]
