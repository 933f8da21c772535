"""Canonical spec-text rendering of typed spec nodes.

The rendering is what gets persisted as a node's plan artifact and what the cache
hashes, so it must be stable: the same tree always yields byte-identical text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from planforge.domain.spec_tree import (
    IncludeNode,
    ModuleNode,
    ParameterNode,
    ProseNode,
    QueryFilterNode,
    RootNode,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from planforge.domain.spec_tree import ParameterValue, SpecNode

_INDENT = "  "


def serialize_node(node: SpecNode) -> str:
    """Render ``node`` (and its subtree) to canonical spec text."""

    if isinstance(node, RootNode):
        return "\n\n".join(part for part in map(serialize_node, node.children) if part)
    if isinstance(node, ModuleNode):
        return _block(node.name, node.parameters, node.children)
    if isinstance(node, QueryFilterNode):
        return _block(f'"{escape_string(node.question)}"', node.parameters, node.children)
    if isinstance(node, ProseNode):
        return node.content
    if isinstance(node, ParameterNode):
        return f"{node.name}={format_parameter_value(node.value)};"
    if isinstance(node, IncludeNode):
        return f"include {node.path};"
    raise TypeError(f"unsupported spec node: {type(node).__name__}")


def format_parameter_value(value: ParameterValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    return f'"{escape_string(value)}"'


def escape_string(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _block(header: str, parameters: Iterable[ParameterNode], children: Iterable[SpecNode]) -> str:
    parts = [_INDENT + serialize_node(parameter) for parameter in parameters]
    for child in children:
        if isinstance(child, ParameterNode):
            parts.append(_INDENT + serialize_node(child))
            continue
        rendered = serialize_node(child)
        if rendered:
            parts.append(_indent(rendered))
    body = "\n".join(parts)
    return f"{header} {{\n{body}\n}}"


def _indent(text: str) -> str:
    return "\n".join(_INDENT + line if line.strip() else line for line in text.split("\n"))


__all__ = ["escape_string", "format_parameter_value", "serialize_node"]
