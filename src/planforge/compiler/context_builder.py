"""Computes the knowledge each child inherits from its parent.

Context flows strictly parent to child. A child receives the parent's own
inherited context plus what the parent's compilation chose to add: either the
entries the oracle attached to that specific child, or (when it attached none)
everything the parent declared. Nothing is gathered from other ancestors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from planforge.constants import ROOT_SENTINEL
from planforge.domain.models import NodeContext

if TYPE_CHECKING:
    from planforge.domain.models import CompiledNode
    from planforge.domain.spec_tree import RootNode


def create_root_context(root_node: RootNode | None = None) -> NodeContext:
    """Root receives empty inherited knowledge."""

    del root_node
    return NodeContext(ancestry=(ROOT_SENTINEL,))


def build_node_path(ancestry: tuple[str, ...] | list[str]) -> str:
    """Join ancestry after the root sentinel with ``/``; ``("root",)`` maps to ``"root"``."""

    parts = list(ancestry)
    if not parts:
        return ROOT_SENTINEL
    if parts[0] == ROOT_SENTINEL:
        parts = parts[1:]
    return "/".join(parts) or ROOT_SENTINEL


def build_child_context(
    parent_context: NodeContext,
    compile_result: CompiledNode,
    child_name: str,
) -> NodeContext:
    """Return a new context for ``child_name`` under ``parent_context``."""

    ancestry = tuple(parent_context.ancestry) or (ROOT_SENTINEL,)
    if child_name != ROOT_SENTINEL or ancestry[-1] != ROOT_SENTINEL:
        ancestry = (*ancestry, child_name)

    child = next((item for item in compile_result.children if item.name == child_name), None)
    if child is not None and child.context is not None:
        additions = child.context
    else:
        additions = NodeContext(
            ancestry=ancestry,
            interfaces=dict(compile_result.declared_interfaces),
            constraints=compile_result.declared_constraints,
            suggestions=compile_result.declared_suggestions,
            utilities=compile_result.declared_utilities,
        )

    merged = merge_contexts(parent_context, additions)
    return NodeContext(
        ancestry=ancestry,
        parameters=merged.parameters,
        interfaces=merged.interfaces,
        constraints=merged.constraints,
        suggestions=merged.suggestions,
        utilities=merged.utilities,
        query_matches=merged.query_matches,
    )


def merge_contexts(base: NodeContext, additions: NodeContext) -> NodeContext:
    """Append-only union of ``additions`` onto ``base``; existing entries always win.

    The result keeps ``base.ancestry``.
    """

    parameters = dict(base.parameters)
    for key, value in additions.parameters.items():
        parameters.setdefault(key, value)

    interfaces = dict(base.interfaces)
    for name, entry in additions.interfaces.items():
        interfaces.setdefault(name, entry)

    known_rules = {entry.rule for entry in base.constraints}
    constraints = list(base.constraints)
    for constraint in additions.constraints:
        if constraint.rule not in known_rules:
            known_rules.add(constraint.rule)
            constraints.append(constraint)

    known_suggestions = {entry.rule for entry in base.suggestions}
    suggestions = list(base.suggestions)
    for suggestion in additions.suggestions:
        if suggestion.rule not in known_suggestions:
            known_suggestions.add(suggestion.rule)
            suggestions.append(suggestion)

    known_utilities = {entry.key for entry in base.utilities}
    utilities = list(base.utilities)
    for utility in additions.utilities:
        if utility.key not in known_utilities:
            known_utilities.add(utility.key)
            utilities.append(utility)

    query_matches = list(base.query_matches)
    query_matches.extend(match for match in additions.query_matches if match not in query_matches)

    return NodeContext(
        ancestry=base.ancestry,
        parameters=parameters,
        interfaces=interfaces,
        constraints=tuple(constraints),
        suggestions=tuple(suggestions),
        utilities=tuple(utilities),
        query_matches=tuple(query_matches),
    )


def is_empty_context(context: NodeContext) -> bool:
    return not (
        context.interfaces or context.constraints or context.suggestions or context.utilities
    )


def format_context(context: NodeContext) -> str:
    """One-line human summary used in prompts and logs."""

    parts: list[str] = []
    if context.interfaces:
        parts.append(
            f"{len(context.interfaces)} interface(s): {', '.join(sorted(context.interfaces))}"
        )
    if context.constraints:
        parts.append(f"{len(context.constraints)} constraint(s)")
    if context.suggestions:
        parts.append(f"{len(context.suggestions)} suggestion(s)")
    if context.utilities:
        names = ", ".join(utility.name for utility in context.utilities)
        parts.append(f"{len(context.utilities)} utility(s): {names}")
    return "; ".join(parts) if parts else "(empty context)"


__all__ = [
    "build_child_context",
    "build_node_path",
    "create_root_context",
    "format_context",
    "is_empty_context",
    "merge_contexts",
]
