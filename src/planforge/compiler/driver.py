"""Recursive tree walk: compiles a spec tree top-down under the run governors."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from planforge.compiler.compile_node import CompileOptions, compile_node
from planforge.compiler.context_builder import build_child_context, create_root_context
from planforge.compiler.registries import Registries
from planforge.compiler.state import CompilationState, GovernorExceeded, Governors

if TYPE_CHECKING:
    from collections.abc import Mapping

    from planforge.compiler.compile_node import CompileUnit
    from planforge.domain.models import CompiledNode, NodeContext, Rejection
    from planforge.domain.spec_tree import RootNode
    from planforge.providers.base import ProviderProtocol


@dataclass(frozen=True, slots=True)
class RunSummary:
    total_nodes: int
    completed_nodes: int
    ai_calls: int
    questions_raised: int
    skipped_nodes: int
    leaf_nodes: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    rejections: tuple[tuple[str, Rejection], ...] = ()
    limit_reached: str | None = None
    node_status: Mapping[str, str] = field(default_factory=dict)

    @property
    def exit_status(self) -> int:
        return 1 if self.limit_reached is not None or self.errors else 0

    def to_dict(self) -> dict[str, object]:
        return {
            "total_nodes": self.total_nodes,
            "completed_nodes": self.completed_nodes,
            "ai_calls": self.ai_calls,
            "questions_raised": self.questions_raised,
            "skipped_nodes": self.skipped_nodes,
            "leaf_nodes": list(self.leaf_nodes),
            "errors": list(self.errors),
            "rejections": [
                {"node_path": node_path, **rejection.to_dict()}
                for node_path, rejection in self.rejections
            ],
            "limit_reached": self.limit_reached,
            "node_status": dict(self.node_status),
            "exit_status": self.exit_status,
        }


class _TreeWalk:
    def __init__(
        self,
        provider: ProviderProtocol,
        storage_root: Path,
        options: CompileOptions,
        state: CompilationState,
        registries: Registries,
        logger: Any,
    ) -> None:
        self._provider = provider
        self._storage_root = storage_root
        self._options = options
        self._state = state
        self._registries = registries
        self._logger = logger
        self.skipped = 0
        self.leaves: list[str] = []

    async def visit(self, unit: CompileUnit, context: NodeContext) -> None:
        try:
            self._state.admit_node()
        except GovernorExceeded as exc:
            self._logger.info(
                "compile_governor_reached", limit=exc.limit.value, skipped_module=context.module
            )
            return

        try:
            compiled = await compile_node(
                unit,
                context,
                self._provider,
                self._storage_root,
                self._options,
                state=self._state,
                registries=self._registries,
                logger=self._logger,
            )
        except GovernorExceeded as exc:
            self._state.record_error(
                "/".join(context.ancestry[1:]) or context.module,
                f"halted before completion: {exc.limit.value} limit reached",
            )
            self._logger.info("compile_governor_reached", limit=exc.limit.value)
            return

        self._record(compiled)
        if compiled.is_leaf or not compiled.children:
            return
        limit = self._state.check_limits()
        if limit is not None:
            self._logger.info(
                "compile_governor_reached",
                limit=limit.value,
                node_path=compiled.node_path,
                pending_children=len(compiled.children),
            )
            return

        await asyncio.gather(
            *(
                self.visit(
                    child,
                    child.context
                    if child.context is not None
                    else build_child_context(context, compiled, child.name),
                )
                for child in compiled.children
            )
        )

    def _record(self, compiled: CompiledNode) -> None:
        state = self._state
        state.complete_node(compiled.node_path, compiled.cache_status)
        for error in compiled.errors:
            state.record_error(compiled.node_path, error)
        if compiled.questions:
            state.record_questions(len(compiled.questions))
        if compiled.rejections:
            state.record_rejections(compiled.node_path, compiled.rejections)
        if compiled.skipped:
            self.skipped += 1
        if compiled.is_leaf:
            self.leaves.append(compiled.node_path)


async def compile_tree(
    root: RootNode,
    provider: ProviderProtocol,
    storage_root: str | Path,
    *,
    options: CompileOptions | None = None,
    governors: Governors | None = None,
    registries: Registries | None = None,
    logger: Any | None = None,
) -> RunSummary:
    """Compile ``root`` and every reachable descendant, then summarize the run.

    A node always compiles before its children; siblings compile concurrently.
    Once a governor is hit no new node starts, while nodes already in flight finish.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    target = Path(storage_root)
    target.mkdir(parents=True, exist_ok=True)
    state = CompilationState(governors)
    walk = _TreeWalk(
        provider,
        target,
        options if options is not None else CompileOptions(),
        state,
        registries if registries is not None else Registries(),
        log,
    )

    log.info("compile_run_started", storage_root=str(target), **_governor_fields(state.governors))
    await walk.visit(root, create_root_context(root))

    summary = RunSummary(
        total_nodes=state.total_nodes,
        completed_nodes=state.completed_nodes,
        ai_calls=state.ai_calls,
        questions_raised=state.questions_raised,
        skipped_nodes=walk.skipped,
        leaf_nodes=tuple(sorted(walk.leaves)),
        errors=tuple(state.errors),
        rejections=tuple(state.rejections),
        limit_reached=None if state.limit_reached is None else state.limit_reached.value,
        node_status=dict(sorted(state.node_status.items())),
    )
    log.info(
        "compile_run_finished",
        completed_nodes=summary.completed_nodes,
        ai_calls=summary.ai_calls,
        skipped_nodes=summary.skipped_nodes,
        errors=len(summary.errors),
        limit_reached=summary.limit_reached,
    )
    return summary


def _governor_fields(governors: Governors) -> dict[str, int]:
    return {
        "max_nodes": governors.max_nodes,
        "max_calls": governors.max_calls,
        "max_parallel": governors.max_parallel,
        "max_depth": governors.max_depth,
    }


__all__ = ["RunSummary", "compile_tree"]
