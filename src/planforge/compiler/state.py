"""Run-wide counters and governors for one compilation."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from planforge.constants import (
    DEFAULT_MAX_CALLS,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_NODES,
    DEFAULT_MAX_PARALLEL,
)
from planforge.utils.concurrency import BoundedSemaphore

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

    from planforge.domain.models import Rejection


class GovernorLimit(StrEnum):
    NODES = "nodes"
    CALLS = "calls"


class GovernorExceeded(RuntimeError):
    """A node or oracle-call ceiling was reached; no new work may be scheduled."""

    def __init__(self, limit: GovernorLimit) -> None:
        self.limit = limit
        super().__init__(f"governor limit reached: {limit.value}")


@dataclass(frozen=True, slots=True)
class Governors:
    max_nodes: int = DEFAULT_MAX_NODES
    max_calls: int = DEFAULT_MAX_CALLS
    max_parallel: int = DEFAULT_MAX_PARALLEL
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self) -> None:
        if self.max_nodes < 1:
            raise ValueError("max_nodes must be >= 1")
        if self.max_calls < 0:
            raise ValueError("max_calls must be >= 0")
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        if self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")


class CompilationState:
    """Counters shared by every concurrent branch of one run.

    All mutation happens under a ``threading.Lock`` that is released before any
    await; oracle concurrency is bounded separately by an async semaphore.
    """

    def __init__(self, governors: Governors | None = None) -> None:
        self.governors = governors if governors is not None else Governors()
        self._lock = threading.Lock()
        self._oracle_slots = BoundedSemaphore(self.governors.max_parallel)
        self.total_nodes = 0
        self.completed_nodes = 0
        self.ai_calls = 0
        self.questions_raised = 0
        self.errors: list[str] = []
        self.rejections: list[tuple[str, Rejection]] = []
        self.node_status: dict[str, str] = {}
        self.limit_reached: GovernorLimit | None = None

    @property
    def max_depth(self) -> int:
        return self.governors.max_depth

    @property
    def peak_parallel_calls(self) -> int:
        return self._oracle_slots.peak

    def check_limits(self) -> GovernorLimit | None:
        with self._lock:
            return self._check_limits_locked()

    def _check_limits_locked(self) -> GovernorLimit | None:
        if self.limit_reached is None:
            if self.completed_nodes >= self.governors.max_nodes:
                self.limit_reached = GovernorLimit.NODES
            elif self.ai_calls >= self.governors.max_calls:
                self.limit_reached = GovernorLimit.CALLS
        return self.limit_reached

    def admit_node(self) -> None:
        """Count a node as started, or raise once any governor has been hit."""

        with self._lock:
            limit = self._check_limits_locked()
            if limit is not None:
                raise GovernorExceeded(limit)
            self.total_nodes += 1

    def complete_node(self, node_path: str, status: str) -> None:
        with self._lock:
            self.completed_nodes += 1
            self.node_status[node_path] = status

    def reserve_call(self) -> None:
        """Account for one oracle call, refusing it when the call ceiling is reached."""

        with self._lock:
            if self.ai_calls >= self.governors.max_calls:
                if self.limit_reached is None:
                    self.limit_reached = GovernorLimit.CALLS
                raise GovernorExceeded(GovernorLimit.CALLS)
            self.ai_calls += 1

    def oracle_slot(self) -> AbstractAsyncContextManager[None]:
        return self._oracle_slots.permit()

    def record_error(self, node_path: str, message: str) -> None:
        with self._lock:
            self.errors.append(f"{node_path}: {message}")

    def record_questions(self, count: int) -> None:
        with self._lock:
            self.questions_raised += count

    def record_rejections(self, node_path: str, rejections: tuple[Rejection, ...]) -> None:
        with self._lock:
            self.rejections.extend((node_path, rejection) for rejection in rejections)

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "total_nodes": self.total_nodes,
                "completed_nodes": self.completed_nodes,
                "ai_calls": self.ai_calls,
                "questions_raised": self.questions_raised,
                "errors": len(self.errors),
                "rejections": len(self.rejections),
                "limit_reached": None if self.limit_reached is None else self.limit_reached.value,
            }


def depth_of(ancestry: tuple[str, ...]) -> int:
    """Depth of a node from its ancestry; the root is depth 0."""

    return max(len(ancestry) - 1, 0)


__all__ = [
    "CompilationState",
    "GovernorExceeded",
    "GovernorLimit",
    "Governors",
    "depth_of",
]
