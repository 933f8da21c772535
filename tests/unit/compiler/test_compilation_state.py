"""Run-wide governors and counters."""

from __future__ import annotations

import asyncio

import pytest

from planforge.compiler.state import (
    CompilationState,
    GovernorExceeded,
    GovernorLimit,
    Governors,
    depth_of,
)
from planforge.domain.models import Rejection


@pytest.mark.parametrize(
    ("field", "value"),
    [("max_nodes", 0), ("max_calls", -1), ("max_parallel", 0), ("max_depth", -1)],
)
def test_governor_bounds(field: str, value: int) -> None:
    with pytest.raises(ValueError, match=field):
        Governors(**{field: value})


def test_depth_of_ancestry() -> None:
    assert depth_of(("root",)) == 0
    assert depth_of(("root", "api", "routes")) == 2
    assert depth_of(()) == 0


def test_call_ceiling_is_enforced() -> None:
    state = CompilationState(Governors(max_calls=2))
    state.reserve_call()
    state.reserve_call()

    with pytest.raises(GovernorExceeded) as excinfo:
        state.reserve_call()

    assert excinfo.value.limit is GovernorLimit.CALLS
    assert state.ai_calls == 2
    assert state.limit_reached is GovernorLimit.CALLS


def test_node_ceiling_stops_admission() -> None:
    state = CompilationState(Governors(max_nodes=1))
    state.admit_node()
    state.complete_node("root", "Compiled successfully")

    with pytest.raises(GovernorExceeded) as excinfo:
        state.admit_node()

    assert excinfo.value.limit is GovernorLimit.NODES
    assert state.total_nodes == 1
    assert state.node_status == {"root": "Compiled successfully"}


def test_zero_call_budget_is_reported_before_any_call() -> None:
    state = CompilationState(Governors(max_calls=0))

    assert state.check_limits() is GovernorLimit.CALLS


def test_errors_questions_and_rejections_are_accumulated() -> None:
    state = CompilationState()
    state.record_error("api", "Provider compilation failed for api: boom")
    state.record_questions(2)
    state.record_rejections("api", (Rejection("api", "recursion", "too similar"),))

    snapshot = state.snapshot()

    assert state.errors == ["api: Provider compilation failed for api: boom"]
    assert snapshot["questions_raised"] == 2
    assert snapshot["rejections"] == 1
    assert snapshot["limit_reached"] is None


@pytest.mark.asyncio
async def test_oracle_slots_bound_parallel_calls() -> None:
    state = CompilationState(Governors(max_parallel=2))

    async def call() -> None:
        async with state.oracle_slot():
            await asyncio.sleep(0.01)

    await asyncio.gather(*(call() for _ in range(6)))

    assert state.peak_parallel_calls == 2
