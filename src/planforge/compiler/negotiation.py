"""
planforge: bounded oracle conversation loop

File: src/planforge/compiler/negotiation.py

Purpose
- Drive a turn-based oracle that proposes structured actions (``gen_node`` /
  ``gen_leaf``) until it has nothing more to propose.

Functional requirements
- The loop is an explicit state machine: AWAITING_ACTION -> APPLYING_ACTION -> DONE.
- Every action, on every turn, flows through the same ``apply`` callable.
- Outcomes of one turn are returned to the oracle on the next turn so it can
  react to rejections.
- A step budget bounds the number of turns; running out ends the loop with
  ``exhausted=True``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import structlog

from planforge.constants import DEFAULT_MAX_ACTION_STEPS

if TYPE_CHECKING:
    from collections.abc import Callable


class ActionKind(StrEnum):
    GEN_NODE = "gen_node"
    GEN_LEAF = "gen_leaf"


class LoopState(StrEnum):
    AWAITING_ACTION = "awaiting_action"
    APPLYING_ACTION = "applying_action"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class OracleAction:
    """One structured proposal from the oracle.

    ``kind`` is kept as free text so unknown tools reach ``apply`` and are
    rejected there instead of failing the whole turn.
    """

    kind: str
    name: str = ""
    spec: str = ""
    files: tuple[str, ...] = ()
    commands: tuple[str, ...] = ()
    output_path: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OracleAction:
        kind = data.get("kind", data.get("tool", ""))
        spec = data.get("spec", data.get("content", data.get("prompt", "")))
        return cls(
            kind=str(kind),
            name=str(data.get("name", "") or ""),
            spec=str(spec or ""),
            files=_str_tuple(data.get("files")),
            commands=_str_tuple(data.get("commands")),
            output_path=str(data.get("output_path", "") or ""),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "name": self.name,
            "spec": self.spec,
            "files": list(self.files),
            "commands": list(self.commands),
            "output_path": self.output_path,
        }


def _str_tuple(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Sequence):
        return tuple(str(item) for item in value)
    return ()


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    action: OracleAction
    accepted: bool
    detail: str = ""

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "kind": self.action.kind,
            "name": self.action.name,
            "success": self.accepted,
        }
        payload["path" if self.accepted else "error"] = self.detail
        return payload


@runtime_checkable
class ActionSession(Protocol):
    async def next_actions(self, outcomes: Sequence[ActionOutcome]) -> Sequence[OracleAction]:
        """Return the next batch of actions; an empty batch means the oracle is done."""
        ...


@dataclass(frozen=True, slots=True)
class ActionLoopResult:
    steps: int
    outcomes: tuple[ActionOutcome, ...]
    exhausted: bool
    state: LoopState

    @property
    def accepted(self) -> tuple[ActionOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.accepted)

    @property
    def rejected(self) -> tuple[ActionOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if not outcome.accepted)


async def run_action_loop(
    session: ActionSession,
    apply: Callable[[OracleAction], ActionOutcome],
    *,
    max_steps: int = DEFAULT_MAX_ACTION_STEPS,
    logger: Any | None = None,
) -> ActionLoopResult:
    """Run ``session`` until it proposes nothing or ``max_steps`` turns have elapsed."""

    if max_steps < 1:
        raise ValueError("max_steps must be >= 1")
    log = logger if logger is not None else structlog.get_logger(__name__)

    state = LoopState.AWAITING_ACTION
    steps = 0
    history: list[ActionOutcome] = []
    last_batch: tuple[ActionOutcome, ...] = ()

    while steps < max_steps:
        actions = tuple(await session.next_actions(last_batch))
        steps += 1
        if not actions:
            state = LoopState.DONE
            break

        state = LoopState.APPLYING_ACTION
        batch: list[ActionOutcome] = []
        for action in actions:
            try:
                outcome = apply(action)
            except Exception as exc:  # noqa: BLE001 - reported back to the oracle
                outcome = ActionOutcome(action=action, accepted=False, detail=str(exc))
            batch.append(outcome)
        history.extend(batch)
        last_batch = tuple(batch)
        state = LoopState.AWAITING_ACTION

    exhausted = state is not LoopState.DONE
    if exhausted:
        log.warning("action_loop_exhausted", max_steps=max_steps, outcomes=len(history))
        state = LoopState.DONE
    return ActionLoopResult(
        steps=steps,
        outcomes=tuple(history),
        exhausted=exhausted,
        state=state,
    )


__all__ = [
    "ActionKind",
    "ActionLoopResult",
    "ActionOutcome",
    "ActionSession",
    "LoopState",
    "OracleAction",
    "run_action_loop",
]
