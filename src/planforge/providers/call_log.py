"""
planforge: oracle call audit log

File: src/planforge/providers/call_log.py

Purpose
- Append one JSON line per oracle call to ``calls.jsonl`` for debugging,
  cost tracking and reproducibility.

Functional requirements
- Entries are append-only and never rewritten.
- Token counts are rough estimates (about four characters per token) so the
  log stays useful without a tokenizer dependency.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Final

from planforge.constants import CALL_LOG_FILENAME
from planforge.domain.ids import generate_call_id
from planforge.domain.models import utc_now_iso
from planforge.utils.fs import append_jsonl, read_jsonl

if TYPE_CHECKING:
    from planforge.domain.models import JSONValue

_CHARS_PER_TOKEN: Final[int] = 4


class CallPhase(StrEnum):
    COMPILE = "compile"
    GENERATE = "generate"


def estimate_tokens(text: str) -> int:
    return (len(text) + _CHARS_PER_TOKEN - 1) // _CHARS_PER_TOKEN


@dataclass(frozen=True, slots=True)
class CallLogEntry:
    node: str
    phase: CallPhase
    provider: str
    model: str
    input: str
    output: str
    duration_ms: int
    success: bool
    error: str | None = None
    id: str = field(default_factory=generate_call_id)
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def input_tokens(self) -> int:
        return estimate_tokens(self.input)

    @property
    def output_tokens(self) -> int:
        return estimate_tokens(self.output)

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "node": self.node,
            "phase": self.phase.value,
            "provider": self.provider,
            "model": self.model,
            "input": self.input,
            "output": self.output,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "duration_ms": self.duration_ms,
            "success": self.success,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


class CallLog:
    """Append-only ``calls.jsonl`` writer rooted at the plan storage directory."""

    def __init__(self, storage_root: str | Path) -> None:
        self._path = Path(storage_root) / CALL_LOG_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def record(self, entry: CallLogEntry) -> None:
        append_jsonl(self._path, entry.to_dict())

    def entries(self) -> list[dict[str, object]]:
        return read_jsonl(self._path)


__all__ = ["CallLog", "CallLogEntry", "CallPhase", "estimate_tokens"]
