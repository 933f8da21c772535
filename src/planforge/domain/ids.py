"""Sortable identifiers for audit records (oracle calls, operations, runs)."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1

CALL_ID_PREFIX: Final[str] = "call"
OPERATION_ID_PREFIX: Final[str] = "op"
RUN_ID_PREFIX: Final[str] = "run"

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= ts_ms <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {ts_ms}")
    raw = (secrets.token_bytes if randbytes is None else randbytes)(ULID_RANDOM_BYTES)
    if len(raw) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    value = (ts_ms << 80) | int.from_bytes(bytes(raw), "big")

    chars = ["0"] * ULID_LENGTH
    for index in range(ULID_LENGTH - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[value & 0b11111]
        value >>= 5
    return "".join(chars)


def generate_prefixed_id(prefix: str, *, timestamp_ms: int | None = None) -> str:
    if not prefix or "-" in prefix:
        raise ValueError("prefix must be non-empty and must not contain '-'")
    return f"{prefix}-{generate_ulid(timestamp_ms=timestamp_ms)}"


def generate_call_id() -> str:
    return generate_prefixed_id(CALL_ID_PREFIX)


def generate_operation_id() -> str:
    return generate_prefixed_id(OPERATION_ID_PREFIX)


def generate_run_id() -> str:
    return generate_prefixed_id(RUN_ID_PREFIX)


__all__ = [
    "CALL_ID_PREFIX",
    "OPERATION_ID_PREFIX",
    "RUN_ID_PREFIX",
    "ULID_LENGTH",
    "generate_call_id",
    "generate_operation_id",
    "generate_prefixed_id",
    "generate_run_id",
    "generate_ulid",
]
