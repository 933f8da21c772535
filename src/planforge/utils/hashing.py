"""
planforge: hashing utilities

File: src/planforge/utils/hashing.py

Purpose
- Provide deterministic SHA-256 helpers for bytes, text and JSON-compatible payloads.

Functional requirements
- Canonical JSON uses sorted keys and compact separators so equal payloads hash equally.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib
import json
from typing import Final

SHORT_HASH_LENGTH: Final[int] = 16

__all__ = [
    "SHORT_HASH_LENGTH",
    "canonical_json",
    "sha256_bytes",
    "sha256_text",
    "short_hash",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def short_hash(text: str, *, length: int = SHORT_HASH_LENGTH) -> str:
    """Return the leading ``length`` hex characters of the SHA-256 of ``text``."""

    if length <= 0:
        raise ValueError("length must be > 0")
    return sha256_text(text)[:length]


def canonical_json(value: object) -> str:
    """Serialize ``value`` to canonical JSON (sorted keys, compact, UTF-8 preserved)."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
