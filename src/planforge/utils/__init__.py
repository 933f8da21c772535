"""Utility exports for filesystem, hashing, and concurrency helpers."""

from planforge.utils.concurrency import BoundedSemaphore, WorkerPool, run_with_timeout
from planforge.utils.fs import append_jsonl, atomic_write, is_within, read_jsonl, safe_delete
from planforge.utils.hashing import canonical_json, sha256_bytes, sha256_text, short_hash

__all__ = [
    "BoundedSemaphore",
    "WorkerPool",
    "append_jsonl",
    "atomic_write",
    "canonical_json",
    "is_within",
    "read_jsonl",
    "run_with_timeout",
    "safe_delete",
    "sha256_bytes",
    "sha256_text",
    "short_hash",
]
