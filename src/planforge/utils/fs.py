"""
planforge: filesystem utilities

File: src/planforge/utils/fs.py

Purpose
- Provide safe, minimal filesystem helpers for atomic writes, JSON-lines appends
  and guarded deletion.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Deletion refuses paths outside the configured workspace root.
"""

from __future__ import annotations

import contextlib
import json
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

PathLike = str | os.PathLike[str]

_APPEND_LOCK = threading.Lock()

__all__ = [
    "append_jsonl",
    "atomic_write",
    "is_within",
    "read_jsonl",
    "safe_delete",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``, creating parent directories as needed.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        if isinstance(data, bytes):
            with os.fdopen(fd, "wb") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())
        else:
            with os.fdopen(fd, "w", encoding=encoding, newline="") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def append_jsonl(path: PathLike, record: Mapping[str, object]) -> None:
    """Append one canonical JSON object as a single line to ``path``."""

    target = Path(path)
    line = json.dumps(dict(record), sort_keys=True, ensure_ascii=False, default=str)
    with _APPEND_LOCK:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


def read_jsonl(path: PathLike) -> list[dict[str, object]]:
    """Read JSON-lines records, skipping blank or malformed lines."""

    target = Path(path)
    if not target.is_file():
        return []
    records: list[dict[str, object]] = []
    for line in target.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            records.append(parsed)
    return records


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``.

    Neither path needs to exist.
    """

    resolved_parent = Path(parent).resolve()
    resolved_child = Path(child).resolve()
    return _is_relative_to(resolved_child, resolved_parent)


def safe_delete(path: PathLike, workspace_root: PathLike) -> None:
    """
    Delete ``path`` only if it is contained within ``workspace_root``.

    Symlinks are unlinked without traversing into their targets.
    """

    workspace = Path(workspace_root).resolve(strict=True)
    if not workspace.is_dir():
        raise NotADirectoryError(f"{workspace!s} is not a directory")

    target = Path(path)
    parent_resolved = target.parent.resolve(strict=True)
    candidate = parent_resolved / target.name
    if not _is_relative_to(candidate, workspace):
        raise ValueError(f"refusing to delete path outside workspace root: {target!s}")

    if target.is_symlink():
        target.unlink()
        return

    resolved_target = target.resolve(strict=True)
    if not _is_relative_to(resolved_target, workspace):
        raise ValueError(f"refusing to delete path outside workspace root: {target!s}")

    if target.is_dir():
        shutil.rmtree(target)
        return

    target.unlink()


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True
