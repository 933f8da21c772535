"""
planforge: build-time operation log

File: src/planforge/generator/oplog.py

Purpose
- Append-only ``operations.jsonl`` audit trail of everything the build runtime
  does to the outside world.

Record types
- ``command``: an allow-list decision and, when run, its exit status.
- ``file_write``: one generated file written beneath the build root.
- ``generation_call``: one oracle ``generate`` call for a leaf.
- ``error``: a failure that did not fit the records above.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any

from planforge.constants import OPERATION_LOG_FILENAME
from planforge.domain.ids import generate_operation_id
from planforge.domain.models import utc_now_iso
from planforge.utils.fs import append_jsonl, read_jsonl


class OperationType(StrEnum):
    COMMAND = "command"
    FILE_WRITE = "file_write"
    GENERATION_CALL = "generation_call"
    ERROR = "error"


class OperationLog:
    def __init__(self, storage_root: str | Path) -> None:
        self._path = Path(storage_root) / OPERATION_LOG_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def record(self, operation: OperationType, **fields: Any) -> dict[str, object]:
        entry: dict[str, object] = {
            "id": generate_operation_id(),
            "timestamp": utc_now_iso(),
            "type": operation.value,
            **fields,
        }
        append_jsonl(self._path, entry)
        return entry

    def record_command(
        self,
        command: str,
        *,
        node_path: str | None = None,
        returncode: int | None = None,
        error: str | None = None,
    ) -> dict[str, object]:
        fields: dict[str, object] = {"command": command}
        if node_path is not None:
            fields["node_path"] = node_path
        if returncode is not None:
            fields["returncode"] = returncode
        if error is not None:
            fields["error"] = error
        return self.record(OperationType.COMMAND, **fields)

    def record_file_write(self, node_path: str, path: str, size_bytes: int) -> dict[str, object]:
        return self.record(OperationType.FILE_WRITE, node_path=node_path, path=path, size_bytes=size_bytes)

    def record_generation_call(
        self,
        node_path: str,
        *,
        success: bool,
        files: int = 0,
        error: str | None = None,
    ) -> dict[str, object]:
        fields: dict[str, object] = {"node_path": node_path, "success": success, "files": files}
        if error is not None:
            fields["error"] = error
        return self.record(OperationType.GENERATION_CALL, **fields)

    def record_error(self, node_path: str, message: str) -> dict[str, object]:
        return self.record(OperationType.ERROR, node_path=node_path, error=message)

    def entries(self) -> list[dict[str, object]]:
        return read_jsonl(self._path)


__all__ = ["OperationLog", "OperationType"]
