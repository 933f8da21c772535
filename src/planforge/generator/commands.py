"""
planforge: allow-listed setup commands for leaves

File: src/planforge/generator/commands.py

Purpose
- Run the setup commands a leaf asks for (``npm install`` and the like) under an
  explicit allow-list and a hard timeout.

Functional requirements
- A command is allowed when it equals an entry or starts with an entry followed
  by a space.
- A refused command never reaches the shell; the refusal is written to the
  operation log as ``{"command": ..., "error": "Not whitelisted"}``.
- Commands run without a shell, from the leaf's output directory.
"""

from __future__ import annotations

import asyncio
import shlex
import time
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from planforge.constants import DEFAULT_COMMAND_ALLOW_LIST, DEFAULT_COMMAND_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from collections.abc import Iterable

    from planforge.generator.oplog import OperationLog

NOT_ALLOWED_ERROR = "Not whitelisted"


class CommandError(RuntimeError):
    """Base error for leaf command execution."""

    def __init__(self, command: str, message: str) -> None:
        self.command = command
        super().__init__(message)


class CommandRejected(CommandError):
    """The command is not covered by the allow-list."""


class CommandTimeout(CommandError):
    """The command ran past its hard timeout and was killed."""


@dataclass(frozen=True, slots=True)
class CommandResult:
    command: str
    cwd: Path
    returncode: int
    stdout: str
    stderr: str
    duration_ms: float

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


class CommandAllowList:
    def __init__(self, entries: Iterable[str] = DEFAULT_COMMAND_ALLOW_LIST) -> None:
        self._entries = tuple(entry.strip() for entry in entries if entry.strip())

    @property
    def entries(self) -> tuple[str, ...]:
        return self._entries

    def is_allowed(self, command: str) -> bool:
        normalized = command.strip()
        if not normalized:
            return False
        return any(
            normalized == entry or normalized.startswith(entry + " ") for entry in self._entries
        )


class CommandRunner:
    """Check commands against the allow-list, then run them with a timeout."""

    def __init__(
        self,
        allow_list: CommandAllowList | None = None,
        *,
        timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        operation_log: OperationLog | None = None,
        logger: Any | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.allow_list = allow_list if allow_list is not None else CommandAllowList()
        self._timeout_seconds = float(timeout_seconds)
        self._operation_log = operation_log
        self._log = logger if logger is not None else structlog.get_logger(__name__)

    def check(self, command: str, *, node_path: str | None = None) -> None:
        if self.allow_list.is_allowed(command):
            return
        self._log.warning("build_command_rejected", command=command, node_path=node_path)
        if self._operation_log is not None:
            self._operation_log.record_command(command, node_path=node_path, error=NOT_ALLOWED_ERROR)
        raise CommandRejected(command, f"Command not allowed: {command}")

    async def run(
        self, command: str, *, cwd: Path | str, node_path: str | None = None
    ) -> CommandResult:
        self.check(command, node_path=node_path)
        try:
            argv = shlex.split(command)
        except ValueError as exc:
            raise CommandError(command, f"unparseable command: {command}: {exc}") from exc
        working_dir = Path(cwd)
        working_dir.mkdir(parents=True, exist_ok=True)

        started = time.perf_counter()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=working_dir,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            message = f"command failed to start: {command}: {exc}"
            if self._operation_log is not None:
                self._operation_log.record_command(command, node_path=node_path, error=message)
            raise CommandError(command, message) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout_seconds
            )
        except TimeoutError as exc:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            message = f"command timed out after {self._timeout_seconds} seconds: {command}"
            if self._operation_log is not None:
                self._operation_log.record_command(command, node_path=node_path, error=message)
            raise CommandTimeout(command, message) from exc

        result = CommandResult(
            command=command,
            cwd=working_dir,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        if self._operation_log is not None:
            self._operation_log.record_command(
                command, node_path=node_path, returncode=result.returncode
            )
        self._log.info(
            "build_command_finished",
            command=command,
            node_path=node_path,
            returncode=result.returncode,
            duration_ms=round(result.duration_ms, 1),
        )
        return result


__all__ = [
    "NOT_ALLOWED_ERROR",
    "CommandAllowList",
    "CommandError",
    "CommandRejected",
    "CommandResult",
    "CommandRunner",
    "CommandTimeout",
]
