"""
planforge: process entrypoint

File: src/planforge/main.py

Purpose
- Run the CLI and reduce whatever escapes it to one of the documented exit codes.

Exit codes
- 0: the command finished cleanly.
- 1: a compile or build ran but recorded errors, hit a governor limit, or could
  not write its artifacts.
- 2: the spec tree, oracle script or configuration could not be loaded.
- 3: no oracle is configured, or the oracle failed outside any single node.
- 4: anything else. The traceback goes to stderr.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    RUN_FAILED = 1
    CONFIG_ERROR = 2
    PROVIDER_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m planforge`` and the ``planforge`` script."""

    try:
        from planforge.ui.cli import run_cli

        return _coerce_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _coerce_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = exit_code_for(exc)
        if exit_code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            _write_stderr(f"error: {str(exc).strip() or type(exc).__name__}")
        return int(exit_code)


def exit_code_for(exc: BaseException) -> ExitCode:
    """Map an escaped exception, or anything in its cause chain, to an exit code.

    The first link that matches decides, so a provider failure wrapped in a
    ``RuntimeError`` still exits with ``PROVIDER_ERROR``.
    """

    for item in _exception_chain(exc):
        for error_types, exit_code in _error_routes():
            if isinstance(item, error_types):
                return exit_code
    return ExitCode.INTERNAL_ERROR


def _error_routes() -> tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...]:
    from planforge.compiler.state import GovernorExceeded
    from planforge.compiler.writer import ArtifactIOError
    from planforge.config import ConfigLoadError, ConfigValidationError
    from planforge.providers import ProviderError, ScriptLoadError
    from planforge.spec_ingestion import SpecLoadError

    return (
        ((ProviderError,), ExitCode.PROVIDER_ERROR),
        (
            (SpecLoadError, ScriptLoadError, ConfigLoadError, ConfigValidationError),
            ExitCode.CONFIG_ERROR,
        ),
        ((GovernorExceeded, ArtifactIOError), ExitCode.RUN_FAILED),
        # bad option values and unreadable input paths
        ((FileNotFoundError, NotADirectoryError, PermissionError, ValueError), ExitCode.CONFIG_ERROR),
    )


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif current.__suppress_context__:
            current = None
        else:
            current = current.__context__


def _coerce_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and raw_code in {code.value for code in ExitCode}:
        return int(raw_code)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "exit_code_for"]
