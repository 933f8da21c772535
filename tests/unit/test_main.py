"""
planforge: unit tests for the process entrypoint

File: tests/unit/test_main.py

Purpose
- Validate how escaped exceptions and raw handler results become exit codes.
"""

from __future__ import annotations

from pathlib import Path

import pytest

import planforge.ui.cli as cli_module
from planforge.compiler.state import GovernorExceeded, GovernorLimit
from planforge.compiler.writer import ArtifactIOError
from planforge.main import ExitCode, cli_entrypoint, exit_code_for
from planforge.providers import ProviderUnavailableError
from planforge.spec_ingestion import SpecLoadError


def _wrapped(inner: BaseException) -> RuntimeError:
    try:
        raise RuntimeError("outer") from inner
    except RuntimeError as exc:
        return exc


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ProviderUnavailableError("offline", provider="cli"), ExitCode.PROVIDER_ERROR),
        (SpecLoadError(path=Path("app.yaml"), entry="root", message="bad"), ExitCode.CONFIG_ERROR),
        (GovernorExceeded(GovernorLimit.NODES), ExitCode.RUN_FAILED),
        (ArtifactIOError(Path("plan/root.plan"), "disk full"), ExitCode.RUN_FAILED),
        (ValueError("parallelism must be >= 1"), ExitCode.CONFIG_ERROR),
        (KeyError("paths"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_exit_code_for_known_errors(error: BaseException, expected: ExitCode) -> None:
    assert exit_code_for(error) is expected


def test_exit_code_follows_the_cause_chain() -> None:
    wrapped = _wrapped(ProviderUnavailableError("offline", provider="cli"))

    assert exit_code_for(wrapped) is ExitCode.PROVIDER_ERROR


def test_routed_failure_prints_a_single_error_line(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def _raise(argv: object) -> int:
        raise ArtifactIOError(Path("plan/root.plan"), "disk full")

    monkeypatch.setattr(cli_module, "run_cli", _raise)

    assert cli_entrypoint([]) == ExitCode.RUN_FAILED
    assert capsys.readouterr().err == "error: failed to write plan/root.plan: disk full\n"


def test_unexpected_failure_prints_the_traceback(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def _raise(argv: object) -> int:
        raise KeyError("paths")

    monkeypatch.setattr(cli_module, "run_cli", _raise)

    assert cli_entrypoint([]) == ExitCode.INTERNAL_ERROR
    assert "Traceback" in capsys.readouterr().err


@pytest.mark.parametrize(("raw", "expected"), [(None, 0), (3, 3), (ExitCode.RUN_FAILED, 1), (9, 4)])
def test_handler_results_are_coerced(
    monkeypatch: pytest.MonkeyPatch, raw: object, expected: int
) -> None:
    monkeypatch.setattr(cli_module, "run_cli", lambda argv: raw)

    assert cli_entrypoint([]) == expected
