"""
planforge: unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON-lines logging with redaction and correlation metadata.

What this test file should cover
- JSON line validity and redaction guarantees.
- Correlation field propagation.
- Config-driven setup and shutdown behavior.
"""

from __future__ import annotations

import io
import json
import logging
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from planforge.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_active_logging_handle,
    redact_event,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"planforge.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_redacts_secrets_and_preserves_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-logging-redaction",
            log_dir=tmp_path,
            logger_name=logger_name,
            console=False,
        )
    )
    log = structlog.get_logger(logger_name)

    with correlation_scope(node_path="api/routes"):
        log.info(
            "compile_node_leaf",
            detail="token=tok-FAKE and key sk-FAKE123456789012345",
            api_key="plain-secret",
            nested={"password": "hunter2", "safe": "ok"},
        )
    log.info("after_scope")
    handle.flush()

    assert handle.log_path == tmp_path / "run-logging-redaction" / "planforge.jsonl"
    first, second = _read_json_lines(handle.log_path)
    assert first["event"] == "compile_node_leaf"
    assert first["run_id"] == "run-logging-redaction"
    assert first["node_path"] == "api/routes"
    assert first["api_key"] == "***REDACTED***"
    assert first["nested"] == {"password": "***REDACTED***", "safe": "ok"}
    assert "tok-FAKE" not in first["detail"]
    assert "sk-FAKE123456789012345" not in first["detail"]
    assert first["level"] == "info"
    assert "node_path" not in second


def test_stdlib_records_share_the_json_format(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-stdlib", log_dir=tmp_path, logger_name=logger_name, console=False)
    )

    logging.getLogger(f"{logger_name}.child").warning("sending Bearer abc.def.ghi upstream")
    handle.flush()

    (record,) = _read_json_lines(handle.log_path)
    assert record["level"] == "warning"
    assert "abc.def.ghi" not in record["event"]


def test_level_filters_lower_events(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-level", level="WARNING", log_dir=tmp_path, logger_name=logger_name, console=False
        )
    )
    log = structlog.get_logger(logger_name)

    log.info("dropped")
    log.warning("kept")
    handle.flush()

    assert [record["event"] for record in _read_json_lines(handle.log_path)] == ["kept"]


def test_setup_logging_writes_file_only_when_enabled(tmp_path: Path) -> None:
    stream = io.StringIO()
    handle = setup_logging(
        {"log_level": "INFO", "log_to_file": False},
        run_id="run-console",
        log_dir=tmp_path,
        stream=stream,
    )
    structlog.get_logger("planforge.tests").info("console_only", count=3)
    handle.flush()

    assert handle.log_path is None
    assert "console_only" in stream.getvalue()
    assert not (tmp_path / "run-console").exists()

    handle = setup_logging(
        {"log_level": "DEBUG", "log_to_file": True},
        run_id="run-file",
        log_dir=tmp_path,
        stream=io.StringIO(),
    )
    structlog.get_logger("planforge.tests").debug("to_file")
    handle.flush()

    assert handle.log_path is not None
    assert _read_json_lines(handle.log_path)[0]["event"] == "to_file"


def test_shutdown_is_idempotent_and_clears_active_handle(tmp_path: Path) -> None:
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-shutdown", log_dir=tmp_path, logger_name=_logger_name(), console=False)
    )
    assert get_active_logging_handle() is handle

    shutdown_logging()
    shutdown_logging(handle)

    assert handle.is_shutdown
    assert get_active_logging_handle() is None


def test_invalid_configuration_is_rejected() -> None:
    with pytest.raises(ValueError, match="run_id"):
        setup_structured_logging(LoggingConfig(run_id="  ", console=False))
    with pytest.raises(ValueError, match="unsupported logging level"):
        setup_structured_logging(LoggingConfig(run_id="run-x", level="LOUD", console=False))


def test_redact_event_processor_scrubs_values() -> None:
    event = redact_event(
        None,
        "info",
        {
            "event": "calling with password=hunter2",
            "client_secret": "abc",
            "items": ["Bearer xyz123", "ok"],
        },
    )

    assert event["event"] == "calling with password=***REDACTED***"
    assert event["client_secret"] == "***REDACTED***"
    assert event["items"] == ["Bearer ***REDACTED***", "ok"]
