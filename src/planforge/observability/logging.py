"""Structured logging setup: structlog over stdlib handlers with JSON-lines output and redaction."""

from __future__ import annotations

import logging
import re
import sys
import threading
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, TextIO

import structlog

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOG_FILENAME: Final[str] = "planforge.jsonl"
_DEFAULT_LOGGER_NAME: Final[str] = "planforge"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_API_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_-]{12,}\b")

_ACTIVE_HANDLE_LOCK = threading.Lock()
_ACTIVE_HANDLE: LoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for one process-wide logging setup."""

    run_id: str
    level: int | str = "INFO"
    log_dir: Path | str | None = None
    log_filename: str = _DEFAULT_LOG_FILENAME
    logger_name: str = _DEFAULT_LOGGER_NAME
    console: bool = True
    colors: bool = False
    stream: TextIO | None = None
    redact: bool = True


class LoggingHandle:
    """Runtime handle for an active logging setup."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        run_id: str,
        log_path: Path | None,
        handlers: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._handlers = handlers
        self._is_shutdown = False

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def flush(self) -> None:
        for handler in self._handlers:
            handler.flush()

    def shutdown(self) -> None:
        if self._is_shutdown:
            return
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.flush()
            handler.close()
        structlog.contextvars.unbind_contextvars("run_id")
        self._is_shutdown = True


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
    colors: bool = False,
    stream: TextIO | None = None,
) -> LoggingHandle:
    """Configure logging from an ``[observability]`` config section.

    Console output always goes to stderr (or ``stream``). A JSON-lines file is
    written under ``log_dir/<run_id>/`` only when ``log_to_file`` is enabled.
    """

    cfg = dict(observability_config or {})
    raw_level = cfg.get("log_level", "INFO")
    level: int | str = raw_level if isinstance(raw_level, (int, str)) else "INFO"
    file_dir = log_dir if bool(cfg.get("log_to_file", False)) else None
    return setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            level=level,
            log_dir=file_dir,
            colors=colors,
            stream=stream,
        )
    )


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    """Route structlog through the stdlib logger named ``config.logger_name``."""

    shutdown_logging()

    run_id = _validate_non_empty(config.run_id, "run_id")
    logger_name = _validate_non_empty(config.logger_name, "logger_name")
    level = _parse_log_level(config.level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if config.redact:
        shared_processors.append(redact_event)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    handlers: list[logging.Handler] = []
    if config.console:
        console_handler = logging.StreamHandler(config.stream if config.stream is not None else sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.dev.ConsoleRenderer(colors=config.colors),
                ],
                foreign_pre_chain=shared_processors,
            )
        )
        handlers.append(console_handler)

    log_path: Path | None = None
    if config.log_dir is not None:
        log_filename = _validate_log_filename(config.log_filename)
        run_log_dir = Path(config.log_dir) / run_id
        run_log_dir.mkdir(parents=True, exist_ok=True)
        log_path = run_log_dir / log_filename
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(json_line_formatter(shared_processors))
        handlers.append(file_handler)

    for handler in handlers:
        logger.addHandler(handler)

    structlog.contextvars.bind_contextvars(run_id=run_id)
    handle = LoggingHandle(logger=logger, run_id=run_id, log_path=log_path, handlers=tuple(handlers))
    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        _ACTIVE_HANDLE = handle
    return handle


def json_line_formatter(foreign_pre_chain: list[Any] | None = None) -> logging.Formatter:
    """Formatter that emits one canonical JSON object per log line."""

    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(sort_keys=True, ensure_ascii=False),
        ],
        foreign_pre_chain=foreign_pre_chain,
    )


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Close every handler of ``handle`` (or of the active setup)."""

    global _ACTIVE_HANDLE
    with _ACTIVE_HANDLE_LOCK:
        resolved = handle if handle is not None else _ACTIVE_HANDLE
        if resolved is None:
            return
        if _ACTIVE_HANDLE is resolved:
            _ACTIVE_HANDLE = None
    resolved.shutdown()


def get_active_logging_handle() -> LoggingHandle | None:
    with _ACTIVE_HANDLE_LOCK:
        return _ACTIVE_HANDLE


@contextmanager
def correlation_scope(**fields: str) -> Iterator[None]:
    """Temporarily bind correlation fields (``node_path``, ``call_id``...) to log events."""

    with structlog.contextvars.bound_contextvars(**fields):
        yield


def redact_event(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor: redact sensitive keys and secret-looking substrings."""

    for key in list(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def _redact_value(value: object, *, key_context: str | None) -> object:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return _redact_string(value)
    if isinstance(value, list):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, tuple):
        return tuple(_redact_value(item, key_context=None) for item in value)
    if isinstance(value, Mapping):
        return {key: _redact_value(item, key_context=str(key)) for key, item in value.items()}
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", redacted)
    return _API_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)


def _validate_non_empty(value: str, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{name} must not be empty")
    return normalized


def _validate_log_filename(log_filename: str) -> str:
    normalized = _validate_non_empty(log_filename, "log_filename")
    if Path(normalized).name != normalized:
        raise ValueError("log_filename must not include path separators")
    return normalized


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise ValueError(f"level must be int or str, got {type(value).__name__}")
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "json_line_formatter",
    "redact_event",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
