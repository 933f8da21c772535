"""Public observability primitives: structured logging and correlation context."""

from planforge.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    correlation_scope,
    get_active_logging_handle,
    json_line_formatter,
    redact_event,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

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
