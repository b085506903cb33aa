"""Structured JSON-lines run log and correlation context."""

from matrixci.observability.logging import (
    RunLog,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    open_run_log,
    redact,
)

__all__ = [
    "RunLog",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "open_run_log",
    "redact",
]
