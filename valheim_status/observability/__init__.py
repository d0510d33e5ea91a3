"""Observability helpers."""

from valheim_status.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_log_line,
    record_tail_event,
    record_status_build,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_log_line",
    "record_tail_event",
    "record_status_build",
]
