"""Observability helpers."""

from codecache.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_refresh,
    record_file_changes,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_refresh",
    "record_file_changes",
]
