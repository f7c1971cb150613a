"""Observability helpers."""

from backend.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_resolution,
    record_conflict,
    record_integrity_violation,
    record_consolidation,
    record_notification_failure,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_resolution",
    "record_conflict",
    "record_integrity_violation",
    "record_consolidation",
    "record_notification_failure",
]
