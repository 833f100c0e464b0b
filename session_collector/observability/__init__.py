"""Collector metrics and traces. Every helper is a no-op unless COLLECTOR_OTEL_ENABLED is set."""

from session_collector.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_ingestion,
    record_parser_failure,
    record_requeue,
    record_token_cost,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_ingestion",
    "record_parser_failure",
    "record_requeue",
    "record_token_cost",
]
