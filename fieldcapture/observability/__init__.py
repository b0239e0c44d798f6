"""Observability helpers."""

from fieldcapture.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_dispatch,
    record_ingested_entities,
    record_ingestion_field_failure,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_dispatch",
    "record_ingested_entities",
    "record_ingestion_field_failure",
]
