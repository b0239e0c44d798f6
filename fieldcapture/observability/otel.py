"""OpenTelemetry + Prometheus fallback wiring for the FieldCapture backend."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from fieldcapture import config

logger = logging.getLogger("fieldcapture.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_dispatch_counter: Any | None = None
_dispatch_latency_hist: Any | None = None
_ingested_counter: Any | None = None
_field_failure_counter: Any | None = None

_prom_enabled = False
_prom_dispatch_counter: Any | None = None
_prom_dispatch_latency_hist: Any | None = None
_prom_ingested_counter: Any | None = None
_prom_field_failure_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(*, project_id: str, **extra: str) -> dict[str, str]:
    labels = {"project": project_id or "unknown"}
    for key, value in extra.items():
        labels[key] = (value or "").strip() or "unknown"
    return labels


def _start_prometheus() -> None:
    global _prom_enabled
    global _prom_dispatch_counter, _prom_dispatch_latency_hist
    global _prom_ingested_counter, _prom_field_failure_counter

    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
        _prom_dispatch_counter = Counter(
            "fieldcapture_webhook_dispatch_total",
            "Webhook dispatch attempts by outcome",
            ["result", "project"],
        )
        _prom_dispatch_latency_hist = Histogram(
            "fieldcapture_webhook_dispatch_latency_ms",
            "Webhook dispatch round-trip latency",
            ["result", "project"],
        )
        _prom_ingested_counter = Counter(
            "fieldcapture_ingested_entities_total",
            "Entities created from webhook results",
            ["entity", "project"],
        )
        _prom_field_failure_counter = Counter(
            "fieldcapture_ingestion_field_failures_total",
            "Webhook result fields that failed to ingest",
            ["field", "project"],
        )
        _prom_enabled = True
        logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom_enabled = False


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _dispatch_counter, _dispatch_latency_hist, _ingested_counter, _field_failure_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (FIELDCAPTURE_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "fieldcapture-backend"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "fieldcapture",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("fieldcapture.backend")

    _dispatch_counter = meter.create_counter(
        "fieldcapture_webhook_dispatch_total",
        unit="1",
        description="Webhook dispatch attempts by outcome",
    )
    _dispatch_latency_hist = meter.create_histogram(
        "fieldcapture_webhook_dispatch_latency_ms",
        unit="ms",
        description="Webhook dispatch round-trip latency",
    )
    _ingested_counter = meter.create_counter(
        "fieldcapture_ingested_entities_total",
        unit="1",
        description="Entities created from webhook results",
    )
    _field_failure_counter = meter.create_counter(
        "fieldcapture_ingestion_field_failures_total",
        unit="1",
        description="Webhook result fields that failed to ingest",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("fieldcapture.backend")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        try:
            if provider is not None:
                provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_dispatch(result: str, duration_ms: float, *, project_id: str) -> None:
    labels = {
        "result": result or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _dispatch_counter is not None:
        _dispatch_counter.add(1, labels)
    if _enabled and _dispatch_latency_hist is not None:
        _dispatch_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_dispatch_counter is not None:
        _prom_dispatch_counter.labels(**_prom_labels(project_id=project_id, result=result)).inc()
    if _prom_enabled and _prom_dispatch_latency_hist is not None:
        _prom_dispatch_latency_hist.labels(
            **_prom_labels(project_id=project_id, result=result)
        ).observe(max(0.0, float(duration_ms)))


def record_ingested_entities(entity: str, count: int, *, project_id: str) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {
        "entity": entity or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _ingested_counter is not None:
        _ingested_counter.add(safe_count, labels)
    if _prom_enabled and _prom_ingested_counter is not None:
        _prom_ingested_counter.labels(**_prom_labels(project_id=project_id, entity=entity)).inc(safe_count)


def record_ingestion_field_failure(field: str, *, project_id: str) -> None:
    labels = {
        "field": field or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _field_failure_counter is not None:
        _field_failure_counter.add(1, labels)
    if _prom_enabled and _prom_field_failure_counter is not None:
        _prom_field_failure_counter.labels(**_prom_labels(project_id=project_id, field=field)).inc()
