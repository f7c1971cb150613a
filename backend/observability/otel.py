"""OpenTelemetry + Prometheus fallback wiring for the Luna backend."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from backend import config

logger = logging.getLogger("luna.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_resolution_counter: Any | None = None
_resolution_latency_hist: Any | None = None
_conflict_counter: Any | None = None
_integrity_counter: Any | None = None
_consolidation_counter: Any | None = None
_notification_failure_counter: Any | None = None

_prom_enabled = False
_prom_resolution_counter: Any | None = None
_prom_resolution_latency_hist: Any | None = None
_prom_conflict_counter: Any | None = None
_prom_integrity_counter: Any | None = None
_prom_consolidation_counter: Any | None = None
_prom_notification_failure_counter: Any | None = None


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


def _prom_labels(**extra: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in extra.items()}


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _resolution_counter, _resolution_latency_hist, _conflict_counter
    global _integrity_counter, _consolidation_counter, _notification_failure_counter
    global _prom_enabled
    global _prom_resolution_counter, _prom_resolution_latency_hist, _prom_conflict_counter
    global _prom_integrity_counter, _prom_consolidation_counter, _prom_notification_failure_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (LUNA_OTEL_ENABLED=false)")
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
    service_name = config.OTEL_SERVICE_NAME or "luna-backend"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "luna",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_exporter = OTLPSpanExporter(endpoint=traces_endpoint or None)
    trace_provider.add_span_processor(BatchSpanProcessor(trace_exporter))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("luna.backend")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("luna.backend")

    _resolution_counter = meter.create_counter(
        "luna_chat_resolutions_total",
        unit="1",
        description="Space to chat resolutions by outcome",
    )
    _resolution_latency_hist = meter.create_histogram(
        "luna_chat_resolution_latency_ms",
        unit="ms",
        description="Latency of space to chat resolution",
    )
    _conflict_counter = meter.create_counter(
        "luna_store_conflicts_total",
        unit="1",
        description="Uniqueness conflicts recovered by adopting the winning row",
    )
    _integrity_counter = meter.create_counter(
        "luna_integrity_violations_total",
        unit="1",
        description="Integrity violations reported for consolidation",
    )
    _consolidation_counter = meter.create_counter(
        "luna_consolidation_changes_total",
        unit="1",
        description="Rows changed by consolidation jobs",
    )
    _notification_failure_counter = meter.create_counter(
        "luna_notification_failures_total",
        unit="1",
        description="Notification deliveries that failed and were dropped",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_resolution_counter = Counter(
                "luna_chat_resolutions_total",
                "Space to chat resolutions by outcome",
                ["category", "outcome"],
            )
            _prom_resolution_latency_hist = Histogram(
                "luna_chat_resolution_latency_ms",
                "Latency of space to chat resolution",
                ["category", "outcome"],
            )
            _prom_conflict_counter = Counter(
                "luna_store_conflicts_total",
                "Uniqueness conflicts recovered by adopting the winning row",
                ["table"],
            )
            _prom_integrity_counter = Counter(
                "luna_integrity_violations_total",
                "Integrity violations reported for consolidation",
                ["kind"],
            )
            _prom_consolidation_counter = Counter(
                "luna_consolidation_changes_total",
                "Rows changed by consolidation jobs",
                ["job"],
            )
            _prom_notification_failure_counter = Counter(
                "luna_notification_failures_total",
                "Notification deliveries that failed and were dropped",
                ["sink"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

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
    try:
        if _meter_provider is not None:
            _meter_provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Meter provider shutdown failed: %s", exc)
    try:
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Trace provider shutdown failed: %s", exc)
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


def record_resolution(category: str, outcome: str, duration_ms: float) -> None:
    labels = {"category": category or "unknown", "outcome": outcome or "unknown"}
    if _enabled and _resolution_counter is not None:
        _resolution_counter.add(1, labels)
    if _enabled and _resolution_latency_hist is not None:
        _resolution_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_resolution_counter is not None:
        _prom_resolution_counter.labels(**_prom_labels(category=category, outcome=outcome)).inc()
    if _prom_enabled and _prom_resolution_latency_hist is not None:
        _prom_resolution_latency_hist.labels(
            **_prom_labels(category=category, outcome=outcome)
        ).observe(max(0.0, float(duration_ms)))


def record_conflict(table: str) -> None:
    if _enabled and _conflict_counter is not None:
        _conflict_counter.add(1, {"table": table or "unknown"})
    if _prom_enabled and _prom_conflict_counter is not None:
        _prom_conflict_counter.labels(**_prom_labels(table=table)).inc()


def record_integrity_violation(kind: str) -> None:
    if _enabled and _integrity_counter is not None:
        _integrity_counter.add(1, {"kind": kind or "unknown"})
    if _prom_enabled and _prom_integrity_counter is not None:
        _prom_integrity_counter.labels(**_prom_labels(kind=kind)).inc()


def record_consolidation(job: str, changes: int) -> None:
    safe_changes = max(0, int(changes))
    if safe_changes == 0:
        return
    if _enabled and _consolidation_counter is not None:
        _consolidation_counter.add(safe_changes, {"job": job or "unknown"})
    if _prom_enabled and _prom_consolidation_counter is not None:
        _prom_consolidation_counter.labels(**_prom_labels(job=job)).inc(safe_changes)


def record_notification_failure(sink: str) -> None:
    if _enabled and _notification_failure_counter is not None:
        _notification_failure_counter.add(1, {"sink": sink or "unknown"})
    if _prom_enabled and _prom_notification_failure_counter is not None:
        _prom_notification_failure_counter.labels(**_prom_labels(sink=sink)).inc()
