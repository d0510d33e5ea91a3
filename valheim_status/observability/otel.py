"""OpenTelemetry + Prometheus fallback wiring for the Valheim status monitor."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from valheim_status import config

logger = logging.getLogger("valheim_status.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_log_lines_counter: Any | None = None
_tail_events_counter: Any | None = None
_status_builds_counter: Any | None = None
_status_latency_hist: Any | None = None

_prom_enabled = False
_prom_log_lines_counter: Any | None = None
_prom_tail_events_counter: Any | None = None
_prom_status_builds_counter: Any | None = None
_prom_status_latency_hist: Any | None = None


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


def _prom_labels(*, container: str, **extra: str) -> dict[str, str]:
    labels = {"container": container or "unknown"}
    for key, value in extra.items():
        labels[key] = (value or "").strip() or "unknown"
    return labels


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _log_lines_counter, _tail_events_counter, _status_builds_counter, _status_latency_hist
    global _prom_enabled
    global _prom_log_lines_counter, _prom_tail_events_counter
    global _prom_status_builds_counter, _prom_status_latency_hist

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (VALHEIM_STATUS_OTEL_ENABLED=false)")
        return

    from opentelemetry import metrics, trace
    from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "valheim-status"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "valheim-status",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_exporter = OTLPSpanExporter(endpoint=traces_endpoint or None)
    trace_provider.add_span_processor(BatchSpanProcessor(trace_exporter))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("valheim_status")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("valheim_status")

    _log_lines_counter = meter.create_counter(
        "valheim_log_lines_total",
        unit="1",
        description="Log lines ingested, by classified event",
    )
    _tail_events_counter = meter.create_counter(
        "valheim_tail_events_total",
        unit="1",
        description="Log tail supervisor lifecycle events",
    )
    _status_builds_counter = meter.create_counter(
        "valheim_status_builds_total",
        unit="1",
        description="Status aggregations by readiness verdict",
    )
    _status_latency_hist = meter.create_histogram(
        "valheim_status_build_latency_ms",
        unit="ms",
        description="Latency of status aggregation including docker probes",
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
            _prom_log_lines_counter = Counter(
                "valheim_log_lines_total",
                "Log lines ingested, by classified event",
                ["event", "container"],
            )
            _prom_tail_events_counter = Counter(
                "valheim_tail_events_total",
                "Log tail supervisor lifecycle events",
                ["kind", "container"],
            )
            _prom_status_builds_counter = Counter(
                "valheim_status_builds_total",
                "Status aggregations by readiness verdict",
                ["ready", "container"],
            )
            _prom_status_latency_hist = Histogram(
                "valheim_status_build_latency_ms",
                "Latency of status aggregation including docker probes",
                ["container"],
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
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
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


def record_log_line(event: str) -> None:
    labels = {"event": event or "unmatched", "container": config.CONTAINER}
    if _enabled and _log_lines_counter is not None:
        _log_lines_counter.add(1, labels)
    if _prom_enabled and _prom_log_lines_counter is not None:
        _prom_log_lines_counter.labels(**_prom_labels(container=config.CONTAINER, event=event or "unmatched")).inc()


def record_tail_event(kind: str) -> None:
    labels = {"kind": kind or "unknown", "container": config.CONTAINER}
    if _enabled and _tail_events_counter is not None:
        _tail_events_counter.add(1, labels)
    if _prom_enabled and _prom_tail_events_counter is not None:
        _prom_tail_events_counter.labels(**_prom_labels(container=config.CONTAINER, kind=kind)).inc()


def record_status_build(ready: bool, duration_ms: float) -> None:
    labels = {"ready": "yes" if ready else "no", "container": config.CONTAINER}
    if _enabled and _status_builds_counter is not None:
        _status_builds_counter.add(1, labels)
    if _enabled and _status_latency_hist is not None:
        _status_latency_hist.record(max(0.0, float(duration_ms)), {"container": config.CONTAINER})
    if _prom_enabled and _prom_status_builds_counter is not None:
        prom = _prom_labels(container=config.CONTAINER, ready=labels["ready"])
        _prom_status_builds_counter.labels(**prom).inc()
    if _prom_enabled and _prom_status_latency_hist is not None:
        _prom_status_latency_hist.labels(**_prom_labels(container=config.CONTAINER)).observe(
            max(0.0, float(duration_ms))
        )
