"""OpenTelemetry + Prometheus fallback wiring for the session collector."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from session_collector import config

logger = logging.getLogger("session_collector.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None

_ingestion_counter: Any | None = None
_ingestion_latency_hist: Any | None = None
_parser_failure_counter: Any | None = None
_tokens_counter: Any | None = None
_cost_counter: Any | None = None
_requeue_counter: Any | None = None

_prom_enabled = False
_prom_ingestion_counter: Any | None = None
_prom_ingestion_latency_hist: Any | None = None
_prom_parser_failure_counter: Any | None = None
_prom_tokens_counter: Any | None = None
_prom_cost_counter: Any | None = None
_prom_requeue_counter: Any | None = None


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


def _label(value: str | None, default: str = "unknown") -> str:
    return (value or "").strip() or default


def initialize() -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider
    global _ingestion_counter, _ingestion_latency_hist, _parser_failure_counter
    global _tokens_counter, _cost_counter, _requeue_counter
    global _prom_enabled
    global _prom_ingestion_counter, _prom_ingestion_latency_hist, _prom_parser_failure_counter
    global _prom_tokens_counter, _prom_cost_counter, _prom_requeue_counter

    if _initialized:
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (COLLECTOR_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
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
    service_name = config.OTEL_SERVICE_NAME or "session-collector"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "session-collector",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("session_collector")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("session_collector")

    _ingestion_counter = meter.create_counter(
        "collector_sync_operations_total",
        unit="1",
        description="Count of summary and usage sync operations",
    )
    _ingestion_latency_hist = meter.create_histogram(
        "collector_sync_latency_ms",
        unit="ms",
        description="Latency of summary and usage sync operations",
    )
    _parser_failure_counter = meter.create_counter(
        "collector_malformed_lines_total",
        unit="1",
        description="Transcript lines dropped because they failed to parse",
    )
    _tokens_counter = meter.create_counter(
        "collector_tokens_total",
        unit="1",
        description="Tokens carried by newly extracted usage events",
    )
    _cost_counter = meter.create_counter(
        "collector_cost_usd_total",
        unit="usd",
        description="Cost carried by newly extracted usage events",
    )
    _requeue_counter = meter.create_counter(
        "collector_requeued_files_total",
        unit="1",
        description="Transcripts put back on the dirty set after a failed sync",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _enabled = True

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_ingestion_counter = Counter(
                "collector_sync_operations_total",
                "Count of summary and usage sync operations",
                ["entity", "result"],
            )
            _prom_ingestion_latency_hist = Histogram(
                "collector_sync_latency_ms",
                "Latency of summary and usage sync operations",
                ["entity", "result"],
            )
            _prom_parser_failure_counter = Counter(
                "collector_malformed_lines_total",
                "Transcript lines dropped because they failed to parse",
                ["parser"],
            )
            _prom_tokens_counter = Counter(
                "collector_tokens_total",
                "Tokens carried by newly extracted usage events",
                ["model", "kind"],
            )
            _prom_cost_counter = Counter(
                "collector_cost_usd_total",
                "Cost carried by newly extracted usage events",
                ["model", "kind"],
            )
            _prom_requeue_counter = Counter(
                "collector_requeued_files_total",
                "Transcripts put back on the dirty set after a failed sync",
                ["trigger"],
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


def shutdown() -> None:
    global _enabled
    if not _initialized:
        return
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


def record_ingestion(entity: str, result: str, duration_ms: float) -> None:
    labels = {"entity": _label(entity), "result": _label(result)}
    if _enabled and _ingestion_counter is not None:
        _ingestion_counter.add(1, labels)
    if _enabled and _ingestion_latency_hist is not None:
        _ingestion_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_ingestion_counter is not None:
        _prom_ingestion_counter.labels(**labels).inc()
    if _prom_enabled and _prom_ingestion_latency_hist is not None:
        _prom_ingestion_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))


def record_parser_failure(parser: str, *, count: int = 1) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {"parser": _label(parser)}
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(safe_count, labels)
    if _prom_enabled and _prom_parser_failure_counter is not None:
        _prom_parser_failure_counter.labels(**labels).inc(safe_count)


def record_token_cost(*, model: str, kind: str, tokens: int, cost_usd: float) -> None:
    labels = {"model": _label(model), "kind": _label(kind)}
    safe_tokens = max(0, int(tokens))
    if _enabled and _tokens_counter is not None and safe_tokens > 0:
        _tokens_counter.add(safe_tokens, labels)
    if _enabled and _cost_counter is not None and cost_usd > 0:
        _cost_counter.add(float(cost_usd), labels)
    if _prom_enabled and _prom_tokens_counter is not None and safe_tokens > 0:
        _prom_tokens_counter.labels(**labels).inc(safe_tokens)
    if _prom_enabled and _prom_cost_counter is not None and cost_usd > 0:
        _prom_cost_counter.labels(**labels).inc(float(cost_usd))


def record_requeue(trigger: str, count: int) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {"trigger": _label(trigger)}
    if _enabled and _requeue_counter is not None:
        _requeue_counter.add(safe_count, labels)
    if _prom_enabled and _prom_requeue_counter is not None:
        _prom_requeue_counter.labels(**labels).inc(safe_count)
