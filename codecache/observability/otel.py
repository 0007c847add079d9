"""Optional tracing and refresh metrics.

OpenTelemetry is exported over OTLP/HTTP when `CODECACHE_OTEL_ENABLED` is set;
a Prometheus scrape endpoint mirrors the refresh metrics when
`CODECACHE_PROM_PORT` is positive. Every recorder is a no-op until
`initialize()` succeeds.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from fastapi import FastAPI

from codecache import config

logger = logging.getLogger("codecache.observability")

REFRESH_TOTAL = ("codecache_refresh_total", "Count of cache refresh operations")
REFRESH_LATENCY = ("codecache_refresh_latency_ms", "Latency of cache refresh operations")
FILE_CHANGES = ("codecache_file_changes_total", "Cached file rows written by refreshes, by change kind")


@dataclass
class _Telemetry:
    initialized: bool = False
    tracer: Any = None
    providers: list[Any] = field(default_factory=list)
    instrumentor: Any = None
    otel: dict[str, Any] = field(default_factory=dict)
    prom: dict[str, Any] = field(default_factory=dict)


_state = _Telemetry()

_enabled = False
_prom_enabled = False


def _signal_endpoint(base: str, signal_path: str) -> str:
    """Append `/v1/<signal>` to a collector base URL unless already present."""
    endpoint = (base or "").strip().rstrip("/")
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/v1"):
        endpoint = endpoint[: -len("/v1")]
    return endpoint + signal_path


def _label(value: str | None) -> str:
    return (value or "").strip() or "unknown"


def _setup_otel(app: FastAPI | None) -> bool:
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
        logger.warning("OpenTelemetry packages not installed (pip install codecache[observability]): %s", exc)
        return False

    resource = Resource.create({
        "service.name": config.OTEL_SERVICE_NAME or "codecache",
        "service.namespace": "codecache",
    })

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "/v1/traces") or None))
    )
    trace.set_tracer_provider(tracer_provider)

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "/v1/metrics") or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("codecache")

    _state.tracer = trace.get_tracer("codecache")
    _state.providers = [meter_provider, tracer_provider]
    _state.otel = {
        "refresh_total": meter.create_counter(REFRESH_TOTAL[0], unit="1", description=REFRESH_TOTAL[1]),
        "refresh_latency": meter.create_histogram(REFRESH_LATENCY[0], unit="ms", description=REFRESH_LATENCY[1]),
        "file_changes": meter.create_counter(FILE_CHANGES[0], unit="1", description=FILE_CHANGES[1]),
    }
    _state.instrumentor = FastAPIInstrumentor()
    if app is not None:
        _state.instrumentor.instrument_app(app)
    return True


def _setup_prometheus(port: int) -> bool:
    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(port)
    except (ImportError, OSError) as exc:
        logger.warning("Prometheus endpoint not started on port %s: %s", port, exc)
        return False

    _state.prom = {
        "refresh_total": Counter(*REFRESH_TOTAL, ["mode", "result", "project"]),
        "refresh_latency": Histogram(*REFRESH_LATENCY, ["mode", "result", "project"]),
        "file_changes": Counter(*FILE_CHANGES, ["kind", "project"]),
    }
    logger.info("Prometheus metrics served on port %s", port)
    return True


def initialize(app: FastAPI | None = None) -> None:
    """Set up exporters once; later calls only instrument additional apps."""
    global _enabled, _prom_enabled

    if _state.initialized:
        if _enabled and app is not None and _state.instrumentor is not None:
            _state.instrumentor.instrument_app(app)
        return
    _state.initialized = True

    if not config.OTEL_ENABLED:
        logger.info("Telemetry disabled (CODECACHE_OTEL_ENABLED is not set)")
        return

    _enabled = _setup_otel(app)
    if not _enabled:
        return
    if config.PROM_PORT > 0:
        _prom_enabled = _setup_prometheus(config.PROM_PORT)
    logger.info("Telemetry exporting to %s as %s", config.OTEL_ENDPOINT, config.OTEL_SERVICE_NAME)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _state.initialized:
        return
    if app is not None and _state.instrumentor is not None:
        try:
            _state.instrumentor.uninstrument_app(app)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Could not uninstrument app: %s", exc)
    for provider in _state.providers:
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _state.providers = []
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    """Trace the enclosed block; yields None when tracing is off."""
    if not _enabled or _state.tracer is None:
        yield None
        return
    with _state.tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def record_refresh(mode: str, result: str, duration_ms: float, *, project_id: str) -> None:
    latency = max(0.0, float(duration_ms))
    if _enabled and _state.otel:
        attrs = {"mode": _label(mode), "result": _label(result), "project_id": _label(project_id)}
        _state.otel["refresh_total"].add(1, attrs)
        _state.otel["refresh_latency"].record(latency, attrs)
    if _prom_enabled and _state.prom:
        labels = {"mode": _label(mode), "result": _label(result), "project": _label(project_id)}
        _state.prom["refresh_total"].labels(**labels).inc()
        _state.prom["refresh_latency"].labels(**labels).observe(latency)


def record_file_changes(*, project_id: str, added: int = 0, modified: int = 0, deleted: int = 0) -> None:
    for kind, count in (("added", added), ("modified", modified), ("deleted", deleted)):
        amount = max(0, int(count))
        if not amount:
            continue
        if _enabled and _state.otel:
            _state.otel["file_changes"].add(amount, {"kind": kind, "project_id": _label(project_id)})
        if _prom_enabled and _state.prom:
            _state.prom["file_changes"].labels(kind=kind, project=_label(project_id)).inc(amount)
