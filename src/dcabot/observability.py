from __future__ import annotations

import atexit
import logging
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)

_INVALID_METRIC_CHARS = re.compile(r"[^a-zA-Z0-9_.-]+")


def _sanitize_metric_name(name: str) -> str:
    return _INVALID_METRIC_CHARS.sub("_", name).strip("_") or "invalid_metric"


class Instrumentation:
    """Metrics and tracing seam used by the executor and scheduler.

    The base class records nothing, so callers never check whether telemetry is on.
    """

    def counter(self, name: str, value: int = 1, *, attrs: dict[str, Any] | None = None) -> None:
        pass

    def gauge(self, name: str, value: float, *, attrs: dict[str, Any] | None = None) -> None:
        pass

    def histogram(self, name: str, value: float, *, attrs: dict[str, Any] | None = None) -> None:
        pass

    @contextmanager
    def trace(self, name: str, *, attrs: dict[str, Any] | None = None) -> Iterator[None]:
        yield

    def flush(self) -> None:
        pass

    def shutdown(self) -> None:
        pass


class NoopInstrumentation(Instrumentation):
    pass


def _metric_readers(
    metrics_exporter: str, otlp_endpoint: str | None, prometheus_port: int
) -> list:
    if metrics_exporter == "otlp":
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

        exporter = (
            OTLPMetricExporter(endpoint=otlp_endpoint) if otlp_endpoint else OTLPMetricExporter()
        )
        return [PeriodicExportingMetricReader(exporter)]
    if metrics_exporter == "prometheus":
        from opentelemetry.exporter.prometheus import PrometheusMetricReader
        from prometheus_client import start_http_server

        reader = PrometheusMetricReader()
        start_http_server(prometheus_port)
        return [reader]
    return []


class OTelInstrumentation(Instrumentation):
    def __init__(
        self,
        *,
        service_name: str,
        metrics_exporter: str,
        otlp_endpoint: str | None,
        prometheus_port: int,
    ) -> None:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource.create({"service.name": service_name})

        self._tracer_provider = TracerProvider(resource=resource)
        span_exporter = (
            OTLPSpanExporter(endpoint=otlp_endpoint) if otlp_endpoint else OTLPSpanExporter()
        )
        self._tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        trace.set_tracer_provider(self._tracer_provider)
        self._tracer = trace.get_tracer(service_name)

        self._meter_provider = MeterProvider(
            resource=resource,
            metric_readers=_metric_readers(metrics_exporter, otlp_endpoint, prometheus_port),
        )
        metrics.set_meter_provider(self._meter_provider)
        meter = metrics.get_meter(service_name)
        # No synchronous gauge in older SDKs; an up/down counter tracks +1/-1 deltas.
        self._factories = {
            "counter": meter.create_counter,
            "gauge": meter.create_up_down_counter,
            "histogram": meter.create_histogram,
        }
        self._instruments: dict[tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    def _get(self, kind: str, name: str) -> Any:
        key = (kind, _sanitize_metric_name(name))
        with self._lock:
            if key not in self._instruments:
                self._instruments[key] = self._factories[kind](key[1])
            return self._instruments[key]

    def counter(self, name: str, value: int = 1, *, attrs: dict[str, Any] | None = None) -> None:
        self._get("counter", name).add(value, attrs or {})

    def gauge(self, name: str, value: float, *, attrs: dict[str, Any] | None = None) -> None:
        self._get("gauge", name).add(value, attrs or {})

    def histogram(self, name: str, value: float, *, attrs: dict[str, Any] | None = None) -> None:
        self._get("histogram", name).record(value, attrs or {})

    @contextmanager
    def trace(self, name: str, *, attrs: dict[str, Any] | None = None) -> Iterator[None]:
        span_attrs = {key: value for key, value in (attrs or {}).items() if value is not None}
        with self._tracer.start_as_current_span(name, attributes=span_attrs):
            yield

    def flush(self) -> None:
        self._meter_provider.force_flush()
        self._tracer_provider.force_flush()

    def shutdown(self) -> None:
        self.flush()
        self._meter_provider.shutdown()
        self._tracer_provider.shutdown()


_state_lock = threading.Lock()
_active: Instrumentation = NoopInstrumentation()
_configured = False


def configure_instrumentation(
    *,
    enabled: bool,
    service_name: str = "dcabot",
    metrics_exporter: str = "none",
    otlp_endpoint: str | None = None,
    prometheus_port: int = 9464,
) -> Instrumentation:
    """Install process-wide instrumentation; later calls return the first result."""
    global _active, _configured
    with _state_lock:
        if _configured:
            return _active
        _configured = True
        if enabled:
            try:
                _active = OTelInstrumentation(
                    service_name=service_name,
                    metrics_exporter=metrics_exporter,
                    otlp_endpoint=otlp_endpoint,
                    prometheus_port=prometheus_port,
                )
            except Exception:  # noqa: BLE001
                logger.exception("observability_setup_failed_falling_back_to_noop")
                _active = NoopInstrumentation()
        return _active


def set_instrumentation(instrumentation: Instrumentation) -> None:
    global _active
    with _state_lock:
        _active = instrumentation


def get_instrumentation() -> Instrumentation:
    return _active


def shutdown_instrumentation() -> None:
    _active.shutdown()


atexit.register(shutdown_instrumentation)
