"""OpenTelemetry bootstrap and the request-scoped span handle."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field

import structlog
from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader, MetricReader, MetricsData, PeriodicExportingMetricReader
from opentelemetry.sdk.metrics.view import ExplicitBucketHistogramAggregation, View
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, SpanExporter
from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.util.types import AttributeValue

from metrics_api.config import Settings
from metrics_api.observability.metrics import DURATION_BUCKETS_SECONDS, REQUEST_DURATION


logger = structlog.get_logger("telemetry")


@dataclass
class Telemetry:
    resource: Resource
    tracer_provider: TracerProvider
    meter_provider: MeterProvider
    metric_reader: InMemoryMetricReader
    scope_name: str
    auto_instrument: bool = True
    _shut_down: bool = field(default=False, init=False, repr=False)

    @property
    def tracer(self) -> trace.Tracer:
        return self.tracer_provider.get_tracer(self.scope_name)

    @property
    def meter(self) -> metrics.Meter:
        return self.meter_provider.get_meter(self.scope_name)

    def instrument_app(self, app: FastAPI) -> None:
        """Attach FastAPI auto-instrumentation bound to our providers."""

        if not self.auto_instrument:
            return
        FastAPIInstrumentor.instrument_app(
            app,
            tracer_provider=self.tracer_provider,
            meter_provider=self.meter_provider,
        )

    def collect(self) -> MetricsData | None:
        """Pull the current cumulative values held by the SDK."""

        return self.metric_reader.get_metrics_data()

    def shutdown(self, timeout_seconds: float) -> bool:
        """Flush and stop both providers, giving up after ``timeout_seconds``.

        The work runs on a daemon thread so a hung exporter cannot keep the
        process alive. Returns False when the deadline was hit.
        """

        if self._shut_down:
            return True
        self._shut_down = True

        worker = threading.Thread(target=self._shutdown_providers, name="telemetry-shutdown", daemon=True)
        worker.start()
        worker.join(timeout_seconds)
        if worker.is_alive():
            logger.warning("telemetry_shutdown_timeout", timeout_seconds=timeout_seconds)
            return False

        logger.info("telemetry_shutdown_complete")
        return True

    def _shutdown_providers(self) -> None:
        for name, provider in (("tracer", self.tracer_provider), ("meter", self.meter_provider)):
            try:
                provider.shutdown()
            except Exception:
                logger.exception("telemetry_shutdown_failed", provider=name)


def build_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.service_version,
            "deployment.environment": settings.environment,
        }
    )


def init_telemetry(
    settings: Settings,
    *,
    span_exporter: SpanExporter | None = None,
    install_global: bool = False,
) -> Telemetry:
    """Build tracer/meter providers and exporters for one application.

    ``span_exporter`` replaces the OTLP exporter with a synchronous one (tests).
    """

    resource = build_resource(settings)

    tracer_provider = TracerProvider(resource=resource)
    if span_exporter is not None:
        tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    elif settings.otel_export_enabled:
        tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_traces_endpoint)))

    metric_reader = InMemoryMetricReader()
    readers: list[MetricReader] = [metric_reader]
    if settings.otel_export_enabled:
        readers.append(
            PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=settings.otel_metrics_endpoint),
                export_interval_millis=settings.otel_metric_export_interval_ms,
            )
        )

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=readers,
        views=[
            View(
                instrument_name=REQUEST_DURATION.name,
                aggregation=ExplicitBucketHistogramAggregation(boundaries=DURATION_BUCKETS_SECONDS),
            ),
        ],
    )

    if install_global:
        trace.set_tracer_provider(tracer_provider)
        metrics.set_meter_provider(meter_provider)

    logger.info(
        "telemetry_initialized",
        service_name=settings.service_name,
        service_version=settings.service_version,
        environment=settings.environment,
        export_enabled=settings.otel_export_enabled,
        traces_endpoint=settings.otel_traces_endpoint,
        metrics_endpoint=settings.otel_metrics_endpoint,
    )

    return Telemetry(
        resource=resource,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        metric_reader=metric_reader,
        scope_name=settings.service_name,
        auto_instrument=settings.otel_auto_instrument,
    )


class RequestTelemetry:
    """Handle on the span of the request being served.

    Always present for HTTP requests; handlers annotate it without checking.
    """

    def __init__(self, span: Span) -> None:
        self.span = span
        self.failed = False

    def event(self, name: str, attributes: Mapping[str, AttributeValue] | None = None) -> None:
        self.span.add_event(name, attributes=dict(attributes) if attributes else None)

    def set_attributes(self, attributes: Mapping[str, AttributeValue]) -> None:
        self.span.set_attributes(dict(attributes))

    def fail(self, message: str) -> None:
        self.failed = True
        self.span.set_status(Status(StatusCode.ERROR, message))

    def record_exception(self, exc: BaseException) -> None:
        self.span.record_exception(exc)
        self.fail(str(exc) or type(exc).__name__)
