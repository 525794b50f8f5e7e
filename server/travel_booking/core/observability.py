"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, generate_latest

from .config import settings

SERVICE_NAME = "travel-booking-api"
SERVICE_VERSION = "1.0.0"

# Prometheus metrics
REGISTRY = CollectorRegistry()

HOLDS_CREATED = Counter(
    'booking_holds_created_total',
    'Total inventory holds created',
    registry=REGISTRY
)

HOLDS_RELEASED = Counter(
    'booking_holds_released_total',
    'Total inventory holds released by the customer',
    registry=REGISTRY
)

HOLDS_EXPIRED = Counter(
    'booking_holds_expired_total',
    'Total inventory holds marked expired by the sweeper',
    registry=REGISTRY
)

BOOKINGS_CREATED = Counter(
    'bookings_created_total',
    'Total bookings created',
    ['with_hold'],
    registry=REGISTRY
)

BOOKINGS_CANCELLED = Counter(
    'bookings_cancelled_total',
    'Total bookings cancelled',
    registry=REGISTRY
)

CAPACITY_REJECTIONS = Counter(
    'booking_capacity_rejections_total',
    'Requests rejected because the package date was full',
    ['operation'],
    registry=REGISTRY
)

IDEMPOTENT_REPLAYS = Counter(
    'idempotent_replays_total',
    'Responses served from a stored idempotency record',
    ['endpoint'],
    registry=REGISTRY
)

PROMO_REDEMPTIONS = Counter(
    'promo_redemptions_total',
    'Promo codes applied to committed bookings',
    registry=REGISTRY
)


def _add_trace_context(logger, method_name, event_dict):
    """Add the active OpenTelemetry span to log events."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict['trace_id'] = format(ctx.trace_id, '032x')
        event_dict['span_id'] = format(ctx.span_id, '016x')
    return event_dict


def setup_structured_logging() -> None:
    """
    Configure structlog and route standard-library loggers through it.

    Modules log with ``logging.getLogger(__name__)`` and ``extra={...}``;
    the extras end up as structured keys in the rendered event.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_trace_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.debug
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors + [structlog.stdlib.ExtraAdder()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing, exporting over OTLP when an endpoint is configured."""
    provider = TracerProvider(resource=_resource())
    if settings.otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))
    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=settings.otlp_endpoint),
            export_interval_millis=60000,
        )
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))
    return metrics.get_meter(__name__)


def instrument_fastapi(app) -> None:
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine) -> None:
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_hold_created():
        HOLDS_CREATED.inc()

    @staticmethod
    def record_hold_released():
        HOLDS_RELEASED.inc()

    @staticmethod
    def record_holds_expired(count: int):
        if count > 0:
            HOLDS_EXPIRED.inc(count)

    @staticmethod
    def record_booking_created(with_hold: bool):
        BOOKINGS_CREATED.labels(with_hold=str(with_hold).lower()).inc()

    @staticmethod
    def record_booking_cancelled():
        BOOKINGS_CANCELLED.inc()

    @staticmethod
    def record_capacity_rejection(operation: str):
        CAPACITY_REJECTIONS.labels(operation=operation).inc()

    @staticmethod
    def record_idempotent_replay(endpoint: str):
        IDEMPOTENT_REPLAYS.labels(endpoint=endpoint).inc()

    @staticmethod
    def record_promo_redemption():
        PROMO_REDEMPTIONS.inc()


def get_prometheus_metrics() -> bytes:
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
