"""Tracing, metrics and profiling for the shop API.

The SDK tracer and meter providers are always installed so spans and
instruments behave the same in every environment. OTLP exporters are attached
only when ``OTEL_ENABLED`` is set.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from config import (
    API_VERSION,
    ENVIRONMENT,
    OTEL_ENABLED,
    OTEL_EXPORTER_OTLP_ENDPOINT,
    PYROSCOPE_ENABLED,
    PYROSCOPE_SERVER,
    SERVICE_NAME
)

logger = logging.getLogger(__name__)

METRIC_EXPORT_INTERVAL_MS = 5000


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": API_VERSION,
        "deployment.environment": ENVIRONMENT,
    })


def init_tracing() -> trace.Tracer:
    """Install the tracer provider, exporting spans over OTLP when enabled."""
    provider = TracerProvider(resource=_resource())
    if OTEL_ENABLED:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True))
        )
        logger.info("Span export enabled", extra={"endpoint": OTEL_EXPORTER_OTLP_ENDPOINT})
    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """Install the meter provider, exporting every few seconds when enabled."""
    readers = []
    if OTEL_ENABLED:
        readers.append(PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True),
            export_interval_millis=METRIC_EXPORT_INTERVAL_MS
        ))
        logger.info("Metric export enabled", extra={"endpoint": OTEL_EXPORTER_OTLP_ENDPOINT})
    metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=readers))
    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Start continuous profiling when PYROSCOPE_ENABLED is set."""
    if not PYROSCOPE_ENABLED:
        return
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": ENVIRONMENT, "version": API_VERSION}
        )
        logger.info("Profiling enabled", extra={"server": PYROSCOPE_SERVER})
    except Exception as e:
        logger.warning(f"Profiling disabled: {e}")


tracer = init_tracing()
meter = init_metrics()

# Catalog
product_mutations_counter = meter.create_counter(
    "lasvalkyrie.products.mutations",
    description="Product create/update/delete operations by backend",
    unit="1"
)

# Orders
orders_created_counter = meter.create_counter(
    "lasvalkyrie.orders.created",
    description="Orders persisted, by backend",
    unit="1"
)
order_amount_histogram = meter.create_histogram(
    "lasvalkyrie.orders.amount",
    description="Server-computed order totals",
    unit="1"
)
insufficient_stock_counter = meter.create_counter(
    "lasvalkyrie.orders.insufficient_stock",
    description="Orders rejected because a line item exceeded available stock",
    unit="1"
)

# Storage
fallback_operations_counter = meter.create_counter(
    "lasvalkyrie.storage.fallback_operations",
    description="Operations served by the in-memory fallback store",
    unit="1"
)

# Discord notifier
notifier_duration_histogram = meter.create_histogram(
    "lasvalkyrie.notifier.duration",
    description="Duration of Discord webhook deliveries",
    unit="s"
)
notifier_failures_counter = meter.create_counter(
    "lasvalkyrie.notifier.failures",
    description="Order notifications that could not be delivered",
    unit="1"
)

# Admin and abuse
auth_attempts_counter = meter.create_counter(
    "lasvalkyrie.admin.login_attempts",
    description="Admin login attempts with both fields present",
    unit="1"
)
auth_failures_counter = meter.create_counter(
    "lasvalkyrie.admin.login_failures",
    description="Admin logins rejected for bad credentials",
    unit="1"
)
rate_limit_exceeded_counter = meter.create_counter(
    "lasvalkyrie.rate_limit.exceeded",
    description="Requests rejected with 429, by limit tier",
    unit="1"
)
suspicious_activity_counter = meter.create_counter(
    "lasvalkyrie.security.suspicious_activity",
    description="Clients crossing a failed-login or scanning threshold",
    unit="1"
)
