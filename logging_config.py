"""JSON logging for the shop API.

Every record is one JSON object on stdout carrying the service identity and,
inside a request, the active trace and span ids. With ``OTEL_ENABLED`` the
records are also shipped to the OTLP collector.
"""
import logging
import sys

from pythonjsonlogger import jsonlogger
from opentelemetry import trace
# The OpenTelemetry logs SDK is still published under underscore modules
from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.sdk.resources import Resource

from config import API_VERSION, ENVIRONMENT, LOG_LEVEL, OTEL_ENABLED, OTEL_EXPORTER_OTLP_ENDPOINT, SERVICE_NAME

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


class ShopJsonFormatter(jsonlogger.JsonFormatter):
    """Adds service identity and trace correlation to each record."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["service"] = SERVICE_NAME
        log_record["environment"] = ENVIRONMENT

        ctx = trace.get_current_span().get_span_context()
        if ctx.is_valid:
            log_record["trace_id"] = format(ctx.trace_id, "032x")
            log_record["span_id"] = format(ctx.span_id, "016x")

        if "message" in log_record:
            log_record["msg"] = log_record.pop("message")


def _export_logs(root_logger: logging.Logger) -> None:
    provider = LoggerProvider(resource=Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": API_VERSION,
        "deployment.environment": ENVIRONMENT,
    }))
    provider.add_log_record_processor(
        BatchLogRecordProcessor(OTLPLogExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True))
    )
    set_logger_provider(provider)
    root_logger.addHandler(LoggingHandler(level=logging.INFO, logger_provider=provider))


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Replace root handlers with the JSON stdout handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(ShopJsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger", "asctime": "time"}
    ))
    root_logger.addHandler(stdout)

    if OTEL_ENABLED:
        try:
            _export_logs(root_logger)
        except Exception as e:
            logging.warning(f"OTLP log export disabled: {e}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
