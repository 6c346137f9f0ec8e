"""
OpenTelemetry Configuration

Sets up distributed tracing, metrics, and logging for the eventual-benefit
request core.
"""

import os
import logging
from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

logger = logging.getLogger(__name__)

# Trace sampling ratio per ENVIRONMENT, overridden by OTEL_SAMPLING_RATIO
DEFAULT_SAMPLING = {
    'production': 0.25,
    'staging': 1.0,
    'development': 1.0
}


def setup_observability():
    """Initialize OpenTelemetry instrumentation based on environment configuration."""
    environment = os.getenv('ENVIRONMENT', 'development')
    otel_enabled = os.getenv('OTEL_ENABLED', 'true').lower() == 'true'
    service_name = os.getenv('SERVICE_NAME', 'beneficios-eventuais-core')
    service_version = os.getenv('SERVICE_VERSION', '1.0.0')

    setup_structured_logging(environment)

    if not otel_enabled:
        # Disable tracing by not setting up a tracer provider
        return

    sampler = TraceIdRatioBased(_sampling_ratio(environment))

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
        "deployment.environment": environment
    })

    tracer_provider = TracerProvider(
        sampler=sampler,
        resource=resource
    )
    metric_readers = []

    otlp_endpoint = os.getenv('OTEL_EXPORTER_OTLP_ENDPOINT')
    if environment in ('production', 'staging'):
        if otlp_endpoint:
            headers = {"Authorization": f"Bearer {os.getenv('OTEL_API_KEY', '')}"} if environment == 'production' else None
            tracer_provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, headers=headers), max_export_batch_size=512)
            )
            metric_readers.append(
                PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=otlp_endpoint, headers=headers))
            )
        else:
            logger.warning("OTEL_EXPORTER_OTLP_ENDPOINT not set, telemetry will not be exported")
    else:
        # Development: Console output, plus a local collector when configured
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        metric_readers.append(
            PeriodicExportingMetricReader(ConsoleMetricExporter(), export_interval_millis=60000)
        )
        if otlp_endpoint:
            tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))

    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))


def _sampling_ratio(environment: str) -> float:
    """Sampling ratio from OTEL_SAMPLING_RATIO, else by environment."""
    configured = os.getenv('OTEL_SAMPLING_RATIO')
    if configured:
        return min(max(float(configured), 0.0), 1.0)
    return DEFAULT_SAMPLING.get(environment, 1.0)


def setup_structured_logging(environment: str):
    """Configure root logging per environment."""
    log_level = {
        'production': logging.WARNING,
        'staging': logging.INFO,
        'development': logging.DEBUG
    }.get(environment, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s %(levelname)s %(name)s %(message)s',
        handlers=[logging.StreamHandler()]
    )

    if environment == 'production':
        # Production: Reduce noise, focus on errors and business events
        logging.getLogger('pika').setLevel(logging.ERROR)
        logging.getLogger('pymongo').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)
    else:
        logging.getLogger('pika').setLevel(logging.WARNING)
        logging.getLogger('pymongo').setLevel(logging.INFO)
        logging.getLogger('domain').setLevel(logging.DEBUG)
        logging.getLogger('services').setLevel(logging.DEBUG)
