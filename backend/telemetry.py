# telemetry.py - OpenTelemetry tracing for the report service
"""
Exports spans to an OTLP collector when OTEL_EXPORTER_OTLP_ENDPOINT is set;
otherwise every helper here is a no-op. FastAPI requests, SQLAlchemy queries
and individual renders (`render_span`) are traced.
"""
import os
import logging
from contextlib import contextmanager

logger = logging.getLogger("humanitarian-reports.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "humanitarian-reports-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")

_provider = None


def setup_telemetry(app=None):
    """Initialise tracing and instrument FastAPI + SQLAlchemy.

    Returns the tracer provider, or None when disabled or the SDK is missing.
    """
    global _provider
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.info("OpenTelemetry SDK not installed - tracing disabled")
        return None

    try:
        resource = Resource.create({
            RES_SVC_NAME: SERVICE_NAME,
            "service.version": SERVICE_VERSION,
            "deployment.environment": ENVIRONMENT,
        })
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
        trace.set_tracer_provider(provider)
    except Exception as e:
        logger.error(f"OpenTelemetry setup failed: {e}")
        return None

    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)
            logger.info("FastAPI instrumented with OpenTelemetry")
        except ImportError:
            logger.warning("opentelemetry-instrumentation-fastapi not installed")

    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        from database import engine
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
        logger.info("SQLAlchemy instrumented with OpenTelemetry")
    except ImportError:
        logger.warning("opentelemetry-instrumentation-sqlalchemy not installed")

    _provider = provider
    logger.info(f"OpenTelemetry initialised → {OTLP_ENDPOINT}")
    return provider


@contextmanager
def render_span(export_format: str, report_id: str):
    """Span around one render; yields None when tracing is off"""
    if _provider is None:
        yield None
        return
    from opentelemetry import trace
    tracer = trace.get_tracer("humanitarian-reports.export", SERVICE_VERSION)
    with tracer.start_as_current_span(f"render.{export_format}") as span:
        span.set_attribute("report.id", report_id)
        span.set_attribute("export.format", export_format)
        yield span
