# telemetry.py - Optional OpenTelemetry tracing for the MapRoulette API
"""
Traces requests and database calls when OTEL_EXPORTER_OTLP_ENDPOINT is
set and the ``telemetry`` extra is installed. Otherwise it does nothing.
"""
import os
import logging

from config import ENVIRONMENT, SERVICE_VERSION

logger = logging.getLogger("maproulette.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "maproulette-api")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")


def setup_telemetry(app=None, engine=None):
    """Install a tracer provider exporting to OTLP and instrument the app and engine.

    Returns the provider, or None when tracing stays off.
    """
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
        logger.info("OpenTelemetry SDK not installed, tracing disabled")
        return None

    try:
        provider = TracerProvider(resource=Resource.create({
            RES_SVC_NAME: SERVICE_NAME,
            "service.version": SERVICE_VERSION,
            "deployment.environment": ENVIRONMENT,
        }))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
        trace.set_tracer_provider(provider)

        if app is not None:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)

        if engine is not None:
            from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
            # async engines are instrumented through their sync core
            SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)

        logger.info("OpenTelemetry exporting to %s", OTLP_ENDPOINT)
        return provider
    except Exception as e:
        logger.error("OpenTelemetry setup failed: %s", e)
        return None
