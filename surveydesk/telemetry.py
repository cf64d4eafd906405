"""Tracing for the API and the Celery workers.

Service code asks ``get_tracer`` for spans around analytics rebuilds and
outbox flushes. Until ``OTEL_ENABLED`` installs a provider those spans are
no-ops.
"""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.celery import CeleryInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from surveydesk.config import settings
from surveydesk.db import get_engine

logger = logging.getLogger(__name__)

_provider: TracerProvider | None = None


def get_tracer(name: str | None = None) -> trace.Tracer:
    return trace.get_tracer(name or settings.otel_service_name)


def _span_exporter() -> OTLPSpanExporter:
    endpoint = settings.otel_exporter_endpoint
    if endpoint:
        return OTLPSpanExporter(endpoint=f"{endpoint.rstrip('/')}/v1/traces")
    return OTLPSpanExporter()


def _ensure_provider(process: str) -> bool:
    """Install the tracer provider once per process. Returns False when tracing is off.

    Database queries, PostHog deliveries and log records are traced in every
    process that turns tracing on.
    """
    global _provider
    if not settings.otel_enabled:
        return False
    if _provider is not None:
        return True

    _provider = TracerProvider(
        resource=Resource.create({"service.name": settings.otel_service_name, "surveydesk.process": process})
    )
    _provider.add_span_processor(BatchSpanProcessor(_span_exporter()))
    trace.set_tracer_provider(_provider)

    SQLAlchemyInstrumentor().instrument(engine=get_engine())
    HTTPXClientInstrumentor().instrument()
    LoggingInstrumentor().instrument(set_logging_format=False)
    return True


def setup_otel(app) -> None:
    if not _ensure_provider("api"):
        return
    FastAPIInstrumentor.instrument_app(app)
    logger.info("otel_enabled process=api service=%s", settings.otel_service_name)


def setup_worker_otel() -> None:
    """Trace task execution. Runs in each worker process after the fork."""
    if not _ensure_provider("worker"):
        return
    CeleryInstrumentor().instrument()
    logger.info("otel_enabled process=worker service=%s", settings.otel_service_name)
