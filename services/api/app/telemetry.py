from __future__ import annotations

import logging

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

from docqa_shared import Settings

_logger = logging.getLogger(__name__)
_METRICS_INSTRUMENTED = False
_TRACING_CONFIGURED = False

QA_ANSWERS = Counter(
    "docqa_answers_total",
    "Answered questions by how the answer was produced",
    ["outcome"],
)
QA_CONFIDENCE = Histogram(
    "docqa_answer_confidence",
    "Overall confidence of generated answers",
    buckets=(0.1, 0.2, 0.4, 0.6, 0.8, 0.9, 1.0),
)


def record_answer(*, cached: bool, conversational: bool, confidence: float, grounded: bool) -> None:
    if conversational:
        outcome = "conversational"
    elif cached:
        outcome = "cached"
    elif not grounded:
        outcome = "no_context"
    else:
        outcome = "generated"
        QA_CONFIDENCE.observe(confidence)
    QA_ANSWERS.labels(outcome=outcome).inc()


def record_failure(code: str) -> None:
    QA_ANSWERS.labels(outcome=code.lower()).inc()


def _tracer_provider(settings: Settings) -> TracerProvider:
    resource = Resource(
        attributes={
            "service.name": settings.service_name,
            "service.namespace": "docqa",
            "deployment.environment": settings.env,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)))
    return provider


def setup_observability(app: FastAPI, settings: Settings) -> None:
    """Expose Prometheus metrics and export traces; both are process-wide and set up once."""

    global _METRICS_INSTRUMENTED
    global _TRACING_CONFIGURED

    if settings.enable_metrics and not _METRICS_INSTRUMENTED:
        Instrumentator(excluded_handlers=["/metrics", "/system/health"]).instrument(app).expose(
            app, include_in_schema=False
        )
        _METRICS_INSTRUMENTED = True
        _logger.info("metrics instrumentation enabled", extra={"excluded": ["/metrics", "/system/health"]})

    if not settings.otel_exporter_endpoint or _TRACING_CONFIGURED:
        return

    trace.set_tracer_provider(_tracer_provider(settings))
    FastAPIInstrumentor.instrument_app(app, excluded_urls="system/health")
    LoggingInstrumentor().instrument(set_logging_format=True)
    _TRACING_CONFIGURED = True
    _logger.info("tracing exporter configured", extra={"endpoint": settings.otel_exporter_endpoint})
