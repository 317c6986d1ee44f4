"""
Telemetry infrastructure for the Identity Server.

A singleton TelemetryService configures OpenTelemetry tracing and metrics
and instruments FastAPI, httpx (notification webhooks) and redis (event
bus). Rights checks are counted by the evaluator through the global
meter provider installed here.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from identity_core.config import settings


class TelemetryService:
    """Singleton service for configuring and managing OpenTelemetry."""

    _instance: Optional[TelemetryService] = None

    def __new__(cls) -> TelemetryService:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self.tracer_provider: Optional[TracerProvider] = None
        self.meter_provider: Optional[MeterProvider] = None

    def setup(self) -> None:
        """Initialize providers and library instrumentation. Idempotent."""
        if not settings.ENABLE_TELEMETRY:
            logger.info("Telemetry disabled via configuration.")
            return
        if self.tracer_provider is not None:
            return

        resource = Resource.create({"service.name": settings.SERVICE_NAME})

        self.tracer_provider = TracerProvider(resource=resource)
        if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
            exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT)
            logger.info(f"OTLP tracing enabled -> {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            exporter = ConsoleSpanExporter()
            logger.info("OTLP endpoint not set, tracing to console.")
        self.tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(self.tracer_provider)

        self.meter_provider = MeterProvider(resource=resource, metric_readers=[PrometheusMetricReader()])
        metrics.set_meter_provider(self.meter_provider)

        HTTPXClientInstrumentor().instrument()
        RedisInstrumentor().instrument()
        logger.info("Telemetry initialized.")

    def instrument_app(self, app) -> None:
        """Instrument a FastAPI application and expose /metrics."""
        if not settings.ENABLE_TELEMETRY:
            return
        FastAPIInstrumentor.instrument_app(app, tracer_provider=self.tracer_provider)

        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator().instrument(app).expose(app)


def setup_telemetry() -> None:
    TelemetryService().setup()
