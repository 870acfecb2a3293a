from __future__ import annotations

import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from crm_client.core.config import Settings, get_settings


SERVICE_NAME = "crm-client"

_provider: TracerProvider | None = None
_exporters_installed = False


def _provider_for(settings: Settings) -> TracerProvider:
    """Install the process-wide provider once; later calls reuse it."""
    global _provider

    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": SERVICE_NAME,
                    "service.namespace": settings.app_name,
                    "service.version": os.getenv("APP_VERSION", "0.1.0"),
                    "deployment.environment": settings.app_env,
                }
            )
        )
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings | None = None) -> TracerProvider | None:
    """Export gate, mutation, audit and SQL authority spans when ``otel_enabled`` is set.

    OTLP export is used when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is present;
    ``OTEL_CONSOLE_EXPORTER=true`` also prints finished spans.
    """
    global _exporters_installed

    resolved = settings or get_settings()
    if not resolved.otel_enabled:
        return None

    provider = _provider_for(resolved)
    if _exporters_installed:
        return provider

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_installed = True
    return provider


def setup_inmemory_otel(settings: Settings | None = None) -> InMemorySpanExporter:
    provider = _provider_for(settings or get_settings())
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def current_trace_id() -> str | None:
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None
    return format(context.trace_id, "032x")
