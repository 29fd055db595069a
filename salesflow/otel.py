from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Span

from salesflow.context import get_actor_id, get_correlation_id
from salesflow.core.config import Settings


_configured = False
_provider: TracerProvider | None = None


def _get_or_create_provider(service_name: str, service_version: str = "0.1.0") -> TracerProvider:
    global _provider

    if _provider is not None:
        return _provider

    resource = Resource.create({"service.name": service_name, "service.version": service_version})
    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    """Install the tracer provider and the exporters named in settings."""
    global _configured

    if not settings.otel_enabled:
        return None

    provider = _get_or_create_provider(settings.otel_service_name, settings.app_version)
    if _configured:
        return provider

    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))

    _configured = True
    return provider


def setup_inmemory_otel(service_name: str = "salesflow") -> InMemorySpanExporter:
    provider = _get_or_create_provider(service_name)
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


@contextmanager
def sales_span(tracer: trace.Tracer, name: str, **attributes: str) -> Iterator[Span]:
    # request scoped ids are copied onto every sales span so traces join up with logs
    with tracer.start_as_current_span(name) as span:
        correlation_id = get_correlation_id()
        actor_id = get_actor_id()
        if correlation_id:
            span.set_attribute("correlation_id", correlation_id)
        if actor_id:
            span.set_attribute("actor_id", actor_id)
        for key, value in attributes.items():
            span.set_attribute(key, value)
        yield span


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None:
            return
        headers = dict(scope.get("headers", []))
        correlation_raw = headers.get(b"x-correlation-id")
        if correlation_raw:
            span.set_attribute("correlation_id", correlation_raw.decode("utf-8"))

    return server_request_hook
