"""OpenTelemetry tracer provider for the authorization service.

Off by default (TELEMETRY_ENABLED). When off, spans opened by @traced go
to the API's no-op tracer. The provider lives on app.state so shutdown
flushes exactly what startup installed.
"""

import logging

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from gatekeeper.core.config import Settings

logger = logging.getLogger(__name__)

# Health probes would dominate the trace volume.
UNTRACED_URLS = "/api/v1/health"


def _build_exporter(settings: Settings) -> SpanExporter | None:
    kind = settings.telemetry_exporter.lower()
    if kind == "none":
        return None
    if kind == "otlp":
        endpoint = settings.telemetry_otlp_endpoint
        if not endpoint:
            raise ValueError("TELEMETRY_OTLP_ENDPOINT is required for the otlp exporter")
        return OTLPSpanExporter(endpoint=endpoint, insecure=endpoint.startswith("http://"))
    if kind != "console":
        logger.warning("Unknown span exporter %r, falling back to console", kind)
    return ConsoleSpanExporter()


def configure_tracing(app: FastAPI, settings: Settings) -> TracerProvider | None:
    """Install a global tracer provider and instrument the app and logging.

    Returns the provider, or None when tracing is disabled. A broken
    exporter configuration is logged and leaves tracing off; the gate keeps
    serving requests either way.
    """
    if not settings.telemetry_enabled:
        return None
    resource = Resource(
        attributes={
            SERVICE_NAME: settings.app_name,
            SERVICE_VERSION: settings.app_version,
            "deployment.environment": settings.environment,
            "gatekeeper.cookie_domain": settings.cookie_domain or "",
        }
    )
    provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(settings.telemetry_sample_rate)),
    )
    try:
        exporter = _build_exporter(settings)
    except ValueError as e:
        logger.error("Tracing disabled: %s", e)
        return None
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(
        app, tracer_provider=provider, excluded_urls=UNTRACED_URLS
    )
    LoggingInstrumentor().instrument(tracer_provider=provider, set_logging_format=True)
    logger.info(
        "Tracing enabled: service=%s exporter=%s sample_rate=%s",
        settings.app_name,
        settings.telemetry_exporter,
        settings.telemetry_sample_rate,
    )
    return provider


def shutdown_tracing(provider: TracerProvider | None) -> None:
    """Flush pending spans and stop the provider installed at startup."""
    if provider is None:
        return
    provider.shutdown()
    logger.info("Tracing shut down")
