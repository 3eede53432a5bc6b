"""Logging setup, tracer provider and the @traced span helper."""

from gatekeeper.shared.telemetry.logging import redact, setup_logging
from gatekeeper.shared.telemetry.telemetry import configure_tracing, shutdown_tracing
from gatekeeper.shared.telemetry.tracing import add_span_attributes, traced

__all__ = [
    "add_span_attributes",
    "configure_tracing",
    "redact",
    "setup_logging",
    "shutdown_tracing",
    "traced",
]
