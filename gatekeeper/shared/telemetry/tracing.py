"""@traced: one span per gate stage, never carrying credentials."""

import inspect
from collections.abc import Callable
from functools import wraps
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from gatekeeper.domain.exceptions import GatekeeperException

_tracer = trace.get_tracer("gatekeeper")

# Keyword arguments copied onto spans. Tokens, handles and secrets never are.
_RECORDED_KWARGS = frozenset({
    "scope", "reason", "principal_id", "provider", "collection",
    "action", "limit", "batch", "event_type", "identifier_kind",
})


def _record_kwargs(span: trace.Span, kwargs: dict[str, Any]) -> None:
    for key, value in kwargs.items():
        if key in _RECORDED_KWARGS:
            span.set_attribute(f"gate.{key}", str(value))


def _record_failure(span: trace.Span, exc: Exception) -> None:
    # A denial is an expected outcome; only unexpected errors mark the span.
    if isinstance(exc, GatekeeperException):
        span.set_attribute("gate.denied", exc.error_code)
        return
    span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
    span.record_exception(exc)


def traced(name: str) -> Callable:
    """Wrap a sync or async callable in a span called ``name``."""

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with _tracer.start_as_current_span(
                    name, record_exception=False, set_status_on_exception=False
                ) as span:
                    _record_kwargs(span, kwargs)
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        _record_failure(span, e)
                        raise

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with _tracer.start_as_current_span(
                name, record_exception=False, set_status_on_exception=False
            ) as span:
                _record_kwargs(span, kwargs)
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, e)
                    raise

        return sync_wrapper

    return decorator


def add_span_attributes(**attributes: str | int | float | bool) -> None:
    """Set attributes on the current span when it is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        for key, value in attributes.items():
            span.set_attribute(key, value)
