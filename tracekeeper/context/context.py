"""Context helpers for managing the active span - using OpenTelemetry's context API."""

from typing import TYPE_CHECKING, Optional

from opentelemetry import context as context_api

if TYPE_CHECKING:
    from tracekeeper.tracer.span import Span

_ACTIVE_SPAN_KEY = context_api.create_key("tracekeeper-active-span")


def get_current_span() -> Optional["Span"]:
    """
    Return the currently active span, if any.

    Finished spans are not reported as active.
    """
    span = context_api.get_value(_ACTIVE_SPAN_KEY)
    if span is None or span.finished:
        return None
    return span


def push_span(span: "Span") -> object:
    """
    Set a span as current.

    Returns:
        Token needed to restore the previous state
    """
    ctx = context_api.set_value(_ACTIVE_SPAN_KEY, span)
    return context_api.attach(ctx)


def pop_span(token: object) -> None:
    """
    Restore the previous span context using the provided token.

    Args:
        token: Token returned by push_span()
    """
    context_api.detach(token)
