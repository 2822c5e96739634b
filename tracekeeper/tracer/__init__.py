"""Tracer components for tracekeeper."""

from tracekeeper.tracer.span_context import SpanContext
from tracekeeper.tracer.span import FinishedSpan, Span, TimePoint, system_clock
from tracekeeper.tracer.span_buffer import SpanBuffer, Trace
from tracekeeper.tracer.tracer import Tracer

__all__ = [
    "FinishedSpan",
    "Span",
    "SpanBuffer",
    "SpanContext",
    "TimePoint",
    "Trace",
    "Tracer",
    "system_clock",
]
