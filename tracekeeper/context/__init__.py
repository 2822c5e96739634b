"""Context utilities for tracekeeper."""

from tracekeeper.context.context import get_current_span, pop_span, push_span
from tracekeeper.context.propagators import extract, inject

__all__ = [
    "get_current_span",
    "push_span",
    "pop_span",
    "inject",
    "extract",
]
