"""HTTP header propagation of span contexts, using OpenTelemetry's carrier accessors."""

from __future__ import annotations

import logging
from typing import Dict, Optional, TypeVar

from opentelemetry.propagators.textmap import Getter, Setter, default_getter, default_setter

from tracekeeper.errors import MalformedContextError
from tracekeeper.tracer.span_context import SpanContext
from tracekeeper.utils.helpers import format_id, parse_id, parse_sampling_priority

CarrierT = TypeVar("CarrierT")

TRACE_ID_HEADER = "x-datadog-trace-id"
PARENT_ID_HEADER = "x-datadog-parent-id"
SAMPLING_PRIORITY_HEADER = "x-datadog-sampling-priority"
ORIGIN_HEADER = "x-datadog-origin"
BAGGAGE_PREFIX = "ot-baggage-"


def inject(
    context: SpanContext,
    carrier: CarrierT,
    setter: Setter[CarrierT] = default_setter,
) -> None:
    """
    Write the context into carrier headers.

    The sampling priority header is only written when the priority is known.
    """
    setter.set(carrier, TRACE_ID_HEADER, format_id(context.trace_id))
    setter.set(carrier, PARENT_ID_HEADER, format_id(context.span_id))
    priority = context.sampling_priority
    if priority is not None:
        setter.set(carrier, SAMPLING_PRIORITY_HEADER, str(priority))
    if context.origin:
        setter.set(carrier, ORIGIN_HEADER, context.origin)
    for key, value in context.baggage.items():
        setter.set(carrier, BAGGAGE_PREFIX + key, value)


def _headers(carrier: CarrierT, getter: Getter[CarrierT]) -> Dict[str, str]:
    """Case-insensitive view of the carrier (first value of each header)."""
    headers: Dict[str, str] = {}
    for key in getter.keys(carrier):
        values = getter.get(carrier, key)
        if values:
            headers.setdefault(key.lower(), values[0])
    return headers


def extract(
    carrier: CarrierT,
    getter: Getter[CarrierT] = default_getter,
    logger: Optional[logging.Logger] = None,
) -> Optional[SpanContext]:
    """
    Read a propagated context from carrier headers.

    Returns:
        The distributed SpanContext, or None when the carrier holds no context

    Raises:
        MalformedContextError: if only one of the id headers is present, or a
            header value cannot be parsed
    """
    headers = _headers(carrier, getter)
    raw_trace_id = headers.get(TRACE_ID_HEADER)
    raw_parent_id = headers.get(PARENT_ID_HEADER)
    if raw_trace_id is None and raw_parent_id is None:
        return None
    if raw_trace_id is None or raw_parent_id is None:
        raise MalformedContextError(
            "both trace id and parent id headers are required",
            details={TRACE_ID_HEADER: raw_trace_id, PARENT_ID_HEADER: raw_parent_id},
        )

    try:
        document = {
            "trace_id": parse_id(raw_trace_id),
            "parent_id": parse_id(raw_parent_id),
        }
        if SAMPLING_PRIORITY_HEADER in headers:
            document["sampling_priority"] = parse_sampling_priority(headers[SAMPLING_PRIORITY_HEADER])
    except ValueError as e:
        raise MalformedContextError("invalid propagation header", details={"error": str(e)}) from e

    if headers.get(ORIGIN_HEADER):
        document["origin"] = headers[ORIGIN_HEADER]
    baggage = {
        key[len(BAGGAGE_PREFIX):]: value
        for key, value in headers.items()
        if key.startswith(BAGGAGE_PREFIX) and len(key) > len(BAGGAGE_PREFIX)
    }
    if baggage:
        document["baggage"] = baggage
    return SpanContext.from_dict(logger, document)
