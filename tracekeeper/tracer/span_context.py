"""Trace identity and sampling state carried across process boundaries."""

from __future__ import annotations

import io
import json
import logging
import threading
from typing import Any, Dict, Mapping, Optional, TextIO, Union

from tracekeeper.errors import MalformedContextError
from tracekeeper.utils.helpers import format_id, parse_id, parse_sampling_priority


class SpanContext:
    """
    Identity of a span plus the trace-wide propagation state.

    Identity, origin and baggage are fixed at construction. The sampling
    priority starts unset and can be set once, either by decoding a
    propagated context or by a local sampling decision.
    """

    def __init__(
        self,
        trace_id: int,
        span_id: int,
        origin: str = "",
        baggage: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._trace_id = trace_id
        self._span_id = span_id
        self._origin = origin or ""
        self._baggage: Dict[str, str] = dict(baggage or {})
        self.logger = logger or logging.getLogger(__name__)
        self._sampling_priority: Optional[int] = None
        self._priority_lock = threading.Lock()
        self._distributed = False

    @property
    def trace_id(self) -> int:
        return self._trace_id

    @property
    def span_id(self) -> int:
        return self._span_id

    @property
    def origin(self) -> str:
        return self._origin

    @property
    def baggage(self) -> Dict[str, str]:
        """Copy of the baggage map."""
        return dict(self._baggage)

    def baggage_item(self, key: str) -> Optional[str]:
        return self._baggage.get(key)

    @property
    def distributed(self) -> bool:
        """True when this context was decoded from a propagated payload."""
        return self._distributed

    @property
    def sampling_priority(self) -> Optional[int]:
        with self._priority_lock:
            return self._sampling_priority

    def set_sampling_priority(self, priority: int) -> int:
        """
        Set the sampling priority unless one is already present.

        Returns:
            The priority in effect after the call (the first value set wins)
        """
        with self._priority_lock:
            if self._sampling_priority is None:
                self._sampling_priority = int(priority)
            return self._sampling_priority

    def with_span_id(self, span_id: int) -> "SpanContext":
        """Context for a local child span in the same trace."""
        child = SpanContext(
            trace_id=self._trace_id,
            span_id=span_id,
            origin=self._origin,
            baggage=self._baggage,
            logger=self.logger,
        )
        priority = self.sampling_priority
        if priority is not None:
            child.set_sampling_priority(priority)
        return child

    def to_dict(self) -> Dict[str, Any]:
        """Propagation document; the span id travels as ``parent_id``."""
        document: Dict[str, Any] = {
            "trace_id": format_id(self._trace_id),
            "parent_id": format_id(self._span_id),
        }
        if self._origin:
            document["origin"] = self._origin
        if self._baggage:
            document["baggage"] = dict(self._baggage)
        priority = self.sampling_priority
        if priority is not None:
            document["sampling_priority"] = priority
        return document

    def serialize(self, sink: TextIO) -> None:
        """Write the propagation document as JSON to a text stream."""
        json.dump(self.to_dict(), sink)

    @classmethod
    def from_dict(cls, logger: Optional[logging.Logger], document: Mapping[str, Any]) -> "SpanContext":
        """
        Build a distributed context from a decoded propagation document.

        Raises:
            MalformedContextError: if trace_id or parent_id is missing or invalid
        """
        if not isinstance(document, Mapping):
            raise MalformedContextError("span context must be a JSON object")
        for field in ("trace_id", "parent_id"):
            if field not in document:
                raise MalformedContextError(f"span context is missing {field}")
        try:
            trace_id = parse_id(document["trace_id"])
            span_id = parse_id(document["parent_id"])
        except ValueError as e:
            raise MalformedContextError(
                "span context has an invalid id",
                details={"error": str(e)},
            ) from e

        priority = None
        if document.get("sampling_priority") is not None:
            try:
                priority = parse_sampling_priority(document["sampling_priority"])
            except ValueError as e:
                raise MalformedContextError(
                    "span context has an invalid sampling_priority",
                    details={"error": str(e)},
                ) from e

        origin = document.get("origin") or ""
        baggage = document.get("baggage") or {}
        if not isinstance(origin, str) or not isinstance(baggage, Mapping):
            raise MalformedContextError("span context has an invalid origin or baggage")

        context = cls(
            trace_id=trace_id,
            span_id=span_id,
            origin=origin,
            baggage={str(k): str(v) for k, v in baggage.items()},
            logger=logger,
        )
        context._distributed = True
        if priority is not None:
            context.set_sampling_priority(priority)
        return context

    @classmethod
    def deserialize(cls, logger: Optional[logging.Logger], source: Union[TextIO, str]) -> "SpanContext":
        """
        Decode a JSON propagation document from a text stream or string.

        Raises:
            MalformedContextError: if the document is not valid JSON or lacks valid ids
        """
        if isinstance(source, str):
            source = io.StringIO(source)
        try:
            document = json.load(source)
        except json.JSONDecodeError as e:
            raise MalformedContextError("span context is not valid JSON", details={"error": str(e)}) from e
        return cls.from_dict(logger, document)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SpanContext):
            return NotImplemented
        return (
            self._trace_id == other._trace_id
            and self._span_id == other._span_id
            and self._origin == other._origin
            and self._baggage == other._baggage
            and self.sampling_priority == other.sampling_priority
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"SpanContext(trace_id={self._trace_id}, span_id={self._span_id}, "
            f"origin={self._origin!r}, sampling_priority={self.sampling_priority}, "
            f"distributed={self._distributed})"
        )
