"""Span implementation: tags, naming rules and exactly-once finish."""

from __future__ import annotations

import logging
import threading
import time
import traceback
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, NamedTuple, Optional

from tracekeeper import tags
from tracekeeper.processors.sampler import SamplingDecision
from tracekeeper.utils.helpers import audit_url
from tracekeeper.utils.values import to_analytics_metric, to_bool, to_string

if TYPE_CHECKING:
    from tracekeeper.tracer.span_buffer import SpanBuffer
    from tracekeeper.tracer.span_context import SpanContext


class TimePoint(NamedTuple):
    """Wall-clock time for reporting plus a monotonic instant for durations."""

    wall_ns: int
    monotonic_ns: int


def system_clock() -> TimePoint:
    return TimePoint(time.time_ns(), time.monotonic_ns())


Clock = Callable[[], TimePoint]


@dataclass(frozen=True)
class FinishedSpan:
    """Immutable record of a finished span, owned by its Trace."""

    span_id: int
    trace_id: int
    parent_id: int
    name: str
    service: str
    type: str
    resource: str
    start: int
    duration: int
    error: bool
    meta: Dict[str, str] = field(default_factory=dict)
    metrics: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Span:
    """
    One timed unit of work.

    The span owns its meta and metrics until finish(); the context and the
    buffer are shared with the rest of the trace.
    """

    def __init__(
        self,
        buffer: "SpanBuffer",
        span_id: int,
        trace_id: int,
        parent_id: int,
        context: "SpanContext",
        start: TimePoint,
        service: str = "",
        span_type: str = "",
        name: str = "",
        resource: str = "",
        operation_name_override: str = "",
        clock: Clock = system_clock,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Create a span and register it with the buffer.

        Args:
            buffer: SpanBuffer shared by the spans of this tracer
            span_id: Id of this span
            trace_id: Id of the trace the span belongs to
            parent_id: Id of the parent span, 0 for a root span
            context: Propagation context of this span
            start: Start time of the span
            service: Service name
            span_type: Span type
            name: Operation name
            resource: Resource (display name)
            operation_name_override: Name reported instead of the operation name;
                the operation name is then kept in the ``operation`` tag
            clock: Time source used at finish
            logger: Logger for span events (defaults to the module logger)
        """
        self._buffer = buffer
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.context = context
        self.span_id = span_id
        self.trace_id = trace_id
        self.parent_id = parent_id
        self.start = start

        self.service = service
        self.type = span_type
        self.name = name
        self.resource = resource
        self.operation_name_override = operation_name_override
        self._resource_tag: Optional[str] = None

        self.meta: Dict[str, str] = {}
        self.metrics: Dict[str, float] = {}
        self.error = False
        self.duration: Optional[int] = None

        self._sampling_decision: Optional[SamplingDecision] = None
        # Taken once by the winning finish() and never released.
        self._finish_gate = threading.Lock()
        self._finished = False
        self._activation_token = None

        buffer.register_span(trace_id, span_id, context.sampling_priority)

    @property
    def finished(self) -> bool:
        return self._finished

    def set_tag(self, key: str, value: Any) -> None:
        """
        Set a tag on the span.

        Reserved keys set span fields instead of meta; ``error`` sets the
        error flag and is also kept in meta. Colons in other keys become dots.
        """
        if self._finished:
            return

        if key == tags.SERVICE_NAME:
            self.service = to_string(value)
        elif key == tags.SPAN_TYPE:
            self.type = to_string(value)
        elif key == tags.RESOURCE_NAME:
            self._resource_tag = to_string(value)
        elif key == tags.OPERATION_NAME:
            self.name = to_string(value)
        elif key == tags.ANALYTICS_EVENT:
            metric = to_analytics_metric(value)
            if metric is None:
                self.metrics.pop(tags.ANALYTICS_METRIC, None)
            else:
                self.metrics[tags.ANALYTICS_METRIC] = metric
        elif key == tags.ERROR:
            self.error = to_bool(value)
            self.meta[tags.ERROR] = to_string(value)
        else:
            self.meta[key.replace(":", ".")] = to_string(value)

    def set_operation_name(self, name: str) -> None:
        """Rename the operation; the resource follows the new name."""
        if self._finished:
            return
        self.name = name
        self.resource = name

    def record_exception(self, error: BaseException) -> None:
        """Mark the span as failed and describe the exception in its tags."""
        self.set_tag(tags.ERROR, True)
        self.set_tag(tags.ERROR_TYPE, type(error).__name__)
        self.set_tag(tags.ERROR_MSG, str(error))
        self.set_tag(
            tags.ERROR_STACK,
            "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        )

    def ensure_sampling_priority(self) -> Optional[int]:
        """
        Make sure the trace has a sampling priority, deciding it if needed.

        A priority already on the context (propagated or assigned earlier) is
        reused as-is and the sampler is not consulted.
        """
        if self._sampling_decision is not None:
            return self._sampling_decision.priority

        priority = self.context.sampling_priority
        if priority is not None:
            return priority

        # Root spans, local contexts and contexts propagated without a
        # priority are all eligible for a decision. Rules match the reported name.
        reported_name = self.operation_name_override or self.name
        decision = self._buffer.assign_sampling_priority(self.trace_id, self.service, reported_name)
        if decision.priority is None:
            return None
        winner = self.context.set_sampling_priority(decision.priority)
        if decision.rule_rate is not None:
            self._sampling_decision = decision
        return winner

    def _resolve_name_and_resource(self, meta: Dict[str, str]):
        name = self.name
        resource = self.resource
        if self.operation_name_override:
            meta[tags.OPERATION_NAME] = name
            name = self.operation_name_override
        if self._resource_tag is not None:
            resource = self._resource_tag
        return name, resource

    def finish(self, finish_time: Optional[TimePoint] = None) -> None:
        """
        Finish the span and hand its record to the buffer.

        Only the first call has any effect, even when called concurrently
        from several threads; the others return without touching the span.
        """
        if not self._finish_gate.acquire(blocking=False):
            return

        end = finish_time or self._clock()
        self.duration = end.monotonic_ns - self.start.monotonic_ns
        self._finished = True

        meta = dict(self.meta)
        metrics = dict(self.metrics)
        name, resource = self._resolve_name_and_resource(meta)

        if tags.HTTP_URL in meta:
            meta[tags.HTTP_URL] = audit_url(meta[tags.HTTP_URL])
        if self.context.origin:
            meta[tags.ORIGIN] = self.context.origin

        priority = self.ensure_sampling_priority()
        if priority is not None:
            metrics[tags.SAMPLING_PRIORITY_METRIC] = float(priority)
            decision = self._sampling_decision
            if decision is not None:
                metrics[tags.RULE_RATE_METRIC] = decision.rule_rate
                if decision.limiter_rate is not None:
                    metrics[tags.LIMITER_RATE_METRIC] = decision.limiter_rate
        else:
            self.logger.debug(f"Span {self.span_id} of trace {self.trace_id} finished without a sampling priority")

        record = FinishedSpan(
            span_id=self.span_id,
            trace_id=self.trace_id,
            parent_id=self.parent_id,
            name=name,
            service=self.service,
            type=self.type,
            resource=resource,
            start=self.start.wall_ns,
            duration=self.duration,
            error=self.error,
            meta=meta,
            metrics=metrics,
        )
        self._buffer.finish_span(record)

    finish_with_options = finish

    # Context manager support
    def __enter__(self) -> "Span":
        """Activate the span for the current context."""
        from tracekeeper.context.context import push_span

        self._activation_token = push_span(self)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        """Finish the span, recording any escaping exception."""
        try:
            if exc:
                self.record_exception(exc)
            self.finish()
        finally:
            if self._activation_token:
                from tracekeeper.context.context import pop_span

                pop_span(self._activation_token)
                self._activation_token = None
        return False

    def __repr__(self) -> str:
        return (
            f"Span(name={self.name!r}, trace_id={self.trace_id}, span_id={self.span_id}, "
            f"parent_id={self.parent_id}, finished={self._finished})"
        )
