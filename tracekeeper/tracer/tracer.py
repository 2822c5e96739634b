"""Tracer: creates spans, links them into traces and propagates contexts."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from opentelemetry.propagators.textmap import Getter, Setter, default_getter, default_setter
from opentelemetry.sdk.trace.id_generator import IdGenerator, RandomIdGenerator

from tracekeeper import tags as tag_names
from tracekeeper.context import propagators
from tracekeeper.context.context import get_current_span
from tracekeeper.processors.sampler import Sampler
from tracekeeper.tracer.span import Clock, Span, TimePoint, system_clock
from tracekeeper.tracer.span_buffer import SpanBuffer
from tracekeeper.tracer.span_context import SpanContext


class Tracer:
    """
    Creates spans that share one SpanBuffer.

    Span ids come from OpenTelemetry's RandomIdGenerator (64-bit, non-zero);
    a root span's trace id is a fresh 64-bit id as well.
    """

    def __init__(
        self,
        service: str,
        buffer: Optional[SpanBuffer] = None,
        sampler: Optional[Sampler] = None,
        clock: Clock = system_clock,
        id_generator: Optional[IdGenerator] = None,
        env: str = "",
        version: str = "",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Initialize tracer.

        Args:
            service: Default service name of spans
            buffer: SpanBuffer to register spans with (a new one if omitted)
            sampler: Sampler for a newly created buffer; ignored when buffer is given
            clock: Time source for span start and finish
            id_generator: OpenTelemetry IdGenerator used for span and trace ids
            env: Environment tag added to every span
            version: Version tag added to every span
            logger: Logger handed to spans and contexts
        """
        self.service = service
        self.logger = logger or logging.getLogger(__name__)
        self.buffer = buffer or SpanBuffer(sampler=sampler, logger=self.logger)
        self._clock = clock
        self._id_generator = id_generator or RandomIdGenerator()
        self.env = env
        self.version = version

    def _new_id(self) -> int:
        return self._id_generator.generate_span_id()

    def start_span(
        self,
        operation_name: str,
        child_of: Optional[Union[Span, SpanContext]] = None,
        tags: Optional[Dict[str, Any]] = None,
        start_time: Optional[TimePoint] = None,
        service: Optional[str] = None,
        span_type: str = "",
        resource: Optional[str] = None,
        operation_name_override: str = "",
        ignore_active_span: bool = False,
    ) -> Span:
        """
        Start a new span.

        Args:
            operation_name: Operation name of the span
            child_of: Parent span or span context (defaults to the active span)
            tags: Tags set on the span right after creation
            start_time: Explicit start time
            service: Service name (defaults to the tracer's)
            span_type: Span type
            resource: Resource name (defaults to the operation name)
            operation_name_override: Name reported instead of operation_name
            ignore_active_span: Start a new trace even if a span is active

        Returns:
            The started Span
        """
        parent = child_of.context if isinstance(child_of, Span) else child_of
        if parent is None and not ignore_active_span:
            active = get_current_span()
            if active is not None:
                parent = active.context

        span_id = self._new_id()
        if parent is None:
            trace_id = self._new_id()
            parent_id = 0
            context = SpanContext(trace_id, span_id, logger=self.logger)
        else:
            trace_id = parent.trace_id
            parent_id = parent.span_id
            context = parent.with_span_id(span_id)

        span = Span(
            buffer=self.buffer,
            span_id=span_id,
            trace_id=trace_id,
            parent_id=parent_id,
            context=context,
            start=start_time or self._clock(),
            service=service or self.service,
            span_type=span_type,
            name=operation_name,
            resource=resource if resource is not None else operation_name,
            operation_name_override=operation_name_override,
            clock=self._clock,
            logger=self.logger,
        )
        if self.env:
            span.set_tag(tag_names.ENVIRONMENT, self.env)
        if self.version:
            span.set_tag(tag_names.VERSION, self.version)
        for key, value in (tags or {}).items():
            span.set_tag(key, value)
        return span

    def start_active_span(self, operation_name: str, **kwargs: Any) -> Span:
        """
        Start a span meant to be used as a context manager.

        ``with tracer.start_active_span("op") as span:`` makes the span current
        for the block and finishes it on exit.
        """
        return self.start_span(operation_name, **kwargs)

    def active_span(self) -> Optional[Span]:
        return get_current_span()

    def inject(
        self,
        span_or_context: Union[Span, SpanContext],
        carrier: Any,
        setter: Setter = default_setter,
    ) -> None:
        """
        Inject propagation headers into carrier.

        When given a Span, the trace's sampling priority is decided first so the
        downstream service receives it.
        """
        if isinstance(span_or_context, Span):
            span_or_context.ensure_sampling_priority()
            context = span_or_context.context
        else:
            context = span_or_context
        propagators.inject(context, carrier, setter)

    def extract(self, carrier: Any, getter: Getter = default_getter) -> Optional[SpanContext]:
        """
        Extract a propagated context from carrier headers.

        Raises:
            MalformedContextError: if the headers are present but invalid
        """
        return propagators.extract(carrier, getter, logger=self.logger)

    def flush(self) -> int:
        return self.buffer.flush()
