"""Aggregation of finished spans into traces, and the sampling decision point."""

from __future__ import annotations

import logging
import threading
from collections import deque
from contextlib import contextmanager
from typing import TYPE_CHECKING, Deque, Dict, Iterator, List, Optional, Set

from tracekeeper.processors.sampler import PrioritySampler, Sampler, SamplingDecision

if TYPE_CHECKING:
    from tracekeeper.exporter import TraceExporter
    from tracekeeper.tracer.span import FinishedSpan


class Trace:
    """
    Bookkeeping for one trace id.

    All mutable state is guarded by ``lock``; the sampling priority is set at
    most once.
    """

    def __init__(self, trace_id: int) -> None:
        self.trace_id = trace_id
        self.all_spans: Set[int] = set()
        self.finished_spans: List["FinishedSpan"] = []
        self.sampling_priority: Optional[int] = None
        self.rule_rate: Optional[float] = None
        self.limiter_rate: Optional[float] = None
        self.lock = threading.Lock()
        # Set once the trace has been popped from its buffer.
        self.closed = False

    @property
    def is_complete(self) -> bool:
        return len(self.finished_spans) == len(self.all_spans)

    def __repr__(self) -> str:
        return (
            f"Trace(trace_id={self.trace_id}, spans={len(self.all_spans)}, "
            f"finished={len(self.finished_spans)}, sampling_priority={self.sampling_priority})"
        )


class SpanBuffer:
    """
    Registry of in-flight traces shared by every span of a tracer.

    The registry lock only guards the trace_id -> Trace mapping; each Trace
    has its own lock so unrelated traces never wait on each other.
    """

    def __init__(
        self,
        sampler: Optional[Sampler] = None,
        exporter: Optional["TraceExporter"] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Initialize the buffer.

        Args:
            sampler: Decides priorities for traces that arrive without one
            exporter: Receives completed traces on flush()
            logger: Logger for buffer events (defaults to the module logger)
        """
        self.sampler = sampler or PrioritySampler()
        self.exporter = exporter
        self.logger = logger or logging.getLogger(__name__)
        self._traces: Dict[int, Trace] = {}
        self._completed: Deque[int] = deque()
        self._lock = threading.Lock()

    def _get_or_create_trace(self, trace_id: int) -> Trace:
        with self._lock:
            trace = self._traces.get(trace_id)
            if trace is None:
                trace = Trace(trace_id)
                self._traces[trace_id] = trace
            return trace

    @contextmanager
    def _locked_trace(self, trace_id: int) -> Iterator[Trace]:
        """Hold the lock of the registered Trace for trace_id, creating it if needed."""
        while True:
            trace = self._get_or_create_trace(trace_id)
            with trace.lock:
                # Popped between lookup and lock; the registry already holds a fresh one.
                if trace.closed:
                    continue
                yield trace
                return

    def register_span(self, trace_id: int, span_id: int, sampling_priority: Optional[int] = None) -> None:
        """
        Record that a span of the trace exists and must finish before flush.

        A propagated sampling priority seeds the trace's priority slot.
        """
        with self._locked_trace(trace_id) as trace:
            trace.all_spans.add(span_id)
            if sampling_priority is not None and trace.sampling_priority is None:
                trace.sampling_priority = int(sampling_priority)

    def finish_span(self, record: "FinishedSpan") -> None:
        """Store a finished-span record; queue the trace once all its spans are done."""
        with self._locked_trace(record.trace_id) as trace:
            if record.span_id not in trace.all_spans:
                self.logger.warning(
                    f"Finished span {record.span_id} was never registered in trace {record.trace_id}"
                )
                trace.all_spans.add(record.span_id)
            trace.finished_spans.append(record)
            complete = trace.is_complete

        if complete:
            with self._lock:
                self._completed.append(record.trace_id)

    def get_sampling_priority(self, trace_id: int) -> Optional[int]:
        with self._lock:
            trace = self._traces.get(trace_id)
        if trace is None:
            return None
        with trace.lock:
            return trace.sampling_priority

    def assign_sampling_priority(self, trace_id: int, service: str, name: str) -> SamplingDecision:
        """
        Return the trace's sampling priority, asking the sampler if none is set.

        Only the first caller for a trace consults the sampler; later callers
        get the stored priority without rule/limiter rates. A failing sampler,
        or one returning an unusable decision, leaves the priority unset.
        """
        with self._locked_trace(trace_id) as trace:
            if trace.sampling_priority is not None:
                return SamplingDecision(trace.sampling_priority)

            try:
                decision = self.sampler.decide(service, name, trace_id)
                if decision is None or decision.priority is None:
                    return SamplingDecision(None)
                decision = SamplingDecision(
                    int(decision.priority),
                    None if decision.rule_rate is None else float(decision.rule_rate),
                    None if decision.limiter_rate is None else float(decision.limiter_rate),
                )
            except Exception:
                self.logger.exception(f"Sampler failed for trace {trace_id}; no priority assigned")
                return SamplingDecision(None)

            trace.sampling_priority = decision.priority
            trace.rule_rate = decision.rule_rate
            trace.limiter_rate = decision.limiter_rate
            self.logger.debug(
                f"Trace {trace_id} assigned sampling priority {trace.sampling_priority} "
                f"(service={service!r}, name={name!r})"
            )
            return decision

    def traces(self) -> Dict[int, Trace]:
        """Snapshot of the traces currently held by the buffer."""
        with self._lock:
            return dict(self._traces)

    def pop_completed_traces(self) -> List[Trace]:
        """
        Remove and return every complete trace.

        Each completed trace is handed out exactly once. A trace that gained a
        new span after completing stays in the buffer until it completes again.
        """
        popped: List[Trace] = []
        with self._lock:
            while self._completed:
                trace_id = self._completed.popleft()
                trace = self._traces.get(trace_id)
                if trace is None:
                    continue
                with trace.lock:
                    if not trace.is_complete:
                        continue
                    trace.closed = True
                    del self._traces[trace_id]
                popped.append(trace)
        return popped

    def flush(self) -> int:
        """
        Hand completed traces to the exporter.

        Returns:
            Number of traces handed off
        """
        traces = self.pop_completed_traces()
        if not traces or self.exporter is None:
            return len(traces)
        try:
            self.exporter.export(traces)
        except Exception:
            # Export errors are logged; flushing never raises into callers.
            self.logger.exception(f"Failed to export {len(traces)} traces")
        return len(traces)
