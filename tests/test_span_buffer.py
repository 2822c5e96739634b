"""Tests for trace aggregation, completion and the sampling decision point."""

import threading
from concurrent.futures import ThreadPoolExecutor

from tests.conftest import BadDecisionSampler, FailingSampler, MockRulesSampler
from tracekeeper.errors import ExportError
from tracekeeper.exporter import InMemoryExporter, TraceExporter
from tracekeeper.processors.sampler import SamplingPriority
from tracekeeper.tracer import FinishedSpan, SpanBuffer


def record(trace_id, span_id, parent_id=0):
    return FinishedSpan(
        span_id=span_id,
        trace_id=trace_id,
        parent_id=parent_id,
        name="op",
        service="svc",
        type="",
        resource="op",
        start=0,
        duration=1,
        error=False,
    )


class BrokenExporter(TraceExporter):
    def export(self, traces):
        raise ExportError("agent unreachable")


class TestRegistration:
    def test_first_span_creates_trace(self):
        buffer = SpanBuffer()
        buffer.register_span(1, 10)
        buffer.register_span(1, 11)
        buffer.register_span(2, 20)

        traces = buffer.traces()
        assert set(traces) == {1, 2}
        assert traces[1].all_spans == {10, 11}
        assert traces[1].sampling_priority is None

    def test_propagated_priority_seeds_trace(self):
        buffer = SpanBuffer()
        buffer.register_span(1, 10, sampling_priority=-1)
        buffer.register_span(1, 11, sampling_priority=2)

        assert buffer.get_sampling_priority(1) == -1

    def test_concurrent_registration(self):
        buffer = SpanBuffer()

        def register(i):
            buffer.register_span(i % 5, i)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(register, range(500)))

        traces = buffer.traces()
        assert sum(len(t.all_spans) for t in traces.values()) == 500

    def test_registration_after_pop_starts_new_trace(self):
        buffer = SpanBuffer()
        buffer.register_span(1, 10)
        buffer.finish_span(record(1, 10))
        (popped,) = buffer.pop_completed_traces()

        buffer.register_span(1, 11)

        assert popped.closed
        assert popped.all_spans == {10}
        assert buffer.traces()[1] is not popped
        assert buffer.traces()[1].all_spans == {11}

    def test_registration_racing_pop_skips_popped_trace(self, monkeypatch):
        buffer = SpanBuffer()
        buffer.register_span(1, 10)
        buffer.finish_span(record(1, 10))
        (popped,) = buffer.pop_completed_traces()

        # Hand out the already popped trace once, as a lookup made just before
        # the pop would have.
        lookup = buffer._get_or_create_trace
        stale = [popped]
        monkeypatch.setattr(buffer, "_get_or_create_trace", lambda trace_id: stale.pop() if stale else lookup(trace_id))

        buffer.register_span(1, 11)

        assert popped.all_spans == {10}
        assert buffer.traces()[1].all_spans == {11}

    def test_concurrent_pops_lose_no_spans(self):
        buffer = SpanBuffer()
        popped = []
        done = threading.Event()

        def drain():
            while not done.is_set():
                popped.extend(buffer.pop_completed_traces())

        def run_span(i):
            buffer.register_span(i % 3, i)
            buffer.finish_span(record(i % 3, i))

        drainer = threading.Thread(target=drain)
        drainer.start()
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(run_span, range(600)))
        done.set()
        drainer.join()
        popped.extend(buffer.pop_completed_traces())

        span_ids = sorted(s.span_id for t in popped for s in t.finished_spans)
        assert span_ids == list(range(600))
        assert all(t.is_complete for t in popped)


class TestCompletion:
    def test_trace_completes_when_all_spans_finish(self):
        buffer = SpanBuffer()
        buffer.register_span(1, 10)
        buffer.register_span(1, 11)
        buffer.finish_span(record(1, 11, parent_id=10))

        assert not buffer.traces()[1].is_complete
        assert buffer.pop_completed_traces() == []

        buffer.finish_span(record(1, 10))
        completed = buffer.pop_completed_traces()
        assert [t.trace_id for t in completed] == [1]
        assert [s.span_id for s in completed[0].finished_spans] == [11, 10]

    def test_completed_trace_is_retrieved_once(self):
        buffer = SpanBuffer()
        buffer.register_span(1, 10)
        buffer.finish_span(record(1, 10))

        assert len(buffer.pop_completed_traces()) == 1
        assert buffer.pop_completed_traces() == []
        assert buffer.traces() == {}

    def test_trace_reopened_before_flush_waits(self):
        buffer = SpanBuffer()
        buffer.register_span(1, 10)
        buffer.finish_span(record(1, 10))
        buffer.register_span(1, 11)

        assert buffer.pop_completed_traces() == []

        buffer.finish_span(record(1, 11, parent_id=10))
        completed = buffer.pop_completed_traces()
        assert len(completed) == 1
        assert len(completed[0].finished_spans) == 2
        assert buffer.pop_completed_traces() == []

    def test_unregistered_span_is_still_stored(self):
        buffer = SpanBuffer()
        buffer.finish_span(record(3, 30))

        assert len(buffer.pop_completed_traces()) == 1

    def test_concurrent_finish_within_one_trace(self):
        buffer = SpanBuffer()
        span_ids = list(range(1, 201))
        for span_id in span_ids:
            buffer.register_span(7, span_id)

        barrier = threading.Barrier(8)

        def finish_all(chunk):
            barrier.wait()
            for span_id in chunk:
                buffer.finish_span(record(7, span_id))

        chunks = [span_ids[i::8] for i in range(8)]
        threads = [threading.Thread(target=finish_all, args=(chunk,)) for chunk in chunks]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        completed = buffer.pop_completed_traces()
        assert len(completed) == 1
        assert sorted(s.span_id for s in completed[0].finished_spans) == span_ids


class TestSamplingAssignment:
    def test_first_caller_wins(self):
        sampler = MockRulesSampler(SamplingPriority.USER_KEEP, rule_rate=0.3, limiter_rate=0.9)
        buffer = SpanBuffer(sampler=sampler)
        buffer.register_span(1, 10)

        first = buffer.assign_sampling_priority(1, "svc", "op")
        second = buffer.assign_sampling_priority(1, "svc", "op")

        assert first.priority == SamplingPriority.USER_KEEP
        assert first.rule_rate == 0.3
        assert second.priority == SamplingPriority.USER_KEEP
        assert second.rule_rate is None
        assert sampler.calls == 1
        trace = buffer.traces()[1]
        assert (trace.rule_rate, trace.limiter_rate) == (0.3, 0.9)

    def test_racing_assignments_call_sampler_once(self):
        sampler = MockRulesSampler(SamplingPriority.SAMPLER_KEEP)
        buffer = SpanBuffer(sampler=sampler)
        buffer.register_span(1, 10)
        barrier = threading.Barrier(10)
        results = []

        def assign():
            barrier.wait()
            results.append(buffer.assign_sampling_priority(1, "svc", "op").priority)

        threads = [threading.Thread(target=assign) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sampler.calls == 1
        assert results == [SamplingPriority.SAMPLER_KEEP] * 10

    def test_existing_priority_skips_sampler(self):
        sampler = MockRulesSampler()
        buffer = SpanBuffer(sampler=sampler)
        buffer.register_span(1, 10, sampling_priority=0)

        assert buffer.assign_sampling_priority(1, "svc", "op").priority == 0
        assert sampler.calls == 0

    def test_failing_sampler_assigns_nothing(self):
        buffer = SpanBuffer(sampler=FailingSampler())
        buffer.register_span(1, 10)

        assert buffer.assign_sampling_priority(1, "svc", "op").priority is None
        assert buffer.get_sampling_priority(1) is None

    def test_unusable_decision_assigns_nothing(self):
        buffer = SpanBuffer(sampler=BadDecisionSampler((SamplingPriority.USER_KEEP, 0.5, 1.0)))
        buffer.register_span(1, 10)

        assert buffer.assign_sampling_priority(1, "svc", "op").priority is None
        assert buffer.get_sampling_priority(1) is None


class TestFlush:
    def test_flush_hands_traces_to_exporter(self):
        exporter = InMemoryExporter()
        buffer = SpanBuffer(exporter=exporter)
        buffer.register_span(1, 10)
        buffer.register_span(2, 20)
        buffer.finish_span(record(1, 10))

        assert buffer.flush() == 1
        assert [t.trace_id for t in exporter.traces] == [1]
        assert buffer.flush() == 0

    def test_export_failure_is_not_raised(self):
        buffer = SpanBuffer(exporter=BrokenExporter())
        buffer.register_span(1, 10)
        buffer.finish_span(record(1, 10))

        assert buffer.flush() == 1
        assert buffer.traces() == {}
