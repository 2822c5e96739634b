"""Shared fixtures: a controllable clock, fake samplers and a span factory."""

import calendar
import logging

import pytest

from tracekeeper.processors.sampler import Sampler, SamplingDecision, SamplingPriority
from tracekeeper.tracer import Span, SpanBuffer, SpanContext, TimePoint


class MockClock:
    """Clock starting at 2007-03-12 00:00:00 UTC that only moves when told to."""

    def __init__(self):
        self.wall_ns = calendar.timegm((2007, 3, 12, 0, 0, 0)) * 10**9
        self.monotonic_ns = 0

    def __call__(self) -> TimePoint:
        return TimePoint(self.wall_ns, self.monotonic_ns)

    def advance(self, seconds: float) -> None:
        delta = int(seconds * 10**9)
        self.wall_ns += delta
        self.monotonic_ns += delta


class MockRulesSampler(Sampler):
    """Sampler returning a fixed decision and counting calls."""

    def __init__(self, priority=SamplingPriority.SAMPLER_KEEP, rule_rate=None, limiter_rate=None):
        self.priority = priority
        self.rule_rate = rule_rate
        self.limiter_rate = limiter_rate
        self.calls = 0

    def decide(self, service, name, trace_id):
        self.calls += 1
        return SamplingDecision(self.priority, self.rule_rate, self.limiter_rate)


class FailingSampler(Sampler):
    def decide(self, service, name, trace_id):
        raise RuntimeError("sampler is broken")


class BadDecisionSampler(Sampler):
    """Sampler returning whatever it was given instead of a SamplingDecision."""

    def __init__(self, result):
        self.result = result

    def decide(self, service, name, trace_id):
        return self.result


@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def buffer():
    return SpanBuffer()


@pytest.fixture
def logger():
    return logging.getLogger("tracekeeper.tests")


@pytest.fixture
def make_span(buffer, clock, logger):
    """Factory building spans the way the tracer would, with explicit ids."""

    def _make(
        span_id=100,
        trace_id=None,
        parent_id=0,
        context=None,
        service="",
        span_type="",
        name="",
        resource="",
        operation_name_override="",
        span_buffer=None,
    ):
        trace_id = span_id if trace_id is None else trace_id
        if context is None:
            context = SpanContext(trace_id, span_id, logger=logger)
        return Span(
            buffer=span_buffer or buffer,
            span_id=span_id,
            trace_id=trace_id,
            parent_id=parent_id,
            context=context,
            start=clock(),
            service=service,
            span_type=span_type,
            name=name,
            resource=resource,
            operation_name_override=operation_name_override,
            clock=clock,
            logger=logger,
        )

    return _make
