"""Samplers, rate limiting and trace flushing."""

from tracekeeper.processors.rate_limiter import RateLimiter
from tracekeeper.processors.sampler import (
    PrioritySampler,
    RulesSampler,
    Sampler,
    SamplingDecision,
    SamplingPriority,
    SamplingRule,
)
from tracekeeper.processors.batch_processor import BatchTraceProcessor

__all__ = [
    "BatchTraceProcessor",
    "PrioritySampler",
    "RateLimiter",
    "RulesSampler",
    "Sampler",
    "SamplingDecision",
    "SamplingPriority",
    "SamplingRule",
]
