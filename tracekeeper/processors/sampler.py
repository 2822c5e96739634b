"""Sampling decisions for traces."""

from __future__ import annotations

import fnmatch
import logging
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterable, List, Optional

from tracekeeper.processors.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Knuth multiplicative hashing constant, keeps decisions consistent per trace id.
KNUTH_FACTOR = 1111111111111111111
MAX_TRACE_ID = 2 ** 64


class SamplingPriority(IntEnum):
    USER_DROP = -1
    SAMPLER_DROP = 0
    SAMPLER_KEEP = 1
    USER_KEEP = 2


@dataclass(frozen=True)
class SamplingDecision:
    priority: Optional[int]
    rule_rate: Optional[float] = None
    limiter_rate: Optional[float] = None


def _check_rate(rate: float) -> float:
    if not 0.0 <= rate <= 1.0:
        raise ValueError("sample_rate must be between 0.0 and 1.0")
    return rate


def sampled_by_rate(trace_id: int, rate: float) -> bool:
    """Deterministic keep/drop for a trace id at the given rate."""
    if rate >= 1.0:
        return True
    if rate <= 0.0:
        return False
    return (trace_id * KNUTH_FACTOR) % MAX_TRACE_ID <= rate * MAX_TRACE_ID


class Sampler:
    """Interface consumed by the span buffer when a trace needs a priority."""

    def decide(self, service: str, name: str, trace_id: int) -> SamplingDecision:
        raise NotImplementedError


class PrioritySampler(Sampler):
    """Per-service rate sampler producing SAMPLER_KEEP / SAMPLER_DROP."""

    def __init__(self, default_rate: float = 1.0, rates: Optional[Dict[str, float]] = None) -> None:
        self.default_rate = _check_rate(default_rate)
        self._rates: Dict[str, float] = {}
        self._lock = threading.Lock()
        if rates:
            self.update_rates(rates)

    def set_rate(self, service: str, rate: float) -> None:
        with self._lock:
            self._rates[service] = _check_rate(rate)

    def update_rates(self, rates: Dict[str, float]) -> None:
        """Replace all per-service rates, e.g. with rates reported by an agent."""
        checked = {service: _check_rate(rate) for service, rate in rates.items()}
        with self._lock:
            self._rates = checked

    def rate_for(self, service: str) -> float:
        with self._lock:
            return self._rates.get(service, self.default_rate)

    def decide(self, service: str, name: str, trace_id: int) -> SamplingDecision:
        if sampled_by_rate(trace_id, self.rate_for(service)):
            return SamplingDecision(SamplingPriority.SAMPLER_KEEP)
        return SamplingDecision(SamplingPriority.SAMPLER_DROP)


@dataclass(frozen=True)
class SamplingRule:
    """Matches spans by service and operation name glob; None matches anything."""

    sample_rate: float
    service: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        _check_rate(self.sample_rate)

    def matches(self, service: str, name: str) -> bool:
        if self.service is not None and not fnmatch.fnmatchcase(service, self.service):
            return False
        if self.name is not None and not fnmatch.fnmatchcase(name, self.name):
            return False
        return True


class RulesSampler(Sampler):
    """
    Rule-based sampler with a rate limiter.

    The first matching rule decides; kept traces must also pass the limiter.
    Spans matching no rule fall back to the priority sampler.
    """

    def __init__(
        self,
        rules: Iterable[SamplingRule],
        rate_limit: Optional[float] = 100.0,
        fallback: Optional[PrioritySampler] = None,
        limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.rules: List[SamplingRule] = list(rules)
        self.limiter = limiter or RateLimiter(max_per_second=rate_limit)
        self.fallback = fallback or PrioritySampler()

    def match(self, service: str, name: str) -> Optional[SamplingRule]:
        for rule in self.rules:
            if rule.matches(service, name):
                return rule
        return None

    def decide(self, service: str, name: str, trace_id: int) -> SamplingDecision:
        rule = self.match(service, name)
        if rule is None:
            return self.fallback.decide(service, name, trace_id)

        if not sampled_by_rate(trace_id, rule.sample_rate):
            return SamplingDecision(
                SamplingPriority.USER_DROP,
                rule_rate=rule.sample_rate,
                limiter_rate=self.limiter.effective_rate,
            )

        allowed = self.limiter.allow()
        priority = SamplingPriority.USER_KEEP if allowed else SamplingPriority.USER_DROP
        logger.debug(f"Rule matched service={service!r} name={name!r}: priority={int(priority)}")
        return SamplingDecision(
            priority,
            rule_rate=rule.sample_rate,
            limiter_rate=self.limiter.effective_rate,
        )
