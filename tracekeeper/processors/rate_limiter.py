"""Rate limiting for rule-based sampling decisions."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter used by the rules sampler.

    Features:
    - Token bucket algorithm for smooth rate limiting
    - Never blocks: a trace without a token is dropped immediately
    - Effective rate over the current and previous one-second windows
    - Thread-safe implementation
    """

    def __init__(
        self,
        max_per_second: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            max_per_second: Maximum allowed decisions per second (None = unlimited)
            clock: Monotonic time source in seconds
        """
        self.max_per_second = max_per_second
        self.enabled = max_per_second is not None and max_per_second > 0
        self._clock = clock

        # Token bucket state
        self._tokens: float = max_per_second or 0
        self._max_tokens: float = max_per_second or 0
        self._last_refill_time: float = clock()
        self._lock = threading.Lock()

        # Window stats for effective_rate
        self._window_start = self._last_refill_time
        self._window_total = 0
        self._window_allowed = 0
        self._previous_rate: Optional[float] = None

    def allow(self) -> bool:
        """
        Try to take a token.

        Returns True if the caller may keep the trace, False if it should be dropped.
        """
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            self._window_total += 1

            if not self.enabled:
                self._window_allowed += 1
                return True

            self._refill_tokens(now)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                self._window_allowed += 1
                return True

            logger.debug(
                f"Rate limit exceeded - {self._window_total - self._window_allowed} "
                f"of {self._window_total} decisions dropped in current window"
            )
            return False

    @property
    def effective_rate(self) -> float:
        """Fraction of decisions allowed, averaged with the previous window."""
        with self._lock:
            self._roll_window(self._clock())
            if self._window_total == 0:
                current = 1.0
            else:
                current = self._window_allowed / self._window_total
            if self._previous_rate is None:
                return current
            return (current + self._previous_rate) / 2

    def _refill_tokens(self, now: float) -> None:
        """Refill tokens based on elapsed time (token bucket algorithm)."""
        elapsed = now - self._last_refill_time

        if elapsed > 0:
            new_tokens = elapsed * self.max_per_second
            self._tokens = min(self._max_tokens, self._tokens + new_tokens)
            self._last_refill_time = now

    def _roll_window(self, now: float) -> None:
        elapsed = now - self._window_start
        if elapsed < 1.0:
            return
        if elapsed < 2.0 and self._window_total > 0:
            self._previous_rate = self._window_allowed / self._window_total
        else:
            # Previous window saw no traffic.
            self._previous_rate = None
        self._window_start = now
        self._window_total = 0
        self._window_allowed = 0
