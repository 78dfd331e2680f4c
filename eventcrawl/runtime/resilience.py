"""
eventcrawl.runtime.resilience

Shared resilience utilities: retries, rate limiting.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .results import PageResult

TRANSIENT_STATUSES: tuple[int, ...] = (408, 429, *range(500, 600))


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_mode: str = "exp"  # exp | fixed | none
    base_delay_s: float = 1.0
    max_delay_s: float = 10.0
    jitter: float = 0.3
    retry_on_status: tuple[int, ...] = TRANSIENT_STATUSES

    def compute_backoff_s(self, attempt: int) -> float:
        """
        attempt: 1..N

        The returned delay never exceeds max_delay_s, jitter included.
        """
        if self.backoff_mode == "none":
            return 0.0
        if self.backoff_mode == "fixed":
            delay = self.base_delay_s
        else:
            delay = self.base_delay_s * (2 ** max(0, attempt - 1))

        delay = min(delay, self.max_delay_s)
        if self.jitter > 0:
            delay = delay * (1.0 + random.random() * self.jitter)
        return max(0.0, min(delay, self.max_delay_s))

    def should_retry_status(self, status_code: int | None) -> bool:
        """Only statuses listed in retry_on_status are retried."""
        return status_code is not None and status_code in self.retry_on_status

    def should_retry(self, result: "PageResult") -> bool:
        """Engine errors carry their own verdict; HTTP results follow the status list."""
        if result.error is not None:
            return result.error.is_retryable
        return self.should_retry_status(result.status_code)


class RateLimiter:
    """
    Pacing for one source during one run: a minimum delay plus jitter
    between consecutive fetches.

    Built per invocation and passed down; never shared across workers.
    """

    def __init__(self, *, min_delay_s: float | None = None, jitter_s: float | None = None) -> None:
        self.min_delay_s = min_delay_s or 0.0
        self.jitter_s = jitter_s or 0.0
        self._last_call_s: float = 0.0

    def wait(self) -> None:
        # First call of a run is never delayed
        if self._last_call_s:
            since_last = time.monotonic() - self._last_call_s
            target_delay = self.min_delay_s + (
                random.random() * self.jitter_s if self.jitter_s else 0.0
            )
            if target_delay > since_last:
                time.sleep(target_delay - since_last)
        self._last_call_s = time.monotonic()
