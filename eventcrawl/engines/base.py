"""
eventcrawl.engines.base

Fetcher interface + shared retry loop.

Goals:
- One page result shape across the static and render fetchers.
- Retry with capped exponential backoff on transient failures only.
- Pacing through a per-run RateLimiter handed in by the caller.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from eventcrawl.runtime.resilience import RateLimiter, RetryPolicy
from eventcrawl.runtime.results import EngineError, PageResult

logger = logging.getLogger(__name__)

Headers = dict[str, str]


@dataclass
class EngineContext:
    """
    Per-fetch context: source-specific headers and limits.
    Keep it small. If you need more, add fields deliberately.
    """

    timeout_s: float | None = None
    verify_ssl: bool = True
    user_agent: str | None = None
    proxy: str | None = None
    headers: Headers | None = None
    cookies: dict[str, str] | None = None


class BaseEngine(ABC):
    """
    Common interface for the static and render fetchers.

    Subclasses implement `_fetch_once`; `fetch_page` wraps it with pacing and
    retries so both variants behave identically under failure.
    """

    name: str = "base"

    def __init__(
        self,
        *,
        retry_policy: RetryPolicy | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self.limiter = limiter

    @abstractmethod
    def _fetch_once(self, url: str, ctx: EngineContext) -> PageResult:
        raise NotImplementedError

    def fetch_page(self, url: str, *, ctx: EngineContext | None = None) -> PageResult:
        """Fetch `url`, retrying transient failures up to `max_retries` times."""
        ctx = ctx or EngineContext()
        policy = self.retry_policy
        trace: list[dict[str, Any]] = []
        result: PageResult | None = None

        for attempt in range(0, policy.max_retries + 1):
            if self.limiter is not None:
                self.limiter.wait()

            result = self._fetch_once(url, ctx)
            result.fetcher_used = self.name
            result.attempts = attempt + 1
            result.trace = trace

            if result.ok:
                return result

            trace.append(
                {
                    "attempt": attempt,
                    "status": result.status_code,
                    "error": result.error.type if result.error else None,
                }
            )

            if attempt < policy.max_retries and policy.should_retry(result):
                delay = policy.compute_backoff_s(attempt + 1)
                logger.info(
                    "Retrying %s after %s (attempt %d/%d, sleep %.2fs)",
                    url,
                    result.short_error(),
                    attempt + 1,
                    policy.max_retries,
                    delay,
                )
                if delay > 0:
                    time.sleep(delay)
                continue

            return result

        return result or PageResult(
            final_url=url,
            fetcher_used=self.name,
            error=EngineError(type="FetchError", message="Exhausted retries"),
            trace=trace,
        )

    def close(self) -> None:
        """
        Allow engines to release resources (sessions, browser contexts).
        """
        return
