"""
eventcrawl.ingestion.context

Everything one worker invocation needs, built once and passed down the
call chain. Nothing here is shared between invocations: each gets its own
fetchers, rate limiters and worker id.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from eventcrawl.configs.settings import Settings
from eventcrawl.engines.base import BaseEngine, EngineContext
from eventcrawl.engines.browser import BrowserEngine, BrowserEngineOptions
from eventcrawl.engines.failover import FailoverFetcher, FailoverState
from eventcrawl.engines.http import HttpEngine, HttpEngineOptions
from eventcrawl.normalization.llm_client import BaseLLMClient, NullLLMClient, create_llm_client
from eventcrawl.runtime.resilience import RateLimiter
from eventcrawl.schemas.source import Source
from eventcrawl.storage.repository import PipelineStore

logger = logging.getLogger(__name__)

EngineFactory = Callable[..., BaseEngine]


def _default_static(**kwargs: Any) -> BaseEngine:
    return HttpEngine(**kwargs)


def _default_render(**kwargs: Any) -> BaseEngine:
    return BrowserEngine(**kwargs)


def new_worker_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass
class BatchSummary:
    """Handler response: per-record outcomes inside a success body."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)

    def ok(self, **result: Any) -> None:
        self.processed += 1
        self.succeeded += 1
        self.results.append({"success": True, **result})

    def error(self, error: str, **result: Any) -> None:
        self.processed += 1
        self.failed += 1
        self.results.append({"success": False, "error": error, **result})

    def skip(self, reason: str, **result: Any) -> None:
        """Record an input that was not processed (e.g. already claimed)."""
        self.results.append({"success": False, "skipped": reason, **result})

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": self.results,
        }


@dataclass
class PipelineContext:
    settings: Settings
    store: PipelineStore
    worker_id: str = field(default_factory=lambda: new_worker_id("worker"))
    llm: Optional[BaseLLMClient] = None
    static_factory: EngineFactory = _default_static
    render_factory: EngineFactory = _default_render

    def __post_init__(self) -> None:
        if self.llm is None:
            api_key = self.settings.llm_api_key()
            self.llm = (
                create_llm_client(
                    provider=self.settings.LLM_PROVIDER,
                    model_name=self.settings.LLM_MODEL,
                    api_key=api_key,
                    temperature=self.settings.LLM_TEMPERATURE,
                )
                if api_key
                else NullLLMClient()
            )

    def rate_limiter_for(self, source: Source) -> RateLimiter:
        delay = source.config.pacing_delay_s
        if delay is None:
            delay = self.settings.PACING_DELAY_S
        return RateLimiter(min_delay_s=delay, jitter_s=delay * 0.25 if delay else None)

    def engine_context_for(self, source: Source) -> EngineContext:
        return EngineContext(
            timeout_s=self.settings.FETCH_TIMEOUT_S,
            headers=dict(source.config.headers) or None,
        )

    def fetcher_for(self, source: Source, limiter: Optional[RateLimiter] = None) -> FailoverFetcher:
        """
        A failover fetcher bound to `source`. Strategy changes are written
        back to the source row so later invocations start from them.
        """
        limiter = limiter or self.rate_limiter_for(source)
        policy = self.settings.retry_policy()

        def persist(state: FailoverState) -> None:
            if source.id is not None:
                self.store.sources.update_fetcher_state(
                    source.id, state.strategy, state.consecutive_failures
                )

        return FailoverFetcher(
            static=self.static_factory(
                options=HttpEngineOptions(timeout_s=self.settings.FETCH_TIMEOUT_S),
                retry_policy=policy,
                limiter=limiter,
            ),
            render_factory=lambda: self.render_factory(
                options=BrowserEngineOptions(nav_timeout_s=self.settings.RENDER_TIMEOUT_S),
                retry_policy=policy,
                limiter=limiter,
            ),
            state=FailoverState(
                strategy=str(source.fetcher_strategy),
                consecutive_failures=source.consecutive_failures,
            ),
            threshold=self.settings.FAILOVER_THRESHOLD,
            on_change=persist,
        )

    def fetch_text_for(self, fetcher: FailoverFetcher, source: Source) -> Callable[[str], Optional[str]]:
        """Adapter used by the feed tier to follow an advertised feed link."""
        ctx = self.engine_context_for(source)

        def fetch_text(url: str) -> Optional[str]:
            result = fetcher.fetch_page(url, ctx=ctx)
            return result.html if result.ok else None

        return fetch_text
