"""
eventcrawl.engines.failover

Per-source static -> render escalation.

The static fetcher is tried first. Consecutive failures are counted per
source; once the count reaches the threshold the source is switched to the
render fetcher and the decision is handed to `on_change` so it can be
persisted on the source row. Workers are stateless, so the store is the
only place the decision survives between invocations.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from eventcrawl.runtime.results import PageResult

from .base import BaseEngine, EngineContext

logger = logging.getLogger(__name__)

STATIC = "static"
RENDER = "render"

# Client errors that say something about the URL, not about the fetcher.
_URL_ERRORS = (400, 404, 405, 410)


@dataclass
class FailoverState:
    strategy: str = STATIC
    consecutive_failures: int = 0


def is_fetch_failure(result: PageResult) -> bool:
    """True when the result should count against the fetcher strategy."""
    if result.ok:
        return bool(result.block_signals)
    if result.status_code in _URL_ERRORS:
        return False
    return True


class FailoverFetcher:
    """Fetch through the source's current strategy, escalating on failure."""

    def __init__(
        self,
        *,
        static: BaseEngine,
        render_factory: Callable[[], BaseEngine],
        state: FailoverState | None = None,
        threshold: int = 3,
        on_change: Callable[[FailoverState], None] | None = None,
    ) -> None:
        self.static = static
        self._render_factory = render_factory
        self._render: BaseEngine | None = None
        self.state = state or FailoverState()
        self.threshold = threshold
        self.on_change = on_change

    @property
    def render(self) -> BaseEngine:
        if self._render is None:
            self._render = self._render_factory()
        return self._render

    @property
    def has_failed_over(self) -> bool:
        return self.state.strategy == RENDER

    def fetch_page(self, url: str, *, ctx: EngineContext | None = None) -> PageResult:
        before = FailoverState(self.state.strategy, self.state.consecutive_failures)

        if self.has_failed_over:
            result = self.render.fetch_page(url, ctx=ctx)
            self._record(result)
        else:
            result = self.static.fetch_page(url, ctx=ctx)
            self._record(result)
            if self.state.consecutive_failures >= self.threshold:
                logger.warning(
                    "Escalating %s to render fetcher after %d consecutive failures",
                    url,
                    self.state.consecutive_failures,
                )
                self.state.strategy = RENDER
                self.state.consecutive_failures = 0
                result = self.render.fetch_page(url, ctx=ctx)
                self._record(result)

        if self.on_change is not None and self.state != before:
            self.on_change(self.state)
        return result

    def _record(self, result: PageResult) -> None:
        if is_fetch_failure(result):
            self.state.consecutive_failures += 1
        elif result.ok:
            self.state.consecutive_failures = 0

    def close(self) -> None:
        self.static.close()
        if self._render is not None:
            self._render.close()
