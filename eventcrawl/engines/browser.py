"""
eventcrawl.engines.browser

Playwright-based render fetcher for JavaScript-heavy pages.

Notes:
- This module uses optional dependency: playwright
- If playwright isn't installed, a clear ImportError is raised at runtime.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from eventcrawl.runtime.resilience import RateLimiter, RetryPolicy
from eventcrawl.runtime.results import EngineError, PageResult, classify_blocks

from .base import BaseEngine, EngineContext
from .http import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)


@dataclass
class BrowserEngineOptions:
    browser_name: str = "chromium"  # chromium | firefox | webkit
    headless: bool = True
    nav_timeout_s: float = 30.0
    settle_timeout_s: float = 10.0

    user_agent: str = DEFAULT_USER_AGENT
    viewport: dict[str, int] | None = field(
        default_factory=lambda: {"width": 1280, "height": 720}
    )
    locale: str = "nl-NL"
    timezone_id: str = "Europe/Amsterdam"

    # images and fonts are never needed for extraction
    block_resources: tuple[str, ...] = ("image", "media", "font")


class BrowserEngine(BaseEngine):
    """
    Sync render fetcher. The browser is started lazily on first fetch and
    reused for the rest of the invocation.
    """

    name = "render"

    def __init__(
        self,
        *,
        options: BrowserEngineOptions | None = None,
        retry_policy: RetryPolicy | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(retry_policy=retry_policy, limiter=limiter)
        self.options = options or BrowserEngineOptions()

        self._pw = None
        self._browser = None
        self._context = None

    # -------------------------
    # Lifecycle
    # -------------------------

    def _ensure_started(self) -> None:
        if self._browser is not None:
            return

        try:
            from playwright.sync_api import sync_playwright  # type: ignore
        except ImportError as e:
            raise ImportError(
                "Playwright is missing. Install it with: pip install -e '.[browser]'"
            ) from e

        try:
            self._pw = sync_playwright().start()
            browser_launcher = getattr(self._pw, self.options.browser_name)
            try:
                self._browser = browser_launcher.launch(headless=self.options.headless)
            except Exception as e:
                if "executable doesn't exist" in str(e) or "not installed" in str(e).lower():
                    raise RuntimeError(
                        f"Browser binaries for {self.options.browser_name} are missing. "
                        "Run: playwright install"
                    ) from e
                raise

            context_kwargs: dict[str, Any] = {
                "viewport": self.options.viewport,
                "locale": self.options.locale,
                "timezone_id": self.options.timezone_id,
                "user_agent": self.options.user_agent,
            }
            self._context = self._browser.new_context(**context_kwargs)
        except Exception:
            self.close()
            raise

    def close(self) -> None:
        try:
            if self._context is not None:
                self._context.close()
        finally:
            self._context = None

        try:
            if self._browser is not None:
                self._browser.close()
        finally:
            self._browser = None

        try:
            if self._pw is not None:
                self._pw.stop()
        finally:
            self._pw = None

    # -------------------------
    # Core API
    # -------------------------

    def _fetch_once(self, url: str, ctx: EngineContext) -> PageResult:
        nav_timeout_ms = float(ctx.timeout_s or self.options.nav_timeout_s) * 1000
        self._ensure_started()
        assert self._context is not None

        t0 = time.time()
        page = self._context.new_page()
        try:
            if ctx.headers:
                page.set_extra_http_headers(dict(ctx.headers))

            block_types = set(self.options.block_resources)
            if block_types:

                def _route_filter(route):
                    if route.request.resource_type in block_types:
                        return route.abort()
                    return route.continue_()

                page.route("**/*", _route_filter)

            resp = page.goto(url, wait_until="domcontentloaded", timeout=nav_timeout_ms)
            try:
                page.wait_for_load_state(
                    "networkidle", timeout=self.options.settle_timeout_s * 1000
                )
            except Exception as e:
                # Long-polling pages never go idle; the DOM is usable anyway.
                logger.debug("networkidle not reached for %s: %s", url, e)

            html = page.content()
            return PageResult(
                final_url=page.url,
                status_code=resp.status if resp is not None else None,
                html=html,
                headers=dict(resp.headers) if resp is not None else {},
                elapsed_ms=(time.time() - t0) * 1000,
                block_signals=classify_blocks(html),
            )
        except Exception as e:
            return PageResult(
                final_url=url,
                elapsed_ms=(time.time() - t0) * 1000,
                error=EngineError(type=type(e).__name__, message=str(e), is_retryable=True),
            )
        finally:
            page.close()
