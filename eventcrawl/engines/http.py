"""Requests-based static fetcher.

Features:
- session reuse + connection pooling
- browser-like default headers
- redirect tracking via final URL
- block page classification
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import requests

from eventcrawl.runtime.resilience import RateLimiter, RetryPolicy
from eventcrawl.runtime.results import EngineError, PageResult, classify_blocks

from .base import BaseEngine, EngineContext, Headers

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS: Headers = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "nl-NL,nl;q=0.9,en;q=0.8",
}


@dataclass
class HttpEngineOptions:
    """Configuration options for the static fetcher."""

    timeout_s: float = 15.0
    verify_ssl: bool = True
    user_agent: str = DEFAULT_USER_AGENT

    # pool
    pool_connections: int = 10
    pool_maxsize: int = 20


class HttpEngine(BaseEngine):
    """Static fetcher using the requests library."""

    name = "static"

    def __init__(
        self,
        *,
        options: HttpEngineOptions | None = None,
        retry_policy: RetryPolicy | None = None,
        limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(retry_policy=retry_policy, limiter=limiter)
        self.options = options or HttpEngineOptions()
        self._session = session or requests.Session()

        if session is None:
            adapter = requests.adapters.HTTPAdapter(
                pool_connections=self.options.pool_connections,
                pool_maxsize=self.options.pool_maxsize,
            )
            self._session.mount("http://", adapter)
            self._session.mount("https://", adapter)

    def close(self) -> None:
        self._session.close()

    def _build_headers(self, ctx: EngineContext) -> Headers:
        headers: Headers = {"User-Agent": ctx.user_agent or self.options.user_agent}
        headers.update(DEFAULT_HEADERS)
        if ctx.headers:
            headers.update({str(k): str(v) for k, v in ctx.headers.items()})
        return headers

    def _fetch_once(self, url: str, ctx: EngineContext) -> PageResult:
        timeout_s = float(ctx.timeout_s or self.options.timeout_s)
        proxies: dict[str, str] | None = None
        if ctx.proxy:
            proxies = {"http": ctx.proxy, "https": ctx.proxy}

        t0 = time.time()
        try:
            resp = self._session.get(
                url,
                timeout=timeout_s,
                verify=ctx.verify_ssl and self.options.verify_ssl,
                headers=self._build_headers(ctx),
                cookies=ctx.cookies or None,
                proxies=proxies,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            return PageResult(
                final_url=url,
                elapsed_ms=(time.time() - t0) * 1000,
                error=EngineError(type=type(e).__name__, message=str(e), is_retryable=True),
            )

        resp.encoding = resp.encoding or "utf-8"
        text = resp.text or ""
        return PageResult(
            final_url=str(resp.url),
            status_code=int(resp.status_code),
            html=text,
            headers={str(k): str(v) for k, v in resp.headers.items()},
            elapsed_ms=(time.time() - t0) * 1000,
            block_signals=classify_blocks(text),
        )
