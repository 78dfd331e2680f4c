"""
eventcrawl.runtime.results

Unified page result shared by the static and render fetchers, plus the
block-page classifier both of them run on every response.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

_VOLATILE_ATTR_RE = re.compile(
    r"""(name|id|value|content)=["'][^"']*(csrf|token|nonce)[^"']*["']""",
    re.IGNORECASE,
)
_VOLATILE_VALUE_RE = re.compile(
    r"""((?:csrf|token|nonce)[\w-]*["']?\s*[:=]\s*["'])[^"']*(["'])""",
    re.IGNORECASE,
)
_TIMESTAMP_RE = re.compile(r"\b\d{13,}\b")
_WS_RE = re.compile(r"\s+")


class BlockSignal(str, Enum):
    OK = "ok"
    LIKELY_BLOCKED = "likely_blocked"
    LOGIN_REQUIRED = "login_required"
    CAPTCHA_PRESENT = "captcha_present"


# Checked in order; a page can carry more than one signal.
_BLOCK_PATTERNS = (
    (BlockSignal.CAPTCHA_PRESENT, re.compile(r"\b(captcha|verify you are human|cf-challenge)\b")),
    (BlockSignal.LIKELY_BLOCKED, re.compile(r"\b(access denied|toegang geweigerd|unusual traffic)\b")),
    (BlockSignal.LOGIN_REQUIRED, re.compile(r"\b(login required|please log in|log in om verder te gaan)\b")),
)

# Interstitials are short. Above this size a match is more likely an agenda
# item or footer text than a block page.
MAX_BLOCK_PAGE_CHARS = 20_000


def classify_blocks(html: str | None) -> list[BlockSignal]:
    """Block signals found in a fetched page body."""
    if not html or len(html) > MAX_BLOCK_PAGE_CHARS:
        return []
    lowered = html.lower()
    return [signal for signal, pattern in _BLOCK_PATTERNS if pattern.search(lowered)]


@dataclass(frozen=True)
class EngineError:
    type: str
    message: str
    is_retryable: bool = False


def compute_content_hash(html: str) -> str:
    """
    Hash page HTML with volatile fragments removed.

    Anti-forgery tokens, nonces and millisecond timestamps change on every
    request; they are stripped so an unchanged page hashes the same.
    """
    normalized = _VOLATILE_ATTR_RE.sub("", html or "")
    normalized = _VOLATILE_VALUE_RE.sub(r"\1\2", normalized)
    normalized = _TIMESTAMP_RE.sub("", normalized)
    normalized = _WS_RE.sub(" ", normalized).strip()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass
class PageResult:
    final_url: str
    status_code: Optional[int] = None
    html: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    elapsed_ms: float = 0.0
    fetcher_used: str = "static"
    attempts: int = 1

    error: Optional[EngineError] = None
    block_signals: list[BlockSignal] = field(default_factory=list)
    trace: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code is not None and 200 <= self.status_code < 400

    @property
    def content_hash(self) -> str:
        return compute_content_hash(self.html)

    def short_error(self) -> str:
        if self.ok:
            return ""
        if self.error:
            return f"{self.error.type}: {self.error.message}"
        if self.status_code:
            return f"HTTP {self.status_code}"
        return "Unknown Error"
