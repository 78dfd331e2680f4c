"""
eventcrawl.errors

Exception hierarchy. Only StorageError is fatal for a batch; everything
else is caught per record and reported in the handler summary.
"""

from __future__ import annotations


class EventCrawlError(Exception):
    """Base class for pipeline errors."""


class StorageError(EventCrawlError):
    """The persistent store could not be reached or rejected a statement."""


class InvalidTransitionError(EventCrawlError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid status transition {current!r} -> {target!r}")
        self.current = current
        self.target = target


class ClaimError(EventCrawlError):
    """A row was not (or no longer) claimed by the calling worker."""


class FetchError(EventCrawlError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ScoutError(EventCrawlError):
    """Recipe generation failed for a source."""


class ExtractionError(EventCrawlError):
    """No usable event data could be extracted."""
