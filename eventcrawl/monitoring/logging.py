"""Structured logging for pipeline workers.

Features:
- console handler on stderr (stdout stays clean for CLI JSON output)
- optional file handler (LOG_FILE)
- JSON logs optional (easy ingestion)
- worker/source/record/stage context on every line of a worker run
"""

from __future__ import annotations

import json
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# (record attribute, short label used by the text formatter)
CONTEXT_FIELDS = (
    ("worker_id", "worker"),
    ("stage", "stage"),
    ("source_id", "source"),
    ("record_id", "record"),
)


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: getattr(record, key)
        for key, _ in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": round(time.time(), 3),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context_of(record),
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            line["payload"] = payload
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """`12:00:01 INFO eventcrawl.ingestion.scout [worker=scout-1a2b source=3] message`"""

    def format(self, record: logging.LogRecord) -> str:
        ctx = _context_of(record)
        labels = dict(CONTEXT_FIELDS)
        parts = [self.formatTime(record, "%H:%M:%S"), record.levelname, record.name]
        if ctx:
            parts.append("[" + " ".join(f"{labels[k]}={v}" for k, v in ctx.items()) + "]")
        parts.append(record.getMessage())

        text = " ".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


@dataclass(frozen=True)
class LoggingOptions:
    """Configure logging behavior for a process."""

    level: str = "INFO"
    json_logs: bool = False
    log_file: Path | None = None
    enable_console: bool = True


def setup_logging(options: LoggingOptions | None = None) -> logging.Logger:
    """Configure the `eventcrawl` logger tree. Safe to call repeatedly."""
    options = options or LoggingOptions()
    logger = logging.getLogger("eventcrawl")
    logger.setLevel(getattr(logging, options.level.upper(), logging.INFO))
    logger.propagate = False

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    fmt = JsonFormatter() if options.json_logs else TextFormatter()
    handlers: list[logging.Handler] = []
    if options.enable_console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if options.log_file is not None:
        options.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(options.log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(logger.level)
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


class ContextAdapter(logging.LoggerAdapter):
    """Merge bound context into each record's `extra`."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **fields: Any) -> "ContextAdapter":
        """Return a new adapter with extra context fields (None values are skipped)."""
        merged = dict(self.extra)
        merged.update({k: v for k, v in fields.items() if v is not None})
        return ContextAdapter(self.logger, merged)


def with_context(
    logger: logging.Logger,
    *,
    worker_id: str | None = None,
    stage: str | None = None,
    source_id: int | None = None,
    record_id: int | None = None,
) -> ContextAdapter:
    """Adapter that tags every line with the worker run it belongs to."""
    return ContextAdapter(logger, {}).bind(
        worker_id=worker_id, stage=stage, source_id=source_id, record_id=record_id
    )
