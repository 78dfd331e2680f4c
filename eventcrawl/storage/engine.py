"""
Database engine factory.

Usage:
    from eventcrawl.storage.engine import create_db_engine

    # For one-shot worker invocations (NullPool, no pooling across runs)
    engine = create_db_engine(settings.DATABASE_URL, kind="job")

    # For the long-lived API / scheduler process
    engine = create_db_engine(settings.DATABASE_URL, kind="web")

Workers are short-lived; pooling does not help them and increases the risk
of stale connections behind a transaction-mode pooler. Before handing the
engine out, `warm_up` waits for a cold database with the same capped,
jittered backoff the fetchers use, so a database that is still starting
does not fail a worker run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import NullPool

from eventcrawl.errors import StorageError
from eventcrawl.runtime.resilience import RetryPolicy

from .tables import metadata

log = logging.getLogger(__name__)

# 4 attempts, 0.75s doubling, no single wait above 10s
WARMUP_POLICY = RetryPolicy(max_retries=3, base_delay_s=0.75, max_delay_s=10.0, jitter=0.1)


def warm_up(
    engine: Engine,
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Run `SELECT 1` until the database answers, backing off per `policy`.

    Returns the number of attempts it took.

    Raises:
        StorageError: If the database is still unreachable after the last retry
    """
    policy = policy or WARMUP_POLICY
    target = engine.url.render_as_string(hide_password=True)
    attempts = max(1, policy.max_retries + 1)

    for attempt in range(1, attempts + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as e:
            if attempt == attempts:
                log.error("Database %s unreachable after %d attempt(s)", target, attempt)
                raise StorageError(f"Database unreachable: {e}") from e
            delay = policy.compute_backoff_s(attempt)
            log.warning(
                "Database %s not ready (attempt %d/%d), retrying in %.2fs: %s",
                target, attempt, attempts, delay, str(e)[:100],
            )
            sleep(delay)
        else:
            log.info("Database %s ready after %d attempt(s)", target, attempt)
            return attempt
    return attempts


def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
    # Let SQLAlchemy emit BEGIN itself, see _sqlite_begin.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


def _sqlite_begin(conn) -> None:
    # Take the write lock up front so concurrent claims queue on busy_timeout
    # instead of failing on a stale read snapshot.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(
    database_url: str,
    *,
    kind: str = "job",
    warmup: bool = True,
    warmup_policy: Optional[RetryPolicy] = None,
) -> Engine:
    """
    Create an engine for `database_url`.

    Args:
        database_url: SQLAlchemy URL (postgresql://... or sqlite:///...)
        kind: "job" uses NullPool, "web" keeps a small QueuePool
        warmup: Wait for the database with `warm_up` before returning
        warmup_policy: Backoff for the warmup (defaults to WARMUP_POLICY)

    Raises:
        ValueError: If kind is not "job" or "web"
        StorageError: If the database cannot be reached after retries
    """
    if kind not in ("job", "web"):
        raise ValueError("kind must be 'job' or 'web'")

    options: Dict[str, Any] = {}
    is_sqlite = database_url.startswith("sqlite")

    if is_sqlite:
        options["connect_args"] = {"check_same_thread": False, "timeout": 30}
    elif kind == "job":
        options["poolclass"] = NullPool
    else:
        options.update(pool_size=5, max_overflow=5, pool_pre_ping=True, pool_recycle=300)

    engine = create_engine(database_url, **options)
    if is_sqlite:
        event.listen(engine, "connect", _sqlite_pragmas)
        event.listen(engine, "begin", _sqlite_begin)

    if warmup:
        warm_up(engine, warmup_policy)
    return engine


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    metadata.create_all(engine)
    log.info("Schema ready: %s", ", ".join(sorted(metadata.tables)))
