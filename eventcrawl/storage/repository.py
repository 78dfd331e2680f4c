"""
eventcrawl.storage.repository

Persistence for sources, staging rows, canonical events and scrape jobs.

Claiming
--------
Every claim is a compare-and-swap: candidate ids are selected (with
``FOR UPDATE SKIP LOCKED`` on PostgreSQL) and each one is taken with
``UPDATE ... WHERE id = :id AND <still eligible>``. Only an update that
touched exactly one row counts as won, so two workers can never hold the
same row, whatever the backend.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, case, func, insert, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.sql.elements import ColumnElement

from eventcrawl.errors import ClaimError, StorageError
from eventcrawl.schemas.event import CanonicalEvent
from eventcrawl.schemas.source import ExtractionRecipe, ScoutStatus, Source
from eventcrawl.schemas.staging import (
    PROCESSING_STATES,
    JobStatus,
    ScrapeJob,
    StagingRecord,
    StagingStatus,
    allowed_sources,
)

from .tables import events, scrape_jobs, sources, staging_events, utcnow

logger = logging.getLogger(__name__)

RECOVERED_MESSAGE = "Auto-recovered from stale processing state"


@contextmanager
def _guard(action: str) -> Iterator[None]:
    """Turn connectivity failures into StorageError."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error("Storage failure during %s: %s", action, e)
        raise StorageError(f"{action} failed: {e}") from e


class _TableStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._skip_locked = engine.dialect.name == "postgresql"

    def _insert_if_absent(self, conn: Connection, table, values: dict, key: str) -> Optional[int]:
        """Insert a row unless `key` already exists. Returns the new id or None."""
        dialect = self.engine.dialect.name
        if dialect in ("postgresql", "sqlite"):
            ins = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = (
                ins(table)
                .values(**values)
                .on_conflict_do_nothing(index_elements=[key])
                .returning(table.c.id)
            )
            return conn.execute(stmt).scalar_one_or_none()

        try:
            with conn.begin_nested():
                res = conn.execute(insert(table).values(**values))
            return res.inserted_primary_key[0]
        except IntegrityError:
            return None

    def _claim_rows(
        self,
        table,
        *,
        eligible: ColumnElement,
        order_by: Sequence[Any],
        limit: int,
        values: dict[str, Any],
    ) -> list[int]:
        won: list[int] = []
        tried: list[int] = []
        with _guard(f"claim on {table.name}"), self.engine.begin() as conn:
            while len(won) < limit:
                stmt = select(table.c.id).where(eligible)
                if tried:
                    stmt = stmt.where(table.c.id.notin_(tried))
                stmt = stmt.order_by(*order_by).limit((limit - len(won)) * 4)
                if self._skip_locked:
                    stmt = stmt.with_for_update(skip_locked=True)

                candidate_ids = list(conn.execute(stmt).scalars())
                if not candidate_ids:
                    break

                for row_id in candidate_ids:
                    tried.append(row_id)
                    res = conn.execute(
                        update(table).where(table.c.id == row_id, eligible).values(**values)
                    )
                    if res.rowcount == 1:
                        won.append(row_id)
                        if len(won) >= limit:
                            break
        return won

    def _status_counts(self, column) -> dict[str, int]:
        with _guard("status counts"), self.engine.connect() as conn:
            rows = conn.execute(select(column, func.count()).group_by(column)).all()
        return {str(status): int(n) for status, n in rows}


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


def _source_from_row(row) -> Source:
    return Source.model_validate(dict(row._mapping))


class SourceStore(_TableStore):
    def add(self, source: Source) -> Source:
        values = source.model_dump(mode="json", exclude={"id", "scout_claimed_at", "last_scraped_at"})
        with _guard("add source"), self.engine.begin() as conn:
            new_id = conn.execute(insert(sources).values(**values)).inserted_primary_key[0]
        return self.get(new_id)

    def get(self, source_id: int) -> Source:
        with _guard("get source"), self.engine.connect() as conn:
            row = conn.execute(select(sources).where(sources.c.id == source_id)).first()
        if row is None:
            raise KeyError(f"Unknown source {source_id}")
        return _source_from_row(row)

    def list(self, *, enabled_only: bool = False) -> list[Source]:
        stmt = select(sources).order_by(sources.c.id)
        if enabled_only:
            stmt = stmt.where(sources.c.enabled.is_(True))
        with _guard("list sources"), self.engine.connect() as conn:
            return [_source_from_row(r) for r in conn.execute(stmt)]

    @staticmethod
    def _scout_eligible(max_attempts: int):
        return and_(
            sources.c.enabled.is_(True),
            sources.c.scout_status.in_(
                [ScoutStatus.PENDING_SCOUT.value, ScoutStatus.NEEDS_RE_SCOUT.value]
            ),
            sources.c.scout_attempts < max_attempts,
        )

    def claim_for_scouting(self, worker_id: str, *, limit: int, max_attempts: int) -> list[Source]:
        """Claim up to `limit` sources for scouting, re-scout requests first."""
        eligible = self._scout_eligible(max_attempts)
        priority = case(
            (sources.c.scout_status == ScoutStatus.NEEDS_RE_SCOUT.value, 0), else_=1
        )
        ids = self._claim_rows(
            sources,
            eligible=eligible,
            order_by=[priority, sources.c.id],
            limit=limit,
            values={
                "scout_status": ScoutStatus.SCOUTING.value,
                "scout_claimed_by": worker_id,
                "scout_claimed_at": utcnow(),
            },
        )
        return [self.get(i) for i in ids]

    def claim_one_for_scouting(self, source_id: int, worker_id: str, *, max_attempts: int) -> Optional[Source]:
        """Claim one named source, under the same eligibility rules as a batch claim."""
        with _guard("claim source"), self.engine.begin() as conn:
            res = conn.execute(
                update(sources)
                .where(sources.c.id == source_id, self._scout_eligible(max_attempts))
                .values(
                    scout_status=ScoutStatus.SCOUTING.value,
                    scout_claimed_by=worker_id,
                    scout_claimed_at=utcnow(),
                )
            )
        return self.get(source_id) if res.rowcount == 1 else None

    def activate_recipe(
        self,
        source_id: int,
        recipe: ExtractionRecipe,
        *,
        fetcher_strategy: Optional[str] = None,
    ) -> None:
        values: dict[str, Any] = {
            "recipe": recipe.model_dump(mode="json"),
            "scout_status": ScoutStatus.SCOUTED.value,
            "scout_attempts": 0,
            "scout_claimed_by": None,
            "scout_claimed_at": None,
            "consecutive_empty_runs": 0,
            "last_error": None,
        }
        if fetcher_strategy:
            values["fetcher_strategy"] = fetcher_strategy
        with _guard("activate recipe"), self.engine.begin() as conn:
            conn.execute(update(sources).where(sources.c.id == source_id).values(**values))

    def fail_scout(self, source_id: int, error: str) -> None:
        with _guard("fail scout"), self.engine.begin() as conn:
            conn.execute(
                update(sources)
                .where(sources.c.id == source_id)
                .values(
                    scout_status=ScoutStatus.PENDING_SCOUT.value,
                    scout_attempts=sources.c.scout_attempts + 1,
                    scout_claimed_by=None,
                    scout_claimed_at=None,
                    last_error=error[:2000],
                )
            )

    def request_rescout(self, source_id: int) -> None:
        """Queue a source for a fresh recipe and reset its scout budget."""
        with _guard("request rescout"), self.engine.begin() as conn:
            conn.execute(
                update(sources)
                .where(sources.c.id == source_id)
                .values(
                    scout_status=ScoutStatus.NEEDS_RE_SCOUT.value,
                    scout_attempts=0,
                    consecutive_empty_runs=0,
                )
            )

    def update_fetcher_state(self, source_id: int, strategy: str, consecutive_failures: int) -> None:
        with _guard("update fetcher state"), self.engine.begin() as conn:
            conn.execute(
                update(sources)
                .where(sources.c.id == source_id)
                .values(fetcher_strategy=strategy, consecutive_failures=consecutive_failures)
            )

    def record_scrape_outcome(
        self,
        source_id: int,
        *,
        status_code: Optional[int],
        cards_found: int,
        threshold: int,
        error: Optional[str] = None,
    ) -> bool:
        """
        Track empty runs for a source. Returns True when this run pushed the
        source to `needs_re_scout`. Only HTTP 200 responses count.
        """
        with _guard("record scrape outcome"), self.engine.begin() as conn:
            values: dict[str, Any] = {"last_scraped_at": utcnow(), "last_error": error}
            if status_code != 200:
                conn.execute(update(sources).where(sources.c.id == source_id).values(**values))
                return False

            if cards_found > 0:
                values["consecutive_empty_runs"] = 0
                conn.execute(update(sources).where(sources.c.id == source_id).values(**values))
                return False

            conn.execute(
                update(sources)
                .where(sources.c.id == source_id)
                .values(consecutive_empty_runs=sources.c.consecutive_empty_runs + 1, **values)
            )
            res = conn.execute(
                update(sources)
                .where(
                    sources.c.id == source_id,
                    sources.c.consecutive_empty_runs >= threshold,
                    sources.c.scout_status == ScoutStatus.SCOUTED.value,
                )
                .values(scout_status=ScoutStatus.NEEDS_RE_SCOUT.value, consecutive_empty_runs=0)
            )
            return res.rowcount == 1

    def reset_stale_scouting(self, cutoff: datetime) -> int:
        with _guard("reset stale scouting"), self.engine.begin() as conn:
            res = conn.execute(
                update(sources)
                .where(
                    sources.c.scout_status == ScoutStatus.SCOUTING.value,
                    or_(sources.c.scout_claimed_at.is_(None), sources.c.scout_claimed_at < cutoff),
                )
                .values(
                    scout_status=ScoutStatus.PENDING_SCOUT.value,
                    scout_claimed_by=None,
                    scout_claimed_at=None,
                    last_error=RECOVERED_MESSAGE,
                )
            )
        return res.rowcount

    def status_counts(self) -> dict[str, int]:
        return self._status_counts(sources.c.scout_status)


# ---------------------------------------------------------------------------
# Staging
# ---------------------------------------------------------------------------


def _staging_from_row(row) -> StagingRecord:
    return StagingRecord.model_validate(dict(row._mapping))


class StagingStore(_TableStore):
    def stage(self, record: StagingRecord) -> Optional[int]:
        """Insert a staging row unless its source URL is already staged."""
        values = record.model_dump(
            mode="json",
            exclude={"id", "claimed_at", "created_at", "updated_at", "event_id"},
        )
        values["status"] = StagingStatus.PENDING.value
        with _guard("stage record"), self.engine.begin() as conn:
            return self._insert_if_absent(conn, staging_events, values, "source_url")

    def get(self, record_id: int) -> StagingRecord:
        with _guard("get staging record"), self.engine.connect() as conn:
            row = conn.execute(select(staging_events).where(staging_events.c.id == record_id)).first()
        if row is None:
            raise KeyError(f"Unknown staging record {record_id}")
        return _staging_from_row(row)

    def list(self, *, status: Optional[str] = None, source_id: Optional[int] = None) -> list[StagingRecord]:
        stmt = select(staging_events).order_by(staging_events.c.id)
        if status:
            stmt = stmt.where(staging_events.c.status == status)
        if source_id is not None:
            stmt = stmt.where(staging_events.c.source_id == source_id)
        with _guard("list staging"), self.engine.connect() as conn:
            return [_staging_from_row(r) for r in conn.execute(stmt)]

    # -- enrichment ---------------------------------------------------------

    def _enrichment_eligible(self, max_attempts: int) -> ColumnElement:
        return and_(
            staging_events.c.status == StagingStatus.PENDING.value,
            staging_events.c.claimed_by.is_(None),
            staging_events.c.attempt_count < max_attempts,
        )

    def _claim_values(self, worker_id: str) -> dict[str, Any]:
        return {
            "status": StagingStatus.CLAIMED.value,
            "claimed_by": worker_id,
            "claimed_at": utcnow(),
            "attempt_count": staging_events.c.attempt_count + 1,
        }

    def claim_for_enrichment(self, worker_id: str, *, limit: int, max_attempts: int) -> list[StagingRecord]:
        ids = self._claim_rows(
            staging_events,
            eligible=self._enrichment_eligible(max_attempts),
            order_by=[staging_events.c.created_at, staging_events.c.id],
            limit=limit,
            values=self._claim_values(worker_id),
        )
        return [self.get(i) for i in ids]

    def claim_by_id(self, record_id: int, worker_id: str, *, max_attempts: int) -> Optional[StagingRecord]:
        """Claim one specific row, e.g. from a change notification."""
        with _guard("claim staging record"), self.engine.begin() as conn:
            res = conn.execute(
                update(staging_events)
                .where(staging_events.c.id == record_id, self._enrichment_eligible(max_attempts))
                .values(**self._claim_values(worker_id))
            )
        return self.get(record_id) if res.rowcount == 1 else None

    def _transition(
        self,
        record_id: int,
        worker_id: str,
        target: StagingStatus,
        values: dict[str, Any],
    ) -> None:
        """Owner-checked transition into `target` from any allowed state."""
        with _guard(f"transition to {target.value}"), self.engine.begin() as conn:
            res = conn.execute(
                update(staging_events)
                .where(
                    staging_events.c.id == record_id,
                    staging_events.c.claimed_by == worker_id,
                    staging_events.c.status.in_(allowed_sources(target)),
                )
                .values(status=target.value, **values)
            )
        if res.rowcount != 1:
            raise ClaimError(
                f"Staging record {record_id} is not claimed by {worker_id} "
                f"in a state that may move to {target.value}"
            )

    def mark_awaiting_enrichment(self, record_id: int, worker_id: str, *, detail_html: Optional[str]) -> None:
        self._transition(
            record_id,
            worker_id,
            StagingStatus.AWAITING_ENRICHMENT,
            {"detail_html": detail_html},
        )

    def complete_enrichment(
        self,
        record_id: int,
        worker_id: str,
        *,
        normalized: dict[str, Any],
        parsing_method: Optional[str],
        confidence: str,
        title: Optional[str] = None,
    ) -> None:
        values: dict[str, Any] = {
            "normalized": normalized,
            "parsing_method": parsing_method,
            "confidence": confidence,
            "claimed_by": None,
            "claimed_at": None,
            "last_error": None,
        }
        if title:
            values["title"] = title
        self._transition(record_id, worker_id, StagingStatus.READY_TO_INDEX, values)

    def fail_enrichment(self, record_id: int, worker_id: str, *, error: str, max_attempts: int) -> str:
        """Release a claimed row back to pending, or fail it when out of attempts."""
        record = self.get(record_id)
        target = (
            StagingStatus.FAILED
            if record.attempt_count >= max_attempts
            else StagingStatus.PENDING
        )
        self._transition(
            record_id,
            worker_id,
            target,
            {"claimed_by": None, "claimed_at": None, "last_error": error[:2000]},
        )
        return target.value

    # -- indexing -----------------------------------------------------------

    def claim_for_indexing(self, worker_id: str, *, limit: int) -> list[StagingRecord]:
        eligible = and_(
            staging_events.c.status == StagingStatus.READY_TO_INDEX.value,
            staging_events.c.claimed_by.is_(None),
        )
        ids = self._claim_rows(
            staging_events,
            eligible=eligible,
            order_by=[staging_events.c.updated_at, staging_events.c.id],
            limit=limit,
            values={"claimed_by": worker_id, "claimed_at": utcnow()},
        )
        return [self.get(i) for i in ids]

    def complete_indexing(self, record_id: int, worker_id: str, *, event_id: Optional[int]) -> None:
        self._transition(
            record_id,
            worker_id,
            StagingStatus.INDEXED,
            {"event_id": event_id, "claimed_by": None, "claimed_at": None},
        )

    def fail_indexing(
        self,
        record_id: int,
        worker_id: str,
        *,
        error: str,
        max_attempts: int,
        terminal: bool = False,
    ) -> str:
        """
        Release an indexing claim; terminal errors or spent budgets fail the row.

        Indexing attempts are counted in `index_attempts`, apart from the
        enrichment attempts that got the row to ready_to_index.
        """
        record = self.get(record_id)
        if terminal or record.index_attempts + 1 >= max_attempts:
            self._transition(
                record_id,
                worker_id,
                StagingStatus.FAILED,
                {"claimed_by": None, "claimed_at": None, "last_error": error[:2000]},
            )
            return StagingStatus.FAILED.value

        with _guard("release indexing claim"), self.engine.begin() as conn:
            conn.execute(
                update(staging_events)
                .where(staging_events.c.id == record_id, staging_events.c.claimed_by == worker_id)
                .values(
                    claimed_by=None,
                    claimed_at=None,
                    index_attempts=staging_events.c.index_attempts + 1,
                    last_error=error[:2000],
                )
            )
        return StagingStatus.READY_TO_INDEX.value

    # -- recovery -----------------------------------------------------------

    def reset_stale(self, cutoff: datetime, *, max_attempts: int) -> dict[str, int]:
        """Reset rows whose claim is older than `cutoff`."""
        processing = [s.value for s in PROCESSING_STATES]
        stale = and_(
            staging_events.c.status.in_(processing),
            or_(staging_events.c.claimed_at.is_(None), staging_events.c.claimed_at < cutoff),
        )
        cleared = {"claimed_by": None, "claimed_at": None, "last_error": RECOVERED_MESSAGE}
        with _guard("reset stale staging"), self.engine.begin() as conn:
            failed = conn.execute(
                update(staging_events)
                .where(stale, staging_events.c.attempt_count >= max_attempts)
                .values(status=StagingStatus.FAILED.value, **cleared)
            ).rowcount
            reset = conn.execute(
                update(staging_events)
                .where(stale)
                .values(status=StagingStatus.PENDING.value, **cleared)
            ).rowcount
            released = conn.execute(
                update(staging_events)
                .where(
                    staging_events.c.status == StagingStatus.READY_TO_INDEX.value,
                    staging_events.c.claimed_by.is_not(None),
                    staging_events.c.claimed_at < cutoff,
                )
                .values(**cleared)
            ).rowcount
        return {"reset": reset, "failed": failed, "released": released}

    def status_counts(self) -> dict[str, int]:
        return self._status_counts(staging_events.c.status)

    def stuck_count(self, cutoff: datetime) -> int:
        with _guard("stuck count"), self.engine.connect() as conn:
            return int(
                conn.execute(
                    select(func.count())
                    .select_from(staging_events)
                    .where(
                        staging_events.c.claimed_by.is_not(None),
                        staging_events.c.claimed_at < cutoff,
                    )
                ).scalar_one()
            )


# ---------------------------------------------------------------------------
# Canonical events
# ---------------------------------------------------------------------------


def _event_from_row(row) -> CanonicalEvent:
    return CanonicalEvent.model_validate(dict(row._mapping))


def _event_values(event: CanonicalEvent) -> dict[str, Any]:
    values = event.model_dump(exclude={"id"})
    values["starts_at"] = event.starts_at
    values["created_at"] = values["created_at"].replace(tzinfo=None)
    values["updated_at"] = utcnow()
    return values


class EventStore(_TableStore):
    def get(self, event_id: int) -> CanonicalEvent:
        with _guard("get event"), self.engine.connect() as conn:
            row = conn.execute(select(events).where(events.c.id == event_id)).first()
        if row is None:
            raise KeyError(f"Unknown event {event_id}")
        return _event_from_row(row)

    def find_by_source_url(self, source_url: str) -> Optional[CanonicalEvent]:
        with _guard("find event by url"), self.engine.connect() as conn:
            row = conn.execute(select(events).where(events.c.source_url == source_url)).first()
        return _event_from_row(row) if row else None

    def find_by_source_urls(self, source_urls: Sequence[str]) -> dict[str, CanonicalEvent]:
        if not source_urls:
            return {}
        with _guard("find events by urls"), self.engine.connect() as conn:
            rows = conn.execute(select(events).where(events.c.source_url.in_(list(source_urls))))
            return {r.source_url: _event_from_row(r) for r in rows}

    def find_by_fingerprint(self, fingerprint: str, source_id: int) -> Optional[CanonicalEvent]:
        with _guard("find event by fingerprint"), self.engine.connect() as conn:
            row = conn.execute(
                select(events)
                .where(events.c.fingerprint == fingerprint, events.c.source_id == source_id)
                .limit(1)
            ).first()
        return _event_from_row(row) if row else None

    def find_in_window(self, start: datetime, end: datetime, *, limit: int = 50) -> list[CanonicalEvent]:
        with _guard("find events in window"), self.engine.connect() as conn:
            rows = conn.execute(
                select(events)
                .where(events.c.starts_at >= start, events.c.starts_at <= end)
                .order_by(events.c.starts_at)
                .limit(limit)
            )
            return [_event_from_row(r) for r in rows]

    def insert_if_absent(self, event: CanonicalEvent) -> Optional[int]:
        """Insert an event unless its source URL exists. Returns the new id or None."""
        with _guard("insert event"), self.engine.begin() as conn:
            return self._insert_if_absent(conn, events, _event_values(event), "source_url")

    def refresh(self, event_id: int, event: CanonicalEvent) -> None:
        """Overwrite a stale event with fresher data; URL and creation time are kept."""
        values = _event_values(event)
        for key in ("source_url", "created_at", "source_id"):
            values.pop(key)
        with _guard("refresh event"), self.engine.begin() as conn:
            conn.execute(update(events).where(events.c.id == event_id).values(**values))

    def count(self) -> int:
        with _guard("count events"), self.engine.connect() as conn:
            return int(conn.execute(select(func.count()).select_from(events)).scalar_one())


# ---------------------------------------------------------------------------
# Scrape jobs
# ---------------------------------------------------------------------------


def _job_from_row(row) -> ScrapeJob:
    return ScrapeJob.model_validate(dict(row._mapping))


class JobStore(_TableStore):
    def create(self, source_id: int, *, max_attempts: int = 3) -> int:
        with _guard("create job"), self.engine.begin() as conn:
            return conn.execute(
                insert(scrape_jobs).values(source_id=source_id, max_attempts=max_attempts)
            ).inserted_primary_key[0]

    def get(self, job_id: int) -> ScrapeJob:
        with _guard("get job"), self.engine.connect() as conn:
            row = conn.execute(select(scrape_jobs).where(scrape_jobs.c.id == job_id)).first()
        if row is None:
            raise KeyError(f"Unknown job {job_id}")
        return _job_from_row(row)

    def enqueue_due(self, *, max_attempts: int) -> list[int]:
        """Create a pending job for every enabled, scouted source without an open job."""
        open_jobs = select(scrape_jobs.c.source_id).where(
            scrape_jobs.c.status.in_([JobStatus.PENDING.value, JobStatus.PROCESSING.value])
        )
        with _guard("enqueue jobs"), self.engine.begin() as conn:
            source_ids = list(
                conn.execute(
                    select(sources.c.id).where(
                        sources.c.enabled.is_(True),
                        sources.c.scout_status == ScoutStatus.SCOUTED.value,
                        sources.c.id.notin_(open_jobs),
                    )
                ).scalars()
            )
            created = []
            for source_id in source_ids:
                created.append(
                    conn.execute(
                        insert(scrape_jobs).values(source_id=source_id, max_attempts=max_attempts)
                    ).inserted_primary_key[0]
                )
        return created

    def claim(self, worker_id: str, *, limit: int) -> list[ScrapeJob]:
        eligible = and_(
            scrape_jobs.c.status == JobStatus.PENDING.value,
            scrape_jobs.c.attempts < scrape_jobs.c.max_attempts,
        )
        ids = self._claim_rows(
            scrape_jobs,
            eligible=eligible,
            order_by=[scrape_jobs.c.created_at, scrape_jobs.c.id],
            limit=limit,
            values={
                "status": JobStatus.PROCESSING.value,
                "claimed_by": worker_id,
                "started_at": utcnow(),
                "attempts": scrape_jobs.c.attempts + 1,
            },
        )
        return [self.get(i) for i in ids]

    def complete(self, job_id: int, worker_id: str, *, events_found: int) -> None:
        with _guard("complete job"), self.engine.begin() as conn:
            res = conn.execute(
                update(scrape_jobs)
                .where(
                    scrape_jobs.c.id == job_id,
                    scrape_jobs.c.claimed_by == worker_id,
                    scrape_jobs.c.status == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    events_found=events_found,
                    completed_at=utcnow(),
                    claimed_by=None,
                    last_error=None,
                )
            )
        if res.rowcount != 1:
            raise ClaimError(f"Job {job_id} is not processing under {worker_id}")

    def fail(self, job_id: int, worker_id: str, *, error: str) -> str:
        job = self.get(job_id)
        target = JobStatus.FAILED if job.attempts >= job.max_attempts else JobStatus.PENDING
        with _guard("fail job"), self.engine.begin() as conn:
            conn.execute(
                update(scrape_jobs)
                .where(scrape_jobs.c.id == job_id, scrape_jobs.c.claimed_by == worker_id)
                .values(
                    status=target.value,
                    claimed_by=None,
                    started_at=None,
                    last_error=error[:2000],
                    completed_at=utcnow() if target is JobStatus.FAILED else None,
                )
            )
        return target.value

    def reset_stale(self, cutoff: datetime) -> dict[str, int]:
        stale = and_(
            scrape_jobs.c.status == JobStatus.PROCESSING.value,
            or_(scrape_jobs.c.started_at.is_(None), scrape_jobs.c.started_at < cutoff),
        )
        cleared = {"claimed_by": None, "started_at": None, "last_error": RECOVERED_MESSAGE}
        with _guard("reset stale jobs"), self.engine.begin() as conn:
            failed = conn.execute(
                update(scrape_jobs)
                .where(stale, scrape_jobs.c.attempts >= scrape_jobs.c.max_attempts)
                .values(status=JobStatus.FAILED.value, completed_at=utcnow(), **cleared)
            ).rowcount
            reset = conn.execute(
                update(scrape_jobs).where(stale).values(status=JobStatus.PENDING.value, **cleared)
            ).rowcount
        return {"reset": reset, "failed": failed}

    def status_counts(self) -> dict[str, int]:
        return self._status_counts(scrape_jobs.c.status)


class PipelineStore:
    """All stores sharing one engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.sources = SourceStore(engine)
        self.staging = StagingStore(engine)
        self.events = EventStore(engine)
        self.jobs = JobStore(engine)
