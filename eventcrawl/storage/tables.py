"""
eventcrawl.storage.tables

SQLAlchemy Core table definitions. Timestamps are stored as naive UTC so
that staleness comparisons behave the same on PostgreSQL and SQLite.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Time,
)

metadata = MetaData()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


sources = Table(
    "sources",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("url", String(2048), nullable=False, unique=True),
    Column("city", String(255)),
    Column("population", Integer),
    Column("population_tier", Integer, nullable=False, default=3),
    Column("fetcher_strategy", String(16), nullable=False, default="static"),
    Column("config", JSON, nullable=False, default=dict),
    Column("recipe", JSON),
    Column("scout_status", String(32), nullable=False, default="pending_scout", index=True),
    Column("scout_attempts", Integer, nullable=False, default=0),
    Column("scout_claimed_by", String(64)),
    Column("scout_claimed_at", DateTime),
    Column("consecutive_failures", Integer, nullable=False, default=0),
    Column("consecutive_empty_runs", Integer, nullable=False, default=0),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("last_scraped_at", DateTime),
    Column("last_error", Text),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
)

staging_events = Table(
    "staging_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("source_id", Integer, ForeignKey("sources.id"), nullable=False),
    Column("source_url", String(2048), nullable=False, unique=True),
    Column("title", Text),
    Column("card", JSON, nullable=False, default=dict),
    Column("raw_html", Text),
    Column("detail_url", String(2048)),
    Column("detail_html", Text),
    Column("status", String(32), nullable=False, default="pending"),
    Column("parsing_method", String(32)),
    Column("confidence", String(16)),
    Column("normalized", JSON, nullable=False, default=dict),
    Column("attempt_count", Integer, nullable=False, default=0),
    Column("index_attempts", Integer, nullable=False, default=0),
    Column("claimed_by", String(64)),
    Column("claimed_at", DateTime),
    Column("last_error", Text),
    Column("content_hash", String(64)),
    Column("event_id", Integer),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
)
Index("ix_staging_status_claimed_at", staging_events.c.status, staging_events.c.claimed_at)

events = Table(
    "events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("source_id", Integer, ForeignKey("sources.id"), nullable=False),
    Column("source_url", String(2048), nullable=False, unique=True),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("event_date", Date, nullable=False),
    Column("start_time", Time),
    Column("end_time", Time),
    Column("starts_at", DateTime, nullable=False, index=True),
    Column("duration_minutes", Integer),
    Column("venue_name", String(512)),
    Column("address", String(512)),
    Column("category", String(32)),
    Column("image_url", String(2048)),
    Column("ticket_url", String(2048)),
    Column("price_level", String(8)),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("fingerprint", String(64), index=True),
    Column("parsing_method", String(32)),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, default=utcnow),
)

scrape_jobs = Table(
    "scrape_jobs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("source_id", Integer, ForeignKey("sources.id"), nullable=False),
    Column("status", String(16), nullable=False, default="pending"),
    Column("attempts", Integer, nullable=False, default=0),
    Column("max_attempts", Integer, nullable=False, default=3),
    Column("started_at", DateTime),
    Column("claimed_by", String(64)),
    Column("events_found", Integer, nullable=False, default=0),
    Column("last_error", Text),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("completed_at", DateTime),
)
Index("ix_scrape_jobs_status_started_at", scrape_jobs.c.status, scrape_jobs.c.started_at)
