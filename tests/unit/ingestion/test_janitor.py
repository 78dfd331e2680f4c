"""
Unit tests for the janitor: stale claim recovery and pipeline health.
"""

from datetime import timedelta

from eventcrawl.ingestion.janitor import pipeline_health, run_janitor, run_janitor_for, stale_cutoff
from eventcrawl.schemas.source import ScoutStatus
from eventcrawl.schemas.staging import JobStatus, StagingStatus
from eventcrawl.storage.tables import utcnow


def test_stale_cutoff():
    now = utcnow()
    assert stale_cutoff(60, now) == now - timedelta(minutes=60)


def test_recovers_every_kind_of_claim(store, create_source, create_staging):
    record_id = create_staging()
    store.staging.claim_by_id(record_id, "crashed-enricher", max_attempts=3)

    job_id = store.jobs.create(create_source().id)
    store.jobs.claim("crashed-executor", limit=1)

    source = create_source()
    store.sources.claim_one_for_scouting(source.id, "crashed-scout", max_attempts=3)

    report = run_janitor(store, stale_after_minutes=60, now=utcnow() + timedelta(hours=2))

    assert report["staging"] == {"reset": 1, "failed": 0, "released": 0}
    assert report["jobs"] == {"reset": 1, "failed": 0}
    assert report["sources"] == {"reset": 1}
    assert store.staging.get(record_id).status == StagingStatus.PENDING.value
    assert store.jobs.get(job_id).status == JobStatus.PENDING.value
    assert store.sources.get(source.id).scout_status == ScoutStatus.PENDING_SCOUT.value


def test_fresh_claims_survive(store, create_staging):
    record_id = create_staging()
    store.staging.claim_by_id(record_id, "busy", max_attempts=3)

    report = run_janitor(store, stale_after_minutes=60)

    assert report["staging"] == {"reset": 0, "failed": 0, "released": 0}
    assert store.staging.get(record_id).claimed_by == "busy"


def test_recovered_rows_are_claimable_again(store, create_staging):
    record_id = create_staging()
    store.staging.claim_by_id(record_id, "crashed", max_attempts=3)
    run_janitor(store, stale_after_minutes=60, now=utcnow() + timedelta(hours=2))

    (record,) = store.staging.claim_for_enrichment("healthy", limit=1, max_attempts=3)
    assert record.id == record_id
    assert record.attempt_count == 2


def test_janitor_for_context_uses_settings(ctx, create_staging):
    create_staging()
    report = run_janitor_for(ctx)
    assert set(report) == {"cutoff", "staging", "jobs", "sources"}


def test_pipeline_health(store, create_staging):
    first = create_staging()
    create_staging()
    store.staging.claim_by_id(first, "w", max_attempts=3)

    health = pipeline_health(store, stale_after_minutes=60)

    assert health["staging"] == {"pending": 1, "claimed": 1}
    assert health["sources"] == {"pending_scout": 1}
    assert health["events"] == 0
    assert health["stuck"] == 0
