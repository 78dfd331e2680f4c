"""
Unit tests for the command-line interface.

Commands run against the SQLite file from the `settings` fixture.
"""

import json

import pytest

from eventcrawl import cli
from eventcrawl.monitoring.logging import LoggingOptions, setup_logging
from eventcrawl.schemas.source import ScoutStatus


@pytest.fixture
def run_cli(settings, monkeypatch, capsys):
    monkeypatch.setattr(cli, "get_settings", lambda: settings)

    def run(*argv):
        code = cli.main(list(argv))
        out, err = capsys.readouterr()
        return code, out, err

    yield run
    # Handlers must not outlive the captured stderr.
    setup_logging(LoggingOptions(enable_console=False))


def test_init_db_and_add_source(run_cli, store):
    code, out, _ = run_cli("init-db")
    assert code == 0
    assert "Database initialized" in out

    code, out, _ = run_cli(
        "add-source", "--name", "Uit in Zwolle", "--url", "https://www.uitinzwolle.nl/agenda", "--population", "130000"
    )
    assert code == 0
    source = json.loads(out)
    assert source["name"] == "Uit in Zwolle"
    assert store.sources.get(source["id"]).scout_status == ScoutStatus.PENDING_SCOUT.value


def test_health(run_cli, create_staging):
    create_staging()
    code, out, _ = run_cli("health")
    assert code == 0
    health = json.loads(out)
    assert health["staging"] == {"pending": 1}
    assert health["events"] == 0


def test_rescout(run_cli, store, create_source):
    source = create_source(scout_status=ScoutStatus.SCOUTED.value)
    code, out, _ = run_cli("rescout", str(source.id))
    assert code == 0
    assert store.sources.get(source.id).scout_status == ScoutStatus.NEEDS_RE_SCOUT.value


def test_unknown_source_exits_1(run_cli, store):
    code, _, err = run_cli("rescout", "999")
    assert code == 1
    assert "Unknown source 999" in err


def test_workers_with_nothing_to_do(run_cli, store):
    for command in ("scout", "execute", "enrich", "index"):
        code, out, _ = run_cli(command)
        assert code == 0
        assert json.loads(out)["processed"] == 0


def test_missing_command(run_cli):
    code, _, err = run_cli()
    assert code == 1
    assert "Command required" in err


def test_unreachable_database_exits_2(run_cli, settings, monkeypatch, tmp_path):
    broken = settings.model_copy(
        update={"DATABASE_URL": f"sqlite:///{tmp_path}/missing/dir/db.sqlite", "DB_WARMUP_ATTEMPTS": 1}
    )
    monkeypatch.setattr(cli, "get_settings", lambda: broken)

    code, _, err = run_cli("health")
    assert code == 2
    assert "storage unavailable" in err


def test_serve_registers_every_worker(run_cli, settings, monkeypatch):
    from apscheduler.schedulers.blocking import BlockingScheduler

    registered = {}

    def start(self, *args, **kwargs):
        registered.update({job.id: job for job in self.get_jobs()})
        raise KeyboardInterrupt

    monkeypatch.setattr(BlockingScheduler, "start", start)

    code, _, err = run_cli("serve")
    assert code == 0
    assert "Stopped" in err
    assert set(registered) == {"janitor", "scout", "execute", "enrich", "index"}
    assert registered["enrich"].trigger.interval.total_seconds() == settings.SCHEDULE_ENRICH_S
    assert all(job.max_instances == 1 and job.coalesce for job in registered.values())
