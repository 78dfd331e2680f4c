"""Command-line interface for the event crawl pipeline.

Commands:
  - eventcrawl init-db     : Create tables
  - eventcrawl add-source  : Register a source website
  - eventcrawl scout       : Generate recipes for pending sources
  - eventcrawl enqueue     : Create scrape jobs for scouted sources
  - eventcrawl execute     : Run claimed scrape jobs
  - eventcrawl enrich      : Enrich staged records
  - eventcrawl index       : Commit enriched records to the event store
  - eventcrawl janitor     : Recover stale claims
  - eventcrawl health      : Print per-stage counts
  - eventcrawl rescout     : Queue a source for a fresh recipe
  - eventcrawl serve       : Run all workers on their intervals
  - eventcrawl api         : Serve the HTTP API

Typical usage:
  eventcrawl init-db
  eventcrawl add-source --name "Uit in Zwolle" --url https://www.uitinzwolle.nl/agenda --population 130000
  eventcrawl serve
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from eventcrawl.configs.settings import Settings, get_settings
from eventcrawl.errors import StorageError
from eventcrawl.monitoring.logging import LoggingOptions, setup_logging
from eventcrawl.schemas.source import Source, SourceConfig, population_tier


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="eventcrawl", description="Event crawl pipeline CLI")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON logs")
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("init-db", help="Create database tables")

    pa = sub.add_parser("add-source", help="Register a source website")
    pa.add_argument("--name", required=True)
    pa.add_argument("--url", required=True)
    pa.add_argument("--city", default=None)
    pa.add_argument("--population", type=int, default=None)
    pa.add_argument("--pacing-delay", type=float, default=None, help="Seconds between fetches")
    pa.add_argument("--render", action="store_true", help="Start on the render fetcher")

    ps = sub.add_parser("scout", help="Generate recipes for pending sources")
    ps.add_argument("--source-id", type=int, default=None)
    ps.add_argument("--batch-size", type=int, default=None)

    sub.add_parser("enqueue", help="Create scrape jobs for scouted sources")

    pe = sub.add_parser("execute", help="Run claimed scrape jobs")
    pe.add_argument("--batch-size", type=int, default=None)
    pe.add_argument("--enqueue", action="store_true", help="Enqueue due jobs first")

    pn = sub.add_parser("enrich", help="Enrich staged records")
    pn.add_argument("--id", type=int, default=None, help="Enrich one staging record")
    pn.add_argument("--batch-size", type=int, default=None)

    pi = sub.add_parser("index", help="Commit enriched records")
    pi.add_argument("--batch-size", type=int, default=None)

    sub.add_parser("janitor", help="Recover stale claims")
    sub.add_parser("health", help="Print per-stage counts")

    pr = sub.add_parser("rescout", help="Queue a source for a fresh recipe")
    pr.add_argument("source_id", type=int)

    sub.add_parser("serve", help="Run all workers on their intervals")

    papi = sub.add_parser("api", help="Serve the HTTP API with uvicorn")
    papi.add_argument("--host", default="127.0.0.1")
    papi.add_argument("--port", type=int, default=8000)

    return p.parse_args(argv)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def main(argv: list[str] | None = None) -> int:
    """Run the CLI with the given arguments."""
    try:
        return _main_impl(argv)
    except StorageError as e:
        print(f"Error: storage unavailable: {e}", file=sys.stderr)
        return 2
    except KeyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _context(settings: Settings, prefix: str):
    from eventcrawl.ingestion import PipelineContext
    from eventcrawl.ingestion.context import new_worker_id
    from eventcrawl.storage import PipelineStore, create_db_engine

    engine = create_db_engine(
        settings.DATABASE_URL, kind="job", warmup_policy=settings.warmup_policy()
    )
    return PipelineContext(settings=settings, store=PipelineStore(engine), worker_id=new_worker_id(prefix))


def _main_impl(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging(
        LoggingOptions(
            level=args.log_level or settings.LOG_LEVEL,
            json_logs=args.json_logs or settings.LOG_JSON,
            log_file=settings.LOG_FILE,
        )
    )

    if not args.cmd:
        print("Error: Command required. Use --help for usage info.", file=sys.stderr)
        return 1

    if args.cmd == "api":
        import uvicorn

        from eventcrawl.api import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port)
        return 0

    from eventcrawl import ingestion
    from eventcrawl.ingestion.janitor import run_janitor_for
    from eventcrawl.storage import init_db

    ctx = _context(settings, args.cmd)

    if args.cmd == "init-db":
        init_db(ctx.store.engine)
        print("Database initialized")
        return 0

    if args.cmd == "add-source":
        source = ctx.store.sources.add(
            Source(
                name=args.name,
                url=args.url,
                city=args.city,
                population=args.population,
                population_tier=population_tier(args.population),
                fetcher_strategy="render" if args.render else "static",
                config=SourceConfig(pacing_delay_s=args.pacing_delay),
            )
        )
        _print(source.model_dump(mode="json"))
        return 0

    if args.cmd == "scout":
        _print(ingestion.run_scout(ctx, source_id=args.source_id, batch_size=args.batch_size).to_dict())
        return 0

    if args.cmd == "enqueue":
        _print({"enqueued": ingestion.enqueue(ctx)})
        return 0

    if args.cmd == "execute":
        if args.enqueue:
            ingestion.enqueue(ctx)
        _print(ingestion.run_executor(ctx, batch_size=args.batch_size).to_dict())
        return 0

    if args.cmd == "enrich":
        payload = {"id": args.id} if args.id is not None else {"batch_size": args.batch_size}
        _print(ingestion.run_enrichment(ctx, payload).to_dict())
        return 0

    if args.cmd == "index":
        _print(ingestion.run_indexing(ctx, batch_size=args.batch_size).to_dict())
        return 0

    if args.cmd == "janitor":
        _print(run_janitor_for(ctx))
        return 0

    if args.cmd == "health":
        _print(ingestion.pipeline_health(ctx.store, stale_after_minutes=settings.STALE_AFTER_MINUTES))
        return 0

    if args.cmd == "rescout":
        ctx.store.sources.get(args.source_id)
        ctx.store.sources.request_rescout(args.source_id)
        print(f"Source {args.source_id} queued for re-scout")
        return 0

    if args.cmd == "serve":
        _serve(settings, ctx)
        return 0

    print(f"Error: Unknown command {args.cmd}", file=sys.stderr)
    return 1


def _serve(settings: Settings, ctx) -> None:
    from eventcrawl import ingestion
    from eventcrawl.ingestion.context import new_worker_id
    from eventcrawl.ingestion.janitor import run_janitor_for
    from eventcrawl.scheduling import build_scheduler

    def fresh(prefix: str):
        # Every run is its own invocation with its own worker id.
        return ingestion.PipelineContext(
            settings=settings,
            store=ctx.store,
            worker_id=new_worker_id(prefix),
            llm=ctx.llm,
        )

    def execute():
        run_ctx = fresh("execute")
        ingestion.enqueue(run_ctx)
        return ingestion.run_executor(run_ctx).to_dict()

    scheduler = build_scheduler(
        [
            ("janitor", settings.SCHEDULE_JANITOR_S, lambda: run_janitor_for(fresh("janitor"))),
            ("scout", settings.SCHEDULE_SCOUT_S, lambda: ingestion.run_scout(fresh("scout")).to_dict()),
            ("execute", settings.SCHEDULE_EXECUTE_S, execute),
            ("enrich", settings.SCHEDULE_ENRICH_S, lambda: ingestion.run_enrichment(fresh("enrich")).to_dict()),
            ("index", settings.SCHEDULE_INDEX_S, lambda: ingestion.run_indexing(fresh("index")).to_dict()),
        ]
    )
    try:
        scheduler.start()
    except KeyboardInterrupt:
        print("Stopped", file=sys.stderr)


if __name__ == "__main__":
    sys.exit(main())
