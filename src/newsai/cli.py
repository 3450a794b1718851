from __future__ import annotations

import argparse
import logging

from .config import ConfigError, load_config
from .errors import NotFoundError, StagePreconditionError
from .models import JobStatus
from .runtime import Runtime, build_runtime
from .sources import import_sources, load_sources_file, seed_default_sources
from .stats import get_dashboard_stats, get_queue_status
from .storage.sql import SqlStore
from .utils import configure_logging, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("newsai")


def _open_runtime(args: argparse.Namespace, logger: logging.Logger) -> Runtime | None:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None
    return build_runtime(config, logger=logger)


def _cmd_run(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    runtime.scheduler.start()
    try:
        runtime.dispatcher.run_forever()
    except KeyboardInterrupt:
        log_event(logger, logging.INFO, "shutdown_requested")
    finally:
        runtime.close()
    return 0


def _cmd_worker(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    try:
        if args.once:
            processed = runtime.dispatcher.run_cycle()
            log_event(logger, logging.INFO, "worker_cycle_done", processed=processed)
            return 0
        runtime.dispatcher.run_forever()
    except KeyboardInterrupt:
        log_event(logger, logging.INFO, "shutdown_requested")
    finally:
        runtime.close()
    return 0


def _cmd_scheduler(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    try:
        if args.once:
            enqueued = runtime.scheduler.schedule_fetches()
            log_event(logger, logging.INFO, "scheduler_pass_done", enqueued=len(enqueued))
            return 0
        runtime.scheduler.start()
        runtime.scheduler.join()
    except KeyboardInterrupt:
        log_event(logger, logging.INFO, "shutdown_requested")
    finally:
        runtime.close()
    return 0


def _cmd_sources_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    try:
        sources = load_sources_file(args.path)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "sources_import_error", error=str(exc))
        runtime.close()
        return 1
    if not sources:
        log_event(logger, logging.ERROR, "sources_import_error", error="no sources found")
        runtime.close()
        return 1
    result = import_sources(runtime.store, sources, logger)
    log_event(logger, logging.INFO, "sources_imported", **result)
    runtime.close()
    return 0


def _cmd_sources_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    sources = runtime.store.list_sources(active_only=False)
    runtime.close()
    if not sources:
        log_event(
            logger,
            logging.WARNING,
            "no_sources",
            hint="Import sources with `newsai sources import sources.yml` or `newsai sources seed`",
        )
        return 1
    for source in sources:
        log_event(
            logger,
            logging.INFO,
            "source",
            source_id=source.id,
            name=source.name,
            active=source.active,
            feed_url=source.feed_url,
            rate_limit_per_hour=source.rate_limit_per_hour,
            last_fetched_at=source.last_fetched_at,
        )
    log_event(logger, logging.INFO, "sources_listed", count=len(sources))
    return 0


def _cmd_sources_seed(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    seeded = seed_default_sources(runtime.store, logger)
    runtime.close()
    if not seeded:
        log_event(logger, logging.INFO, "sources_seed_skipped", reason="registry not empty")
    return 0


def _cmd_fetch_now(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    try:
        runtime.scheduler.enqueue_manual_fetch(args.source_id)
    except (NotFoundError, StagePreconditionError) as exc:
        log_event(logger, logging.ERROR, "fetch_now_error", source_id=args.source_id, error=str(exc))
        return 1
    finally:
        runtime.close()
    return 0


def _cmd_jobs_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    jobs = runtime.store.list_jobs(status=args.status, job_type=args.job_type, limit=args.limit)
    runtime.close()
    for job in jobs:
        log_event(
            logger,
            logging.INFO,
            "job",
            job_id=job.id,
            job_type=job.job_type,
            status=job.status,
            attempts=f"{job.attempts}/{job.max_attempts}",
            created_at=job.created_at,
            completed_at=job.completed_at,
            error=job.last_error,
        )
    return 0


def _cmd_cleanup(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    result = runtime.scheduler.cleanup()
    runtime.close()
    log_event(logger, logging.INFO, "cleanup_done", **result)
    return 0


def _cmd_stats(args: argparse.Namespace, logger: logging.Logger) -> int:
    runtime = _open_runtime(args, logger)
    if runtime is None:
        return 1
    dashboard = get_dashboard_stats(runtime.store)
    queue = get_queue_status(runtime.store)
    runtime.close()
    log_event(logger, logging.INFO, "dashboard_stats", **dashboard)
    log_event(logger, logging.INFO, "queue_status", **{key.replace("-", "_"): value for key, value in queue.items()})
    return 0


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    SqlStore.open(config.paths.state_db).close()
    log_event(logger, logging.INFO, "db_migrated", path=config.paths.state_db)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="newsai", description="NewsAI content pipeline")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to NEWSAI_CONFIG)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the scheduler and the job dispatcher")
    run_parser.set_defaults(func=_cmd_run)

    worker_parser = subparsers.add_parser("worker", help="Run the job dispatcher")
    worker_parser.add_argument("--once", action="store_true", help="Process one batch and exit")
    worker_parser.set_defaults(func=_cmd_worker)

    scheduler_parser = subparsers.add_parser("scheduler", help="Run the fetch scheduler")
    scheduler_parser.add_argument(
        "--once", action="store_true", help="Schedule due fetches once and exit"
    )
    scheduler_parser.set_defaults(func=_cmd_scheduler)

    sources_parser = subparsers.add_parser("sources", help="Manage sources")
    sources_subparsers = sources_parser.add_subparsers(dest="sources_command", required=True)

    sources_import = sources_subparsers.add_parser("import", help="Import sources from YAML")
    sources_import.add_argument("path", help="Path to sources.yml")
    sources_import.set_defaults(func=_cmd_sources_import)

    sources_list = sources_subparsers.add_parser("list", help="List sources")
    sources_list.set_defaults(func=_cmd_sources_list)

    sources_seed = sources_subparsers.add_parser(
        "seed", help="Insert the default sources into an empty registry"
    )
    sources_seed.set_defaults(func=_cmd_sources_seed)

    fetch_now = subparsers.add_parser("fetch-now", help="Enqueue a fetch ignoring the rate limit")
    fetch_now.add_argument("source_id", help="Source id")
    fetch_now.set_defaults(func=_cmd_fetch_now)

    jobs_parser = subparsers.add_parser("jobs", help="Job queue commands")
    jobs_subparsers = jobs_parser.add_subparsers(dest="jobs_command", required=True)

    jobs_list = jobs_subparsers.add_parser("list", help="List recent jobs")
    jobs_list.add_argument(
        "--status", choices=[status.value for status in JobStatus], default=None
    )
    jobs_list.add_argument("--type", dest="job_type", default=None, help="Filter by job type")
    jobs_list.add_argument("--limit", type=int, default=20, help="Number of jobs to show")
    jobs_list.set_defaults(func=_cmd_jobs_list)

    cleanup_parser = subparsers.add_parser("cleanup", help="Run retention cleanup now")
    cleanup_parser.set_defaults(func=_cmd_cleanup)

    stats_parser = subparsers.add_parser("stats", help="Print dashboard and queue counters")
    stats_parser.set_defaults(func=_cmd_stats)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)

    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)
