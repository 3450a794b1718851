from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable

from .config import SchedulerConfig
from .errors import SourceNotFound, StagePreconditionError
from .models import Job, JobType, Source
from .storage.base import ContentStore, JobStore, SourceRegistry
from .ticker import EventTicker, Ticker
from .utils import isoformat_utc, log_event, parse_iso, utc_now

DEFAULT_RATE_LIMIT_PER_HOUR = 60


def min_fetch_interval(source: Source) -> timedelta:
    rate = source.rate_limit_per_hour
    if not rate or rate <= 0:
        rate = DEFAULT_RATE_LIMIT_PER_HOUR
    return timedelta(seconds=3600 / rate)


def is_fetch_due(source: Source, now: datetime) -> bool:
    if not source.last_fetched_at:
        return True
    elapsed = now - parse_iso(source.last_fetched_at)
    return elapsed >= min_fetch_interval(source)


class Scheduler:
    """Periodic fetch scheduling and retention cleanup.

    ``tick`` runs whatever is due and is what the background thread calls;
    tests call it directly with an explicit ``now``.
    """

    def __init__(
        self,
        jobs: JobStore,
        sources: SourceRegistry,
        content: ContentStore,
        config: SchedulerConfig,
        logger: logging.Logger,
        ticker: Ticker | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.jobs = jobs
        self.sources = sources
        self.content = content
        self.config = config
        self.logger = logger
        self.ticker = ticker or EventTicker()
        self.clock = clock
        self._next_fetch_at: datetime | None = None
        self._next_cleanup_at: datetime | None = None
        self._thread: threading.Thread | None = None
        self._stopping = False

    @property
    def fetch_interval(self) -> timedelta:
        return timedelta(minutes=self.config.fetch_interval_minutes)

    @property
    def cleanup_interval(self) -> timedelta:
        return timedelta(hours=self.config.cleanup_interval_hours)

    def schedule_fetches(self, now: datetime | None = None) -> list[str]:
        now = now or self.clock()
        scheduled_for = isoformat_utc(now)
        enqueued: list[str] = []
        for source in self.sources.list_sources(active_only=True):
            if not source.feed_url:
                continue
            try:
                if not is_fetch_due(source, now):
                    log_event(
                        self.logger,
                        logging.DEBUG,
                        "source_rate_limited",
                        source_id=source.id,
                        last_fetched_at=source.last_fetched_at,
                    )
                    continue
                self.jobs.enqueue(
                    JobType.FETCH.value, {"source_id": source.id}, scheduled_for=scheduled_for
                )
                enqueued.append(source.id)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    self.logger,
                    logging.ERROR,
                    "source_schedule_failed",
                    source_id=source.id,
                    error=str(exc),
                )
        log_event(self.logger, logging.INFO, "fetches_scheduled", count=len(enqueued))
        return enqueued

    def cleanup(self, now: datetime | None = None) -> dict[str, int]:
        now = now or self.clock()
        raw_cutoff = now - timedelta(days=self.config.raw_text_retention_days)
        purged = self.content.purge_raw_text(isoformat_utc(raw_cutoff))
        log_event(self.logger, logging.INFO, "raw_text_purged", count=purged)
        job_cutoff = now - timedelta(days=self.config.job_retention_days)
        stale = self.jobs.list_terminal_jobs_before(isoformat_utc(job_cutoff))
        log_event(self.logger, logging.INFO, "stale_jobs_found", count=len(stale))
        return {"raw_text_purged": purged, "stale_jobs": len(stale)}

    def enqueue_manual_fetch(self, source_id: str) -> Job:
        source = self.sources.get_source(source_id)
        if source is None:
            raise SourceNotFound(source_id)
        if not source.feed_url:
            raise StagePreconditionError(f"Source has no feed URL: {source_id}")
        job = self.jobs.enqueue(
            JobType.FETCH.value,
            {"source_id": source.id},
            scheduled_for=isoformat_utc(self.clock()),
        )
        log_event(self.logger, logging.INFO, "manual_fetch_enqueued", source_id=source.id, job_id=job.id)
        return job

    def tick(self, now: datetime | None = None) -> dict[str, object]:
        now = now or self.clock()
        if self._next_fetch_at is None or self._next_cleanup_at is None:
            self._arm(now)
        ran: dict[str, object] = {}
        if now >= self._next_fetch_at:
            self._next_fetch_at = now + self.fetch_interval
            ran["fetch"] = self.schedule_fetches(now)
        if now >= self._next_cleanup_at:
            self._next_cleanup_at = now + self.cleanup_interval
            ran["cleanup"] = self.cleanup(now)
        return ran

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stopping = False
        self.ticker.reset()
        self._arm(self.clock())
        self._thread = threading.Thread(target=self._run, name="newsai-scheduler", daemon=True)
        self._thread.start()
        log_event(
            self.logger,
            logging.INFO,
            "scheduler_started",
            fetch_interval_minutes=self.config.fetch_interval_minutes,
            cleanup_interval_hours=self.config.cleanup_interval_hours,
        )

    def stop(self, timeout: float | None = None) -> None:
        self._stopping = True
        self.ticker.stop()
        self._next_fetch_at = None
        self._next_cleanup_at = None
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        log_event(self.logger, logging.INFO, "scheduler_stopped")

    def _arm(self, now: datetime) -> None:
        self._next_fetch_at = now + timedelta(seconds=self.config.initial_delay_seconds)
        self._next_cleanup_at = now + self.cleanup_interval

    def _run(self) -> None:
        while not self._stopping:
            try:
                self.tick()
            except Exception as exc:  # noqa: BLE001
                log_event(self.logger, logging.ERROR, "scheduler_tick_failed", error=str(exc))
            if self._stopping:
                break
            if self.ticker.wait(self._seconds_until_next()):
                break

    def _seconds_until_next(self) -> float:
        upcoming = [at for at in (self._next_fetch_at, self._next_cleanup_at) if at is not None]
        if not upcoming:
            return 0.0
        return max(0.0, (min(upcoming) - self.clock()).total_seconds())

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
