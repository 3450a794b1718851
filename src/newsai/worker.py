from __future__ import annotations

import logging
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Mapping

from .errors import UnknownJobType
from .models import Job, JobType
from .pipelines import (
    StageContext,
    run_extraction,
    run_fact_check,
    run_feed_fetch,
    run_humanize,
)
from .storage.base import JobStore
from .ticker import EventTicker, Ticker
from .utils import isoformat_utc, log_event, utc_now

Handler = Callable[[dict[str, object]], object]

STAGE_FUNCTIONS = {
    JobType.FETCH: run_feed_fetch,
    JobType.EXTRACT: run_extraction,
    JobType.HUMANIZE: run_humanize,
    JobType.FACT_CHECK: run_fact_check,
}


def build_stage_handlers(ctx: StageContext) -> dict[JobType, Handler]:
    return {job_type: partial(func, ctx) for job_type, func in STAGE_FUNCTIONS.items()}


class Dispatcher:
    """Pulls pending jobs and runs them one at a time.

    Every job type must have a handler when the dispatcher is built. A job
    whose stored type is outside ``JobType`` fails with UnknownJobType; only
    that job is affected.
    """

    def __init__(
        self,
        jobs: JobStore,
        handlers: Mapping[JobType, Handler],
        logger: logging.Logger,
        batch_size: int = 10,
        poll_interval_seconds: float = 5.0,
        error_backoff_seconds: float = 10.0,
        processing_timeout_seconds: float | None = None,
        ticker: Ticker | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        missing = [job_type.value for job_type in JobType if job_type not in handlers]
        if missing:
            raise ValueError(f"No handler for job types: {', '.join(missing)}")
        self.jobs = jobs
        self.handlers = dict(handlers)
        self.logger = logger
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self.processing_timeout_seconds = processing_timeout_seconds
        self.ticker = ticker or EventTicker()
        self.clock = clock
        self._stopping = False

    def run_cycle(self) -> int:
        self.requeue_stale()
        processed = 0
        for job in self.jobs.claim_pending(limit=self.batch_size):
            if self._stopping:
                break
            self.run_job(job)
            processed += 1
        return processed

    def requeue_stale(self) -> list[Job]:
        if not self.processing_timeout_seconds:
            return []
        cutoff = self.clock() - timedelta(seconds=self.processing_timeout_seconds)
        requeued = self.jobs.requeue_stale_processing(isoformat_utc(cutoff))
        for job in requeued:
            log_event(
                self.logger,
                logging.WARNING,
                "job_stale_requeued",
                job_id=job.id,
                job_type=job.job_type,
                attempts=job.attempts,
                status=job.status,
            )
        return requeued

    def run_job(self, job: Job) -> bool:
        self.jobs.mark_processing(job.id)
        log_event(
            self.logger,
            logging.INFO,
            "job_claimed",
            job_id=job.id,
            job_type=job.job_type,
            attempt=job.attempts + 1,
        )
        try:
            handler = self._resolve(job.job_type)
            handler(job.payload)
        except Exception as exc:  # noqa: BLE001
            updated = self.jobs.mark_failed(job.id, str(exc))
            log_event(
                self.logger,
                logging.ERROR,
                "job_failed",
                job_id=job.id,
                job_type=job.job_type,
                attempts=updated.attempts,
                status=updated.status,
                error=str(exc),
            )
            return False
        self.jobs.mark_completed(job.id)
        log_event(
            self.logger, logging.INFO, "job_succeeded", job_id=job.id, job_type=job.job_type
        )
        return True

    def run_forever(self) -> None:
        self._stopping = False
        self.ticker.reset()
        log_event(self.logger, logging.INFO, "dispatcher_started", batch_size=self.batch_size)
        while not self._stopping:
            delay = self.poll_interval_seconds
            try:
                self.run_cycle()
            except Exception as exc:  # noqa: BLE001
                log_event(self.logger, logging.ERROR, "dispatcher_cycle_failed", error=str(exc))
                delay = self.error_backoff_seconds
            if self._stopping or self.ticker.wait(delay):
                break
        log_event(self.logger, logging.INFO, "dispatcher_stopped")

    def stop(self) -> None:
        self._stopping = True
        self.ticker.stop()

    def _resolve(self, job_type: str) -> Handler:
        try:
            return self.handlers[JobType(job_type)]
        except ValueError as exc:
            raise UnknownJobType(job_type) from exc
