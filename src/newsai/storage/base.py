from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import Article, Job, JobStatus, Report, Source


def failure_transition(job: Job) -> tuple[int, str]:
    if job.status == JobStatus.FAILED.value:
        return job.attempts, JobStatus.FAILED.value
    attempts = min(job.attempts + 1, job.max_attempts)
    if attempts >= job.max_attempts:
        return attempts, JobStatus.FAILED.value
    return attempts, JobStatus.PENDING.value


class JobStore(ABC):
    """Durable queue of pipeline work items.

    Every failure is recorded on the job it belongs to; jobs are never
    deleted by the pipeline itself.
    """

    @abstractmethod
    def enqueue(
        self,
        job_type: str,
        payload: dict[str, object],
        scheduled_for: str | None = None,
    ) -> Job:
        """Insert a pending job with zero attempts."""

    @abstractmethod
    def claim_pending(
        self,
        job_type: str | None = None,
        limit: int = 10,
        now: str | None = None,
    ) -> list[Job]:
        """Select due pending jobs, oldest first, without changing their status."""

    @abstractmethod
    def mark_processing(self, job_id: str) -> Job:
        ...

    @abstractmethod
    def mark_completed(self, job_id: str) -> Job:
        ...

    @abstractmethod
    def mark_failed(self, job_id: str, error: str) -> Job:
        """Count a failed attempt.

        The job returns to ``pending`` while attempts remain, otherwise it
        becomes ``failed`` for good. ``error`` is always recorded.
        """

    @abstractmethod
    def get_job(self, job_id: str) -> Job | None:
        ...

    @abstractmethod
    def list_jobs(
        self,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 50,
    ) -> list[Job]:
        ...

    @abstractmethod
    def count_jobs_by_type(self, status: str) -> dict[str, int]:
        ...

    @abstractmethod
    def list_terminal_jobs_before(self, cutoff: str) -> list[Job]:
        """Completed or failed jobs whose ``completed_at`` is older than ``cutoff``."""

    @abstractmethod
    def requeue_stale_processing(
        self, cutoff: str, error: str = "stale_processing_requeued"
    ) -> list[Job]:
        """Fail ``processing`` jobs started before ``cutoff`` as one attempt.

        Left behind by a worker that died mid-job; they go back to
        ``pending`` unless that was their last attempt.
        """


class SourceRegistry(ABC):
    @abstractmethod
    def list_sources(self, active_only: bool = True) -> list[Source]:
        ...

    @abstractmethod
    def get_source(self, source_id: str) -> Source | None:
        ...

    @abstractmethod
    def create_source(self, source: Source) -> Source:
        """Insert a source; raises DuplicateError when the domain is taken."""

    @abstractmethod
    def update_source_last_fetch(self, source_id: str, fetched_at: str) -> None:
        ...


class ContentStore(ABC):
    @abstractmethod
    def get_article(self, article_id: str) -> Article | None:
        ...

    @abstractmethod
    def get_article_by_url(self, url: str) -> Article | None:
        ...

    @abstractmethod
    def get_article_by_slug(self, slug: str) -> Article | None:
        ...

    @abstractmethod
    def list_articles(self, status: str | None = None, limit: int = 50) -> list[Article]:
        ...

    @abstractmethod
    def create_article(self, article: Article) -> Article:
        """Insert an article; raises DuplicateError on a taken url or slug."""

    @abstractmethod
    def update_article(self, article: Article) -> Article:
        ...

    @abstractmethod
    def purge_raw_text(self, fetched_before: str) -> int:
        """Drop raw text from articles fetched before the cutoff; returns the count."""

    @abstractmethod
    def count_articles(
        self, status: str | None = None, fetched_since: str | None = None
    ) -> int:
        ...

    @abstractmethod
    def get_report_by_article(self, article_id: str) -> Report | None:
        ...

    @abstractmethod
    def create_report(self, report: Report) -> Report:
        """Insert a report; raises DuplicateError when the article already has one."""

    @abstractmethod
    def update_report_checks(self, report_id: str, checks: dict[str, list]) -> Report:
        ...

    @abstractmethod
    def count_unreviewed_reports(self) -> int:
        ...

    @abstractmethod
    def count_fact_checks(self) -> int:
        ...


class Store(JobStore, SourceRegistry, ContentStore):
    """One backend serving all three interfaces."""
