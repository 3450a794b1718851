from __future__ import annotations

import copy
import itertools
import threading
from dataclasses import replace

from ..errors import ArticleNotFound, DuplicateError, NotFoundError, SourceNotFound
from ..models import Article, Job, JobStatus, Report, Source, TERMINAL_JOB_STATUSES
from ..utils import new_id, utc_now_iso
from .base import Store, failure_transition


class MemoryStore(Store):
    """Process-local store used by tests and dry runs.

    Mirrors the uniqueness rules the SQL schema enforces.
    """

    def __init__(self, max_attempts: int = 3) -> None:
        self.max_attempts = max_attempts
        self._lock = threading.RLock()
        self._seq = itertools.count()
        self._order: dict[str, int] = {}
        self._jobs: dict[str, Job] = {}
        self._sources: dict[str, Source] = {}
        self._articles: dict[str, Article] = {}
        self._reports: dict[str, Report] = {}

    # jobs

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, object],
        scheduled_for: str | None = None,
    ) -> Job:
        job = Job(
            id=new_id("job"),
            job_type=str(job_type),
            status=JobStatus.PENDING.value,
            payload=dict(payload or {}),
            attempts=0,
            max_attempts=self.max_attempts,
            last_error=None,
            scheduled_for=scheduled_for,
            started_at=None,
            completed_at=None,
            created_at=utc_now_iso(),
        )
        with self._lock:
            self._jobs[job.id] = job
            self._order[job.id] = next(self._seq)
        return job

    def claim_pending(
        self,
        job_type: str | None = None,
        limit: int = 10,
        now: str | None = None,
    ) -> list[Job]:
        now = now or utc_now_iso()
        with self._lock:
            due = [
                job
                for job in self._jobs.values()
                if job.status == JobStatus.PENDING.value
                and (job_type is None or job.job_type == job_type)
                and (job.scheduled_for is None or job.scheduled_for <= now)
            ]
            due.sort(key=lambda job: (job.created_at, self._order[job.id]))
            return [copy.deepcopy(job) for job in due[:limit]]

    def mark_processing(self, job_id: str) -> Job:
        return self._update_job(
            job_id, status=JobStatus.PROCESSING.value, started_at=utc_now_iso()
        )

    def mark_completed(self, job_id: str) -> Job:
        return self._update_job(
            job_id, status=JobStatus.COMPLETED.value, completed_at=utc_now_iso()
        )

    def mark_failed(self, job_id: str, error: str) -> Job:
        with self._lock:
            job = self._require_job(job_id)
            attempts, status = failure_transition(job)
            completed_at = utc_now_iso() if status == JobStatus.FAILED.value else None
            return self._update_job(
                job_id,
                status=status,
                attempts=attempts,
                last_error=error,
                completed_at=completed_at or job.completed_at,
            )

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_jobs(
        self,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 50,
    ) -> list[Job]:
        with self._lock:
            jobs = [
                job
                for job in self._jobs.values()
                if (status is None or job.status == status)
                and (job_type is None or job.job_type == job_type)
            ]
            jobs.sort(key=lambda job: (job.created_at, self._order[job.id]), reverse=True)
            return [copy.deepcopy(job) for job in jobs[:limit]]

    def count_jobs_by_type(self, status: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        with self._lock:
            for job in self._jobs.values():
                if job.status == status:
                    counts[job.job_type] = counts.get(job.job_type, 0) + 1
        return counts

    def list_terminal_jobs_before(self, cutoff: str) -> list[Job]:
        with self._lock:
            return [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if job.status in TERMINAL_JOB_STATUSES
                and job.completed_at is not None
                and job.completed_at < cutoff
            ]

    def requeue_stale_processing(
        self, cutoff: str, error: str = "stale_processing_requeued"
    ) -> list[Job]:
        with self._lock:
            stale = [
                job.id
                for job in self._jobs.values()
                if job.status == JobStatus.PROCESSING.value
                and job.started_at is not None
                and job.started_at < cutoff
            ]
            return [self.mark_failed(job_id, error) for job_id in stale]

    def _require_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    def _update_job(self, job_id: str, **fields: object) -> Job:
        with self._lock:
            job = replace(self._require_job(job_id), **fields)
            self._jobs[job_id] = job
            return copy.deepcopy(job)

    # sources

    def list_sources(self, active_only: bool = True) -> list[Source]:
        with self._lock:
            sources = [
                source
                for source in self._sources.values()
                if source.active or not active_only
            ]
        return sorted(sources, key=lambda source: source.name)

    def get_source(self, source_id: str) -> Source | None:
        with self._lock:
            return self._sources.get(source_id)

    def create_source(self, source: Source) -> Source:
        with self._lock:
            if any(existing.domain == source.domain for existing in self._sources.values()):
                raise DuplicateError(f"Source domain already registered: {source.domain}")
            if source.id in self._sources:
                raise DuplicateError(f"Source id already registered: {source.id}")
            stored = replace(source, created_at=source.created_at or utc_now_iso())
            self._sources[stored.id] = stored
            return stored

    def update_source_last_fetch(self, source_id: str, fetched_at: str) -> None:
        with self._lock:
            source = self._sources.get(source_id)
            if source is None:
                raise SourceNotFound(source_id)
            self._sources[source_id] = replace(source, last_fetched_at=fetched_at)

    # articles

    def get_article(self, article_id: str) -> Article | None:
        with self._lock:
            article = self._articles.get(article_id)
            return copy.deepcopy(article) if article else None

    def get_article_by_url(self, url: str) -> Article | None:
        with self._lock:
            for article in self._articles.values():
                if article.url == url:
                    return copy.deepcopy(article)
        return None

    def get_article_by_slug(self, slug: str) -> Article | None:
        with self._lock:
            for article in self._articles.values():
                if article.slug == slug:
                    return copy.deepcopy(article)
        return None

    def list_articles(self, status: str | None = None, limit: int = 50) -> list[Article]:
        with self._lock:
            articles = [
                article
                for article in self._articles.values()
                if status is None or article.status == status
            ]
            articles.sort(key=lambda article: article.fetched_at, reverse=True)
            return [copy.deepcopy(article) for article in articles[:limit]]

    def create_article(self, article: Article) -> Article:
        with self._lock:
            for existing in self._articles.values():
                if existing.url == article.url:
                    raise DuplicateError(f"Article url already stored: {article.url}")
                if existing.slug == article.slug:
                    raise DuplicateError(f"Article slug already stored: {article.slug}")
            now = utc_now_iso()
            stored = replace(
                article,
                created_at=article.created_at or now,
                updated_at=now,
            )
            self._articles[stored.id] = copy.deepcopy(stored)
            return stored

    def update_article(self, article: Article) -> Article:
        with self._lock:
            if article.id not in self._articles:
                raise ArticleNotFound(article.id)
            stored = replace(article, updated_at=utc_now_iso())
            self._articles[article.id] = copy.deepcopy(stored)
            return stored

    def purge_raw_text(self, fetched_before: str) -> int:
        purged = 0
        with self._lock:
            for article_id, article in list(self._articles.items()):
                if article.raw_text is not None and article.fetched_at < fetched_before:
                    self._articles[article_id] = replace(
                        article, raw_text=None, updated_at=utc_now_iso()
                    )
                    purged += 1
        return purged

    def count_articles(
        self, status: str | None = None, fetched_since: str | None = None
    ) -> int:
        with self._lock:
            return sum(
                1
                for article in self._articles.values()
                if (status is None or article.status == status)
                and (fetched_since is None or article.fetched_at >= fetched_since)
            )

    # reports

    def get_report_by_article(self, article_id: str) -> Report | None:
        with self._lock:
            for report in self._reports.values():
                if report.article_id == article_id:
                    return copy.deepcopy(report)
        return None

    def create_report(self, report: Report) -> Report:
        with self._lock:
            if report.article_id not in self._articles:
                raise ArticleNotFound(report.article_id)
            if any(existing.article_id == report.article_id for existing in self._reports.values()):
                raise DuplicateError(f"Report already exists for article: {report.article_id}")
            now = utc_now_iso()
            stored = replace(report, created_at=report.created_at or now, updated_at=now)
            self._reports[stored.id] = copy.deepcopy(stored)
            return stored

    def update_report_checks(self, report_id: str, checks: dict[str, list]) -> Report:
        with self._lock:
            report = self._reports.get(report_id)
            if report is None:
                raise NotFoundError(f"Report not found: {report_id}")
            stored = replace(report, checks=copy.deepcopy(checks), updated_at=utc_now_iso())
            self._reports[report_id] = stored
            return copy.deepcopy(stored)

    def count_unreviewed_reports(self) -> int:
        with self._lock:
            return sum(1 for report in self._reports.values() if not report.reviewed_at)

    def count_fact_checks(self) -> int:
        with self._lock:
            return sum(
                len(report.checks.get("fact_checks") or []) for report in self._reports.values()
            )
