from __future__ import annotations

from datetime import datetime

from .models import ArticleStatus, JobStatus, JobType
from .storage.base import ContentStore, JobStore
from .utils import isoformat_utc, utc_now


def get_dashboard_stats(content: ContentStore, now: datetime | None = None) -> dict[str, int]:
    now = now or utc_now()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "articles_today": content.count_articles(fetched_since=isoformat_utc(start_of_day)),
        "pending_review": content.count_unreviewed_reports(),
        "published": content.count_articles(status=ArticleStatus.PUBLISHED.value),
        "fact_checks": content.count_fact_checks(),
    }


def get_queue_status(jobs: JobStore) -> dict[str, int]:
    """Jobs currently processing, per job type."""
    counts = jobs.count_jobs_by_type(JobStatus.PROCESSING.value)
    return {job_type.value: counts.get(job_type.value, 0) for job_type in JobType}
