from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class JobType(str, Enum):
    FETCH = "fetch"
    EXTRACT = "extract"
    HUMANIZE = "humanize"
    FACT_CHECK = "fact-check"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class ArticleStatus(str, Enum):
    FETCHED = "fetched"
    EXTRACTED = "extracted"
    HUMANIZED = "humanized"
    PUBLISHED = "published"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class Source:
    id: str
    name: str
    domain: str
    feed_url: str | None
    category: str
    active: bool = True
    rate_limit_per_hour: int = 60
    last_fetched_at: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Article:
    id: str
    url: str
    title: str
    slug: str
    source_id: str | None
    published_at: str | None
    fetched_at: str
    status: str = ArticleStatus.FETCHED.value
    raw_text: str | None = None
    authors: list[str] = field(default_factory=list)
    category: str = "general"
    metadata: dict[str, object] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class FactCheck:
    claim: str
    verified: bool
    confidence: int


@dataclass(frozen=True)
class Report:
    id: str
    article_id: str
    tldr: str
    bullets: list[str]
    rendered_body: str
    plain_body: str
    entities: dict[str, list[str]]
    ai_confidence_score: int
    similarity_score: int
    checks: dict[str, list] = field(
        default_factory=lambda: {"fact_checks": [], "quoted_texts": []}
    )
    reviewed_by: str | None = None
    reviewed_at: str | None = None
    review_notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Job:
    id: str
    job_type: str
    status: str
    payload: dict[str, object]
    attempts: int
    max_attempts: int
    last_error: str | None
    scheduled_for: str | None
    started_at: str | None
    completed_at: str | None
    created_at: str


@dataclass(frozen=True)
class GeneratedContent:
    tldr: str
    bullets: list[str]
    rendered_body: str
    plain_body: str
    entities: dict[str, list[str]]
    confidence: float


@dataclass(frozen=True)
class FeedEntry:
    title: str
    url: str
    published_at: str
    description: str | None
    authors: list[str]
