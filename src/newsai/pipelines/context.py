from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from ..config import Config
from ..errors import ArticleNotFound, StagePreconditionError
from ..http import Fetcher, fetch_url
from ..llm.capabilities import SimilarityScorer, TextGenerator, Verifier
from ..models import Article
from ..storage.base import ContentStore, JobStore, SourceRegistry
from ..utils import utc_now


@dataclass(frozen=True)
class StageContext:
    """Everything a stage needs; built once by the runtime."""

    config: Config
    jobs: JobStore
    sources: SourceRegistry
    content: ContentStore
    generator: TextGenerator
    scorer: SimilarityScorer
    verifier: Verifier
    logger: logging.Logger
    fetcher: Fetcher = fetch_url
    clock: Callable[[], datetime] = field(default=utc_now)


def require_payload_id(payload: dict[str, object], key: str, stage: str) -> str:
    value = str((payload or {}).get(key) or "").strip()
    if not value:
        raise StagePreconditionError(f"{stage} requires {key}")
    return value


def require_article(
    content: ContentStore, article_id: str, allowed_statuses: tuple[str, ...]
) -> Article:
    article = content.get_article(article_id)
    if article is None:
        raise ArticleNotFound(article_id)
    if article.status not in allowed_statuses:
        expected = " or ".join(allowed_statuses)
        raise StagePreconditionError(
            f"Article {article_id} is {article.status}, expected {expected}"
        )
    return article
