from __future__ import annotations

import logging
from typing import Any

import feedparser

from ..config import IngestConfig
from ..errors import DuplicateError, FeedParseError, SourceNotFound, StagePreconditionError
from ..http import FEED_ACCEPT
from ..models import Article, ArticleStatus, FeedEntry, JobType
from ..storage.base import ContentStore
from ..utils import (
    article_slug,
    extract_published_at,
    isoformat_utc,
    log_event,
    new_id,
    normalize_url,
)
from .context import StageContext, require_payload_id


def run_feed_fetch(ctx: StageContext, payload: dict[str, object]) -> dict[str, object]:
    source_id = require_payload_id(payload, "source_id", "fetch")
    source = ctx.sources.get_source(source_id)
    if source is None:
        raise SourceNotFound(source_id)
    if not source.feed_url:
        raise StagePreconditionError(f"Source has no feed URL: {source_id}")

    http_cfg = ctx.config.ingest.http
    content = ctx.fetcher(
        source.feed_url,
        headers={"User-Agent": http_cfg.user_agent, "Accept": FEED_ACCEPT},
        timeout=http_cfg.timeout_seconds,
    )
    now = ctx.clock()
    fetched_at = isoformat_utc(now)
    entries = parse_feed(content, fetched_at, ctx.config.ingest, ctx.logger, source_id)

    created: list[Article] = []
    skipped_duplicates = 0
    millis = int(now.timestamp() * 1000)
    for entry in entries:
        if ctx.content.get_article_by_url(entry.url) is not None:
            skipped_duplicates += 1
            continue
        slug, millis = _unique_slug(ctx.content, entry.title, millis)
        article = Article(
            id=new_id("art"),
            url=entry.url,
            title=entry.title,
            slug=slug,
            source_id=source.id,
            published_at=entry.published_at,
            fetched_at=fetched_at,
            status=ArticleStatus.FETCHED.value,
            authors=list(entry.authors),
            category=source.category,
            metadata={"description": entry.description},
        )
        try:
            stored = ctx.content.create_article(article)
        except DuplicateError as exc:
            skipped_duplicates += 1
            log_event(
                ctx.logger,
                logging.WARNING,
                "fetch_duplicate_skipped",
                source_id=source.id,
                url=entry.url,
                error=str(exc),
            )
            continue
        created.append(stored)
        ctx.jobs.enqueue(JobType.EXTRACT.value, {"article_id": stored.id})
        log_event(
            ctx.logger,
            logging.INFO,
            "fetch_saved",
            source_id=source.id,
            article_id=stored.id,
            slug=stored.slug,
        )

    ctx.sources.update_source_last_fetch(source.id, fetched_at)
    log_event(
        ctx.logger,
        logging.INFO,
        "source_fetched",
        source_id=source.id,
        found_count=len(entries),
        saved_count=len(created),
        skipped_duplicates=skipped_duplicates,
    )
    return {
        "source_id": source.id,
        "found_count": len(entries),
        "saved_count": len(created),
        "skipped_duplicates": skipped_duplicates,
        "article_ids": [article.id for article in created],
    }


def parse_feed(
    content: bytes,
    fetched_at: str,
    ingest: IngestConfig,
    logger: logging.Logger,
    source_id: str = "",
) -> list[FeedEntry]:
    """Parse RSS/Atom bytes into the ``max_entries`` most recent entries."""
    parsed = feedparser.parse(content)
    if parsed.bozo:
        log_event(
            logger,
            logging.WARNING,
            "feed_parse_warning",
            source_id=source_id,
            error=str(parsed.bozo_exception),
        )
    # An empty but well-formed feed still carries a version such as "rss20".
    if not parsed.entries and (parsed.bozo or not parsed.get("version")):
        reason = parsed.get("bozo_exception") or "no RSS or Atom content"
        raise FeedParseError(f"Unparseable feed for source {source_id}: {reason}")
    url_norm_cfg = ingest.url_normalization
    entries: list[FeedEntry] = []
    seen_urls: set[str] = set()
    for entry in parsed.entries or []:
        link = entry.get("link") or entry.get("id")
        if not link:
            log_event(logger, logging.DEBUG, "feed_entry_missing_url", source_id=source_id)
            continue
        url = normalize_url(
            link,
            strip_tracking_params=url_norm_cfg.strip_tracking_params,
            tracking_params=url_norm_cfg.tracking_params,
        )
        if url in seen_urls:
            continue
        seen_urls.add(url)
        title = (entry.get("title") or "").strip() or url
        entries.append(
            FeedEntry(
                title=title,
                url=url,
                published_at=extract_published_at(entry, fetched_at),
                description=entry.get("summary") or entry.get("description"),
                authors=_entry_authors(entry),
            )
        )
    entries.sort(key=lambda item: item.published_at, reverse=True)
    return entries[: ingest.max_entries]


def _entry_authors(entry: Any) -> list[str]:
    authors: list[str] = []
    for item in entry.get("authors") or []:
        name = (item.get("name") if isinstance(item, dict) else str(item or "")) or ""
        if name.strip() and name.strip() not in authors:
            authors.append(name.strip())
    if not authors and entry.get("author"):
        authors.append(str(entry.get("author")).strip())
    return authors


def _unique_slug(content: ContentStore, title: str, millis: int) -> tuple[str, int]:
    # Consecutive entries bump the suffix so they never share one.
    while True:
        slug = article_slug(title, millis)
        millis += 1
        if content.get_article_by_slug(slug) is None:
            return slug, millis
