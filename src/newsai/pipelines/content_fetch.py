from __future__ import annotations

import logging
import re
from dataclasses import replace

from bs4 import BeautifulSoup, Comment

from ..errors import ArticleNotFound, ContentTooShortError, StagePreconditionError
from ..http import PAGE_ACCEPT
from ..models import Article, ArticleStatus, JobType
from ..utils import log_event
from .context import StageContext, require_payload_id

CONTENT_SELECTORS = [
    "article",
    "[role=main]",
    ".post-content",
    ".article-content",
    ".content",
    ".entry-content",
    ".post-body",
    ".article-body",
    ".story-body",
    ".field-item",
]

_NOISE_TAGS = ["nav", "header", "footer", "aside"]
_NOISE_CLASS = re.compile(r"sidebar|menu|navigation|advertisement|(^|[-_])ads?([-_]|$)", re.I)


def run_extraction(ctx: StageContext, payload: dict[str, object]) -> dict[str, object]:
    article_id = require_payload_id(payload, "article_id", "extract")
    article = _require_extractable(ctx, article_id)
    cfg = ctx.config.extraction
    try:
        raw = ctx.fetcher(
            article.url,
            headers={"User-Agent": cfg.http.user_agent, "Accept": PAGE_ACCEPT},
            timeout=cfg.http.timeout_seconds,
        )
        text = extract_readable_text(raw)
        if len(text) < cfg.min_text_length:
            raise ContentTooShortError(len(text), cfg.min_text_length)
    except Exception as exc:  # noqa: BLE001
        metadata = dict(article.metadata)
        metadata["extraction_error"] = str(exc)
        ctx.content.update_article(
            replace(article, status=ArticleStatus.FAILED.value, metadata=metadata)
        )
        log_event(
            ctx.logger,
            logging.WARNING,
            "extraction_failed",
            article_id=article.id,
            url=article.url,
            error=str(exc),
        )
        raise

    metadata = dict(article.metadata)
    metadata.pop("extraction_error", None)
    ctx.content.update_article(
        replace(
            article,
            raw_text=text,
            status=ArticleStatus.EXTRACTED.value,
            metadata=metadata,
        )
    )
    ctx.jobs.enqueue(JobType.HUMANIZE.value, {"article_id": article.id})
    log_event(
        ctx.logger,
        logging.INFO,
        "extraction_succeeded",
        article_id=article.id,
        chars=len(text),
    )
    return {"article_id": article.id, "chars": len(text)}


def _require_extractable(ctx: StageContext, article_id: str) -> Article:
    article = ctx.content.get_article(article_id)
    if article is None:
        raise ArticleNotFound(article_id)
    if article.status == ArticleStatus.FETCHED.value:
        return article
    # A previous attempt of this job marked the article failed.
    if article.status == ArticleStatus.FAILED.value and article.metadata.get(
        "extraction_error"
    ):
        return article
    raise StagePreconditionError(
        f"Article {article_id} is {article.status}, expected fetched"
    )


def extract_readable_text(html: str | bytes) -> str:
    # Bytes let BeautifulSoup pick the charset from the page itself.
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda value: isinstance(value, Comment)):
        comment.extract()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for paragraph in soup.find_all("p"):
        paragraph.append("\n\n")

    best = ""
    for selector in CONTENT_SELECTORS:
        for node in _select(soup, selector):
            text = node.get_text()
            if len(text.strip()) > len(best.strip()):
                best = text
    if best.strip():
        return _normalize_text(best)

    body = soup.body or soup
    for tag in body.find_all(_NOISE_TAGS):
        tag.decompose()
    for div in body.find_all("div"):
        if div.decomposed:
            continue
        classes = div.get("class") or []
        if any(_NOISE_CLASS.search(name) for name in classes):
            div.decompose()
    return _normalize_text(body.get_text())


def _select(soup: BeautifulSoup, selector: str) -> list:
    # Class selectors match any class containing the name, e.g. "article-content-wrapper".
    if selector.startswith("."):
        return soup.find_all(class_=re.compile(re.escape(selector[1:])))
    return soup.select(selector)


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    lines = [re.sub(r"[ \t\r\f\v]+", " ", line).strip() for line in text.split("\n")]
    joined = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", joined).strip()
