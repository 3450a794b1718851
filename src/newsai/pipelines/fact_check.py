from __future__ import annotations

import logging
import re
from dataclasses import asdict

from ..errors import ReportNotFound, StagePreconditionError
from ..models import ArticleStatus, FactCheck
from ..utils import log_event, truncate_text
from .context import StageContext, require_article, require_payload_id

_QUOTE_PATTERN = re.compile(r'"([^"]{10,})"')
MAX_QUOTES = 10


def run_fact_check(ctx: StageContext, payload: dict[str, object]) -> dict[str, object]:
    article_id = require_payload_id(payload, "article_id", "fact-check")
    article = require_article(ctx.content, article_id, (ArticleStatus.HUMANIZED.value,))
    report = ctx.content.get_report_by_article(article.id)
    if report is None:
        raise ReportNotFound(article.id)
    if not article.raw_text:
        raise StagePreconditionError("missing raw text")

    limit = ctx.config.llm.fact_check_max_chars
    fact_checks = _verify(
        ctx,
        article.id,
        truncate_text(article.raw_text, limit),
        truncate_text(report.plain_body, limit),
    )
    quotes = extract_quotes(article.raw_text)
    ctx.content.update_report_checks(
        report.id,
        {
            "fact_checks": [asdict(check) for check in fact_checks],
            "quoted_texts": quotes,
        },
    )
    log_event(
        ctx.logger,
        logging.INFO,
        "fact_check_completed",
        article_id=article.id,
        report_id=report.id,
        fact_checks=len(fact_checks),
        quotes=len(quotes),
    )
    return {"article_id": article.id, "fact_checks": len(fact_checks), "quotes": len(quotes)}


def _verify(ctx: StageContext, article_id: str, original: str, derived: str) -> list[FactCheck]:
    try:
        return list(ctx.verifier.verify(original, derived) or [])
    except Exception as exc:  # noqa: BLE001
        log_event(
            ctx.logger,
            logging.WARNING,
            "verification_degraded",
            article_id=article_id,
            error=str(exc),
        )
        return []


def extract_quotes(text: str, limit: int = MAX_QUOTES) -> list[str]:
    quotes: list[str] = []
    for match in _QUOTE_PATTERN.finditer(text or ""):
        quotes.append(match.group(1))
        if len(quotes) >= limit:
            break
    return quotes
