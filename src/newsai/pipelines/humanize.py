from __future__ import annotations

import logging
from dataclasses import replace

from ..errors import DuplicateError, GenerationError, StagePreconditionError
from ..llm.capabilities import clamp_score
from ..models import ArticleStatus, GeneratedContent, JobType, Report
from ..utils import log_event, new_id, truncate_text
from .context import StageContext, require_article, require_payload_id

TRUNCATION_MARKER = " ...[truncated]"


def run_humanize(ctx: StageContext, payload: dict[str, object]) -> dict[str, object]:
    article_id = require_payload_id(payload, "article_id", "humanize")
    article = require_article(ctx.content, article_id, (ArticleStatus.EXTRACTED.value,))
    if not (article.raw_text or "").strip():
        raise StagePreconditionError("missing raw text")

    report = ctx.content.get_report_by_article(article.id)
    if report is not None:
        log_event(ctx.logger, logging.INFO, "report_reused", article_id=article.id, report_id=report.id)
    else:
        report = _create_report(ctx, article.id, article.title, article.raw_text, article.url)

    ctx.content.update_article(replace(article, status=ArticleStatus.HUMANIZED.value))
    ctx.jobs.enqueue(JobType.FACT_CHECK.value, {"article_id": article.id})
    return {
        "article_id": article.id,
        "report_id": report.id,
        "similarity_score": report.similarity_score,
        "ai_confidence_score": report.ai_confidence_score,
    }


def _create_report(
    ctx: StageContext, article_id: str, title: str, raw_text: str, url: str
) -> Report:
    llm_cfg = ctx.config.llm
    text = truncate_text(raw_text, llm_cfg.max_input_chars, TRUNCATION_MARKER)
    generated = ctx.generator.generate(title, text, url)
    _require_complete(generated)

    try:
        similarity = clamp_score(
            ctx.scorer.score(raw_text, generated.plain_body), llm_cfg.default_similarity
        )
    except Exception as exc:  # noqa: BLE001
        log_event(ctx.logger, logging.WARNING, "similarity_degraded", article_id=article_id, error=str(exc))
        similarity = llm_cfg.default_similarity

    report = Report(
        id=new_id("rep"),
        article_id=article_id,
        tldr=generated.tldr,
        bullets=list(generated.bullets),
        rendered_body=generated.rendered_body,
        plain_body=generated.plain_body,
        entities={
            "persons": list(generated.entities.get("persons") or []),
            "orgs": list(generated.entities.get("orgs") or []),
            "places": list(generated.entities.get("places") or []),
        },
        ai_confidence_score=clamp_score(generated.confidence),
        similarity_score=similarity,
    )
    try:
        stored = ctx.content.create_report(report)
    except DuplicateError:
        existing = ctx.content.get_report_by_article(article_id)
        if existing is None:
            raise
        stored = existing
    log_event(
        ctx.logger,
        logging.INFO,
        "report_created",
        article_id=article_id,
        report_id=stored.id,
        similarity=stored.similarity_score,
        confidence=stored.ai_confidence_score,
    )
    return stored


def _require_complete(generated: GeneratedContent) -> None:
    missing = [
        name
        for name in ("tldr", "bullets", "rendered_body", "plain_body")
        if not getattr(generated, name, None)
    ]
    if missing:
        raise GenerationError(f"incomplete_generation: missing {', '.join(missing)}")
