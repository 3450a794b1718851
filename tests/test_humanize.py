from dataclasses import replace

import pytest

from conftest import LONG_PARAGRAPH
from newsai.errors import GenerationError, StagePreconditionError
from newsai.models import GeneratedContent
from newsai.pipelines import run_humanize
from newsai.pipelines.humanize import TRUNCATION_MARKER


def test_humanize_creates_report_and_enqueues_fact_check(ctx, store, generator, scorer, add_article):
    article = add_article(status="extracted", raw_text=LONG_PARAGRAPH)

    run_humanize(ctx, {"article_id": article.id})

    report = store.get_report_by_article(article.id)
    assert report.tldr.startswith("Council approves")
    assert report.bullets == ["Plan approved", "Three new bus lines"]
    assert report.ai_confidence_score == 87
    assert report.similarity_score == 72
    assert report.checks == {"fact_checks": [], "quoted_texts": []}
    assert report.reviewed_at is None
    assert store.get_article(article.id).status == "humanized"
    assert [job.payload for job in store.list_jobs(job_type="fact-check")] == [
        {"article_id": article.id}
    ]
    assert generator.calls == [(article.title, LONG_PARAGRAPH, article.url)]
    assert scorer.calls == [(LONG_PARAGRAPH, "The council approved the plan.")]


def test_missing_raw_text_fails_without_calling_generator(ctx, store, generator, add_article):
    article = add_article(status="extracted", raw_text=None)

    with pytest.raises(StagePreconditionError, match="missing raw text"):
        run_humanize(ctx, {"article_id": article.id})

    assert generator.calls == []
    assert store.get_report_by_article(article.id) is None


def test_incomplete_generation_creates_no_report(ctx, store, generator, add_article):
    article = add_article(status="extracted", raw_text=LONG_PARAGRAPH)
    generator.result = GeneratedContent(
        tldr="",
        bullets=[],
        rendered_body="<p>x</p>",
        plain_body="x",
        entities={},
        confidence=50,
    )

    with pytest.raises(GenerationError):
        run_humanize(ctx, {"article_id": article.id})

    assert store.get_report_by_article(article.id) is None
    assert store.get_article(article.id).status == "extracted"
    assert store.list_jobs(job_type="fact-check") == []


def test_generator_outage_propagates(ctx, store, generator, add_article):
    article = add_article(status="extracted", raw_text=LONG_PARAGRAPH)
    generator.error = GenerationError("http_error 503: unavailable")

    with pytest.raises(GenerationError):
        run_humanize(ctx, {"article_id": article.id})

    assert store.get_report_by_article(article.id) is None


def test_scorer_failure_uses_default_similarity(ctx, store, scorer, add_article):
    article = add_article(status="extracted", raw_text=LONG_PARAGRAPH)
    scorer.error = RuntimeError("quota exceeded")

    run_humanize(ctx, {"article_id": article.id})

    assert store.get_report_by_article(article.id).similarity_score == 50


def test_scores_are_rounded_and_clamped(ctx, store, generator, scorer, add_article):
    article = add_article(status="extracted", raw_text=LONG_PARAGRAPH)
    generator.result = GeneratedContent(
        tldr="t",
        bullets=["b"],
        rendered_body="<p>r</p>",
        plain_body="p",
        entities={"persons": [], "orgs": [], "places": []},
        confidence=140.2,
    )
    scorer.value = 42.6

    run_humanize(ctx, {"article_id": article.id})

    report = store.get_report_by_article(article.id)
    assert report.ai_confidence_score == 100
    assert report.similarity_score == 43


def test_long_text_is_truncated_for_generation(ctx, generator, add_article):
    raw_text = "x" * 13000
    article = add_article(status="extracted", raw_text=raw_text)

    run_humanize(ctx, {"article_id": article.id})

    sent = generator.calls[0][1]
    assert sent == "x" * 12000 + TRUNCATION_MARKER


def test_existing_report_is_reused(ctx, store, generator, add_article):
    article = add_article(status="extracted", raw_text=LONG_PARAGRAPH)
    run_humanize(ctx, {"article_id": article.id})
    first = store.get_report_by_article(article.id)
    # Simulate a crash after the report was saved but before the status changed.
    store.update_article(replace(store.get_article(article.id), status="extracted"))

    run_humanize(ctx, {"article_id": article.id})

    assert len(generator.calls) == 1
    assert store.get_report_by_article(article.id).id == first.id
    assert store.get_article(article.id).status == "humanized"


def test_humanize_requires_extracted_article(ctx, add_article):
    article = add_article(status="fetched")

    with pytest.raises(StagePreconditionError):
        run_humanize(ctx, {"article_id": article.id})
