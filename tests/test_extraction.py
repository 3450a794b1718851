import logging

import pytest

from conftest import LONG_PARAGRAPH, article_html
from newsai.errors import ContentTooShortError, FetchError, StagePreconditionError
from newsai.pipelines import run_extraction
from newsai.pipelines.content_fetch import extract_readable_text
from newsai.worker import Dispatcher, build_stage_handlers


def test_extract_prefers_longest_content_container():
    html = (
        "<html><body>"
        "<div class='content'>Short teaser</div>"
        f"<div class='article-body'><p>{LONG_PARAGRAPH}</p><p>Second paragraph.</p></div>"
        "</body></html>"
    )

    text = extract_readable_text(html)

    assert text.startswith("The city council approved")
    assert "Short teaser" not in text
    assert "\n\nSecond paragraph." in text


def test_extract_falls_back_to_body_without_noise():
    html = (
        "<html><body>"
        "<header>Site header</header>"
        "<div class='sidebar'>Trending now</div>"
        "<div class='ad-slot'>Buy things</div>"
        "<div>Main text line one<br>line two &amp; more</div>"
        "<aside>Related</aside>"
        "</body></html>"
    )

    text = extract_readable_text(html)

    assert text == "Main text line one\nline two & more"


def test_extract_strips_scripts_and_collapses_whitespace():
    html = (
        "<html><body><article>"
        "<script>alert('x')</script><style>p {}</style><!-- hidden -->"
        "<p>First   line   here.</p>\n\n\n\n<p>   Second line.   </p>"
        "</article></body></html>"
    )

    text = extract_readable_text(html)

    assert text == "First line here.\n\nSecond line."


def test_extract_matches_class_names_containing_selector():
    html = (
        "<html><body>"
        "<div class='sidebar'>Trending now</div>"
        f"<div class='article-content-wrapper'><p>{LONG_PARAGRAPH}</p></div>"
        "</body></html>"
    )

    text = extract_readable_text(html)

    assert text.startswith("The city council approved")
    assert "Trending now" not in text


def test_extract_honours_declared_charset_of_raw_bytes():
    html = (
        "<html><head><meta charset='iso-8859-1'></head><body>"
        "<article><p>Caf\xe9 owners welcomed the new zoning rules.</p></article>"
        "</body></html>"
    ).encode("latin-1")

    text = extract_readable_text(html)

    assert text == "Café owners welcomed the new zoning rules."


def test_extraction_stores_text_and_enqueues_humanize(ctx, store, fetcher, add_article):
    article = add_article()
    fetcher.responses[article.url] = article_html(f"<p>{LONG_PARAGRAPH}</p>")

    result = run_extraction(ctx, {"article_id": article.id})

    stored = store.get_article(article.id)
    assert stored.status == "extracted"
    assert stored.raw_text.startswith("The city council")
    assert result["chars"] == len(stored.raw_text)
    assert [job.payload for job in store.list_jobs(job_type="humanize")] == [
        {"article_id": article.id}
    ]
    assert fetcher.calls[0]["timeout"] == 30


def test_short_text_marks_article_failed(ctx, store, fetcher, add_article):
    article = add_article()
    fetcher.responses[article.url] = article_html("<p>Too short.</p>")

    with pytest.raises(ContentTooShortError):
        run_extraction(ctx, {"article_id": article.id})

    stored = store.get_article(article.id)
    assert stored.status == "failed"
    assert "too short" in stored.metadata["extraction_error"]
    assert store.list_jobs(job_type="humanize") == []


def test_fetch_error_marks_article_failed(ctx, store, add_article):
    article = add_article()

    with pytest.raises(FetchError):
        run_extraction(ctx, {"article_id": article.id})

    assert store.get_article(article.id).status == "failed"
    assert "404" in store.get_article(article.id).metadata["extraction_error"]


def test_retry_after_failure_can_succeed(ctx, store, fetcher, add_article):
    article = add_article()
    with pytest.raises(FetchError):
        run_extraction(ctx, {"article_id": article.id})

    fetcher.responses[article.url] = article_html(f"<p>{LONG_PARAGRAPH}</p>")
    run_extraction(ctx, {"article_id": article.id})

    stored = store.get_article(article.id)
    assert stored.status == "extracted"
    assert "extraction_error" not in stored.metadata


def test_extraction_requires_fetched_article(ctx, add_article):
    article = add_article(status="extracted", raw_text="already done")

    with pytest.raises(StagePreconditionError):
        run_extraction(ctx, {"article_id": article.id})


def test_short_text_job_fails_after_max_attempts(ctx, store, fetcher, add_article):
    article = add_article()
    fetcher.responses[article.url] = article_html("<p>Too short.</p>")
    job = store.enqueue("extract", {"article_id": article.id})
    dispatcher = Dispatcher(store, build_stage_handlers(ctx), logging.getLogger("test"))

    for _ in range(5):
        dispatcher.run_cycle()

    stored_job = store.get_job(job.id)
    assert stored_job.status == "failed"
    assert stored_job.attempts == 3
    assert "too short" in stored_job.last_error
    assert len(fetcher.calls) == 3
    assert store.get_article(article.id).status == "failed"
