import pytest

from newsai.errors import ArticleNotFound, DuplicateError, SourceNotFound
from newsai.models import Article, Report, Source
from newsai.storage import MemoryStore, SqlStore


@pytest.fixture(params=["memory", "sqlite"])
def content_store(request, tmp_path, monkeypatch):
    if request.param == "memory":
        yield MemoryStore()
        return
    monkeypatch.delenv("NEWSAI_DB_URL", raising=False)
    store = SqlStore.open(str(tmp_path / "state.sqlite3"))
    yield store
    store.close()


def _article(article_id, url, slug, fetched_at="2024-05-01T12:00:00.000000+00:00", **extra):
    return Article(
        id=article_id,
        url=url,
        title="Title",
        slug=slug,
        source_id="src_1",
        published_at=fetched_at,
        fetched_at=fetched_at,
        **extra,
    )


def _report(report_id, article_id, fact_checks=0):
    return Report(
        id=report_id,
        article_id=article_id,
        tldr="Short",
        bullets=["one"],
        rendered_body="<p>Body</p>",
        plain_body="Body",
        entities={"persons": [], "orgs": [], "places": []},
        ai_confidence_score=80,
        similarity_score=60,
        checks={
            "fact_checks": [{"claim": "c", "verified": True, "confidence": 90}] * fact_checks,
            "quoted_texts": [],
        },
    )


def test_article_round_trip_keeps_json_fields(content_store):
    created = content_store.create_article(
        _article(
            "art_1",
            "https://example.com/a",
            "title-1",
            authors=["A. Writer"],
            metadata={"description": "Lead"},
        )
    )

    assert created.created_at is not None
    by_url = content_store.get_article_by_url("https://example.com/a")
    by_slug = content_store.get_article_by_slug("title-1")
    assert by_url.id == by_slug.id == "art_1"
    assert by_url.authors == ["A. Writer"]
    assert by_url.metadata == {"description": "Lead"}
    assert by_url.status == "fetched"


def test_article_url_and_slug_are_unique(content_store):
    content_store.create_article(_article("art_1", "https://example.com/a", "slug-a"))

    with pytest.raises(DuplicateError):
        content_store.create_article(_article("art_2", "https://example.com/a", "slug-b"))
    with pytest.raises(DuplicateError):
        content_store.create_article(_article("art_3", "https://example.com/c", "slug-a"))
    assert content_store.count_articles() == 1


def test_source_domain_is_unique(content_store):
    content_store.create_source(
        Source(id="src_1", name="One", domain="example.com", feed_url=None, category="tech")
    )

    with pytest.raises(DuplicateError):
        content_store.create_source(
            Source(id="src_2", name="Two", domain="example.com", feed_url=None, category="tech")
        )


def test_update_last_fetch_unknown_source(content_store):
    with pytest.raises(SourceNotFound):
        content_store.update_source_last_fetch("src_missing", "2024-05-01T12:00:00+00:00")


def test_list_sources_filters_inactive(content_store):
    content_store.create_source(
        Source(id="src_1", name="Active", domain="a.com", feed_url="https://a.com/f", category="x")
    )
    content_store.create_source(
        Source(
            id="src_2",
            name="Paused",
            domain="b.com",
            feed_url="https://b.com/f",
            category="x",
            active=False,
        )
    )

    assert [source.id for source in content_store.list_sources()] == ["src_1"]
    assert len(content_store.list_sources(active_only=False)) == 2


def test_one_report_per_article(content_store):
    content_store.create_article(_article("art_1", "https://example.com/a", "slug-a"))
    content_store.create_report(_report("rep_1", "art_1"))

    with pytest.raises(DuplicateError):
        content_store.create_report(_report("rep_2", "art_1"))
    assert content_store.get_report_by_article("art_1").id == "rep_1"


def test_report_requires_existing_article(content_store):
    with pytest.raises(ArticleNotFound):
        content_store.create_report(_report("rep_1", "art_missing"))


def test_update_report_checks_and_counts(content_store):
    content_store.create_article(_article("art_1", "https://example.com/a", "slug-a"))
    content_store.create_article(_article("art_2", "https://example.com/b", "slug-b"))
    content_store.create_report(_report("rep_1", "art_1", fact_checks=2))
    content_store.create_report(_report("rep_2", "art_2"))

    updated = content_store.update_report_checks(
        "rep_2",
        {
            "fact_checks": [{"claim": "x", "verified": False, "confidence": 40}],
            "quoted_texts": ["a quote that is long"],
        },
    )

    assert updated.checks["quoted_texts"] == ["a quote that is long"]
    assert content_store.count_fact_checks() == 3
    assert content_store.count_unreviewed_reports() == 2


def test_purge_raw_text_only_touches_old_articles(content_store):
    content_store.create_article(
        _article(
            "art_old",
            "https://example.com/old",
            "old",
            fetched_at="2024-04-01T00:00:00.000000+00:00",
            raw_text="old text",
            status="extracted",
        )
    )
    content_store.create_article(
        _article(
            "art_new",
            "https://example.com/new",
            "new",
            fetched_at="2024-04-30T00:00:00.000000+00:00",
            raw_text="new text",
            status="extracted",
        )
    )

    purged = content_store.purge_raw_text("2024-04-24T12:00:00.000000+00:00")

    assert purged == 1
    assert content_store.get_article("art_old").raw_text is None
    assert content_store.get_article("art_new").raw_text == "new text"


def test_count_articles_filters(content_store):
    content_store.create_article(
        _article("art_1", "https://example.com/1", "s1", status="published")
    )
    content_store.create_article(
        _article(
            "art_2",
            "https://example.com/2",
            "s2",
            fetched_at="2024-04-01T00:00:00.000000+00:00",
        )
    )

    assert content_store.count_articles(status="published") == 1
    assert content_store.count_articles(fetched_since="2024-05-01T00:00:00.000000+00:00") == 1
    assert content_store.count_articles() == 2
