from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from newsai.config import load_config
from newsai.errors import FetchError
from newsai.models import Article, FactCheck, GeneratedContent, Source
from newsai.pipelines import StageContext
from newsai.storage import MemoryStore
from newsai.utils import isoformat_utc, new_id

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

LONG_PARAGRAPH = (
    "The city council approved the new transit plan on Tuesday after a lengthy debate. "
    "\"We finally have a budget that works for every neighbourhood,\" said Mayor Jane Doe. "
    "The plan adds three bus lines and extends service hours on weekends for residents."
)


class FakeGenerator:
    def __init__(self, result: GeneratedContent | None = None, error: Exception | None = None):
        self.result = result or GeneratedContent(
            tldr="Council approves transit plan. Three new bus lines are coming.",
            bullets=["Plan approved", "Three new bus lines"],
            rendered_body="<p>The council approved the plan.</p>",
            plain_body="The council approved the plan.",
            entities={"persons": ["Jane Doe"], "orgs": ["City Council"], "places": []},
            confidence=87.4,
        )
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    def generate(self, title: str, text: str, source_url: str) -> GeneratedContent:
        self.calls.append((title, text, source_url))
        if self.error:
            raise self.error
        return self.result


class FakeScorer:
    def __init__(self, value: float = 72, error: Exception | None = None):
        self.value = value
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def score(self, text_a: str, text_b: str) -> float:
        self.calls.append((text_a, text_b))
        if self.error:
            raise self.error
        return self.value


class FakeVerifier:
    def __init__(self, checks: list[FactCheck] | None = None, error: Exception | None = None):
        self.checks = checks if checks is not None else [
            FactCheck(claim="Three new bus lines", verified=True, confidence=90)
        ]
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def verify(self, original: str, derived: str) -> list[FactCheck]:
        self.calls.append((original, derived))
        if self.error:
            raise self.error
        return self.checks


class FakeFetcher:
    """Serves canned bodies by URL; unknown URLs answer 404."""

    def __init__(self, responses: dict[str, bytes | Exception] | None = None):
        self.responses: dict[str, bytes | Exception] = dict(responses or {})
        self.calls: list[dict[str, object]] = []

    def __call__(self, url: str, *, headers: dict[str, str], timeout: int) -> bytes:
        self.calls.append({"url": url, "headers": headers, "timeout": timeout})
        response = self.responses.get(url)
        if response is None:
            raise FetchError(url, "HTTP 404 Not Found", status=404)
        if isinstance(response, Exception):
            raise response
        return response


class ManualTicker:
    """Never sleeps; asks the loop to stop after ``max_waits`` waits."""

    def __init__(self, max_waits: int = 1):
        self.max_waits = max_waits
        self.waits: list[float] = []
        self.stopped = False

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        return self.stopped or len(self.waits) >= self.max_waits

    def stop(self) -> None:
        self.stopped = True

    def reset(self) -> None:
        self.stopped = False


def rss_feed(items: list[dict[str, str]]) -> bytes:
    parts = []
    for item in items:
        parts.append(
            "<item>"
            f"<title>{item['title']}</title>"
            f"<link>{item['link']}</link>"
            f"<pubDate>{item.get('pub_date', 'Wed, 01 May 2024 10:00:00 GMT')}</pubDate>"
            f"<description>{item.get('description', '')}</description>"
            "</item>"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>Example</title>'
        "<link>https://example.com/</link><description>Example feed</description>"
        + "".join(parts)
        + "</channel></rss>"
    ).encode("utf-8")


def article_html(body: str) -> bytes:
    return (
        "<html><head><title>x</title><script>var tracking = 1;</script></head><body>"
        "<nav>Home | World | Sport</nav>"
        f"<article>{body}</article>"
        "<footer>Copyright</footer></body></html>"
    ).encode("utf-8")


@pytest.fixture
def config(tmp_path, monkeypatch):
    for name in ("NEWSAI_CONFIG", "NEWSAI_LLM_BASE_URL", "NEWSAI_DB_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NEWSAI_DATA_DIR", str(tmp_path / "data"))
    return load_config()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def scorer():
    return FakeScorer()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def ctx(config, store, fetcher, generator, scorer, verifier):
    return StageContext(
        config=config,
        jobs=store,
        sources=store,
        content=store,
        generator=generator,
        scorer=scorer,
        verifier=verifier,
        logger=logging.getLogger("newsai.tests"),
        fetcher=fetcher,
        clock=lambda: NOW,
    )


@pytest.fixture
def add_source(store):
    def _add(**overrides) -> Source:
        values = {
            "id": new_id("src"),
            "name": "Example News",
            "domain": f"{new_id('d')}.example.com",
            "feed_url": "https://example.com/feed.xml",
            "category": "technology",
        }
        values.update(overrides)
        return store.create_source(Source(**values))

    return _add


@pytest.fixture
def add_article(store):
    def _add(**overrides) -> Article:
        article_id = overrides.pop("id", new_id("art"))
        values = {
            "id": article_id,
            "url": f"https://example.com/{article_id}",
            "title": "Council approves transit plan",
            "slug": f"council-approves-transit-plan-{article_id[-6:]}",
            "source_id": None,
            "published_at": isoformat_utc(NOW),
            "fetched_at": isoformat_utc(NOW),
        }
        values.update(overrides)
        return store.create_article(Article(**values))

    return _add
