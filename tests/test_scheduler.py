import logging
import time
from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import NOW
from newsai.config import SchedulerConfig
from newsai.errors import SourceNotFound
from newsai.models import Source
from newsai.scheduler import Scheduler, is_fetch_due, min_fetch_interval
from newsai.storage import MemoryStore
from newsai.ticker import EventTicker
from newsai.utils import isoformat_utc, utc_now

LOGGER = logging.getLogger("newsai.tests")


def _scheduler(store, config, **kwargs):
    return Scheduler(store, store, store, config.scheduler, LOGGER, clock=lambda: NOW, **kwargs)


def _fetch_jobs(store):
    return store.list_jobs(job_type="fetch")


def test_source_fetched_61_seconds_ago_is_due(store, config, add_source):
    source = add_source(
        rate_limit_per_hour=60, last_fetched_at=isoformat_utc(NOW - timedelta(seconds=61))
    )

    enqueued = _scheduler(store, config).schedule_fetches(NOW)

    assert enqueued == [source.id]
    jobs = _fetch_jobs(store)
    assert len(jobs) == 1
    assert jobs[0].payload == {"source_id": source.id}
    assert jobs[0].scheduled_for == isoformat_utc(NOW)


def test_source_fetched_30_seconds_ago_is_rate_limited(store, config, add_source):
    add_source(rate_limit_per_hour=60, last_fetched_at=isoformat_utc(NOW - timedelta(seconds=30)))

    assert _scheduler(store, config).schedule_fetches(NOW) == []
    assert _fetch_jobs(store) == []


def test_sources_without_feed_or_inactive_are_skipped(store, config, add_source):
    add_source(feed_url=None)
    add_source(active=False)
    never_fetched = add_source()

    assert _scheduler(store, config).schedule_fetches(NOW) == [never_fetched.id]


def test_min_interval_uses_rate_limit(add_source):
    fast = add_source(rate_limit_per_hour=200)
    unset = add_source(rate_limit_per_hour=0)

    assert min_fetch_interval(fast) == timedelta(seconds=18)
    assert min_fetch_interval(unset) == timedelta(seconds=60)
    assert is_fetch_due(replace(fast, last_fetched_at=isoformat_utc(NOW - timedelta(seconds=18))), NOW)


class _FlakyStore(MemoryStore):
    def __init__(self, bad_source_id):
        super().__init__()
        self.bad_source_id = bad_source_id

    def enqueue(self, job_type, payload, scheduled_for=None):
        if payload.get("source_id") == self.bad_source_id:
            raise RuntimeError("queue unavailable")
        return super().enqueue(job_type, payload, scheduled_for)


def test_failure_on_one_source_does_not_block_others(config):
    store = _FlakyStore("src_bad")
    store.create_source(
        Source(id="src_bad", name="A", domain="a.com", feed_url="https://a.com/f", category="x")
    )
    store.create_source(
        Source(id="src_ok", name="B", domain="b.com", feed_url="https://b.com/f", category="x")
    )

    assert _scheduler(store, config).schedule_fetches(NOW) == ["src_ok"]


def test_cleanup_purges_raw_text_past_retention(store, config, add_article):
    old = add_article(
        status="extracted",
        raw_text="old text",
        fetched_at=isoformat_utc(NOW - timedelta(days=8)),
    )
    fresh = add_article(
        status="humanized",
        raw_text="fresh text",
        fetched_at=isoformat_utc(NOW - timedelta(days=1)),
    )

    result = _scheduler(store, config).cleanup(NOW)

    assert result["raw_text_purged"] == 1
    assert store.get_article(old.id).raw_text is None
    assert store.get_article(fresh.id).raw_text == "fresh text"


def test_cleanup_counts_but_keeps_old_terminal_jobs(store, config):
    done = store.enqueue("fetch", {})
    store.mark_completed(done.id)
    store.enqueue("fetch", {})
    scheduler = _scheduler(store, config)

    assert scheduler.cleanup(utc_now() + timedelta(days=1))["stale_jobs"] == 0
    assert scheduler.cleanup(utc_now() + timedelta(days=31))["stale_jobs"] == 1
    assert store.get_job(done.id).status == "completed"


def test_manual_fetch_ignores_rate_limit(store, config, add_source):
    source = add_source(last_fetched_at=isoformat_utc(NOW))

    job = _scheduler(store, config).enqueue_manual_fetch(source.id)

    assert job.payload == {"source_id": source.id}
    with pytest.raises(SourceNotFound):
        _scheduler(store, config).enqueue_manual_fetch("src_missing")


def test_tick_waits_for_initial_delay_then_interval(store, config, add_source):
    add_source()
    scheduler = _scheduler(store, config)

    assert scheduler.tick(NOW) == {}
    assert scheduler.tick(NOW + timedelta(seconds=5))["fetch"]
    assert scheduler.tick(NOW + timedelta(minutes=10)) == {}
    later = scheduler.tick(NOW + timedelta(seconds=5, minutes=30))
    assert "fetch" in later
    assert len(_fetch_jobs(store)) == 2


def test_start_and_stop_background_thread(store, add_source):
    add_source()
    config = SchedulerConfig(
        fetch_interval_minutes=30,
        initial_delay_seconds=0.0,
        cleanup_interval_hours=24,
        raw_text_retention_days=7,
        job_retention_days=30,
    )
    scheduler = Scheduler(store, store, store, config, LOGGER, ticker=EventTicker())

    scheduler.start()
    deadline = time.monotonic() + 5
    while not _fetch_jobs(store) and time.monotonic() < deadline:
        time.sleep(0.01)
    scheduler.stop(timeout=5)

    assert len(_fetch_jobs(store)) == 1
    assert scheduler._thread is None
