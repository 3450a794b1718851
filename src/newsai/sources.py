from __future__ import annotations

import logging
from typing import Any

import yaml

from .config import ConfigError
from .errors import DuplicateError
from .models import Source
from .storage.base import SourceRegistry
from .utils import log_event, new_id

DEFAULT_SOURCES: list[dict[str, Any]] = [
    {
        "name": "TechCrunch",
        "domain": "techcrunch.com",
        "feed_url": "https://techcrunch.com/feed/",
        "category": "technology",
        "rate_limit_per_hour": 100,
    },
    {
        "name": "Reuters Technology",
        "domain": "reuters.com",
        "feed_url": "https://feeds.reuters.com/reuters/technologyNews",
        "category": "technology",
        "rate_limit_per_hour": 200,
    },
    {
        "name": "BBC Science",
        "domain": "bbc.com",
        "feed_url": "http://feeds.bbci.co.uk/news/science_and_environment/rss.xml",
        "category": "science",
        "rate_limit_per_hour": 150,
    },
]


def source_from_dict(data: dict[str, Any]) -> Source:
    if not isinstance(data, dict):
        raise ConfigError("source entry must be a mapping")
    name = str(data.get("name") or "").strip()
    if not name:
        raise ConfigError("source name is required")
    domain = str(data.get("domain") or "").strip().lower()
    if not domain:
        raise ConfigError(f"source {name} is missing domain")
    rate = data.get("rate_limit_per_hour", 60)
    if isinstance(rate, bool) or not isinstance(rate, int) or rate <= 0:
        raise ConfigError(f"source {name} rate_limit_per_hour must be a positive integer")
    feed_url = str(data.get("feed_url") or "").strip() or None
    return Source(
        id=str(data.get("id") or new_id("src")),
        name=name,
        domain=domain,
        feed_url=feed_url,
        category=str(data.get("category") or "general"),
        active=bool(data.get("active", True)),
        rate_limit_per_hour=rate,
    )


def load_sources_file(path: str) -> list[Source]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"Unable to read sources file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("sources")
    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigError(f"Sources file {path} must contain a list of sources")
    return [source_from_dict(item) for item in data]


def import_sources(
    registry: SourceRegistry, sources: list[Source], logger: logging.Logger
) -> dict[str, int]:
    created = 0
    skipped = 0
    for source in sources:
        try:
            registry.create_source(source)
        except DuplicateError as exc:
            skipped += 1
            log_event(logger, logging.INFO, "source_exists", domain=source.domain, error=str(exc))
            continue
        created += 1
        log_event(logger, logging.INFO, "source_created", source_id=source.id, domain=source.domain)
    return {"created": created, "skipped": skipped}


def seed_default_sources(registry: SourceRegistry, logger: logging.Logger) -> list[Source]:
    if registry.list_sources(active_only=False):
        return []
    seeded = []
    for item in DEFAULT_SOURCES:
        seeded.append(registry.create_source(source_from_dict(item)))
    log_event(logger, logging.INFO, "sources_seeded", count=len(seeded))
    return seeded
