from __future__ import annotations

import logging
from typing import Any, Callable

from .utils import utc_now_iso

Migration = Callable[[Any], None]


def apply_migrations(conn: Any) -> None:
    logger = logging.getLogger("newsai.migrations")
    conn.execute("BEGIN IMMEDIATE")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_sources(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sources (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            domain TEXT NOT NULL UNIQUE,
            feed_url TEXT NULL,
            category TEXT NOT NULL,
            active INTEGER NOT NULL DEFAULT 1,
            rate_limit_per_hour INTEGER NOT NULL DEFAULT 60,
            last_fetched_at TEXT NULL,
            created_at TEXT NOT NULL
        )
        """
    )


def _migration_articles(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id TEXT PRIMARY KEY,
            url TEXT NOT NULL UNIQUE,
            title TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            source_id TEXT NULL,
            published_at TEXT NULL,
            fetched_at TEXT NOT NULL,
            raw_text TEXT NULL,
            authors_json TEXT NULL,
            category TEXT NOT NULL,
            status TEXT NOT NULL,
            metadata_json TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_status ON articles(status)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_fetched ON articles(fetched_at)")


def _migration_reports(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS reports (
            id TEXT PRIMARY KEY,
            article_id TEXT NOT NULL UNIQUE REFERENCES articles(id),
            tldr TEXT NOT NULL,
            bullets_json TEXT NOT NULL,
            rendered_body TEXT NOT NULL,
            plain_body TEXT NOT NULL,
            entities_json TEXT NOT NULL,
            ai_confidence_score INTEGER NOT NULL DEFAULT 0,
            similarity_score INTEGER NOT NULL DEFAULT 0,
            checks_json TEXT NOT NULL,
            reviewed_by TEXT NULL,
            reviewed_at TEXT NULL,
            review_notes TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )


def _migration_jobs(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
            id TEXT PRIMARY KEY,
            job_type TEXT NOT NULL,
            status TEXT NOT NULL,
            payload_json TEXT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            last_error TEXT NULL,
            scheduled_for TEXT NULL,
            started_at TEXT NULL,
            completed_at TEXT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_type ON jobs(job_type)")


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_sources", _migration_sources),
        ("002_articles", _migration_articles),
        ("003_reports", _migration_reports),
        ("004_jobs", _migration_jobs),
    ]
