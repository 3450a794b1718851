from __future__ import annotations

import threading
from typing import Any

from ..db import DBConn, connect_db
from ..errors import ArticleNotFound, DuplicateError, NotFoundError, SourceNotFound
from ..models import Article, Job, JobStatus, Report, Source, TERMINAL_JOB_STATUSES
from ..utils import json_dumps, json_loads, new_id, utc_now_iso
from .base import Store, failure_transition

_JOB_COLUMNS = (
    "id, job_type, status, payload_json, attempts, max_attempts, last_error, "
    "scheduled_for, started_at, completed_at, created_at"
)
_SOURCE_COLUMNS = (
    "id, name, domain, feed_url, category, active, rate_limit_per_hour, "
    "last_fetched_at, created_at"
)
_ARTICLE_COLUMNS = (
    "id, url, title, slug, source_id, published_at, fetched_at, status, raw_text, "
    "authors_json, category, metadata_json, created_at, updated_at"
)
_REPORT_COLUMNS = (
    "id, article_id, tldr, bullets_json, rendered_body, plain_body, entities_json, "
    "ai_confidence_score, similarity_score, checks_json, reviewed_by, reviewed_at, "
    "review_notes, created_at, updated_at"
)


class SqlStore(Store):
    """Durable store over SQLite or PostgreSQL (see ``db.connect_db``)."""

    def __init__(self, conn: DBConn, max_attempts: int = 3) -> None:
        self.conn = conn
        self.max_attempts = max_attempts
        self._lock = threading.RLock()

    @classmethod
    def open(cls, path: str, max_attempts: int = 3) -> "SqlStore":
        return cls(connect_db(path), max_attempts=max_attempts)

    def close(self) -> None:
        self.conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> Any:
        with self._lock:
            cursor = self.conn.execute(sql, params)
            self.conn.commit()
            return cursor

    def _insert(self, sql: str, params: tuple, duplicate_message: str) -> None:
        with self._lock:
            try:
                self.conn.execute(sql, params)
                self.conn.commit()
            except self.conn.integrity_errors as exc:
                self.conn.rollback()
                raise DuplicateError(f"{duplicate_message}: {exc}") from exc

    def _fetchone(self, sql: str, params: tuple = ()) -> tuple | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # jobs

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, object],
        scheduled_for: str | None = None,
    ) -> Job:
        job = Job(
            id=new_id("job"),
            job_type=str(job_type),
            status=JobStatus.PENDING.value,
            payload=dict(payload or {}),
            attempts=0,
            max_attempts=self.max_attempts,
            last_error=None,
            scheduled_for=scheduled_for,
            started_at=None,
            completed_at=None,
            created_at=utc_now_iso(),
        )
        self._execute(
            f"""
            INSERT INTO jobs ({_JOB_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.job_type,
                job.status,
                json_dumps(job.payload),
                job.attempts,
                job.max_attempts,
                job.last_error,
                job.scheduled_for,
                job.started_at,
                job.completed_at,
                job.created_at,
            ),
        )
        return job

    def claim_pending(
        self,
        job_type: str | None = None,
        limit: int = 10,
        now: str | None = None,
    ) -> list[Job]:
        params: list[object] = [JobStatus.PENDING.value, now or utc_now_iso()]
        type_clause = ""
        if job_type:
            type_clause = " AND job_type = ?"
            params.append(job_type)
        params.append(int(limit))
        rows = self._fetchall(
            f"""
            SELECT {_JOB_COLUMNS}
            FROM jobs
            WHERE status = ?
              AND (scheduled_for IS NULL OR scheduled_for <= ?){type_clause}
            ORDER BY created_at ASC
            LIMIT ?
            """,
            tuple(params),
        )
        return [_row_to_job(row) for row in rows]

    def mark_processing(self, job_id: str) -> Job:
        self._require_job(job_id)
        self._execute(
            "UPDATE jobs SET status = ?, started_at = ? WHERE id = ?",
            (JobStatus.PROCESSING.value, utc_now_iso(), job_id),
        )
        return self._require_job(job_id)

    def mark_completed(self, job_id: str) -> Job:
        self._require_job(job_id)
        self._execute(
            "UPDATE jobs SET status = ?, completed_at = ? WHERE id = ?",
            (JobStatus.COMPLETED.value, utc_now_iso(), job_id),
        )
        return self._require_job(job_id)

    def mark_failed(self, job_id: str, error: str) -> Job:
        with self._lock:
            job = self._require_job(job_id)
            attempts, status = failure_transition(job)
            completed_at = job.completed_at
            if status == JobStatus.FAILED.value and completed_at is None:
                completed_at = utc_now_iso()
            self._execute(
                """
                UPDATE jobs
                SET status = ?, attempts = ?, last_error = ?, completed_at = ?
                WHERE id = ?
                """,
                (status, attempts, error, completed_at, job_id),
            )
            return self._require_job(job_id)

    def get_job(self, job_id: str) -> Job | None:
        row = self._fetchone(f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?", (job_id,))
        return _row_to_job(row) if row else None

    def list_jobs(
        self,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 50,
    ) -> list[Job]:
        clauses: list[str] = []
        params: list[object] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if job_type:
            clauses.append("job_type = ?")
            params.append(job_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(int(limit))
        rows = self._fetchall(
            f"SELECT {_JOB_COLUMNS} FROM jobs {where} ORDER BY created_at DESC LIMIT ?",
            tuple(params),
        )
        return [_row_to_job(row) for row in rows]

    def count_jobs_by_type(self, status: str) -> dict[str, int]:
        rows = self._fetchall(
            "SELECT job_type, COUNT(*) FROM jobs WHERE status = ? GROUP BY job_type",
            (status,),
        )
        return {row[0]: int(row[1]) for row in rows}

    def list_terminal_jobs_before(self, cutoff: str) -> list[Job]:
        rows = self._fetchall(
            f"""
            SELECT {_JOB_COLUMNS}
            FROM jobs
            WHERE status IN (?, ?) AND completed_at IS NOT NULL AND completed_at < ?
            ORDER BY completed_at ASC
            """,
            (*TERMINAL_JOB_STATUSES, cutoff),
        )
        return [_row_to_job(row) for row in rows]

    def requeue_stale_processing(
        self, cutoff: str, error: str = "stale_processing_requeued"
    ) -> list[Job]:
        with self._lock:
            rows = self._fetchall(
                """
                SELECT id FROM jobs
                WHERE status = ? AND started_at IS NOT NULL AND started_at < ?
                ORDER BY started_at ASC
                """,
                (JobStatus.PROCESSING.value, cutoff),
            )
            return [self.mark_failed(row[0], error) for row in rows]

    def _require_job(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    # sources

    def list_sources(self, active_only: bool = True) -> list[Source]:
        where = "WHERE active = 1" if active_only else ""
        rows = self._fetchall(f"SELECT {_SOURCE_COLUMNS} FROM sources {where} ORDER BY name")
        return [_row_to_source(row) for row in rows]

    def get_source(self, source_id: str) -> Source | None:
        row = self._fetchone(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        )
        return _row_to_source(row) if row else None

    def create_source(self, source: Source) -> Source:
        created_at = source.created_at or utc_now_iso()
        self._insert(
            f"INSERT INTO sources ({_SOURCE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                source.id,
                source.name,
                source.domain,
                source.feed_url,
                source.category,
                1 if source.active else 0,
                int(source.rate_limit_per_hour),
                source.last_fetched_at,
                created_at,
            ),
            f"Source domain already registered: {source.domain}",
        )
        return self.get_source(source.id) or source

    def update_source_last_fetch(self, source_id: str, fetched_at: str) -> None:
        cursor = self._execute(
            "UPDATE sources SET last_fetched_at = ? WHERE id = ?", (fetched_at, source_id)
        )
        if cursor.rowcount == 0:
            raise SourceNotFound(source_id)

    # articles

    def get_article(self, article_id: str) -> Article | None:
        return self._article_where("id = ?", (article_id,))

    def get_article_by_url(self, url: str) -> Article | None:
        return self._article_where("url = ?", (url,))

    def get_article_by_slug(self, slug: str) -> Article | None:
        return self._article_where("slug = ?", (slug,))

    def _article_where(self, clause: str, params: tuple) -> Article | None:
        row = self._fetchone(f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE {clause}", params)
        return _row_to_article(row) if row else None

    def list_articles(self, status: str | None = None, limit: int = 50) -> list[Article]:
        if status:
            rows = self._fetchall(
                f"""
                SELECT {_ARTICLE_COLUMNS} FROM articles
                WHERE status = ? ORDER BY fetched_at DESC LIMIT ?
                """,
                (status, int(limit)),
            )
        else:
            rows = self._fetchall(
                f"SELECT {_ARTICLE_COLUMNS} FROM articles ORDER BY fetched_at DESC LIMIT ?",
                (int(limit),),
            )
        return [_row_to_article(row) for row in rows]

    def create_article(self, article: Article) -> Article:
        now = utc_now_iso()
        self._insert(
            f"""
            INSERT INTO articles ({_ARTICLE_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                article.id,
                article.url,
                article.title,
                article.slug,
                article.source_id,
                article.published_at,
                article.fetched_at,
                article.status,
                article.raw_text,
                json_dumps(article.authors),
                article.category,
                json_dumps(article.metadata),
                article.created_at or now,
                now,
            ),
            f"Article url or slug already stored: {article.url}",
        )
        return self.get_article(article.id) or article

    def update_article(self, article: Article) -> Article:
        cursor = self._execute(
            """
            UPDATE articles
            SET title = ?, published_at = ?, status = ?, raw_text = ?, authors_json = ?,
                category = ?, metadata_json = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                article.title,
                article.published_at,
                article.status,
                article.raw_text,
                json_dumps(article.authors),
                article.category,
                json_dumps(article.metadata),
                utc_now_iso(),
                article.id,
            ),
        )
        if cursor.rowcount == 0:
            raise ArticleNotFound(article.id)
        return self.get_article(article.id) or article

    def purge_raw_text(self, fetched_before: str) -> int:
        cursor = self._execute(
            """
            UPDATE articles
            SET raw_text = NULL, updated_at = ?
            WHERE raw_text IS NOT NULL AND fetched_at < ?
            """,
            (utc_now_iso(), fetched_before),
        )
        return int(cursor.rowcount or 0)

    def count_articles(
        self, status: str | None = None, fetched_since: str | None = None
    ) -> int:
        clauses: list[str] = []
        params: list[object] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if fetched_since:
            clauses.append("fetched_at >= ?")
            params.append(fetched_since)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        row = self._fetchone(f"SELECT COUNT(*) FROM articles {where}", tuple(params))
        return int(row[0]) if row else 0

    # reports

    def get_report_by_article(self, article_id: str) -> Report | None:
        row = self._fetchone(
            f"SELECT {_REPORT_COLUMNS} FROM reports WHERE article_id = ?", (article_id,)
        )
        return _row_to_report(row) if row else None

    def create_report(self, report: Report) -> Report:
        if self.get_article(report.article_id) is None:
            raise ArticleNotFound(report.article_id)
        now = utc_now_iso()
        self._insert(
            f"""
            INSERT INTO reports ({_REPORT_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                report.id,
                report.article_id,
                report.tldr,
                json_dumps(report.bullets),
                report.rendered_body,
                report.plain_body,
                json_dumps(report.entities),
                int(report.ai_confidence_score),
                int(report.similarity_score),
                json_dumps(report.checks),
                report.reviewed_by,
                report.reviewed_at,
                report.review_notes,
                report.created_at or now,
                now,
            ),
            f"Report already exists for article: {report.article_id}",
        )
        return self.get_report_by_article(report.article_id) or report

    def update_report_checks(self, report_id: str, checks: dict[str, list]) -> Report:
        cursor = self._execute(
            "UPDATE reports SET checks_json = ?, updated_at = ? WHERE id = ?",
            (json_dumps(checks), utc_now_iso(), report_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Report not found: {report_id}")
        row = self._fetchone(f"SELECT {_REPORT_COLUMNS} FROM reports WHERE id = ?", (report_id,))
        return _row_to_report(row)

    def count_unreviewed_reports(self) -> int:
        row = self._fetchone("SELECT COUNT(*) FROM reports WHERE reviewed_at IS NULL")
        return int(row[0]) if row else 0

    def count_fact_checks(self) -> int:
        total = 0
        for (checks_json,) in self._fetchall("SELECT checks_json FROM reports"):
            checks = json_loads(checks_json, {})
            total += len(checks.get("fact_checks") or [])
        return total


def _row_to_job(row: tuple) -> Job:
    (
        job_id,
        job_type,
        status,
        payload_json,
        attempts,
        max_attempts,
        last_error,
        scheduled_for,
        started_at,
        completed_at,
        created_at,
    ) = row
    return Job(
        id=job_id,
        job_type=job_type,
        status=status,
        payload=json_loads(payload_json, {}),
        attempts=int(attempts),
        max_attempts=int(max_attempts),
        last_error=last_error,
        scheduled_for=scheduled_for,
        started_at=started_at,
        completed_at=completed_at,
        created_at=created_at,
    )


def _row_to_source(row: tuple) -> Source:
    (
        source_id,
        name,
        domain,
        feed_url,
        category,
        active,
        rate_limit_per_hour,
        last_fetched_at,
        created_at,
    ) = row
    return Source(
        id=source_id,
        name=name,
        domain=domain,
        feed_url=feed_url,
        category=category,
        active=bool(active),
        rate_limit_per_hour=int(rate_limit_per_hour),
        last_fetched_at=last_fetched_at,
        created_at=created_at,
    )


def _row_to_article(row: tuple) -> Article:
    (
        article_id,
        url,
        title,
        slug,
        source_id,
        published_at,
        fetched_at,
        status,
        raw_text,
        authors_json,
        category,
        metadata_json,
        created_at,
        updated_at,
    ) = row
    return Article(
        id=article_id,
        url=url,
        title=title,
        slug=slug,
        source_id=source_id,
        published_at=published_at,
        fetched_at=fetched_at,
        status=status,
        raw_text=raw_text,
        authors=list(json_loads(authors_json, [])),
        category=category,
        metadata=dict(json_loads(metadata_json, {})),
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_report(row: tuple) -> Report:
    (
        report_id,
        article_id,
        tldr,
        bullets_json,
        rendered_body,
        plain_body,
        entities_json,
        ai_confidence_score,
        similarity_score,
        checks_json,
        reviewed_by,
        reviewed_at,
        review_notes,
        created_at,
        updated_at,
    ) = row
    return Report(
        id=report_id,
        article_id=article_id,
        tldr=tldr,
        bullets=list(json_loads(bullets_json, [])),
        rendered_body=rendered_body,
        plain_body=plain_body,
        entities=dict(json_loads(entities_json, {})),
        ai_confidence_score=int(ai_confidence_score),
        similarity_score=int(similarity_score),
        checks=dict(json_loads(checks_json, {"fact_checks": [], "quoted_texts": []})),
        reviewed_by=reviewed_by,
        reviewed_at=reviewed_at,
        review_notes=review_notes,
        created_at=created_at,
        updated_at=updated_at,
    )
