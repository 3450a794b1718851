from __future__ import annotations


class PipelineError(ValueError):
    pass


class NotFoundError(PipelineError):
    pass


class SourceNotFound(NotFoundError):
    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id


class ArticleNotFound(NotFoundError):
    def __init__(self, article_id: str) -> None:
        super().__init__(f"Article not found: {article_id}")
        self.article_id = article_id


class ReportNotFound(NotFoundError):
    def __init__(self, article_id: str) -> None:
        super().__init__(f"Report not found for article: {article_id}")
        self.article_id = article_id


class StagePreconditionError(PipelineError):
    pass


class FetchError(PipelineError):
    def __init__(self, url: str, reason: str, status: int | None = None) -> None:
        super().__init__(f"fetch_failed {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class ContentTooShortError(PipelineError):
    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(
            f"Extracted text too short or empty ({length} < {minimum} characters)"
        )
        self.length = length
        self.minimum = minimum


class GenerationError(PipelineError):
    pass


class DuplicateError(PipelineError):
    pass


class UnknownJobType(PipelineError):
    def __init__(self, job_type: str) -> None:
        super().__init__(f"Unknown job type: {job_type}")
        self.job_type = job_type


class FeedParseError(PipelineError):
    pass
