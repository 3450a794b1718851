from .context import StageContext
from .content_fetch import run_extraction
from .fact_check import run_fact_check
from .feed_fetch import run_feed_fetch
from .humanize import run_humanize

__all__ = [
    "StageContext",
    "run_extraction",
    "run_fact_check",
    "run_feed_fetch",
    "run_humanize",
]
