from .base import ContentStore, JobStore, SourceRegistry, Store, failure_transition
from .memory import MemoryStore
from .sql import SqlStore

__all__ = [
    "ContentStore",
    "JobStore",
    "MemoryStore",
    "SourceRegistry",
    "SqlStore",
    "Store",
    "failure_transition",
]
