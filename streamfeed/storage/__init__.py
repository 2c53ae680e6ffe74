"""
StreamFeed Storage Layer
=======================

Host content store interface and the bundled SQLite implementation.
"""

from .interfaces import HostContentStore, TagRegistry
from .record_repository import RecordRepository
from .tag_repository import TagRepository
from .content_store import SqliteContentStore

__all__ = [
    "HostContentStore",
    "TagRegistry",
    "RecordRepository",
    "TagRepository",
    "SqliteContentStore",
]
