"""
StreamFeed - Content Stream Ingestion
=====================================

Polls a remote Content Stream queue, stages documents and media assets
locally, and imports them as content records into a host content store.

Main Components:
- Remote queue client: list, fetch and delete queued items over HTTP
- Asset fetcher: atomic streaming downloads with retry
- Staging store: staged, imported and quarantined documents on disk
- Content parser: XML documents to content records with tags
- Import coordinator: locked cycles with per-item failure isolation
"""

__version__ = "0.3.0"
__author__ = "StreamFeed Development Team"
__description__ = "Content Stream feed ingestion pipeline"

from .config.settings import get_settings
from .database.connection import get_db_manager
from .database.schema import DatabaseSchema
from .utils.logging import configure_application_logging, get_logger_for_component
from .utils.exceptions import StreamFeedError

__all__ = [
    "get_settings",
    "get_db_manager",
    "DatabaseSchema",
    "configure_application_logging",
    "get_logger_for_component",
    "StreamFeedError",
]
