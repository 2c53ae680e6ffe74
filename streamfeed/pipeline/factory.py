"""
Coordinator wiring for the command line and the scheduler service.
"""

from typing import Optional

from ..config.settings import StreamFeedSettings, get_settings
from ..database.connection import DatabaseConnection, get_db_manager
from ..database.schema import DatabaseSchema
from ..ingestion.asset_fetcher import AssetFetcher
from ..parsing.content_parser import ContentParser
from ..remote.queue_client import HttpQueueClient
from ..staging.store import StagingStore
from ..storage.content_store import SqliteContentStore
from .coordinator import CycleConfig, ImportCoordinator


def build_coordinator(
    settings: Optional[StreamFeedSettings] = None,
    db: Optional[DatabaseConnection] = None,
) -> ImportCoordinator:
    """Build a coordinator publishing into the bundled SQLite store.

    Injected ``settings`` are authoritative, credentials included. Without
    them the process settings are used, and the queue client re-reads its
    credentials from the current process settings on every call.
    """
    injected = settings is not None
    settings = settings or get_settings()

    schema = DatabaseSchema(settings.database.path)
    if not schema.verify_schema():
        schema.create_tables()
    db = db or get_db_manager(settings.database.path, pool_size=settings.database.pool_size)

    staging = StagingStore(settings.staging)
    staging.ensure_layout()

    host_store = SqliteContentStore(db)
    return ImportCoordinator(
        queue_client=HttpQueueClient(settings.feed if injected else None),
        asset_fetcher=AssetFetcher(settings),
        staging=staging,
        parser=ContentParser(host_store, settings.publishing, settings.staging),
        host_store=host_store,
        config=CycleConfig.from_settings(settings),
    )
