"""
SQLite Host Content Store
=========================

Bundled ``HostContentStore`` built from the record and tag repositories.
"""

from typing import Optional

from ..database.connection import DatabaseConnection
from ..database.models import ContentRecord
from .interfaces import HostContentStore
from .record_repository import RecordRepository
from .tag_repository import TagRepository


class SqliteContentStore(HostContentStore):
    """Host content store backed by the StreamFeed SQLite database."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.records = RecordRepository(db_connection)
        self.tags = TagRepository(db_connection)

    def find_record_by_title(self, title: str) -> Optional[ContentRecord]:
        record = self.records.find_by_title(title)
        if record is not None and record.id is not None:
            record.tags = self.tags.get_tags_for_record(record.id)
        return record

    def create_record(self, record: ContentRecord) -> int:
        return self.records.create_record(record)

    def ensure_tag(self, name: str) -> int:
        return self.tags.ensure_tag(name)

    def record_import_failure(self, document_name: str, error: str) -> int:
        return self.records.record_import_failure(document_name, error)

    def clear_import_failures(self, document_name: str) -> None:
        self.records.clear_import_failures(document_name)
