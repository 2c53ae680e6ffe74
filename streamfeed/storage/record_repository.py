"""
Record Repository
=================

Repository for content records and per-document import attempt counts in
the SQLite host store.
"""

import sqlite3
from datetime import datetime, timezone
from typing import Optional

from ..database.models import ContentRecord, RecordStatus
from ..database.connection import DatabaseConnection
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, PublishError, ErrorCode
from ..utils.validators import slugify


class RecordRepository:
    """Repository for ContentRecord persistence."""

    def __init__(self, db_connection: DatabaseConnection):
        """Initialize record repository.

        Args:
            db_connection: Database connection manager
        """
        self.db = db_connection
        self.logger = get_logger_for_component("record_repository")

    def create_record(self, record: ContentRecord) -> int:
        """Insert a record and its tag links in one transaction.

        Tags missing from the taxonomy are created inside the same
        transaction, so a failure leaves neither the record nor partial
        links behind.

        Args:
            record: Record to create

        Returns:
            Created record ID

        Raises:
            PublishError: If creation fails
        """
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO records (title, slug, body_html, author_id, category_id,
                                         status, source_uid, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.title,
                        record.slug or slugify(record.title),
                        record.body_html,
                        record.author_id,
                        record.category_id,
                        record.status.value,
                        record.source_uid,
                        (record.created_at or datetime.now(timezone.utc)).isoformat(),
                    ),
                )
                record_id = cursor.lastrowid

                for name in record.tags:
                    conn.execute(
                        "INSERT OR IGNORE INTO tags (name, slug) VALUES (?, ?)",
                        (name, slugify(name)),
                    )
                    tag_row = conn.execute(
                        "SELECT id FROM tags WHERE name = ? COLLATE NOCASE", (name,)
                    ).fetchone()
                    conn.execute(
                        "INSERT OR IGNORE INTO record_tags (record_id, tag_id) VALUES (?, ?)",
                        (record_id, tag_row["id"]),
                    )

            self.logger.debug(f"Created record: {record.title} (ID: {record_id})")
            return record_id

        except sqlite3.Error as e:
            raise PublishError(
                f"Failed to create record {record.title}: {e}",
                title=record.title,
            ) from e

    def find_by_title(self, title: str) -> Optional[ContentRecord]:
        """Find the oldest non-trashed record with an exact title.

        Raises:
            DatabaseError: If the lookup fails
        """
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT * FROM records
                    WHERE title = ? AND status != ?
                    ORDER BY id ASC LIMIT 1
                    """,
                    (title.strip(), RecordStatus.TRASH.value),
                ).fetchone()
                return ContentRecord.from_db_row(row) if row else None

        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to look up record titled {title!r}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def get_record(self, record_id: int) -> Optional[ContentRecord]:
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
            return ContentRecord.from_db_row(row) if row else None

    def count_records(self, status: Optional[RecordStatus] = None) -> int:
        query = "SELECT COUNT(*) FROM records"
        params: tuple = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)

        with self.db.get_connection() as conn:
            return conn.execute(query, params).fetchone()[0]

    def update_status(self, record_id: int, status: RecordStatus) -> bool:
        """Change a record's status, e.g. trash it so its title can be re-imported."""
        try:
            affected = self.db.execute_update(
                "UPDATE records SET status = ? WHERE id = ?", (status.value, record_id)
            )
            return affected > 0
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to update record {record_id}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    # Import attempt tracking

    def record_import_failure(self, document_name: str, error: str) -> int:
        """Increment the failure count of a staged document.

        Returns:
            Total failed attempts so far
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO import_attempts (document_name, attempts, last_error, updated_at)
                    VALUES (?, 1, ?, ?)
                    ON CONFLICT(document_name) DO UPDATE SET
                        attempts = attempts + 1,
                        last_error = excluded.last_error,
                        updated_at = excluded.updated_at
                    """,
                    (document_name, error[:1000], datetime.now(timezone.utc).isoformat()),
                )
                row = conn.execute(
                    "SELECT attempts FROM import_attempts WHERE document_name = ?",
                    (document_name,),
                ).fetchone()
                return row["attempts"]

        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to record import attempt for {document_name}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def get_import_attempts(self, document_name: str) -> int:
        row = self.db.execute_one(
            "SELECT attempts FROM import_attempts WHERE document_name = ?", (document_name,)
        )
        return row["attempts"] if row else 0

    def clear_import_failures(self, document_name: str) -> None:
        try:
            self.db.execute_update(
                "DELETE FROM import_attempts WHERE document_name = ?", (document_name,)
            )
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to clear import attempts for {document_name}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e
