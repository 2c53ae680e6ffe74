"""
Tag Repository
==============

Taxonomy access for the SQLite host store. Tag names are matched
case-insensitively; a missing tag is created with a slug.
"""

import sqlite3
from typing import List, Optional

from ..database.connection import DatabaseConnection
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode
from ..utils.validators import sanitize_text, slugify


class TagRepository:
    """Repository for tag lookups and creation."""

    def __init__(self, db_connection: DatabaseConnection):
        """Initialize tag repository.

        Args:
            db_connection: Database connection manager
        """
        self.db = db_connection
        self.logger = get_logger_for_component("tag_repository")

    def ensure_tag(self, name: str) -> int:
        """Return the id of a tag, creating it when missing.

        Args:
            name: Tag name

        Returns:
            Tag ID

        Raises:
            DatabaseError: If the name is empty or the insert fails
        """
        name = sanitize_text(name)
        if not name:
            raise DatabaseError(
                "Tag name cannot be empty",
                error_code=ErrorCode.TAG_CREATE_FAILED,
                recoverable=False,
            )

        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT id FROM tags WHERE name = ? COLLATE NOCASE", (name,)
                ).fetchone()
                if row:
                    return row["id"]

                try:
                    cursor = conn.execute(
                        "INSERT INTO tags (name, slug) VALUES (?, ?)",
                        (name, slugify(name)),
                    )
                    conn.commit()
                    tag_id = cursor.lastrowid
                except sqlite3.IntegrityError:
                    # Created concurrently between SELECT and INSERT
                    conn.rollback()
                    row = conn.execute(
                        "SELECT id FROM tags WHERE name = ? COLLATE NOCASE", (name,)
                    ).fetchone()
                    if not row:
                        raise
                    return row["id"]

            self.logger.debug(f"Created tag: {name} (ID: {tag_id})")
            return tag_id

        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to ensure tag {name}: {e}",
                error_code=ErrorCode.TAG_CREATE_FAILED,
            ) from e

    def get_tag_id(self, name: str) -> Optional[int]:
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT id FROM tags WHERE name = ? COLLATE NOCASE", (name.strip(),)
            ).fetchone()
            return row["id"] if row else None

    def get_tags_for_record(self, record_id: int) -> List[str]:
        """Tag names linked to a record, in link order."""
        with self.db.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT t.name FROM tags t
                JOIN record_tags rt ON rt.tag_id = t.id
                WHERE rt.record_id = ?
                ORDER BY rt.rowid
                """,
                (record_id,),
            ).fetchall()
            return [row["name"] for row in rows]

    def count_tags(self) -> int:
        with self.db.get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0]
