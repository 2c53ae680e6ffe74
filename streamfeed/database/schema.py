"""
StreamFeed Database Schema
=========================

SQLite schema for the bundled host content store:
- records: content records created from staged documents
- tags: the host taxonomy keywords are mapped into
- record_tags: record/tag links
- import_attempts: failed import counts per staged file (attempt cap)
"""

import sqlite3
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


EXPECTED_TABLES = {"records", "tags", "record_tags", "import_attempts"}


class DatabaseSchema:
    """Database schema manager for the StreamFeed SQLite database."""

    def __init__(self, db_path: str = "data/streamfeed.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables and indexes."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("PRAGMA foreign_keys = ON")

            self._create_records_table(conn)
            self._create_tags_table(conn)
            self._create_record_tags_table(conn)
            self._create_import_attempts_table(conn)
            self._create_indexes(conn)

            conn.commit()
            logger.info("Database schema created successfully")

    def _create_records_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                slug TEXT NOT NULL,
                body_html TEXT NOT NULL DEFAULT '',
                author_id INTEGER,
                category_id INTEGER,
                status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'publish', 'trash')),
                source_uid TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

    def _create_tags_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL COLLATE NOCASE UNIQUE,
                slug TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

    def _create_record_tags_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS record_tags (
                record_id INTEGER NOT NULL,
                tag_id INTEGER NOT NULL,
                PRIMARY KEY (record_id, tag_id),
                FOREIGN KEY (record_id) REFERENCES records(id) ON DELETE CASCADE,
                FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
            )
        """
        )

    def _create_import_attempts_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS import_attempts (
                document_name TEXT PRIMARY KEY,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

    def _create_indexes(self, conn: sqlite3.Connection) -> None:
        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_records_title ON records(title)",
            "CREATE INDEX IF NOT EXISTS idx_records_status ON records(status)",
            "CREATE INDEX IF NOT EXISTS idx_records_source_uid ON records(source_uid)",
            "CREATE INDEX IF NOT EXISTS idx_record_tags_tag ON record_tags(tag_id)",
        ]

        for index_sql in indexes:
            conn.execute(index_sql)

    def drop_tables(self) -> None:
        """Drop all tables (for testing/reset purposes)."""
        with sqlite3.connect(self.db_path) as conn:
            for table in ("record_tags", "import_attempts", "records", "tags"):
                conn.execute(f"DROP TABLE IF EXISTS {table}")

            conn.commit()
            logger.info("All database tables dropped")

    def verify_schema(self) -> bool:
        """Verify all expected tables exist."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.execute(
                    """
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name NOT LIKE 'sqlite_%'
                """
                )
                tables = {row[0] for row in cursor.fetchall()}

            missing = EXPECTED_TABLES - tables
            if missing:
                logger.error(f"Missing tables: {sorted(missing)}")
                return False

            logger.info("Database schema verification passed")
            return True

        except sqlite3.Error as e:
            logger.error(f"Schema verification failed: {e}")
            return False
