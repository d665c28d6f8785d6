from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("inboxsync.migrations")
    conn.execute("BEGIN IMMEDIATE")
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        applied = {
            row[0]
            for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
        }
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS work_items (
            id TEXT PRIMARY KEY,
            source TEXT NOT NULL,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            body TEXT NOT NULL DEFAULT '',
            author TEXT NOT NULL DEFAULT 'unknown',
            timestamp TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'normal',
            url TEXT NOT NULL DEFAULT '',
            metadata_json TEXT NOT NULL DEFAULT '{}',
            status TEXT NOT NULL DEFAULT 'new',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_work_items_source ON work_items(source)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_work_items_status ON work_items(status)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_work_items_timestamp ON work_items(timestamp DESC)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_work_items_url ON work_items(url)")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_state (
            source TEXT PRIMARY KEY,
            last_sync_time TEXT NOT NULL,
            cursor TEXT NULL
        )
        """
    )


def _migration_work_items_fts(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE VIRTUAL TABLE IF NOT EXISTS work_items_fts USING fts5(
            title, body, author,
            content='work_items',
            content_rowid='rowid'
        )
        """
    )
    # The index follows every row change inside the writer's own transaction.
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS work_items_fts_ai AFTER INSERT ON work_items BEGIN
            INSERT INTO work_items_fts(rowid, title, body, author)
            VALUES (new.rowid, new.title, new.body, new.author);
        END
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS work_items_fts_ad AFTER DELETE ON work_items BEGIN
            INSERT INTO work_items_fts(work_items_fts, rowid, title, body, author)
            VALUES ('delete', old.rowid, old.title, old.body, old.author);
        END
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS work_items_fts_au AFTER UPDATE OF title, body, author
        ON work_items BEGIN
            INSERT INTO work_items_fts(work_items_fts, rowid, title, body, author)
            VALUES ('delete', old.rowid, old.title, old.body, old.author);
            INSERT INTO work_items_fts(rowid, title, body, author)
            VALUES (new.rowid, new.title, new.body, new.author);
        END
        """
    )
    conn.execute("INSERT INTO work_items_fts(work_items_fts) VALUES ('rebuild')")


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_work_items_fts", _migration_work_items_fts),
    ]
