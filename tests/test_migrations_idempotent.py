import sqlite3

from inboxsync.migrations import _get_migrations, apply_migrations
from inboxsync.storage import init_db


def _versions(path):
    conn = sqlite3.connect(path)
    try:
        return [row[0] for row in conn.execute("SELECT version FROM schema_migrations ORDER BY version")]
    finally:
        conn.close()


def test_migrations_apply_once(tmp_path):
    path = str(tmp_path / "state.sqlite3")
    init_db(path).close()
    init_db(path).close()

    expected = [version for version, _ in _get_migrations()]
    assert _versions(path) == sorted(expected)


def test_apply_migrations_twice_on_same_connection(tmp_path):
    conn = sqlite3.connect(str(tmp_path / "state.sqlite3"), isolation_level=None)
    apply_migrations(conn)
    apply_migrations(conn)
    tables = {
        row[0]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type IN ('table', 'trigger')")
    }
    assert {"work_items", "sync_state", "schema_migrations", "work_items_fts"} <= tables
    conn.close()
