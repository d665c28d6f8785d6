from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator

from .errors import StorageError
from .migrations import apply_migrations


class DBConn:
    """Thin wrapper over a sqlite3 connection.

    Statements are serialized through one re-entrant lock so API worker threads and a
    sync run can share the connection. ``transaction()`` nests: only the outermost
    block issues BEGIN/COMMIT, and any error rolls the whole unit back.
    """

    def __init__(self, conn: sqlite3.Connection, path: str) -> None:
        self._conn = conn
        self.path = path
        self.lock = threading.RLock()
        self._depth = 0

    def execute(self, sql: str, params: tuple | list | None = None) -> sqlite3.Cursor:
        params = params or ()
        with self.lock:
            try:
                return self._conn.execute(sql, params)
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc

    def executemany(self, sql: str, seq_of_params) -> sqlite3.Cursor:
        with self.lock:
            try:
                return self._conn.executemany(sql, seq_of_params)
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc

    @contextmanager
    def transaction(self) -> Iterator["DBConn"]:
        with self.lock:
            outermost = self._depth == 0
            if outermost:
                self.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise
            self._depth -= 1
            if outermost:
                try:
                    self._conn.commit()
                except sqlite3.Error as exc:
                    self._rollback()
                    raise StorageError(str(exc)) from exc

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.rollback()

    def close(self) -> None:
        with self.lock:
            self._conn.close()

    def __getattr__(self, name: str):
        return getattr(self._conn, name)


def connect_db(path: str) -> DBConn:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    try:
        raw = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        raw.execute("PRAGMA journal_mode=WAL")
        raw.execute("PRAGMA synchronous=NORMAL")
        raw.execute("PRAGMA busy_timeout=5000")
        apply_migrations(raw)
    except sqlite3.Error as exc:
        raise StorageError(f"cannot open {path}: {exc}") from exc
    return DBConn(raw, path)
