from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Iterable

from .db import DBConn, connect_db
from .errors import NotFound
from .models import STATUSES, SyncState, WorkItem
from .utils import format_timestamp, json_dumps, log_event, parse_timestamp, utc_now, utc_now_iso

_ITEM_COLUMNS = (
    "id, source, type, title, body, author, timestamp, priority, url, metadata_json, status"
)
_IN_CHUNK = 500
_FTS_TOKEN = re.compile(r"\w+", re.UNICODE)


def init_db(path: str) -> DBConn:
    return connect_db(path)


def upsert_work_item(conn: DBConn, item: WorkItem) -> None:
    """Insert or refresh an item by id.

    Content fields are overwritten on conflict; ``status``, ``source``, ``type`` and
    ``created_at`` keep their stored values.
    """
    now = utc_now_iso()
    with conn.transaction():
        conn.execute(
            """
            INSERT INTO work_items
                (id, source, type, title, body, author, timestamp, priority, url,
                 metadata_json, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title=excluded.title,
                body=excluded.body,
                author=excluded.author,
                timestamp=excluded.timestamp,
                priority=excluded.priority,
                url=excluded.url,
                metadata_json=excluded.metadata_json,
                updated_at=excluded.updated_at
            """,
            (
                item.id,
                item.source,
                item.type,
                item.title,
                item.body or "",
                item.author or "unknown",
                format_timestamp(item.timestamp),
                item.priority,
                item.url or "",
                json_dumps(item.metadata or {}),
                item.status,
                now,
                now,
            ),
        )


def get_work_item(conn: DBConn, item_id: str) -> WorkItem | None:
    cursor = conn.execute(
        f"SELECT {_ITEM_COLUMNS} FROM work_items WHERE id = ?",
        (item_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_work_item(row)


def list_work_items(
    conn: DBConn,
    source: str | None = None,
    type: str | None = None,
    status: str | None = None,
    since: datetime | str | None = None,
    exclude_statuses: Iterable[str] | None = None,
) -> list[WorkItem]:
    where: list[str] = []
    params: list[object] = []
    if source:
        where.append("source = ?")
        params.append(source)
    if type:
        where.append("type = ?")
        params.append(type)
    if status:
        where.append("status = ?")
        params.append(status)
    if since:
        where.append("timestamp >= ?")
        params.append(format_timestamp(parse_timestamp(since)))
    excluded = list(exclude_statuses or [])
    if excluded:
        where.append(f"status NOT IN ({', '.join('?' for _ in excluded)})")
        params.extend(excluded)
    clause = f"WHERE {' AND '.join(where)}" if where else ""
    cursor = conn.execute(
        f"SELECT {_ITEM_COLUMNS} FROM work_items {clause} ORDER BY timestamp DESC, id",
        params,
    )
    return [_row_to_work_item(row) for row in cursor.fetchall()]


def update_status(conn: DBConn, item_id: str, status: str) -> None:
    if status not in STATUSES:
        raise ValueError(f"unknown status: {status}")
    with conn.transaction():
        cursor = conn.execute(
            "UPDATE work_items SET status = ?, updated_at = ? WHERE id = ?",
            (status, utc_now_iso(), item_id),
        )
        if cursor.rowcount == 0:
            raise NotFound(item_id)
    log_event(
        logging.getLogger("inboxsync.storage"),
        logging.INFO,
        "status_updated",
        item_id=item_id,
        status=status,
    )


def search_work_items(conn: DBConn, query: str) -> list[WorkItem]:
    match = _fts_query(query)
    if not match:
        return []
    cursor = conn.execute(
        f"""
        SELECT {', '.join('w.' + col.strip() for col in _ITEM_COLUMNS.split(','))}
        FROM work_items_fts
        JOIN work_items w ON w.rowid = work_items_fts.rowid
        WHERE work_items_fts MATCH ?
        ORDER BY work_items_fts.rank
        """,
        (match,),
    )
    return [_row_to_work_item(row) for row in cursor.fetchall()]


def _fts_query(query: str) -> str:
    # Quote each term so user punctuation can't reach the FTS5 grammar.
    terms = _FTS_TOKEN.findall(query or "")
    return " ".join(f'"{term}"' for term in terms)


def existing_ids(conn: DBConn, ids: Iterable[str]) -> set[str]:
    wanted = list(dict.fromkeys(ids))
    found: set[str] = set()
    for start in range(0, len(wanted), _IN_CHUNK):
        chunk = wanted[start : start + _IN_CHUNK]
        cursor = conn.execute(
            f"SELECT id FROM work_items WHERE id IN ({', '.join('?' for _ in chunk)})",
            chunk,
        )
        found.update(row[0] for row in cursor.fetchall())
    return found


def count_work_items(conn: DBConn, source: str | None = None) -> int:
    if source:
        cursor = conn.execute("SELECT COUNT(*) FROM work_items WHERE source = ?", (source,))
    else:
        cursor = conn.execute("SELECT COUNT(*) FROM work_items")
    return int(cursor.fetchone()[0])


def get_sync_state(conn: DBConn, source: str) -> SyncState | None:
    cursor = conn.execute(
        "SELECT source, last_sync_time, cursor FROM sync_state WHERE source = ?",
        (source,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_sync_state(row)


def update_sync_state(
    conn: DBConn,
    source: str,
    cursor: str | None = None,
    now: datetime | None = None,
) -> None:
    synced_at = format_timestamp(now or utc_now())
    with conn.transaction():
        conn.execute(
            """
            INSERT INTO sync_state (source, last_sync_time, cursor)
            VALUES (?, ?, ?)
            ON CONFLICT(source) DO UPDATE SET
                last_sync_time = excluded.last_sync_time,
                cursor = excluded.cursor
            """,
            (source, synced_at, cursor),
        )


def list_sync_states(conn: DBConn) -> list[SyncState]:
    cursor = conn.execute(
        "SELECT source, last_sync_time, cursor FROM sync_state ORDER BY last_sync_time DESC, source"
    )
    return [_row_to_sync_state(row) for row in cursor.fetchall()]


def _row_to_work_item(row: tuple) -> WorkItem:
    (
        item_id,
        source,
        item_type,
        title,
        body,
        author,
        timestamp,
        priority,
        url,
        metadata_json,
        status,
    ) = row
    return WorkItem(
        id=item_id,
        source=source,
        type=item_type,
        title=title,
        body=body or "",
        author=author or "unknown",
        timestamp=parse_timestamp(timestamp),
        priority=priority,
        url=url or "",
        metadata=_load_metadata(metadata_json),
        status=status,
    )


def _load_metadata(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _row_to_sync_state(row: tuple) -> SyncState:
    source, last_sync_time, cursor = row
    return SyncState(source=source, last_sync_time=parse_timestamp(last_sync_time), cursor=cursor)
