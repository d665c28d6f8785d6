from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import jsonschema

from .utils import format_timestamp, parse_timestamp


ITEM_TYPES = ("mention", "task", "message", "pull_request", "issue", "notification")
PRIORITIES = ("urgent", "high", "normal", "low")
PRIORITY_RANK = {name: rank for rank, name in enumerate(PRIORITIES)}
STATUSES = ("new", "seen", "in_progress", "done", "dismissed")
CLOSED_STATUSES = ("done", "dismissed")

WORK_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "source", "type", "title", "timestamp"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "source": {"type": "string", "minLength": 1},
        "type": {"enum": list(ITEM_TYPES)},
        "title": {"type": "string"},
        "body": {"type": ["string", "null"]},
        "author": {"type": ["string", "null"]},
        "timestamp": {"type": ["string", "number"]},
        "priority": {"enum": list(PRIORITIES)},
        "url": {"type": ["string", "null"]},
        "metadata": {"type": ["object", "null"]},
        "status": {"enum": list(STATUSES)},
    },
}


@dataclass(frozen=True)
class WorkItem:
    id: str
    source: str
    type: str
    title: str
    timestamp: datetime
    body: str = ""
    author: str = "unknown"
    priority: str = "normal"
    url: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    status: str = "new"

    def __post_init__(self) -> None:
        if self.type not in ITEM_TYPES:
            raise ValueError(f"invalid work item {self.id}: unknown type {self.type!r}")
        if self.priority not in PRIORITY_RANK:
            raise ValueError(f"invalid work item {self.id}: unknown priority {self.priority!r}")
        if self.status not in STATUSES:
            raise ValueError(f"invalid work item {self.id}: unknown status {self.status!r}")
        if not isinstance(self.timestamp, datetime):
            raise ValueError(f"invalid work item {self.id}: timestamp must be a datetime")

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self.priority]


@dataclass(frozen=True)
class SyncState:
    source: str
    last_sync_time: datetime
    cursor: str | None


@dataclass
class SourceStats:
    fetched: int = 0
    new: int = 0
    error: str | None = None


@dataclass
class SyncStats:
    total: int = 0
    new: int = 0
    duplicates: int = 0
    sources: dict[str, SourceStats] = field(default_factory=dict)
    started_at: str | None = None
    finished_at: str | None = None


def work_item_from_dict(data: dict[str, Any]) -> WorkItem:
    # YAML loaders hand back datetime objects for unquoted timestamps
    if isinstance(data.get("timestamp"), (datetime, date)):
        data = {**data, "timestamp": data["timestamp"].isoformat()}
    try:
        jsonschema.validate(data, WORK_ITEM_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise ValueError(f"invalid work item: {exc.message}") from exc
    return WorkItem(
        id=data["id"],
        source=data["source"],
        type=data["type"],
        title=data["title"],
        body=data.get("body") or "",
        author=data.get("author") or "unknown",
        timestamp=parse_timestamp(data["timestamp"]),
        priority=data.get("priority") or "normal",
        url=data.get("url") or "",
        metadata=dict(data.get("metadata") or {}),
        status=data.get("status") or "new",
    )


def work_item_to_dict(item: WorkItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "source": item.source,
        "type": item.type,
        "title": item.title,
        "body": item.body,
        "author": item.author,
        "timestamp": format_timestamp(item.timestamp),
        "priority": item.priority,
        "url": item.url,
        "metadata": dict(item.metadata),
        "status": item.status,
    }
