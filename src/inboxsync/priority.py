"""Priority rules.

Two passes that must never be merged: ``apply_ingest_rules`` runs before an item is
persisted, ``escalate_for_age`` runs on read and its result is never written back.
Both return new ``WorkItem`` objects and leave their input untouched.
"""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable

from .models import PRIORITY_RANK, WorkItem
from .utils import to_utc, utc_now

DEFAULT_URGENT_KEYWORDS = ("urgent", "critical", "hotfix", "p0", "sev-0", "outage", "down")
HIGH_TYPES = ("pull_request", "mention")
NORMAL_ESCALATION_HOURS = 24
HIGH_ESCALATION_HOURS = 48


def _keyword_pattern(keyword: str) -> str:
    # "sev-0" also matches "sev0" and "sev 0"
    parts = [re.escape(part) for part in re.split(r"[-\s]+", keyword.strip()) if part]
    return r"[-\s]?".join(parts)


def compile_keywords(keywords: Iterable[str]) -> re.Pattern[str]:
    patterns = [_keyword_pattern(keyword) for keyword in keywords if keyword.strip()]
    if not patterns:
        return re.compile(r"(?!x)x")
    return re.compile(r"\b(" + "|".join(patterns) + r")\b", re.IGNORECASE)


_DEFAULT_PATTERN = compile_keywords(DEFAULT_URGENT_KEYWORDS)


def at_least(priority: str, floor: str) -> str:
    if PRIORITY_RANK[priority] <= PRIORITY_RANK[floor]:
        return priority
    return floor


def is_direct_message(item: WorkItem) -> bool:
    metadata = item.metadata or {}
    return bool(metadata.get("is_dm") or metadata.get("isDM"))


def apply_ingest_rules(
    item: WorkItem,
    urgent_keywords: Iterable[str] | re.Pattern[str] | None = None,
) -> WorkItem:
    if urgent_keywords is None:
        pattern = _DEFAULT_PATTERN
    elif isinstance(urgent_keywords, re.Pattern):
        pattern = urgent_keywords
    else:
        pattern = compile_keywords(urgent_keywords)

    priority = item.priority
    if item.type in HIGH_TYPES or is_direct_message(item):
        priority = at_least(priority, "high")
    # keyword match is a hard override, not a max
    if pattern.search(item.title or "") or pattern.search(item.body or ""):
        priority = "urgent"
    if priority == item.priority:
        return item
    return replace(item, priority=priority)


def escalate_for_age(
    item: WorkItem,
    now: datetime | None = None,
    normal_after_hours: float = NORMAL_ESCALATION_HOURS,
    high_after_hours: float = HIGH_ESCALATION_HOURS,
) -> WorkItem:
    now = to_utc(now) if now else utc_now()
    age = now - to_utc(item.timestamp)
    if item.priority == "normal" and age > timedelta(hours=normal_after_hours):
        return replace(item, priority="high")
    if item.priority == "high" and age > timedelta(hours=high_after_hours):
        return replace(item, priority="urgent")
    return item


def sort_inbox(items: Iterable[WorkItem]) -> list[WorkItem]:
    by_recency = sorted(items, key=lambda item: to_utc(item.timestamp), reverse=True)
    return sorted(by_recency, key=lambda item: item.rank)
