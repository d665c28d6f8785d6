from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .models import WorkItem


@dataclass(frozen=True)
class DedupeResult:
    items: list[WorkItem]
    duplicates: int


def deduplicate(items: Iterable[WorkItem]) -> DedupeResult:
    """Collapse items sharing a non-empty url, keeping the most urgent one.

    Ties keep the first item seen. Items without a url always survive. Survivors sit
    at the position where their url group first appeared.
    """
    slots: list[WorkItem] = []
    by_url: dict[str, int] = {}
    duplicates = 0
    for item in items:
        if not item.url:
            slots.append(item)
            continue
        index = by_url.get(item.url)
        if index is None:
            by_url[item.url] = len(slots)
            slots.append(item)
            continue
        duplicates += 1
        if item.rank < slots[index].rank:
            slots[index] = item
    return DedupeResult(items=slots, duplicates=duplicates)
