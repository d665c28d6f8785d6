from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any
from urllib.request import Request, urlopen

import feedparser

from .. import retry
from ..errors import AdapterError
from ..models import WorkItem
from ..utils import log_event, normalize_url, short_hash, utc_now


class FeedAdapter:
    """Read-only source that turns RSS/Atom entries into notification items."""

    def __init__(
        self,
        name: str,
        url: str,
        headers: dict[str, str] | None = None,
        timeout_seconds: float = 20,
        max_attempts: int = retry.DEFAULT_MAX_ATTEMPTS,
        base_delay_seconds: float = retry.BASE_DELAY_SECONDS,
        max_delay_seconds: float = retry.MAX_DELAY_SECONDS,
        user_agent: str = "inboxsync/0.1",
    ) -> None:
        self.name = name
        self.url = url
        self.headers = {"User-Agent": user_agent, **(headers or {})}
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self._get_wait = partial(
            retry.default_get_wait_seconds,
            base_delay=base_delay_seconds,
            max_delay=max_delay_seconds,
        )
        self._connected = False
        self.logger = logging.getLogger("inboxsync.adapters.feed")

    def connect(self) -> None:
        if not self.url:
            raise AdapterError("feed url is not configured", source=self.name)
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def fetch(self) -> list[WorkItem]:
        content = retry.execute(
            self._download,
            max_attempts=self.max_attempts,
            get_wait_seconds=self._get_wait,
            logger=self.logger,
            source=self.name,
        )
        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            raise AdapterError(f"unparseable feed: {parsed.bozo_exception}", source=self.name)
        if parsed.bozo:
            log_event(
                self.logger,
                logging.WARNING,
                "feed_parse_warning",
                source=self.name,
                error=parsed.bozo_exception,
            )
        items = []
        for entry in parsed.entries:
            item = self._entry_to_item(entry)
            if item is not None:
                items.append(item)
        log_event(
            self.logger,
            logging.INFO,
            "feed_parsed",
            source=self.name,
            found_count=len(parsed.entries),
            item_count=len(items),
        )
        return items

    def perform_action(
        self, item_id: str, action: str, params: dict[str, Any] | None = None
    ) -> None:
        raise AdapterError(f"feed sources do not support actions ({action})", source=self.name)

    def _download(self) -> bytes:
        request = Request(self.url, headers=self.headers)
        with urlopen(request, timeout=self.timeout_seconds) as response:
            return response.read()

    def _entry_to_item(self, entry: Any) -> WorkItem | None:
        link = entry.get("link") or ""
        native_id = entry.get("id") or link
        if not native_id:
            return None
        author = entry.get("author") or "unknown"
        return WorkItem(
            id=f"{self.name}-notification-{short_hash(native_id)}",
            source=self.name,
            type="notification",
            title=(entry.get("title") or "").strip() or link or native_id,
            body=entry.get("summary") or entry.get("description") or "",
            author=author,
            timestamp=_entry_timestamp(entry),
            url=normalize_url(link),
            metadata={"feed_url": self.url, "entry_id": native_id},
        )


def _entry_timestamp(entry: Any) -> datetime:
    for key in ("updated_parsed", "published_parsed"):
        value = entry.get(key)
        if value:
            return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    return utc_now()
