from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, Iterable, Sequence

from . import retry
from .adapters.base import SourceAdapter
from .db import DBConn
from .dedupe import deduplicate
from .errors import AdapterError
from .models import CLOSED_STATUSES, SourceStats, SyncStats, WorkItem
from .priority import (
    DEFAULT_URGENT_KEYWORDS,
    HIGH_ESCALATION_HOURS,
    NORMAL_ESCALATION_HOURS,
    apply_ingest_rules,
    compile_keywords,
    escalate_for_age,
    sort_inbox,
)
from .storage import (
    count_work_items,
    existing_ids,
    list_sync_states,
    list_work_items,
    update_sync_state,
    upsert_work_item,
)
from .utils import format_timestamp, log_event, utc_now, utc_now_iso

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class SyncResult:
    items: list[WorkItem]
    stats: SyncStats


@dataclass
class _Fetch:
    adapter: SourceAdapter
    cancel: threading.Event
    future: Future | None = None
    items: list[WorkItem] | None = None
    error: str | None = None


def exclude_native_statuses(items: Iterable[WorkItem], statuses: Iterable[str] | None) -> list[WorkItem]:
    """Drop items whose source-side ``metadata["status"]`` is one of ``statuses``.

    Matching ignores case. Items without a native status are kept.
    """
    excluded = {status.strip().lower() for status in statuses or () if status.strip()}
    if not excluded:
        return list(items)
    return [
        item
        for item in items
        if str((item.metadata or {}).get("status") or "").lower() not in excluded
    ]


def get_inbox(
    conn: DBConn,
    source: str | None = None,
    type: str | None = None,
    status: str | None = None,
    since: datetime | str | None = None,
    now: datetime | None = None,
    normal_after_hours: float = NORMAL_ESCALATION_HOURS,
    high_after_hours: float = HIGH_ESCALATION_HOURS,
    exclude_native: Iterable[str] | None = None,
) -> list[WorkItem]:
    """Current inbox, most urgent first.

    Closed items are hidden unless ``status`` asks for them explicitly. ``exclude_native``
    drops items by their source-side status. Age escalation is applied to the returned
    copies only.
    """
    items = list_work_items(
        conn,
        source=source,
        type=type,
        status=status,
        since=since,
        exclude_statuses=None if status else CLOSED_STATUSES,
    )
    now = now or utc_now()
    escalated = [
        escalate_for_age(
            item,
            now=now,
            normal_after_hours=normal_after_hours,
            high_after_hours=high_after_hours,
        )
        for item in exclude_native_statuses(items, exclude_native)
    ]
    return sort_inbox(escalated)


def sync_overview(
    conn: DBConn, source_names: Iterable[str] = (), window_days: int = 7
) -> dict[str, Any]:
    """Per-source item counts and the most recent sync time across all sources."""
    states = list_sync_states(conn)
    names = list(dict.fromkeys([*source_names, *(state.source for state in states)]))
    return {
        "last_sync": format_timestamp(states[0].last_sync_time) if states else None,
        "window_days": window_days,
        "item_counts": {name: count_work_items(conn, source=name) for name in names},
        "total": count_work_items(conn),
    }


class SyncOrchestrator:
    def __init__(
        self,
        conn: DBConn,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        urgent_keywords: Iterable[str] = DEFAULT_URGENT_KEYWORDS,
        normal_after_hours: float = NORMAL_ESCALATION_HOURS,
        high_after_hours: float = HIGH_ESCALATION_HOURS,
        retry_attempts: int = retry.DEFAULT_MAX_ATTEMPTS,
        lock: threading.Lock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.conn = conn
        self.timeout_seconds = timeout_seconds
        self.keyword_pattern = compile_keywords(urgent_keywords)
        self.normal_after_hours = normal_after_hours
        self.high_after_hours = high_after_hours
        self.retry_attempts = retry_attempts
        self.lock = lock or threading.Lock()
        self.logger = logger or logging.getLogger("inboxsync.orchestrator")
        # adapter id -> token of the fetch or action that opened its connection
        self._owners: dict[int, object] = {}
        self._owners_lock = threading.Lock()

    @classmethod
    def from_config(cls, conn: DBConn, config, lock: threading.Lock | None = None) -> "SyncOrchestrator":
        return cls(
            conn,
            timeout_seconds=config.sync.timeout_seconds,
            urgent_keywords=config.priority.urgent_keywords,
            normal_after_hours=config.priority.normal_escalation_hours,
            high_after_hours=config.priority.high_escalation_hours,
            retry_attempts=config.retry.max_attempts,
            lock=lock,
        )

    def run_sync(self, adapters: Sequence[SourceAdapter]) -> SyncResult:
        stats = SyncStats(started_at=utc_now_iso())
        log_event(self.logger, logging.INFO, "sync_started", sources=len(adapters))

        fetches = self._fetch_all(adapters, stats)

        combined: list[WorkItem] = []
        origin: dict[int, str] = {}
        for fetch in fetches:
            if fetch.items is None:
                continue
            for item in fetch.items:
                origin[id(item)] = fetch.adapter.name
                combined.append(item)
        deduped = deduplicate(combined)
        stats.duplicates = deduped.duplicates

        with self.lock:
            with self.conn.transaction():
                # one membership snapshot, taken before this run writes anything
                known = existing_ids(self.conn, (item.id for item in deduped.items))
                created: set[str] = set()
                for item in deduped.items:
                    upsert_work_item(self.conn, apply_ingest_rules(item, self.keyword_pattern))
                    if item.id in known or item.id in created:
                        continue
                    created.add(item.id)
                    stats.sources[origin[id(item)]].new += 1
                stats.new = len(created)
                stats.total = len({item.id for item in deduped.items})
                for fetch in fetches:
                    if fetch.items is None:
                        continue
                    update_sync_state(
                        self.conn, fetch.adapter.name, cursor=getattr(fetch.adapter, "cursor", None)
                    )

        stats.finished_at = utc_now_iso()
        log_event(
            self.logger,
            logging.INFO,
            "sync_finished",
            total=stats.total,
            new=stats.new,
            duplicates=stats.duplicates,
            failed=sum(1 for s in stats.sources.values() if s.error),
        )
        items = get_inbox(
            self.conn,
            normal_after_hours=self.normal_after_hours,
            high_after_hours=self.high_after_hours,
        )
        return SyncResult(items=items, stats=stats)

    def perform_action(
        self,
        adapter: SourceAdapter,
        item_id: str,
        action: str,
        params: dict[str, Any] | None = None,
    ) -> None:
        token = None
        try:
            token = self._acquire(adapter)
            retry.execute(
                partial(adapter.perform_action, item_id, action, params),
                max_attempts=self.retry_attempts,
                logger=self.logger,
                source=adapter.name,
            )
        except AdapterError:
            raise
        except Exception as exc:
            raise AdapterError(str(exc), source=adapter.name) from exc
        finally:
            self._release(adapter, token)
        log_event(
            self.logger,
            logging.INFO,
            "action_performed",
            source=adapter.name,
            item_id=item_id,
            action=action,
        )

    def _fetch_all(self, adapters: Sequence[SourceAdapter], stats: SyncStats) -> list[_Fetch]:
        fetches: list[_Fetch] = []
        for adapter in adapters:
            if adapter.name in stats.sources:
                log_event(self.logger, logging.WARNING, "source_skipped", source=adapter.name, reason="duplicate")
                continue
            stats.sources[adapter.name] = SourceStats()
            fetches.append(_Fetch(adapter=adapter, cancel=threading.Event()))
        if not fetches:
            return fetches

        executor = ThreadPoolExecutor(max_workers=len(fetches), thread_name_prefix="inboxsync-fetch")
        try:
            deadline = time.monotonic() + self.timeout_seconds
            for fetch in fetches:
                fetch.future = executor.submit(self._fetch_one, fetch.adapter, fetch.cancel)
            for fetch in fetches:
                remaining = max(0.0, deadline - time.monotonic())
                try:
                    fetch.items = fetch.future.result(timeout=remaining)
                except FutureTimeout:
                    fetch.cancel.set()
                    fetch.error = f"timeout after {self.timeout_seconds:g}s"
                except Exception as exc:  # noqa: BLE001
                    fetch.error = str(exc) or type(exc).__name__
                source_stats = stats.sources[fetch.adapter.name]
                if fetch.error:
                    source_stats.error = fetch.error
                    log_event(
                        self.logger,
                        logging.ERROR,
                        "source_fetch_failed",
                        source=fetch.adapter.name,
                        error=fetch.error,
                    )
                else:
                    source_stats.fetched = len(fetch.items or [])
                    log_event(
                        self.logger,
                        logging.INFO,
                        "source_fetched",
                        source=fetch.adapter.name,
                        fetched=source_stats.fetched,
                    )
        finally:
            # Timed-out fetches keep running in their threads; their results are dropped.
            executor.shutdown(wait=False, cancel_futures=True)
        return fetches

    def _fetch_one(self, adapter: SourceAdapter, cancel: threading.Event) -> list[WorkItem]:
        retry.bind_cancel_event(cancel)
        token = None
        try:
            token = self._acquire(adapter)
            fetched = list(adapter.fetch() or [])
        except ValueError as exc:
            raise AdapterError(str(exc), source=adapter.name) from exc
        finally:
            self._release(adapter, token)
            retry.bind_cancel_event(None)
        for item in fetched:
            if not isinstance(item, WorkItem):
                raise AdapterError(
                    f"fetch returned {type(item).__name__}, expected WorkItem", source=adapter.name
                )
        return fetched

    def _acquire(self, adapter: SourceAdapter) -> object | None:
        """Connect ``adapter`` if needed and return this caller's ownership token.

        ``None`` means the connection belongs to someone else and must be left open. A
        connection still held by an earlier, abandoned fetch is taken over so only the
        newest owner disconnects it.
        """
        token = object()
        key = id(adapter)
        with self._owners_lock:
            if key in self._owners:
                self._owners[key] = token
                return token
            if adapter.is_connected():
                return None
            self._owners[key] = token
        try:
            adapter.connect()
        except BaseException:
            self._release(adapter, token, disconnect=False)
            raise
        return token

    def _release(self, adapter: SourceAdapter, token: object | None, disconnect: bool = True) -> None:
        if token is None:
            return
        key = id(adapter)
        with self._owners_lock:
            if self._owners.get(key) is not token:
                return
            del self._owners[key]
        if disconnect:
            self._disconnect(adapter)

    def _disconnect(self, adapter: SourceAdapter) -> None:
        try:
            adapter.disconnect()
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.WARNING, "source_disconnect_failed", source=adapter.name, error=exc)
