from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from .adapters.registry import AdapterRegistry, build_registry
from .config import Config
from .db import DBConn
from .errors import AdapterError, NotFound, StorageError
from .models import STATUSES, SyncState, work_item_to_dict
from .orchestrator import SyncOrchestrator, exclude_native_statuses, get_inbox, sync_overview
from .storage import (
    get_work_item,
    init_db,
    list_sync_states,
    search_work_items,
    update_status,
)
from .utils import format_timestamp, json_dumps, log_event


class ActionRequest(BaseModel):
    action: str
    params: dict[str, Any] | None = None


def create_app(
    config: Config,
    conn: DBConn | None = None,
    registry: AdapterRegistry | None = None,
) -> FastAPI:
    app = FastAPI(title="inboxsync API")
    logger = logging.getLogger("inboxsync.api")
    conn = conn or init_db(config.paths.state_db)
    registry = registry if registry is not None else build_registry(config)
    orchestrator = SyncOrchestrator.from_config(conn, config, lock=threading.Lock())
    app.state.conn = conn
    app.state.registry = registry

    def _require_token(request: Request) -> None:
        token = config.api.token
        if not token:
            return
        if request.headers.get("X-Api-Token") != token:
            raise HTTPException(status_code=401, detail="unauthorized")

    @app.on_event("shutdown")
    def _shutdown() -> None:
        registry.close_all()

    @app.get("/health")
    def health() -> dict[str, object]:
        return {
            "ok": True,
            "data": {"status": "running", "time": datetime.now(tz=timezone.utc).isoformat()},
        }

    @app.get("/api/inbox", dependencies=[Depends(_require_token)])
    def inbox(
        source: str | None = None,
        type: str | None = None,
        status: str | None = None,
        since: str | None = None,
        q: str | None = None,
        exclude_statuses: str | None = None,
    ) -> dict[str, object]:
        excluded = (exclude_statuses or "").split(",")
        try:
            if q:
                items = exclude_native_statuses(search_work_items(conn, q), excluded)
            else:
                if status and status not in STATUSES:
                    raise HTTPException(status_code=400, detail=f"unknown status: {status}")
                since_value = since or format_timestamp(
                    datetime.now(tz=timezone.utc) - timedelta(days=config.sync.window_days)
                )
                items = get_inbox(
                    conn,
                    source=source,
                    type=type,
                    status=status,
                    since=since_value,
                    normal_after_hours=config.priority.normal_escalation_hours,
                    high_after_hours=config.priority.high_escalation_hours,
                    exclude_native=excluded,
                )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"ok": True, "data": [work_item_to_dict(item) for item in items]}

    @app.get("/api/inbox/{item_id}", dependencies=[Depends(_require_token)])
    def inbox_item(item_id: str) -> dict[str, object]:
        item = get_work_item(conn, item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="not_found")
        return {"ok": True, "data": work_item_to_dict(item)}

    @app.post("/api/inbox/{item_id}/action", dependencies=[Depends(_require_token)])
    def inbox_action(item_id: str, payload: ActionRequest) -> dict[str, object]:
        item = get_work_item(conn, item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="not_found")
        if payload.action in STATUSES:
            try:
                update_status(conn, item_id, payload.action)
            except NotFound as exc:
                raise HTTPException(status_code=404, detail="not_found") from exc
            return {"ok": True, "data": {"id": item_id, "status": payload.action}}

        adapter = registry.get(item.source)
        if adapter is None:
            raise HTTPException(status_code=400, detail=f"no adapter for source: {item.source}")
        try:
            orchestrator.perform_action(adapter, item_id, payload.action, payload.params)
        except AdapterError as exc:
            log_event(logger, logging.WARNING, "action_failed", item_id=item_id, error=exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"ok": True, "data": {"id": item_id, "action": payload.action}}

    @app.post("/api/sync", dependencies=[Depends(_require_token)])
    def sync() -> dict[str, object]:
        try:
            result = orchestrator.run_sync(registry.adapters())
        except StorageError as exc:
            log_event(logger, logging.ERROR, "sync_failed", error=exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"ok": True, "data": _jsonable(result.stats)}

    @app.get("/api/sync/status", dependencies=[Depends(_require_token)])
    def sync_status() -> dict[str, object]:
        states = list_sync_states(conn)
        overview = sync_overview(conn, registry.names(), config.sync.window_days)
        return {
            "ok": True,
            "data": {
                "sync_states": [_sync_state_to_dict(state) for state in states],
                "sources": registry.names(),
                "items": overview["total"],
                "item_counts": overview["item_counts"],
                "last_sync": overview["last_sync"],
                "window_days": overview["window_days"],
            },
        }

    @app.get("/api/orchestrator/status", dependencies=[Depends(_require_token)])
    def orchestrator_status() -> dict[str, object]:
        overview = sync_overview(conn, registry.names(), config.sync.window_days)
        return {"ok": True, "data": {"running": True, **overview}}

    return app


def _sync_state_to_dict(state: SyncState) -> dict[str, object]:
    return {
        "source": state.source,
        "last_sync_time": format_timestamp(state.last_sync_time),
        "cursor": state.cursor,
    }


def _jsonable(value: Any) -> Any:
    return json.loads(json_dumps(value))
