from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timedelta

from .adapters.registry import build_registry
from .config import ConfigError, load_config
from .errors import AdapterError, NotFound, StorageError
from .models import ITEM_TYPES, STATUSES, WorkItem, work_item_to_dict
from .orchestrator import SyncOrchestrator, get_inbox, sync_overview
from .storage import get_work_item, init_db, list_sync_states, search_work_items, update_status
from .utils import configure_logging, format_timestamp, json_dumps, log_event, to_utc, utc_now


def _setup_logging() -> logging.Logger:
    return configure_logging("inboxsync")


def format_age(timestamp: datetime, now: datetime | None = None) -> str:
    minutes = int(((now or utc_now()) - to_utc(timestamp)).total_seconds() // 60)
    if minutes < 60:
        return f"{max(minutes, 0)}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def format_item(item: WorkItem, now: datetime | None = None) -> str:
    return (
        f"[{item.priority.upper()}] [{item.source}/{item.type}] {item.title}"
        f"  ({format_age(item.timestamp, now)}, by {item.author})  {item.id}"
    )


def _print_items(items: list[WorkItem], empty_message: str) -> None:
    if not items:
        print(empty_message)
        return
    for item in items:
        print(format_item(item))


def _cmd_sync(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    conn = init_db(config.paths.state_db)
    registry = build_registry(config)
    if not len(registry):
        log_event(logger, logging.ERROR, "no_sources", hint="add entries under `sources` in config.yml")
        return 1
    try:
        result = SyncOrchestrator.from_config(conn, config).run_sync(registry.adapters())
    finally:
        registry.close_all()
    print(json.dumps(json.loads(json_dumps(result.stats)), indent=2))
    return 0


def _cmd_inbox(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    conn = init_db(config.paths.state_db)
    since = args.since or format_timestamp(utc_now() - timedelta(days=config.sync.window_days))
    items = get_inbox(
        conn,
        source=args.source,
        type=args.type,
        status=args.status,
        since=since,
        normal_after_hours=config.priority.normal_escalation_hours,
        high_after_hours=config.priority.high_escalation_hours,
        exclude_native=[
            status for value in args.exclude_status for status in value.split(",")
        ],
    )
    if args.json:
        print(json.dumps([work_item_to_dict(item) for item in items], indent=2))
        return 0
    if items:
        print(f"Inbox ({len(items)} items)")
    _print_items(items, "Inbox zero, nothing to do.")
    return 0


def _cmd_search(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    conn = init_db(config.paths.state_db)
    _print_items(search_work_items(conn, args.query), f'No results for "{args.query}"')
    return 0


def _cmd_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    conn = init_db(config.paths.state_db)
    item = get_work_item(conn, args.item_id)
    if item is None:
        log_event(logger, logging.ERROR, "item_not_found", item_id=args.item_id)
        return 1
    print(json.dumps(work_item_to_dict(item), indent=2))
    return 0


def _set_status(args: argparse.Namespace, logger: logging.Logger, status: str) -> int:
    config = load_config(args.config)
    conn = init_db(config.paths.state_db)
    try:
        update_status(conn, args.item_id, status)
    except NotFound:
        log_event(logger, logging.ERROR, "item_not_found", item_id=args.item_id)
        return 1
    print(f"{args.item_id} -> {status}")
    return 0


def _cmd_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _set_status(args, logger, args.status)


def _cmd_done(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _set_status(args, logger, "done")


def _cmd_dismiss(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _set_status(args, logger, "dismissed")


def _parse_params(values: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for value in values:
        if "=" not in value:
            raise ValueError(f"--param expects key=value, got {value!r}")
        key, raw = value.split("=", 1)
        params[key.strip()] = raw
    return params


def _cmd_action(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    conn = init_db(config.paths.state_db)
    item = get_work_item(conn, args.item_id)
    if item is None:
        log_event(logger, logging.ERROR, "item_not_found", item_id=args.item_id)
        return 1
    registry = build_registry(config)
    adapter = registry.get(item.source)
    if adapter is None:
        log_event(logger, logging.ERROR, "no_adapter", source=item.source)
        return 1
    try:
        SyncOrchestrator.from_config(conn, config).perform_action(
            adapter, item.id, args.action, _parse_params(args.param)
        )
    except AdapterError as exc:
        log_event(logger, logging.ERROR, "action_failed", item_id=item.id, error=exc)
        return 1
    finally:
        registry.close_all()
    print(f"{item.id}: {args.action} ok")
    return 0


def _cmd_sync_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    conn = init_db(config.paths.state_db)
    states = list_sync_states(conn)
    if not states:
        print("No sources synced yet.")
        return 0
    overview = sync_overview(conn, window_days=config.sync.window_days)
    for state in states:
        cursor = f"  cursor={state.cursor}" if state.cursor else ""
        count = overview["item_counts"].get(state.source, 0)
        print(
            f"{state.source}: last sync {format_timestamp(state.last_sync_time)}"
            f"  items={count}{cursor}"
        )
    print(f"window: {overview['window_days']}d, last sync {overview['last_sync']}")
    return 0


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    init_db(config.paths.state_db)
    log_event(logger, logging.INFO, "db_migrated", path=config.paths.state_db)
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    from .api import create_app

    config = load_config(args.config)
    uvicorn.run(create_app(config), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="inboxsync", description="Unified work inbox")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to INBOX_CONFIG_PATH or ./config.yml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Fetch all configured sources")
    sync_parser.set_defaults(func=_cmd_sync)

    inbox_parser = subparsers.add_parser("inbox", help="Show the prioritized inbox")
    inbox_parser.add_argument("--source", help="Only items from this source")
    inbox_parser.add_argument("--type", choices=ITEM_TYPES, help="Only items of this type")
    inbox_parser.add_argument("--status", choices=STATUSES, help="Only items with this status")
    inbox_parser.add_argument("--since", help="ISO timestamp lower bound (default: sync window)")
    inbox_parser.add_argument(
        "--exclude-status",
        action="append",
        default=[],
        help="Hide items whose source-side status matches (repeatable, comma-separated)",
    )
    inbox_parser.add_argument("--json", action="store_true", help="Print JSON")
    inbox_parser.set_defaults(func=_cmd_inbox)

    search_parser = subparsers.add_parser("search", help="Full-text search")
    search_parser.add_argument("query", help="Search terms")
    search_parser.set_defaults(func=_cmd_search)

    show_parser = subparsers.add_parser("show", help="Show one item")
    show_parser.add_argument("item_id", help="Work item id")
    show_parser.set_defaults(func=_cmd_show)

    status_parser = subparsers.add_parser("status", help="Set an item's status")
    status_parser.add_argument("item_id", help="Work item id")
    status_parser.add_argument("status", choices=STATUSES, help="New status")
    status_parser.set_defaults(func=_cmd_status)

    done_parser = subparsers.add_parser("done", help="Mark an item done")
    done_parser.add_argument("item_id", help="Work item id")
    done_parser.set_defaults(func=_cmd_done)

    dismiss_parser = subparsers.add_parser("dismiss", help="Dismiss an item")
    dismiss_parser.add_argument("item_id", help="Work item id")
    dismiss_parser.set_defaults(func=_cmd_dismiss)

    action_parser = subparsers.add_parser("action", help="Run a source action on an item")
    action_parser.add_argument("item_id", help="Work item id")
    action_parser.add_argument("action", help="Action name, passed to the source")
    action_parser.add_argument(
        "--param",
        action="append",
        default=[],
        help="Action parameter as key=value (repeatable)",
    )
    action_parser.set_defaults(func=_cmd_action)

    sync_status_parser = subparsers.add_parser("sync-status", help="Show last sync per source")
    sync_status_parser.set_defaults(func=_cmd_sync_status)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=3847, help="Bind port")
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    try:
        return args.func(args, logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    except StorageError as exc:
        log_event(logger, logging.ERROR, "storage_error", error=str(exc))
        return 1
    except ValueError as exc:
        log_event(logger, logging.ERROR, "invalid_argument", error=str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
