from datetime import datetime, timedelta, timezone

import pytest

from inboxsync.errors import NotFound, StorageError
from inboxsync.models import WorkItem
from inboxsync.storage import (
    count_work_items,
    existing_ids,
    get_sync_state,
    get_work_item,
    init_db,
    list_sync_states,
    list_work_items,
    search_work_items,
    update_status,
    update_sync_state,
    upsert_work_item,
)

BASE = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def _item(item_id="github-issue-1", **overrides):
    fields = {
        "id": item_id,
        "source": "github",
        "type": "issue",
        "title": "Fix login",
        "body": "",
        "author": "octocat",
        "timestamp": BASE,
        "priority": "normal",
        "url": f"https://github.com/acme/app/issues/{item_id}",
        "metadata": {},
    }
    fields.update(overrides)
    return WorkItem(**fields)


def test_upsert_and_get_round_trip(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    item = _item(metadata={"repo": "acme/app", "labels": ["bug"]})
    upsert_work_item(conn, item)
    stored = get_work_item(conn, item.id)
    assert stored == item
    assert get_work_item(conn, "missing") is None


def test_status_survives_resync(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_work_item(conn, _item(status="new"))
    update_status(conn, "github-issue-1", "done")

    upsert_work_item(conn, _item(title="Fix login (again)", status="new"))

    stored = get_work_item(conn, "github-issue-1")
    assert stored.title == "Fix login (again)"
    assert stored.status == "done"
    assert count_work_items(conn) == 1


def test_update_status_unknown_id_raises_not_found(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(NotFound):
        update_status(conn, "nope", "seen")


def test_update_status_rejects_unknown_status(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_work_item(conn, _item())
    with pytest.raises(ValueError):
        update_status(conn, "github-issue-1", "archived")


def test_update_status_is_idempotent(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_work_item(conn, _item())
    update_status(conn, "github-issue-1", "seen")
    update_status(conn, "github-issue-1", "seen")
    assert get_work_item(conn, "github-issue-1").status == "seen"


def test_list_filters_and_order(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_work_item(conn, _item("a", timestamp=BASE - timedelta(days=3)))
    upsert_work_item(conn, _item("b", timestamp=BASE, type="pull_request"))
    upsert_work_item(conn, _item("c", timestamp=BASE - timedelta(hours=1), source="jira"))
    update_status(conn, "c", "seen")

    assert [item.id for item in list_work_items(conn)] == ["b", "c", "a"]
    assert [item.id for item in list_work_items(conn, source="jira")] == ["c"]
    assert [item.id for item in list_work_items(conn, type="pull_request")] == ["b"]
    assert [item.id for item in list_work_items(conn, status="seen")] == ["c"]
    since = (BASE - timedelta(days=1)).isoformat()
    assert [item.id for item in list_work_items(conn, since=since)] == ["b", "c"]
    assert [item.id for item in list_work_items(conn, source="github", since=since)] == ["b"]
    assert [item.id for item in list_work_items(conn, exclude_statuses=["seen"])] == ["b", "a"]


def test_search_tracks_body_changes(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_work_item(conn, _item(title="Auth work", body="Rewrite OAuth flow"))
    upsert_work_item(conn, _item("other", title="Unrelated", body="Nothing here"))

    assert [item.id for item in search_work_items(conn, "OAuth")] == ["github-issue-1"]

    upsert_work_item(conn, _item(title="Auth work", body="Rewrite session handling"))
    assert search_work_items(conn, "OAuth") == []
    assert [item.id for item in search_work_items(conn, "session")] == ["github-issue-1"]


def test_search_matches_author_and_ranks(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_work_item(conn, _item("one", title="deploy", body="deploy deploy deploy pipeline"))
    upsert_work_item(conn, _item("two", title="notes", body="mentions deploy once in a long body of text"))
    upsert_work_item(conn, _item("three", title="Review", author="hubot"))

    assert [item.id for item in search_work_items(conn, "deploy")] == ["one", "two"]
    assert [item.id for item in search_work_items(conn, "hubot")] == ["three"]


def test_search_ignores_status_changes_and_odd_queries(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_work_item(conn, _item(title="sev-0: payments down"))
    update_status(conn, "github-issue-1", "in_progress")
    assert [item.id for item in search_work_items(conn, 'sev-0 "payments')] == ["github-issue-1"]
    assert search_work_items(conn, "") == []
    assert search_work_items(conn, "  ***  ") == []


def test_failed_transaction_leaves_row_and_index_untouched(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(RuntimeError):
        with conn.transaction():
            upsert_work_item(conn, _item(body="Rewrite OAuth flow"))
            raise RuntimeError("boom")
    assert get_work_item(conn, "github-issue-1") is None
    assert search_work_items(conn, "OAuth") == []


def test_sql_errors_surface_as_storage_error(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(StorageError):
        conn.execute("SELECT * FROM no_such_table")


def test_existing_ids_snapshot(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    for index in range(3):
        upsert_work_item(conn, _item(f"item-{index}"))
    wanted = [f"item-{index}" for index in range(1200)]
    assert existing_ids(conn, wanted) == {"item-0", "item-1", "item-2"}
    assert existing_ids(conn, []) == set()


def test_sync_state_is_overwritten(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    assert get_sync_state(conn, "github") is None

    update_sync_state(conn, "github", now=BASE)
    update_sync_state(conn, "jira", cursor="c1", now=BASE + timedelta(minutes=5))
    update_sync_state(conn, "github", cursor="abc", now=BASE + timedelta(minutes=10))

    state = get_sync_state(conn, "github")
    assert state.last_sync_time == BASE + timedelta(minutes=10)
    assert state.cursor == "abc"
    assert [s.source for s in list_sync_states(conn)] == ["github", "jira"]
