import json
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from inboxsync.adapters import AdapterRegistry, FileAdapter
from inboxsync.api import create_app
from inboxsync.config import load_config
from inboxsync.storage import get_work_item, init_db


def _recent(hours):
    return (datetime.now(tz=timezone.utc) - timedelta(hours=hours)).isoformat()


def _setup(tmp_path, token=""):
    items_path = tmp_path / "tracker.json"
    items_path.write_text(
        json.dumps(
            [
                {
                    "id": "tracker-task-1",
                    "type": "task",
                    "title": "Prod is down for EU customers",
                    "timestamp": _recent(1),
                    "url": "https://tracker.example.com/T-1",
                },
                {
                    "id": "tracker-task-2",
                    "type": "task",
                    "title": "Update onboarding docs",
                    "body": "The OAuth section is stale",
                    "metadata": {"status": "Blocked"},
                    "timestamp": _recent(2),
                },
            ]
        ),
        encoding="utf-8",
    )
    config_path = tmp_path / "config.yml"
    config_path.write_text(
        f"paths:\n  state_db: {tmp_path / 'state.sqlite3'}\napi:\n  token: '{token}'\n",
        encoding="utf-8",
    )
    config = load_config(str(config_path))
    conn = init_db(config.paths.state_db)
    adapter = FileAdapter("tracker", str(items_path))
    client = TestClient(create_app(config, conn=conn, registry=AdapterRegistry([adapter])))
    return client, conn, adapter


def test_health(tmp_path):
    client, _, _ = _setup(tmp_path)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_sync_then_inbox(tmp_path):
    client, _, _ = _setup(tmp_path)
    response = client.post("/api/sync")
    assert response.status_code == 200
    stats = response.json()["data"]
    assert stats["total"] == 2
    assert stats["new"] == 2
    assert stats["sources"]["tracker"]["error"] is None

    inbox = client.get("/api/inbox").json()["data"]
    assert [item["id"] for item in inbox] == ["tracker-task-1", "tracker-task-2"]
    assert inbox[0]["priority"] == "urgent"


def test_search(tmp_path):
    client, _, _ = _setup(tmp_path)
    client.post("/api/sync")
    results = client.get("/api/inbox", params={"q": "oauth"}).json()["data"]
    assert [item["id"] for item in results] == ["tracker-task-2"]


def test_bad_status_filter(tmp_path):
    client, _, _ = _setup(tmp_path)
    assert client.get("/api/inbox", params={"status": "archived"}).status_code == 400


def test_item_lookup(tmp_path):
    client, _, _ = _setup(tmp_path)
    client.post("/api/sync")
    assert client.get("/api/inbox/tracker-task-2").json()["data"]["title"] == "Update onboarding docs"
    assert client.get("/api/inbox/missing").status_code == 404


def test_status_action_updates_store(tmp_path):
    client, conn, _ = _setup(tmp_path)
    client.post("/api/sync")
    response = client.post("/api/inbox/tracker-task-1/action", json={"action": "done"})
    assert response.status_code == 200
    assert get_work_item(conn, "tracker-task-1").status == "done"
    ids = [item["id"] for item in client.get("/api/inbox").json()["data"]]
    assert ids == ["tracker-task-2"]


def test_source_action_goes_to_adapter(tmp_path):
    client, _, adapter = _setup(tmp_path)
    client.post("/api/sync")
    response = client.post(
        "/api/inbox/tracker-task-2/action",
        json={"action": "assign", "params": {"to": "alice"}},
    )
    assert response.status_code == 200
    assert adapter.actions == [("tracker-task-2", "assign", {"to": "alice"})]


def test_sync_status(tmp_path):
    client, _, _ = _setup(tmp_path)
    client.post("/api/sync")
    data = client.get("/api/sync/status").json()["data"]
    assert data["sources"] == ["tracker"]
    assert data["items"] == 2
    assert data["item_counts"] == {"tracker": 2}
    assert data["window_days"] == 7
    assert data["last_sync"] == data["sync_states"][0]["last_sync_time"]
    assert [state["source"] for state in data["sync_states"]] == ["tracker"]


def test_token_required_when_configured(tmp_path):
    client, _, _ = _setup(tmp_path, token="s3cret")
    assert client.get("/api/inbox").status_code == 401
    assert client.get("/api/inbox", headers={"X-Api-Token": "s3cret"}).status_code == 200
    assert client.get("/health").status_code == 200


def test_orchestrator_status(tmp_path):
    client, _, _ = _setup(tmp_path)
    before = client.get("/api/orchestrator/status").json()["data"]
    assert before["running"] is True
    assert before["last_sync"] is None
    assert before["item_counts"] == {"tracker": 0}

    client.post("/api/sync")
    after = client.get("/api/orchestrator/status").json()["data"]
    assert after["item_counts"] == {"tracker": 2}
    assert after["last_sync"] is not None


def test_exclude_native_statuses(tmp_path):
    client, _, _ = _setup(tmp_path)
    client.post("/api/sync")

    listed = client.get("/api/inbox", params={"exclude_statuses": "blocked, done"}).json()["data"]
    assert [item["id"] for item in listed] == ["tracker-task-1"]

    searched = client.get("/api/inbox", params={"q": "oauth", "exclude_statuses": "Blocked"}).json()
    assert searched["data"] == []
