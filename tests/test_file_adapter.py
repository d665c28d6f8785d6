import json

import pytest

from inboxsync.adapters import FileAdapter
from inboxsync.errors import AdapterError


def test_loads_yaml_items_and_fills_source(tmp_path):
    path = tmp_path / "backlog.yml"
    path.write_text(
        """
items:
  - id: backlog-task-1
    type: task
    title: Rotate deploy keys
    timestamp: 2025-03-01T09:00:00Z
    url: https://tracker.example.com/T-1
""",
        encoding="utf-8",
    )
    adapter = FileAdapter("backlog", str(path))
    adapter.connect()
    items = adapter.fetch()

    assert len(items) == 1
    assert items[0].source == "backlog"
    assert items[0].type == "task"
    assert items[0].timestamp.year == 2025
    assert items[0].author == "unknown"


def test_loads_json_list(tmp_path):
    path = tmp_path / "items.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "chat-message-9",
                    "type": "message",
                    "title": "ping",
                    "timestamp": "2025-03-01T10:00:00+00:00",
                    "metadata": {"is_dm": True},
                }
            ]
        ),
        encoding="utf-8",
    )
    items = FileAdapter("chat", str(path)).fetch()
    assert items[0].metadata == {"is_dm": True}


def test_invalid_record_is_adapter_error(tmp_path):
    path = tmp_path / "items.json"
    path.write_text(json.dumps([{"id": "x", "type": "fax", "title": "t", "timestamp": "2025-03-01"}]))
    with pytest.raises(AdapterError) as excinfo:
        FileAdapter("files", str(path)).fetch()
    assert excinfo.value.source == "files"
    assert "item 0" in str(excinfo.value)


def test_connect_requires_file(tmp_path):
    adapter = FileAdapter("files", str(tmp_path / "missing.yml"))
    with pytest.raises(AdapterError):
        adapter.connect()
    assert not adapter.is_connected()


def test_empty_file_yields_nothing(tmp_path):
    path = tmp_path / "empty.yml"
    path.write_text("", encoding="utf-8")
    assert FileAdapter("files", str(path)).fetch() == []


def test_actions_are_recorded(tmp_path):
    adapter = FileAdapter("files", str(tmp_path / "x.yml"))
    adapter.perform_action("files-task-1", "close", {"reason": "done"})
    assert adapter.actions == [("files-task-1", "close", {"reason": "done"})]
