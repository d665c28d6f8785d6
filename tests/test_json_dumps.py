from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path

import json

from inboxsync.models import SourceStats, SyncStats
from inboxsync.utils import json_dumps


class Color(Enum):
    RED = "red"


@dataclass
class Payload:
    value: str


def test_json_dumps_handles_supported_types():
    payload = {
        "dataclass": Payload(value="ok"),
        "enum": Color.RED,
        "datetime": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "date": date(2025, 1, 2),
        "path": Path("/tmp/inboxsync"),
        "set": {"a", "b"},
        "tuple": ("x", "y"),
    }
    decoded = json.loads(json_dumps(payload))
    assert decoded["dataclass"]["value"] == "ok"
    assert decoded["enum"] == "red"
    assert decoded["datetime"].startswith("2025-01-01T00:00:00")
    assert decoded["date"] == "2025-01-02"
    assert decoded["path"] == "/tmp/inboxsync"
    assert sorted(decoded["set"]) == ["a", "b"]
    assert decoded["tuple"] == ["x", "y"]


def test_sync_stats_serialize_with_nested_sources():
    stats = SyncStats(total=2, new=1, duplicates=1)
    stats.sources["github"] = SourceStats(fetched=2, new=1)
    stats.sources["jira"] = SourceStats(error="timeout after 30s")
    decoded = json.loads(json_dumps(stats))
    assert decoded["sources"]["github"] == {"fetched": 2, "new": 1, "error": None}
    assert decoded["sources"]["jira"]["error"] == "timeout after 30s"
