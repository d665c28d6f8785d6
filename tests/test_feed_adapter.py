import pytest

from inboxsync.adapters import FeedAdapter
from inboxsync.errors import AdapterError, ExhaustedRetries

ATOM = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Releases</title>
  <id>urn:example:releases</id>
  <updated>2025-03-01T12:00:00Z</updated>
  <entry>
    <title>v2.1.0 released</title>
    <id>urn:example:release:210</id>
    <link href="https://Example.com/releases/v2.1.0/?utm_source=feed"/>
    <updated>2025-03-01T12:00:00Z</updated>
    <author><name>release-bot</name></author>
    <summary>Bug fixes</summary>
  </entry>
  <entry>
    <title>v2.0.9 released</title>
    <id>urn:example:release:209</id>
    <link href="https://example.com/releases/v2.0.9"/>
    <updated>2025-02-20T08:00:00Z</updated>
  </entry>
</feed>
"""


def test_entries_become_notifications(monkeypatch):
    adapter = FeedAdapter("releases", "https://example.com/releases.atom")
    monkeypatch.setattr(adapter, "_download", lambda: ATOM)

    items = adapter.fetch()

    assert [item.title for item in items] == ["v2.1.0 released", "v2.0.9 released"]
    first = items[0]
    assert first.type == "notification"
    assert first.source == "releases"
    assert first.id.startswith("releases-notification-")
    assert first.url == "https://example.com/releases/v2.1.0"
    assert first.author == "release-bot"
    assert first.body == "Bug fixes"
    assert first.timestamp.isoformat() == "2025-03-01T12:00:00+00:00"
    assert items[1].author == "unknown"


def test_ids_are_stable(monkeypatch):
    adapter = FeedAdapter("releases", "https://example.com/releases.atom")
    monkeypatch.setattr(adapter, "_download", lambda: ATOM)
    assert [item.id for item in adapter.fetch()] == [item.id for item in adapter.fetch()]


def test_garbage_is_adapter_error(monkeypatch):
    adapter = FeedAdapter("releases", "https://example.com/releases.atom")
    monkeypatch.setattr(adapter, "_download", lambda: b"<<<not a feed")
    with pytest.raises(AdapterError):
        adapter.fetch()


def test_download_failures_are_retried(monkeypatch):
    adapter = FeedAdapter("releases", "https://example.com/releases.atom", max_attempts=2)
    calls = []

    def _download():
        calls.append(1)
        raise ConnectionResetError("reset by peer")

    monkeypatch.setattr(adapter, "_download", _download)
    monkeypatch.setattr(adapter, "_get_wait", lambda attempt, err: 0.0)
    with pytest.raises(ExhaustedRetries):
        adapter.fetch()
    assert len(calls) == 2


def test_actions_unsupported():
    adapter = FeedAdapter("releases", "https://example.com/releases.atom")
    with pytest.raises(AdapterError):
        adapter.perform_action("releases-notification-1", "close")
