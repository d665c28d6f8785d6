from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _clean_inbox_env(monkeypatch):
    for name in (
        "INBOX_CONFIG_PATH",
        "INBOX_DB_PATH",
        "INBOX_API_TOKEN",
        "INBOX_LOG_LEVEL",
        "INBOX_LOG_FILE",
        "INBOX_LOG_LEVELS",
    ):
        monkeypatch.delenv(name, raising=False)
