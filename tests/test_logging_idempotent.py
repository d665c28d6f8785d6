import logging
import os
import sys

from inboxsync.utils import configure_logging, log_event


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "logs" / "app.log"
    monkeypatch.setenv("INBOX_LOG_LEVEL", "INFO")
    monkeypatch.setenv("INBOX_LOG_FILE", str(log_file))

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        root.handlers = []
        configure_logging("inboxsync.cli")
        configure_logging("inboxsync.cli")

        stream_handlers = [
            handler
            for handler in root.handlers
            if type(handler) is logging.StreamHandler
        ]
        file_handlers = [
            handler for handler in root.handlers if isinstance(handler, logging.FileHandler)
        ]

        assert len(stream_handlers) == 1
        assert stream_handlers[0].stream is sys.stdout
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(
            str(log_file)
        )
    finally:
        for handler in root.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)


def test_log_event_formats_key_values(caplog):
    logger = logging.getLogger("inboxsync.test")
    with caplog.at_level(logging.INFO, logger="inboxsync.test"):
        log_event(logger, logging.INFO, "source_fetched", source="github", fetched=3)
    assert "event=source_fetched source=github fetched=3" in caplog.text
