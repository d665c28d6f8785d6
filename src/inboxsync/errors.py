from __future__ import annotations


class InboxSyncError(Exception):
    pass


class AdapterError(InboxSyncError):
    """A connect, fetch or action failure scoped to one source."""

    def __init__(self, message: str, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source


class ExhaustedRetries(AdapterError):
    def __init__(self, attempts: int, last_error: BaseException, source: str | None = None) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error}", source=source)
        self.attempts = attempts
        self.last_error = last_error


class RetryCancelled(AdapterError):
    pass


class StorageError(InboxSyncError):
    pass


class NotFound(InboxSyncError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"work item not found: {item_id}")
        self.item_id = item_id
