from __future__ import annotations

import errno
import logging
import socket
import threading
import time
from typing import Any, Callable, TypeVar
from urllib.error import URLError

from .errors import ExhaustedRetries, RetryCancelled
from .utils import log_event

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 120.0

_RETRYABLE_ERRNOS = {errno.ECONNRESET, errno.ETIMEDOUT}
_local = threading.local()


def bind_cancel_event(event: threading.Event | None) -> None:
    """Attach a cancel event to the current thread for retries that don't get one passed."""
    _local.cancel_event = event


def current_cancel_event() -> threading.Event | None:
    return getattr(_local, "cancel_event", None)


def _status_of(err: BaseException) -> int | None:
    for attr in ("status", "code", "status_code"):
        value = getattr(err, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(err, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            value = getattr(response, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


def _is_connection_error(err: BaseException) -> bool:
    if isinstance(err, (ConnectionResetError, TimeoutError, socket.timeout)):
        return True
    if isinstance(err, URLError) and isinstance(err.reason, BaseException):
        return _is_connection_error(err.reason)
    return getattr(err, "errno", None) in _RETRYABLE_ERRNOS


def default_is_retryable(err: BaseException) -> bool:
    status = _status_of(err)
    if status is not None and (status == 429 or status >= 500):
        return True
    return _is_connection_error(err)


def _header(err: BaseException, name: str) -> Any:
    sources = [getattr(err, "headers", None)]
    response = getattr(err, "response", None)
    if response is not None:
        sources.append(getattr(response, "headers", None))
    for headers in sources:
        if headers is None:
            continue
        getter = getattr(headers, "get", None)
        if getter is None:
            continue
        value = getter(name)
        if value is None:
            value = getter(name.lower())
        if value is not None:
            return value
    return None


def default_get_wait_seconds(
    attempt: int,
    err: BaseException,
    base_delay: float = BASE_DELAY_SECONDS,
    max_delay: float = MAX_DELAY_SECONDS,
) -> float:
    retry_after = _header(err, "Retry-After")
    if retry_after is not None:
        try:
            seconds = float(retry_after)
        except (TypeError, ValueError):
            seconds = 0.0
        if seconds > 0:
            return min(seconds + 0.5, max_delay)

    reset_at = _header(err, "X-RateLimit-Reset")
    if reset_at is not None:
        try:
            wait = max(0.0, float(reset_at) - time.time()) + 1.0
        except (TypeError, ValueError):
            wait = None
        if wait is not None:
            return min(wait, max_delay)

    return min(base_delay * (2 ** attempt), max_delay)


def execute(
    operation: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    is_retryable: Callable[[BaseException], bool] | None = None,
    get_wait_seconds: Callable[[int, BaseException], float] | None = None,
    cancel_event: threading.Event | None = None,
    logger: logging.Logger | None = None,
    source: str | None = None,
) -> T:
    """Run ``operation`` with bounded retries.

    Non-retryable errors propagate unchanged on first occurrence. When the last
    attempt fails with a retryable error, ``ExhaustedRetries`` is raised from it.
    Waits honour ``cancel_event`` (or the one bound to the current thread) and
    stop the loop with ``RetryCancelled`` once it is set.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    is_retryable = is_retryable or default_is_retryable
    get_wait_seconds = get_wait_seconds or default_get_wait_seconds
    cancel_event = cancel_event or current_cancel_event()
    logger = logger or logging.getLogger("inboxsync.retry")

    for attempt in range(max_attempts):
        if cancel_event is not None and cancel_event.is_set():
            raise RetryCancelled("operation cancelled before attempt", source=source)
        try:
            return operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt == max_attempts - 1:
                raise ExhaustedRetries(max_attempts, exc, source=source) from exc
            wait = get_wait_seconds(attempt, exc)
            log_event(
                logger,
                logging.WARNING,
                "retry_scheduled",
                source=source or "-",
                attempt=attempt + 1,
                wait=f"{wait:.1f}",
                error=exc,
            )
            if cancel_event is not None:
                if cancel_event.wait(wait):
                    raise RetryCancelled("operation cancelled during backoff", source=source) from exc
            else:
                time.sleep(wait)
    raise AssertionError("unreachable")
