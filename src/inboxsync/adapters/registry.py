from __future__ import annotations

import logging
from typing import Any, Iterable

from ..config import Config, ConfigError
from ..utils import log_event
from .base import SourceAdapter
from .feed import FeedAdapter
from .file import FileAdapter

ADAPTER_KINDS = ("feed", "file")


class AdapterRegistry:
    """Long-lived adapters owned by the caller, looked up by source name.

    The sync core never closes these; ``close_all`` is for process shutdown.
    """

    def __init__(self, adapters: Iterable[SourceAdapter] = ()) -> None:
        self._adapters: dict[str, SourceAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        if adapter.name in self._adapters:
            raise ValueError(f"adapter already registered: {adapter.name}")
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> SourceAdapter | None:
        return self._adapters.get(name)

    def names(self) -> list[str]:
        return list(self._adapters)

    def adapters(self) -> list[SourceAdapter]:
        return list(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    def close_all(self) -> None:
        logger = logging.getLogger("inboxsync.adapters")
        for adapter in self._adapters.values():
            if not adapter.is_connected():
                continue
            try:
                adapter.disconnect()
            except Exception as exc:  # noqa: BLE001
                log_event(logger, logging.WARNING, "adapter_close_failed", source=adapter.name, error=exc)


def build_adapter(spec: dict[str, Any], config: Config) -> SourceAdapter:
    name = str(spec.get("name") or "").strip()
    kind = spec.get("kind")
    if not name:
        raise ConfigError("source entry is missing a name")
    if kind == "feed":
        return FeedAdapter(
            name=name,
            url=str(spec.get("url") or ""),
            headers={str(k): str(v) for k, v in (spec.get("headers") or {}).items()},
            timeout_seconds=config.sync.timeout_seconds,
            max_attempts=config.retry.max_attempts,
            base_delay_seconds=config.retry.base_delay_seconds,
            max_delay_seconds=config.retry.max_delay_seconds,
        )
    if kind == "file":
        return FileAdapter(name=name, path=str(spec.get("path") or ""))
    raise ConfigError(f"source {name}: unknown kind {kind!r} (expected one of {', '.join(ADAPTER_KINDS)})")


def build_registry(config: Config) -> AdapterRegistry:
    return AdapterRegistry(
        build_adapter(spec, config) for spec in config.sources if spec.get("enabled", True)
    )
