from __future__ import annotations

import logging
import os
from typing import Any

import yaml

from ..errors import AdapterError
from ..models import WorkItem, work_item_from_dict
from ..utils import log_event


class FileAdapter:
    """Source backed by a JSON or YAML list of work item records.

    Useful for exports from systems without an API and for local testing. Actions are
    recorded in ``actions`` instead of being sent anywhere.
    """

    def __init__(self, name: str, path: str) -> None:
        self.name = name
        self.path = path
        self.actions: list[tuple[str, str, dict[str, Any]]] = []
        self._connected = False
        self.logger = logging.getLogger("inboxsync.adapters.file")

    def connect(self) -> None:
        if not os.path.exists(self.path):
            raise AdapterError(f"source file not found: {self.path}", source=self.name)
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def fetch(self) -> list[WorkItem]:
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                records = yaml.safe_load(handle)
        except (OSError, yaml.YAMLError) as exc:
            raise AdapterError(f"cannot read {self.path}: {exc}", source=self.name) from exc
        if records is None:
            return []
        if isinstance(records, dict):
            records = records.get("items") or []
        if not isinstance(records, list):
            raise AdapterError("source file must contain a list of items", source=self.name)

        items: list[WorkItem] = []
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                raise AdapterError(f"item {index} is not an object", source=self.name)
            payload = {"source": self.name, **record}
            try:
                items.append(work_item_from_dict(payload))
            except ValueError as exc:
                raise AdapterError(f"item {index}: {exc}", source=self.name) from exc
        log_event(self.logger, logging.DEBUG, "file_loaded", source=self.name, count=len(items))
        return items

    def perform_action(
        self, item_id: str, action: str, params: dict[str, Any] | None = None
    ) -> None:
        self.actions.append((item_id, action, dict(params or {})))
