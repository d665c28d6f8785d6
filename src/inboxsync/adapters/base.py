from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from ..models import WorkItem


@runtime_checkable
class SourceAdapter(Protocol):
    """Capabilities the sync core needs from one external source.

    ``fetch`` returns canonical items; ``perform_action`` passes ``action`` through
    untouched. An adapter may also expose a ``cursor`` attribute, which is stored in
    its sync state after a successful fetch.
    """

    name: str

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    def fetch(self) -> list[WorkItem]: ...

    def perform_action(
        self, item_id: str, action: str, params: dict[str, Any] | None = None
    ) -> None: ...
