from .base import SourceAdapter
from .feed import FeedAdapter
from .file import FileAdapter
from .registry import AdapterRegistry, build_adapter, build_registry

__all__ = [
    "AdapterRegistry",
    "FeedAdapter",
    "FileAdapter",
    "SourceAdapter",
    "build_adapter",
    "build_registry",
]
