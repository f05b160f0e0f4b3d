"""
Process-local result cache for the competitor analysis service.

Keys follow two shapes: ``analysis_{id}`` for fetched analyses and
``session_{id}`` for per-session data. Entries never expire; they are dropped
explicitly when the underlying row changes, or all at once via clear().
"""

import threading
from collections import OrderedDict
from typing import Any, Optional


def analysis_key(analysis_id: Any) -> str:
    return f"analysis_{analysis_id}"


def session_key(session_id: Any) -> str:
    return f"session_{session_id}"


class AnalysisCache:
    """Interface for the service's result cache."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def invalidate(self, *keys: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def __contains__(self, key: str) -> bool:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError


class InMemoryAnalysisCache(AnalysisCache):
    """
    Dict-backed cache with optional LRU eviction.

    With max_entries=None the cache is unbounded for the life of the process.
    """

    def __init__(self, max_entries: Optional[int] = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Any]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            if key not in self._entries:
                return None
            self._entries.move_to_end(key)
            return self._entries[key]

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)

    def invalidate(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
