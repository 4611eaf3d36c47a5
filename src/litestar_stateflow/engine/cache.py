"""In-memory cache of parsed workflow definitions."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from cachetools import TTLCache

if TYPE_CHECKING:
    from litestar_stateflow.core.definition import WorkflowDefinition

__all__ = ["DefinitionCache"]


class DefinitionCache:
    """Bounded TTL cache mapping definition codes to parsed definitions.

    Definitions are small and change rarely, so every transition can skip
    re-parsing the stored graph. Entries expire after ``ttl`` seconds and are
    dropped explicitly whenever a definition is re-registered.
    """

    def __init__(self, maxsize: int = 128, ttl: float = 300.0) -> None:
        self._cache: TTLCache[str, WorkflowDefinition] = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()

    def get(self, code: str) -> WorkflowDefinition | None:
        with self._lock:
            return self._cache.get(code)

    def put(self, definition: WorkflowDefinition) -> None:
        with self._lock:
            self._cache[definition.code] = definition

    def invalidate(self, code: str) -> None:
        with self._lock:
            self._cache.pop(code, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __contains__(self, code: object) -> bool:
        with self._lock:
            return code in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
