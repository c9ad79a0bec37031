"""Size-bounded in-memory cache with absolute expiration."""

import math
import threading
import time
from collections.abc import Callable, Hashable
from typing import Any

import structlog

log = structlog.stdlib.get_logger()

_MISSING = object()


class TTLCache:
    """Map whose entries expire a fixed time after insertion.

    Reading an entry never extends its lifetime. When an insert would
    exceed ``size_limit`` the cache is compacted: expired entries are
    dropped first, then the oldest insertions, until at least
    ``compaction_percentage`` of the entries are gone.
    """

    def __init__(
        self,
        size_limit: int = 1000,
        compaction_percentage: float = 0.25,
        default_ttl: float = 2 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if size_limit < 1:
            raise ValueError("size_limit must be positive")
        if not 0 < compaction_percentage <= 1:
            raise ValueError("compaction_percentage must be in (0, 1]")

        self.size_limit = size_limit
        self.compaction_percentage = compaction_percentage
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}  # key -> (expires_at, value)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + (self.default_ttl if ttl is None else ttl)
        with self._lock:
            if key in self._entries:
                # Re-insert so insertion order reflects the newest write
                del self._entries[key]
            elif len(self._entries) >= self.size_limit:
                self._compact()
            self._entries[key] = (expires_at, value)

    def get_or_create(self, key: Hashable, factory: Callable[[], Any], ttl: float | None = None) -> Any:
        """Return the cached value or store and return ``factory()``.

        ``None`` results are cached too, so a miss is remembered for the
        full TTL. Concurrent callers may each invoke the factory.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = factory()
        self.set(key, value, ttl)
        return value

    def remove(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def compact(self) -> int:
        with self._lock:
            return self._compact()

    def _compact(self) -> int:
        target = max(1, math.ceil(len(self._entries) * self.compaction_percentage))
        now = self._clock()

        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        removed = len(expired)

        # dict order is insertion order, so the first keys are the oldest
        while removed < target and self._entries:
            del self._entries[next(iter(self._entries))]
            removed += 1

        log.debug("Cache compacted", removed=removed, remaining=len(self._entries))
        return removed
