"""In-memory TTL cache of resolved project information."""

from __future__ import annotations

import threading
import time
from typing import Callable

from membersync.models import ProjectInfo

PROJECT_CACHE_TTL = 600.0


class ProjectCache:
    """Thread-safe map of project SFID to ProjectInfo with a fixed TTL.

    A ttl of zero or less means entries never expire. Expired entries are
    dropped when read and swept periodically (every two TTLs) on writes.
    """

    def __init__(
        self,
        ttl: float = PROJECT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[ProjectInfo, float | None]] = {}
        self._next_sweep = clock() + 2 * ttl if ttl > 0 else None

    def _expired(self, expires: float | None, now: float) -> bool:
        return expires is not None and now > expires

    def get(self, sfid: str) -> ProjectInfo | None:
        """Return the cached info for sfid, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(sfid)
            if entry is None:
                return None
            info, expires = entry
            if self._expired(expires, self._clock()):
                del self._entries[sfid]
                return None
            return info

    def set(self, sfid: str, info: ProjectInfo) -> None:
        """Store info for sfid with the cache TTL."""
        with self._lock:
            now = self._clock()
            expires = now + self._ttl if self._ttl > 0 else None
            self._entries[sfid] = (info, expires)
            if self._next_sweep is not None and now >= self._next_sweep:
                self._entries = {
                    key: value
                    for key, value in self._entries.items()
                    if not self._expired(value[1], now)
                }
                self._next_sweep = now + 2 * self._ttl

    def delete(self, sfid: str) -> None:
        """Remove the entry for sfid, if present."""
        with self._lock:
            self._entries.pop(sfid, None)