from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sessionkit.logging import get_logger
from sessionkit.storage.models import StoredSession


@dataclass
class _Entry:
    value: StoredSession[Any]
    expires_at: float


class MemorySessionStore:
    """In-process session store for tests and single-worker deployments.

    Entries carry their own expiry independent of the record's ``expires_at``
    and are dropped lazily on read. A sweep of expired entries runs at most
    once per ``cleanup_interval_seconds`` on access, and when ``max_size`` is
    reached the oldest inserted entry is evicted after sweeping.
    """

    def __init__(
        self,
        *,
        cleanup_interval_seconds: float = 60,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.logger = get_logger(__name__)
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._data_lock = threading.RLock()
        self._last_cleanup = clock()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    async def get(self, session_id: str) -> Optional[StoredSession[Any]]:
        self._maybe_cleanup()
        with self._data_lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            if self._now_ms() >= entry.expires_at:
                del self._entries[session_id]
                return None
            return entry.value

    async def set(
        self, session_id: str, session: StoredSession[Any], ttl_seconds: int
    ) -> None:
        with self._data_lock:
            if (
                self.max_size
                and session_id not in self._entries
                and len(self._entries) >= self.max_size
            ):
                self.cleanup()
                if len(self._entries) >= self.max_size:
                    oldest = next(iter(self._entries), None)
                    if oldest is not None:
                        del self._entries[oldest]
                        self.logger.debug("memory_store_evicted", session_id=oldest)
            self._entries[session_id] = _Entry(
                value=session, expires_at=self._now_ms() + ttl_seconds * 1000
            )

    async def delete(self, session_id: str) -> None:
        with self._data_lock:
            self._entries.pop(session_id, None)

    async def touch(
        self, session_id: str, ttl_seconds: int, *, expires_at: Optional[int] = None
    ) -> None:
        with self._data_lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return
            entry.expires_at = self._now_ms() + ttl_seconds * 1000
            if expires_at is None:
                expires_at = int(entry.expires_at)
            entry.value = entry.value.with_expiry(expires_at)

    async def close(self) -> None:
        with self._data_lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._now_ms()
        with self._data_lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in expired:
                del self._entries[key]
            self._last_cleanup = self._clock()
        return len(expired)

    def _maybe_cleanup(self) -> None:
        if self._clock() - self._last_cleanup >= self.cleanup_interval_seconds:
            removed = self.cleanup()
            if removed:
                self.logger.debug("memory_store_cleanup", removed=removed)

    def __len__(self) -> int:
        with self._data_lock:
            return len(self._entries)


__all__ = ["MemorySessionStore"]
