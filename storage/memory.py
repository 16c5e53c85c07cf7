"""
In-memory key-value store for local runs and tests.

Supports per-entry expiry and an optional read lag that simulates an
eventually consistent backend: writes become visible to readers only
after `read_lag` seconds, except to reads issued through the same
store instance when `read_your_writes` is enabled.
"""

import asyncio
import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from storage.base import KeyValueStore

log = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: Optional[float]
    visible_at: float
    deleted: bool = False

    def is_live(self, now: float) -> bool:
        if self.deleted:
            return False
        return self.expires_at is None or now < self.expires_at


class MemoryKVStore(KeyValueStore):
    """
    Dictionary-backed store.

    Values are deep-copied on the way in and out, so callers can never
    mutate stored state by accident.

    Example:
        store = MemoryKVStore()
        await store.put("mg:p2t:1", {"items": []}, ttl=60)
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        read_lag: float = 0.0,
        read_your_writes: bool = True
    ):
        """
        Initialize the store.

        Args:
            clock: Time source in seconds
            read_lag: Seconds before a write becomes visible to other readers
            read_your_writes: If False, the lag also applies to this instance
        """
        self._clock = clock
        self._read_lag = read_lag
        self._read_your_writes = read_your_writes
        self._data: Dict[str, _Entry] = {}
        # Previous entry stays readable while a lagging write propagates
        self._shadow: Dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def _visible(self, key: str, now: float) -> Optional[_Entry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._read_your_writes or now >= entry.visible_at:
            return entry
        return self._shadow.get(key)

    def _write(self, key: str, entry: _Entry, now: float) -> None:
        previous = self._data.get(key)
        # Keep the last propagated entry, not one still in flight
        if previous is not None and self._read_lag > 0 and now >= previous.visible_at:
            self._shadow[key] = previous
        self._data[key] = entry

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            now = self._clock()
            entry = self._visible(key, now)
            if entry is None or not entry.is_live(now):
                return None
            return copy.deepcopy(entry.value)

    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        async with self._lock:
            now = self._clock()
            expires_at = now + ttl if ttl else None
            self._write(key, _Entry(
                value=copy.deepcopy(value),
                expires_at=expires_at,
                visible_at=now + self._read_lag,
            ), now)

    async def delete(self, key: str) -> None:
        async with self._lock:
            if key not in self._data:
                return
            now = self._clock()
            self._write(key, _Entry(value=None, expires_at=None,
                                    visible_at=now + self._read_lag, deleted=True), now)

    async def list_keys(self, prefix: str) -> List[str]:
        async with self._lock:
            now = self._clock()
            self._purge(now)
            keys = []
            for key in self._data:
                if not key.startswith(prefix):
                    continue
                entry = self._visible(key, now)
                if entry is not None and entry.is_live(now):
                    keys.append(key)
            return sorted(keys)

    def _purge(self, now: float) -> None:
        """Drop expired and deleted entries whose writes have propagated."""
        stale = [
            key for key, entry in self._data.items()
            if not entry.is_live(now) and now >= entry.visible_at
        ]
        for key in stale:
            del self._data[key]
            self._shadow.pop(key, None)
        if stale:
            log.debug("Purged %d expired key(s)", len(stale))
