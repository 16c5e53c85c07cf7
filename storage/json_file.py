"""
File-backed key-value store.

Keeps the working set in memory and mirrors it to a single JSON file
through the debounced PersistenceManager. Meant for single-host
deployments that want thread records to survive a restart.
"""

import asyncio
import copy
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from storage.base import KeyValueStore
from utils.persistence import PersistenceManager

log = logging.getLogger(__name__)


class JsonFileKVStore(KeyValueStore):
    """
    Key-value store persisted to a JSON file.

    File layout:
        {"<key>": {"value": <json>, "expires_at": <epoch seconds or null>}}

    Example:
        store = JsonFileKVStore("data/relay_store.json")
        await store.load()
        await store.put("user:42", {"thread_id": 7})
        await store.close()  # flushes pending writes
    """

    def __init__(
        self,
        file_path: str,
        debounce_delay: float = 1.0,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the store.

        Args:
            file_path: JSON file path
            debounce_delay: Seconds to batch writes before hitting the disk
            clock: Time source in seconds
        """
        self._persistence = PersistenceManager(file_path, debounce_delay=debounce_delay)
        self._clock = clock
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._loaded = False

    async def load(self) -> None:
        """Load the file into memory, dropping entries that already expired."""
        raw = await self._persistence.load()
        now = self._clock()
        async with self._lock:
            self._data = {
                key: entry for key, entry in raw.items()
                if isinstance(entry, dict) and self._is_live(entry, now)
            }
            self._loaded = True
        log.debug("Loaded %d key(s) from %s", len(self._data), self._persistence.file_path)

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    @staticmethod
    def _is_live(entry: Dict[str, Any], now: float) -> bool:
        expires_at = entry.get("expires_at")
        return expires_at is None or now < expires_at

    def _schedule_save(self) -> None:
        self._persistence.schedule_save(dict(self._data))

    async def get(self, key: str) -> Optional[Any]:
        await self._ensure_loaded()
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if not self._is_live(entry, self._clock()):
                del self._data[key]
                self._schedule_save()
                return None
            return copy.deepcopy(entry.get("value"))

    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        await self._ensure_loaded()
        async with self._lock:
            expires_at = self._clock() + ttl if ttl else None
            self._data[key] = {"value": copy.deepcopy(value), "expires_at": expires_at}
            self._schedule_save()

    async def delete(self, key: str) -> None:
        await self._ensure_loaded()
        async with self._lock:
            if self._data.pop(key, None) is not None:
                self._schedule_save()

    async def list_keys(self, prefix: str) -> List[str]:
        await self._ensure_loaded()
        async with self._lock:
            now = self._clock()
            return sorted(
                key for key, entry in self._data.items()
                if key.startswith(prefix) and self._is_live(entry, now)
            )

    async def close(self) -> None:
        await self._persistence.flush()
