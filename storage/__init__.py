"""
Storage - Key-Value Backends

Usage:
    from storage import create_store

    store = await create_store(settings)
"""

import logging

from storage.base import KeyValueStore
from storage.json_file import JsonFileKVStore
from storage.memory import MemoryKVStore

log = logging.getLogger(__name__)


async def create_store(settings) -> KeyValueStore:
    """
    Build the configured storage backend.

    Args:
        settings: RelaySettings instance

    Returns:
        Ready-to-use KeyValueStore
    """
    backend = (settings.storage_backend or "memory").lower()
    if backend == "json":
        store = JsonFileKVStore(settings.storage_path)
        await store.load()
        log.info("Using JSON file storage at %s", settings.storage_path)
        return store
    if backend != "memory":
        log.warning("Unknown storage backend '%s', falling back to memory", backend)
    log.info("Using in-memory storage (state is lost on restart)")
    return MemoryKVStore()


__all__ = ['KeyValueStore', 'MemoryKVStore', 'JsonFileKVStore', 'create_store']
