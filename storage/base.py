"""
Key-Value Store - Abstract Interface

All cross-event relay state (thread records, album buffers, verification
flags) lives behind this interface. Implementations are not required to
offer transactions or cross-key atomicity, and a write is only guaranteed
to be visible to the writer itself right away.

Classes:
    - KeyValueStore: Abstract base class for storage backends
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional


class KeyValueStore(ABC):
    """
    Abstract asynchronous key-value store.

    Values are JSON-compatible Python objects. Prefix listing is the only
    index a backend has to provide.

    Example:
        >>> await store.put("user:42", {"thread_id": 7}, ttl=60)
        >>> await store.get("user:42")
        {'thread_id': 7}
        >>> await store.list_keys("user:")
        ['user:42']
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Read a value.

        Args:
            key: Storage key

        Returns:
            The stored value, or None if missing or expired
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Write a value, replacing any previous one (last write wins).

        Args:
            key: Storage key
            value: JSON-compatible value
            ttl: Optional expiry in seconds
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Delete a key. Deleting a missing key is not an error.

        Args:
            key: Storage key
        """
        pass

    @abstractmethod
    async def list_keys(self, prefix: str) -> List[str]:
        """
        List live keys starting with prefix.

        Args:
            prefix: Key prefix, e.g. "user:"

        Returns:
            Matching keys in lexical order
        """
        pass

    async def close(self) -> None:
        """Release backend resources. Default implementation does nothing."""
        return None
