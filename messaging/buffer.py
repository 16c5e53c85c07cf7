"""
Media Group Buffer - Album Storage

This module holds the data model for albums that are still being
collected, and the thin layer that persists them in the key-value store.

Key Features:
- One buffer per (direction, media group id)
- Arrival order preserved
- Safety expiry on every write so abandoned buffers disappear on their own
- Version marker used to detect a buffer that moved on or was flushed
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from storage.base import KeyValueStore

log = logging.getLogger(__name__)

BUFFER_PREFIX = "mg:"

# Album directions
USER_TO_WORKSPACE = "p2t"
WORKSPACE_TO_USER = "t2p"

SUPPORTED_MEDIA_KINDS = ("photo", "video", "document")


@dataclass(frozen=True)
class MediaItem:
    """One media message waiting inside an album buffer."""
    kind: str  # "photo", "video" or "document"
    media_ref: str  # file id
    caption: str
    source_chat: int
    source_message_id: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "type": self.kind,
            "file_id": self.media_ref,
            "caption": self.caption,
            "from_chat_id": self.source_chat,
            "message_id": self.source_message_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MediaItem':
        """Create from dictionary."""
        return cls(
            kind=data["type"],
            media_ref=data["file_id"],
            caption=data.get("caption") or "",
            source_chat=data["from_chat_id"],
            source_message_id=data["message_id"]
        )


@dataclass
class Destination:
    """Where a flushed album is delivered."""
    chat_id: int
    thread_id: Optional[int] = None


@dataclass
class MediaGroupBuffer:
    """State of one album being collected."""
    direction: str
    target_chat: int
    target_thread: Optional[int] = None
    items: List[MediaItem] = field(default_factory=list)
    last_append_time: float = field(default_factory=time.time)

    def add_item(self, item: MediaItem, now: float) -> None:
        """Add an item to the buffer."""
        self.items.append(item)
        self.last_append_time = now

    def get_count(self) -> int:
        """Get number of buffered items."""
        return len(self.items)

    def marker(self) -> Tuple[int, float]:
        """
        Version marker of this buffer.

        Items are only ever appended, so (count, last append time) changes
        on every append and never repeats for the same key.
        """
        return (len(self.items), self.last_append_time)

    def is_expired(self, now: float, quiet_period: float) -> bool:
        """True if nothing was appended for longer than the quiet period."""
        return now - self.last_append_time > quiet_period

    def destination(self) -> Destination:
        return Destination(self.target_chat, self.target_thread)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "direction": self.direction,
            "targetChat": self.target_chat,
            "threadId": self.target_thread,
            "items": [item.to_dict() for item in self.items],
            "last_ts": self.last_append_time
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MediaGroupBuffer':
        """Create from dictionary."""
        return cls(
            direction=data["direction"],
            target_chat=data["targetChat"],
            target_thread=data.get("threadId"),
            items=[MediaItem.from_dict(item) for item in data.get("items") or []],
            last_append_time=float(data.get("last_ts") or 0.0)
        )


def buffer_key(direction: str, group_id: str) -> str:
    """Storage key of the buffer for one album."""
    return f"{BUFFER_PREFIX}{direction}:{group_id}"


class MediaGroupStore:
    """
    Persists album buffers in the key-value store.

    Example:
        groups = MediaGroupStore(store, ttl=60)
        buffer = await groups.load(key)
        await groups.save(key, buffer)
        await groups.delete(key)
    """

    def __init__(self, store: KeyValueStore, ttl: int = 60):
        """
        Initialize the buffer store.

        Args:
            store: Key-value backend
            ttl: Safety expiry in seconds applied on every write
        """
        self._store = store
        self._ttl = ttl

    async def load(self, key: str) -> Optional[MediaGroupBuffer]:
        """
        Load a buffer.

        Returns:
            The buffer, or None if missing or unreadable
        """
        data = await self._store.get(key)
        if not data:
            return None
        try:
            return MediaGroupBuffer.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Unreadable media group buffer %s: %s", key, e)
            return None

    async def save(self, key: str, buffer: MediaGroupBuffer) -> None:
        await self._store.put(key, buffer.to_dict(), ttl=self._ttl)

    async def delete(self, key: str) -> None:
        await self._store.delete(key)

    async def list_keys(self) -> List[str]:
        return await self._store.list_keys(BUFFER_PREFIX)
