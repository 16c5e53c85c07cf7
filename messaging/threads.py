"""
Thread Directory - User ↔ Thread Mapping

Owns the record that ties each end-user to their dedicated thread in the
staff workspace.

Storage layout:
    user:{user_id}     -> {"thread_id": int, "title": str, "closed": bool}
    thread:{thread_id} -> user_id   (reverse index)

The reverse index is written next to every record. Lookups fall back to a
scan of all user records when the index entry is missing or stale, and
repair the index on a hit.

Two concurrent first messages from the same user can both allocate a
thread; the last write wins and the other thread is left orphaned.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from gateway.base_client import BaseGateway
from gateway.error_types import ThreadCreationFailed
from storage.base import KeyValueStore

log = logging.getLogger(__name__)

USER_PREFIX = "user:"
THREAD_PREFIX = "thread:"
MAX_TITLE_LENGTH = 128


@dataclass
class ThreadRecord:
    """The thread owned by one user."""
    user_id: int
    thread_id: int
    title: str
    closed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "thread_id": self.thread_id,
            "title": self.title,
            "closed": self.closed
        }

    @classmethod
    def from_dict(cls, user_id: int, data: Dict[str, Any]) -> 'ThreadRecord':
        """Create from dictionary."""
        return cls(
            user_id=int(user_id),
            thread_id=int(data["thread_id"]),
            title=data.get("title", ""),
            closed=bool(data.get("closed", False))
        )


def build_thread_title(profile=None) -> str:
    """
    Build a thread title from a sender profile: "First Last @username".

    Args:
        profile: SenderProfile or None

    Returns:
        Title of at most 128 characters
    """
    if profile is None:
        return "User"
    nick = f"{profile.first_name or ''} {profile.last_name or ''}".strip()
    if profile.username:
        at = f"@{profile.username}"
        title = f"{nick} {at}" if nick else at
    else:
        title = nick or "User"
    return title[:MAX_TITLE_LENGTH]


def _user_key(user_id: int) -> str:
    return f"{USER_PREFIX}{user_id}"


def _thread_key(thread_id: int) -> str:
    return f"{THREAD_PREFIX}{thread_id}"


class ThreadDirectory:
    """
    Resolves, creates and updates user threads.

    Example:
        directory = ThreadDirectory(store, gateway, workspace_chat_id)
        record = await directory.resolve_or_create(user_id, profile)
        owner = await directory.find_user_by_thread(record.thread_id)
    """

    def __init__(self, store: KeyValueStore, gateway: BaseGateway, workspace_chat_id: int):
        """
        Initialize the directory.

        Args:
            store: Key-value backend
            gateway: Messaging gateway used to allocate threads
            workspace_chat_id: Workspace chat in which threads are created
        """
        self._store = store
        self._gateway = gateway
        self._workspace_chat_id = workspace_chat_id

    async def get(self, user_id: int) -> Optional[ThreadRecord]:
        """
        Read the record of a user.

        Returns:
            ThreadRecord or None if the user has none (or it is unreadable)
        """
        data = await self._store.get(_user_key(user_id))
        if not data:
            return None
        try:
            return ThreadRecord.from_dict(user_id, data)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Unreadable thread record for user %s: %s", user_id, e)
            return None

    async def resolve_or_create(self, user_id: int, profile=None) -> ThreadRecord:
        """
        Return the user's record, creating a thread for them if needed.

        Args:
            user_id: End-user ID
            profile: SenderProfile used for the thread title

        Returns:
            ThreadRecord

        Raises:
            ThreadCreationFailed: If the gateway cannot allocate a thread
        """
        record = await self.get(user_id)
        if record is not None:
            return record
        return await self._allocate(user_id, profile, previous=None)

    async def recreate_after_loss(self, user_id: int, profile=None) -> ThreadRecord:
        """
        Allocate a fresh thread after the old one was reported missing,
        overwriting the stored record.

        Raises:
            ThreadCreationFailed: If the gateway cannot allocate a thread
        """
        previous = await self.get(user_id)
        log.info(
            "Recreating thread for user %s (lost thread %s)",
            user_id, previous.thread_id if previous else None
        )
        return await self._allocate(user_id, profile, previous=previous)

    async def _allocate(self, user_id: int, profile, previous: Optional[ThreadRecord]) -> ThreadRecord:
        if profile is None and previous is not None:
            title = previous.title
        else:
            title = build_thread_title(profile)

        result = await self._gateway.create_thread(self._workspace_chat_id, title)
        if not result.ok:
            raise ThreadCreationFailed(user_id, result)

        record = ThreadRecord(user_id=int(user_id), thread_id=int(result.result), title=title, closed=False)
        await self._store.put(_user_key(user_id), record.to_dict())
        await self._store.put(_thread_key(record.thread_id), record.user_id)
        if previous is not None and previous.thread_id != record.thread_id:
            await self._store.delete(_thread_key(previous.thread_id))

        log.info("Created thread %s (%s) for user %s", record.thread_id, title, user_id)
        return record

    async def find_user_by_thread(self, thread_id: int) -> Optional[int]:
        """
        Reverse lookup: which user owns this thread.

        Returns:
            User ID, or None if the thread is orphaned
        """
        record = await self._find_record(thread_id)
        return record.user_id if record else None

    async def set_closed(self, thread_id: int, closed: bool) -> bool:
        """
        Mark the thread's record closed or reopened.

        Returns:
            True if a record was updated, False if no owner was found
        """
        record = await self._find_record(thread_id)
        if record is None:
            log.debug("No user owns thread %s, ignoring %s", thread_id, "close" if closed else "reopen")
            return False
        record.closed = closed
        await self._store.put(_user_key(record.user_id), record.to_dict())
        log.info("Thread %s of user %s %s", thread_id, record.user_id, "closed" if closed else "reopened")
        return True

    async def _find_record(self, thread_id: int) -> Optional[ThreadRecord]:
        thread_id = int(thread_id)

        indexed_user = await self._store.get(_thread_key(thread_id))
        if indexed_user is not None:
            record = await self.get(indexed_user)
            if record is not None and record.thread_id == thread_id:
                return record
            log.debug("Stale index entry for thread %s, scanning", thread_id)

        record = await self._scan_for_thread(thread_id)
        if record is not None:
            await self._store.put(_thread_key(thread_id), record.user_id)
        return record

    async def _scan_for_thread(self, thread_id: int) -> Optional[ThreadRecord]:
        for key in await self._store.list_keys(USER_PREFIX):
            user_id = key[len(USER_PREFIX):]
            try:
                record = await self.get(int(user_id))
            except ValueError:
                continue
            if record is not None and record.thread_id == thread_id:
                return record
        return None
