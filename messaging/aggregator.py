"""
Media Aggregator - Album Coalescing

Collects media messages that share a media group id and delivers them as
one unit, trading a short delay for far less fragmentation in the
destination chat.

Flush triggers (whichever comes first):
- Size: the buffer reaches `max_group_size` items, flushed before append returns
- Inactivity: no new item for `quiet_period`, flushed by a background watchdog
- Sweep: any buffer older than the quiet period found at the start of an event,
  for watchdogs that never got to run

Every flush re-reads its buffer and compares the version marker against
the one captured by the trigger. A mismatch means another trigger already
advanced or flushed the buffer, and the flush does nothing.
"""

import asyncio
import logging
import time
import weakref
from typing import Any, Callable, Dict, List, Optional

from gateway.base_client import BaseGateway, OutboundMedia
from gateway.error_types import GatewayResult, GroupFlushRaced, is_thread_missing
from messaging.buffer import (
    SUPPORTED_MEDIA_KINDS,
    USER_TO_WORKSPACE,
    Destination,
    MediaGroupBuffer,
    MediaGroupStore,
    MediaItem,
    buffer_key,
)
from messaging.timing import TimingController
from storage.base import KeyValueStore

log = logging.getLogger(__name__)


class MediaAggregator:
    """
    Buffers album items in the key-value store and flushes them.

    Example:
        aggregator = MediaAggregator(store, gateway, TimingController(TimingConfig()))
        await aggregator.sweep()
        await aggregator.append("p2t", "1357", item, Destination(workspace_id, thread_id))
    """

    def __init__(
        self,
        store: KeyValueStore,
        gateway: BaseGateway,
        timing: TimingController,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the aggregator.

        Args:
            store: Key-value backend holding the buffers
            gateway: Messaging gateway used for delivery
            timing: Controller that owns thresholds and watchdogs
            clock: Time source in seconds
        """
        self.groups = MediaGroupStore(store, ttl=timing.config.buffer_ttl)
        self.gateway = gateway
        self.timing = timing
        self._clock = clock
        # Serializes appends and flushes of one buffer inside this process
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def append(
        self,
        direction: str,
        group_id: str,
        item: MediaItem,
        destination: Destination
    ) -> None:
        """
        Add an item to its album buffer and schedule or perform the flush.

        Items of unsupported kinds skip buffering and are delivered
        immediately on their own.

        Args:
            direction: USER_TO_WORKSPACE or WORKSPACE_TO_USER
            group_id: External media group id
            item: The media message
            destination: Where the album goes
        """
        key = buffer_key(direction, group_id)

        if item.kind not in SUPPORTED_MEDIA_KINDS:
            log.debug("Media group item of kind '%s' unsupported, sending alone (%s)", item.kind, key)
            await self.deliver_single(direction, item, destination)
            return

        lock = self._lock_for(key)
        async with lock:
            now = self._clock()
            buffer = await self.groups.load(key)
            if buffer is None:
                buffer = MediaGroupBuffer(
                    direction=direction,
                    target_chat=destination.chat_id,
                    target_thread=destination.thread_id,
                    last_append_time=now
                )
            buffer.add_item(item, now)
            await self.groups.save(key, buffer)
            marker = buffer.marker()
            log.debug("Media group buffered %s (count=%d)", key, buffer.get_count())

            if buffer.get_count() >= self.timing.config.max_group_size:
                await self._flush_locked(key, marker)
                return

        self.timing.arm(key, marker, self.flush)

    async def flush(self, key: str, expected_marker: Any) -> bool:
        """
        Flush a buffer if it is still the one the trigger saw.

        Args:
            key: Buffer storage key
            expected_marker: Marker captured by the trigger

        Returns:
            True if this call delivered the album
        """
        lock = self._lock_for(key)
        async with lock:
            return await self._flush_locked(key, expected_marker)

    async def _flush_locked(self, key: str, expected_marker: Any) -> bool:
        buffer = await self.groups.load(key)
        try:
            self._ensure_current(key, buffer, expected_marker)
        except GroupFlushRaced as e:
            log.debug("Skipping flush: %s", e)
            return False

        try:
            await self._deliver(key, buffer)
        finally:
            await self.groups.delete(key)
        return True

    @staticmethod
    def _ensure_current(key: str, buffer: Optional[MediaGroupBuffer], expected_marker: Any) -> None:
        if buffer is None or not buffer.items:
            raise GroupFlushRaced(key)
        if tuple(expected_marker) != buffer.marker():
            raise GroupFlushRaced(key)

    async def sweep(self, now: Optional[float] = None) -> int:
        """
        Flush every buffer that has been quiet for longer than the quiet period
        and delete buffers that are empty or unreadable.

        Args:
            now: Current time (defaults to the aggregator clock)

        Returns:
            Number of albums delivered by this sweep
        """
        now = self._clock() if now is None else now
        flushed = 0
        for key in await self.groups.list_keys():
            buffer = await self.groups.load(key)
            if buffer is None or not buffer.items:
                log.debug("Removing empty media group buffer %s", key)
                await self.groups.delete(key)
                continue
            if buffer.is_expired(now, self.timing.config.quiet_period):
                if await self.flush(key, buffer.marker()):
                    flushed += 1
        if flushed:
            log.info("Sweep flushed %d media group(s)", flushed)
        return flushed

    async def _deliver(self, key: str, buffer: MediaGroupBuffer) -> None:
        destination = buffer.destination()
        items = buffer.items

        if len(items) == 1:
            await self.deliver_single(buffer.direction, items[0], destination)
            log.info("Flushed media group %s as a single message", key)
            return

        if buffer.direction == USER_TO_WORKSPACE:
            await self._deliver_forward_batch(key, items, destination)
        else:
            await self._deliver_media_group(key, items, destination)

    async def _deliver_forward_batch(self, key: str, items: List[MediaItem], destination: Destination) -> None:
        # Ascending source message id on both paths, the order forwardMessages requires
        items = sorted(items, key=lambda item: item.source_message_id)
        sources = {item.source_chat for item in items}
        if len(sources) == 1:
            result = await self.gateway.forward_batch(
                destination.chat_id,
                items[0].source_chat,
                [item.source_message_id for item in items],
                destination.thread_id
            )
            if result.ok:
                log.info("Forwarded media group %s (%d items)", key, len(items))
                return
            self._log_failure("forwardMessages", key, result)
        else:
            log.warning("Media group %s spans %d source chats, forwarding one by one", key, len(sources))

        for item in items:
            result = await self.gateway.forward(
                destination.chat_id, item.source_chat, item.source_message_id, destination.thread_id
            )
            if not result.ok:
                self._log_failure("forwardMessage", key, result)

    async def _deliver_media_group(self, key: str, items: List[MediaItem], destination: Destination) -> None:
        # Only the first caption is shown on an album
        media = [
            OutboundMedia(
                kind=item.kind,
                media_ref=item.media_ref,
                caption=(item.caption or None) if index == 0 else None
            )
            for index, item in enumerate(items)
        ]
        result = await self.gateway.send_media_group(destination.chat_id, media, destination.thread_id)
        if result.ok:
            log.info("Sent media group %s (%d items)", key, len(items))
            return
        self._log_failure("sendMediaGroup", key, result)

        for item in items:
            await self._copy_or_forward(key, item, destination)

    async def deliver_single(self, direction: str, item: MediaItem, destination: Destination) -> bool:
        """
        Deliver one message on its own.

        Forward for user→workspace, copy (forward if the copy fails)
        for workspace→user.

        Returns:
            True if delivered
        """
        if direction == USER_TO_WORKSPACE:
            result = await self.gateway.forward(
                destination.chat_id, item.source_chat, item.source_message_id, destination.thread_id
            )
            if not result.ok:
                self._log_failure("forwardMessage", f"{item.source_chat}/{item.source_message_id}", result)
            return result.ok
        return await self._copy_or_forward(f"{item.source_chat}/{item.source_message_id}", item, destination)

    async def _copy_or_forward(self, key: str, item: MediaItem, destination: Destination) -> bool:
        result = await self.gateway.copy(
            destination.chat_id, item.source_chat, item.source_message_id, destination.thread_id
        )
        if result.ok:
            return True
        self._log_failure("copyMessage", key, result)

        result = await self.gateway.forward(
            destination.chat_id, item.source_chat, item.source_message_id, destination.thread_id
        )
        if not result.ok:
            self._log_failure("forwardMessage", key, result)
        return result.ok

    @staticmethod
    def _log_failure(operation: str, key: str, result: GatewayResult) -> None:
        if is_thread_missing(result):
            log.warning("%s for %s hit a missing thread: %s", operation, key, result.to_detailed_string())
        else:
            log.warning("%s for %s failed: %s", operation, key, result.to_detailed_string())

    def get_stats(self) -> Dict[str, Any]:
        """
        Get aggregator statistics.

        Returns:
            Dictionary with stats
        """
        stats = self.timing.get_stats()
        stats["locked_buffers"] = sum(1 for lock in list(self._locks.values()) if lock.locked())
        return stats
