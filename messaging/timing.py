"""
Timing Controller - Album Flush Timing

This module centralizes the timing decisions for album aggregation:
- Size and quiet-period thresholds
- Detached inactivity watchdogs that outlive the request that armed them
- Draining of outstanding watchdogs when the host shuts down

Watchdogs are never cancelled to signal staleness. A watchdog carries the
buffer marker captured when it was armed, and the flush it triggers is a
no-op once the buffer has moved on.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

log = logging.getLogger(__name__)


@dataclass
class TimingConfig:
    """Configuration for album flush timing."""
    quiet_period: float = 2.0  # Seconds without a new item before flushing
    max_group_size: int = 10  # Items that force an immediate flush
    buffer_ttl: int = 60  # Storage expiry for buffers, independent of flushing
    watchdog_grace: float = 25.0  # Extra run time allowed to a watchdog after its sleep

    @classmethod
    def from_settings(cls, settings) -> 'TimingConfig':
        """Create from RelaySettings."""
        return cls(
            quiet_period=settings.quiet_period,
            max_group_size=settings.max_group_size,
            buffer_ttl=settings.buffer_ttl,
            watchdog_grace=settings.watchdog_grace
        )

    @property
    def watchdog_lifetime(self) -> float:
        return self.quiet_period + self.watchdog_grace


class TimingController:
    """
    Schedules inactivity watchdogs as fire-and-forget background tasks.

    The controller keeps a reference to every live task so they are not
    garbage collected mid-flight and so the host can await them on
    shutdown. Each task is bounded by `watchdog_lifetime`.

    Example:
        controller = TimingController(TimingConfig(quiet_period=2.0))
        controller.arm(key, marker, aggregator.flush)
        ...
        await controller.drain(timeout=30)
    """

    def __init__(self, config: TimingConfig):
        """
        Initialize the timing controller.

        Args:
            config: Timing thresholds
        """
        self.config = config
        self._tasks: Set[asyncio.Task] = set()

    def arm(
        self,
        key: str,
        marker: Any,
        callback: Callable[[str, Any], Awaitable[None]]
    ) -> asyncio.Task:
        """
        Start a watchdog that calls callback(key, marker) after the quiet period.

        Args:
            key: Buffer storage key
            marker: Buffer marker captured right after the append
            callback: Flush coroutine to run when the watchdog fires

        Returns:
            The background task
        """
        async def watchdog():
            await asyncio.sleep(self.config.quiet_period)
            await callback(key, marker)

        task = asyncio.create_task(self._bounded(key, watchdog()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log.debug("Armed watchdog for %s (marker=%s)", key, marker)
        return task

    async def _bounded(self, key: str, coro: Awaitable[None]) -> None:
        try:
            await asyncio.wait_for(coro, timeout=self.config.watchdog_lifetime)
        except asyncio.TimeoutError:
            log.error("Watchdog for %s exceeded its %.1fs budget", key, self.config.watchdog_lifetime)
        except asyncio.CancelledError:
            log.debug("Watchdog for %s cancelled by shutdown", key)
            raise
        except Exception as e:
            log.error("Watchdog for %s failed: %s", key, e)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for outstanding watchdogs to finish.

        Tasks still running after the timeout are cancelled.

        Args:
            timeout: Maximum seconds to wait (defaults to the watchdog lifetime)

        Returns:
            Number of watchdogs that were still pending when called
        """
        pending = list(self._tasks)
        if not pending:
            return 0

        timeout = self.config.watchdog_lifetime if timeout is None else timeout
        log.debug("Draining %d watchdog(s)", len(pending))
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            await asyncio.gather(*not_done, return_exceptions=True)
            log.warning("Cancelled %d watchdog(s) still running at shutdown", len(not_done))
        return len(pending)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get timing controller statistics.

        Returns:
            Dictionary with stats
        """
        return {
            "active_watchdogs": sum(1 for task in self._tasks if not task.done()),
            "quiet_period": self.config.quiet_period,
            "max_group_size": self.config.max_group_size
        }
