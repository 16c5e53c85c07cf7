"""
Persistence Utilities

This module provides generic persistence for JSON data with support
for debounced saving, used by the file-backed key-value store.

Classes:
    - PersistenceManager: Manages file persistence with debouncing
"""

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional


log = logging.getLogger(__name__)


class PersistenceManager:
    """
    Manages file persistence with debounced saving.

    Features:
    - Async file operations (run in a worker thread)
    - Debounced saving (batches rapid updates)
    - Automatic error handling

    Example:
        >>> manager = PersistenceManager("data/relay_store.json")
        >>> data = await manager.load()
        >>> manager.schedule_save(data)  # Debounced save
    """

    def __init__(self, file_path: str, debounce_delay: float = 1.0):
        """
        Initialize the persistence manager.

        Args:
            file_path: Path to the JSON file
            debounce_delay: Delay in seconds before saving (default: 1.0)
        """
        self.file_path = file_path
        self.debounce_delay = debounce_delay
        self._save_task: Optional[asyncio.Task] = None
        self._write_task: Optional[asyncio.Future] = None
        self._pending: Optional[Dict[str, Any]] = None

    def _load_sync(self) -> Dict[str, Any]:
        """
        Synchronously load data from file.

        Returns:
            The data dictionary
        """
        if not os.path.exists(self.file_path):
            return {}

        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
                log.debug("Loaded data from %s", self.file_path)
                return data if isinstance(data, dict) else {}
        except json.JSONDecodeError as e:
            log.error("Error decoding %s: %s", self.file_path, e)
            return {}
        except OSError as e:
            log.error("Error loading %s: %s", self.file_path, e)
            return {}

    def _save_sync(self, data: Dict[str, Any]) -> bool:
        """
        Synchronously save data to file.

        The file is written to a temporary sibling first and then moved
        into place, so a crash mid-write never leaves a truncated store.

        Args:
            data: The data to save

        Returns:
            True if successful, False otherwise
        """
        directory = os.path.dirname(self.file_path)
        tmp_path = f"{self.file_path}.tmp"
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.file_path)
            log.debug("Saved data to %s", self.file_path)
            return True
        except (OSError, TypeError, ValueError) as e:
            log.error("Error saving %s: %s", self.file_path, e)
            return False

    async def load(self) -> Dict[str, Any]:
        """
        Load data from file asynchronously.

        Returns:
            The data dictionary
        """
        return await asyncio.to_thread(self._load_sync)

    async def save_immediate(self, data: Dict[str, Any]) -> bool:
        """
        Save data immediately without debouncing.

        Args:
            data: The data to save

        Returns:
            True if successful, False otherwise
        """
        return await asyncio.to_thread(self._save_sync, data)

    async def _save_debounced(self) -> None:
        """Save the latest scheduled snapshot after the debounce delay."""
        while self._pending is not None:
            await asyncio.sleep(self.debounce_delay)
            data, self._pending = self._pending, None
            if data is None:
                return
            self._write_task = asyncio.ensure_future(self.save_immediate(data))
            # Cancelling the debounce must not abandon a write in progress
            await asyncio.shield(self._write_task)

    def schedule_save(self, data: Dict[str, Any]) -> None:
        """
        Schedule a debounced save operation.

        If a save is already scheduled, it will pick up this newer snapshot.

        Args:
            data: The data to save
        """
        self._pending = data
        if self._save_task is None or self._save_task.done():
            self._save_task = asyncio.create_task(self._save_debounced())

    async def flush(self) -> None:
        """Write any scheduled snapshot right away (used on shutdown)."""
        if self._save_task and not self._save_task.done():
            self._save_task.cancel()
            try:
                await self._save_task
            except asyncio.CancelledError:
                pass
        if self._write_task is not None and not self._write_task.done():
            await self._write_task
        data, self._pending = self._pending, None
        if data is not None:
            await self.save_immediate(data)
