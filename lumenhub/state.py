from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Coroutine, Deque, Dict, List, Optional, Set

from .controllers.base import Adapter, Peripheral
from .errors import DeviceUnknown
from .models import CommandLogEntry, Device, ScanKind

logger = logging.getLogger(__name__)


class HubState:
    """Everything one hub instance knows about its devices.

    Owned by a single DeviceManager and shared by its engines. Registry
    mutations happen between awaits, so they are atomic on the event loop.
    """

    def __init__(self, adapter: Optional[Adapter] = None, *, command_log_size: int = 500) -> None:
        self.adapter = adapter
        self.mock_mode = False
        self.adapter_state = "unknown"
        self.devices: Dict[str, Device] = {}
        self.peripherals: Dict[str, Peripheral] = {}
        self.command_log: Deque[CommandLogEntry] = deque(maxlen=command_log_size)
        self.scanning = False
        self.scan_kind: Optional[ScanKind] = None
        self.scan_task: Optional[asyncio.Task] = None
        # bumped by every scan start and stop
        self.scan_generation = 0
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()

    def require(self, device_id: str) -> Device:
        device = self.devices.get(device_id)
        if device is None:
            raise DeviceUnknown("Device %s not found; scan again to rediscover it" % device_id)
        return device

    def lock_for(self, device_id: str) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = self._locks[device_id] = asyncio.Lock()
        return lock

    def log_command(self, entry: CommandLogEntry) -> None:
        self.command_log.append(entry)

    def spawn(self, coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task:
        """Run ``coro`` in the background; failures are logged, never raised."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.warning("Background %s failed: %s", description, exc, exc_info=exc)

        task.add_done_callback(_done)
        return task

    async def drain_tasks(self) -> None:
        """Wait for the background tasks spawned so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_tasks(self) -> None:
        tasks: List[asyncio.Task] = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
