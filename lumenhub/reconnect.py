from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from .config import HubConfig
from .models import ScanKind, is_wifi_id
from .state import HubState

logger = logging.getLogger(__name__)


class AutoReconnectLoop:
    """Periodically brings saved devices back online.

    Devices with a cached radio handle are reconnected directly; a bounded
    auto scan runs only when some saved device has never been seen.
    """

    def __init__(
        self,
        state: HubState,
        config: HubConfig,
        connect: Callable[[str], Awaitable[Any]],
        start_scan: Callable[..., Awaitable[Any]],
    ) -> None:
        self._state = state
        self._config = config
        self._connect = connect
        self._start_scan = start_scan
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        await asyncio.sleep(self._config.reconnect_initial_delay)
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Auto-reconnect pass failed")
            await asyncio.sleep(self._config.reconnect_interval)

    def _targets(self) -> List[str]:
        return [
            device.id
            for device in self._state.devices.values()
            if device.saved and not device.connected and not is_wifi_id(device.id)
        ]

    async def run_once(self) -> None:
        targets = self._targets()
        if not targets:
            return
        cached = [device_id for device_id in targets if device_id in self._state.peripherals]
        missing = [device_id for device_id in targets if device_id not in self._state.peripherals]

        if cached:
            logger.info("Reconnecting %d saved device(s)", len(cached))
            results = await asyncio.gather(*(self._connect(device_id) for device_id in cached), return_exceptions=True)
            for device_id, result in zip(cached, results):
                if isinstance(result, BaseException):
                    logger.warning("Reconnect to %s failed: %s", device_id, result)

        if missing and not self._state.scanning:
            logger.info("%d saved device(s) not seen yet, starting auto scan", len(missing))
            await self._start_scan(self._config.reconnect_scan_duration_ms, ScanKind.AUTO)
