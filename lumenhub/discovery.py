from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import HubConfig
from .controllers.base import Peripheral
from .errors import AdapterNotReady, HubError
from .events import EventBus
from .models import (
    DEVICE_DISCOVERED,
    DEVICE_UPDATED,
    SCAN_STARTED,
    SCAN_STOPPED,
    UNKNOWN_NAME,
    ConnectionState,
    Device,
    ScanKind,
    is_wifi_id,
)
from .profiles import VENDOR_A_SERVICE
from .settings_store import DeviceSettingsStore
from .state import HubState

logger = logging.getLogger(__name__)

VENDOR_A_GUESS_NAME = "ilink? (Service A032)"


def display_name(peripheral: Peripheral, custom_name: Optional[str]) -> str:
    if custom_name:
        return custom_name
    if peripheral.name:
        return peripheral.name
    if VENDOR_A_SERVICE in peripheral.service_uuids:
        return VENDOR_A_GUESS_NAME
    return UNKNOWN_NAME


class DiscoveryEngine:
    """Time-bounded scans that keep the device registry fresh.

    Each advertisement upserts one registry entry. Saved devices that show
    up while disconnected are connected in the background.
    """

    def __init__(
        self,
        state: HubState,
        store: DeviceSettingsStore,
        bus: EventBus,
        config: HubConfig,
        connect: Callable[[str], Awaitable[Any]],
    ) -> None:
        self._state = state
        self._store = store
        self._bus = bus
        self._config = config
        self._connect = connect

    def list_devices(self, include_wifi: bool = False) -> List[Dict[str, object]]:
        return [
            device.to_dict(include_characteristics=False)
            for device in self._state.devices.values()
            if include_wifi or not is_wifi_id(device.id)
        ]

    async def start_scan(
        self, duration_ms: Optional[int] = None, kind: ScanKind = ScanKind.MANUAL
    ) -> List[Dict[str, object]]:
        state = self._state
        if state.scanning:
            return self.list_devices()
        duration_ms = duration_ms or self._config.scan_duration_ms
        state.scanning = True
        state.scan_kind = kind
        state.scan_generation += 1
        generation = state.scan_generation
        self._bus.publish(SCAN_STARTED, {"durationMs": duration_ms, "type": kind.value})
        logger.info("Starting %s scan for %d ms", kind.value, duration_ms)
        try:
            if state.adapter is None:
                raise AdapterNotReady("No radio adapter configured")
            await state.adapter.wait_ready(self._config.adapter_ready_timeout)
            state.adapter_state = "poweredOn"
            await state.adapter.start_scan(self._handle_discovered)
        except Exception as exc:
            if isinstance(exc, AdapterNotReady):
                state.adapter_state = "unavailable"
            if state.scan_generation == generation:
                state.scanning = False
                state.scan_kind = None
                self._bus.publish(SCAN_STOPPED, {"devicesFound": len(self.list_devices()), "error": str(exc)})
            logger.warning("Scan failed to start: %s", exc)
            if isinstance(exc, HubError):
                raise
            raise AdapterNotReady(str(exc)) from exc

        if state.scan_generation != generation:
            # stopped while the adapter was still starting
            logger.info("Scan was stopped during start-up, stopping the adapter")
            if not state.scanning:
                try:
                    await state.adapter.stop_scan()
                except Exception:
                    logger.exception("Adapter failed to stop scanning")
            return self.list_devices()
        state.scan_task = state.spawn(self._scan_timer(duration_ms), "scan timer")
        return self.list_devices()

    async def _scan_timer(self, duration_ms: int) -> None:
        await asyncio.sleep(duration_ms / 1000)
        await self.stop_scan()

    async def stop_scan(self) -> None:
        state = self._state
        timer, state.scan_task = state.scan_task, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
        if not state.scanning:
            return
        state.scanning = False
        state.scan_kind = None
        state.scan_generation += 1
        try:
            if state.adapter is not None:
                await state.adapter.stop_scan()
        except Exception:
            logger.exception("Adapter failed to stop scanning")
        found = len(self.list_devices())
        logger.info("Scan stopped, %d device(s) known", found)
        self._bus.publish(SCAN_STOPPED, {"devicesFound": found})

    def _handle_discovered(self, peripheral: Peripheral) -> None:
        state = self._state
        state.peripherals[peripheral.id] = peripheral
        setting = self._store.get(peripheral.id)
        custom_name = setting.custom_name if setting else None
        name = display_name(peripheral, custom_name)
        now = time.time()

        device = state.devices.get(peripheral.id)
        if device is not None:
            device.rssi = peripheral.rssi
            device.last_seen = now
            device.services |= peripheral.service_uuids
            if custom_name or name != UNKNOWN_NAME:
                device.name = name
            self._bus.publish(DEVICE_UPDATED, device.to_dict(include_characteristics=False))
        else:
            device = Device(
                id=peripheral.id,
                name=name,
                rssi=peripheral.rssi,
                services=set(peripheral.service_uuids),
                last_seen=now,
            )
            if setting is not None:
                device.saved = setting.saved
                device.custom_name = setting.custom_name
                device.profile_id = setting.profile_id
                device.target_char = setting.target_char
                device.state = dict(setting.last_state) if setting.last_state else None
            state.devices[device.id] = device
            logger.debug("Discovered %s (%s, %d dBm)", device.id, device.name, device.rssi)
            self._bus.publish(DEVICE_DISCOVERED, device.to_dict(include_characteristics=False))

        if device.saved and device.connection_state is ConnectionState.DISCONNECTED:
            logger.info("Saved device %s in range, connecting", device.id)
            state.spawn(self._connect(device.id), "auto-connect to %s" % device.id)

        if state.scan_kind is ScanKind.AUTO and self._all_saved_in_range():
            logger.info("Every saved device is in range, ending auto scan early")
            state.spawn(self.stop_scan(), "early scan stop")

    def _all_saved_in_range(self) -> bool:
        return all(
            device.id in self._state.peripherals
            for device in self._state.devices.values()
            if device.saved and not device.connected and not is_wifi_id(device.id)
        )
