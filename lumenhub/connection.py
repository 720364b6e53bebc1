from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

from .codec import Command
from .config import HubConfig
from .errors import ConnectionFailed, PeripheralNotFound
from .events import EventBus
from .interaction import InteractionLayer
from .models import (
    DEVICE_CONNECTED,
    DEVICE_DISCONNECTED,
    LIGHT_DEFAULTS,
    ConnectionState,
    UpdateSource,
)
from .reconciler import HubReconciler
from .settings_store import DeviceSettingsStore
from .state import HubState

logger = logging.getLogger(__name__)

# keys re-applied on connect, in order
RESTORE_ORDER = ("power", "brightness", "colorTemperature", "color")


class ConnectionManager:
    """Connect/disconnect lifecycle for BLE devices.

    Connects are serialized per device. Every path that ends a link, explicit
    or not, goes through ``_mark_disconnected`` so observers see exactly one
    ``device_disconnected`` per link.
    """

    def __init__(
        self,
        state: HubState,
        store: DeviceSettingsStore,
        bus: EventBus,
        config: HubConfig,
        interaction: InteractionLayer,
        reconciler: HubReconciler,
        stop_scan: Callable[[], Awaitable[None]],
    ) -> None:
        self._state = state
        self._store = store
        self._bus = bus
        self._config = config
        self._interaction = interaction
        self._reconciler = reconciler
        self._stop_scan = stop_scan

    async def connect(self, device_id: str) -> Dict[str, object]:
        device = self._state.require(device_id)
        if device.connected:
            return device.to_dict()
        async with self._state.lock_for(device_id):
            device = self._state.require(device_id)
            if device.connected:
                return device.to_dict()
            peripheral = self._state.peripherals.get(device_id)
            if peripheral is None:
                raise PeripheralNotFound("No radio handle for %s; scan until it is in range" % device_id)

            device.connection_state = ConnectionState.CONNECTING
            await self._stop_scan()
            logger.info("Connecting to %s (%s)", device_id, device.name)
            try:
                characteristics = await self._state.adapter.connect(peripheral, self._mark_disconnected)
            except Exception as exc:
                device.connection_state = ConnectionState.DISCONNECTED
                logger.warning("Connection to %s failed: %s", device_id, exc)
                if isinstance(exc, ConnectionFailed):
                    raise
                raise ConnectionFailed("Could not connect to %s: %s" % (device_id, exc)) from exc

            device.characteristics = list(characteristics)
            device.services |= {char.service_uuid for char in characteristics}
            device.connected = True
            device.connection_state = ConnectionState.CONNECTED
            self._bus.publish(DEVICE_CONNECTED, device.to_dict())

        await self._hydrate(device_id)
        return device.to_dict()

    async def disconnect(self, device_id: str) -> None:
        device = self._state.require(device_id)
        if device.is_wifi:
            logger.debug("%s is a WiFi unit; nothing to disconnect", device_id)
            return
        if not device.connected:
            return
        async with self._state.lock_for(device_id):
            if not device.connected:
                return
            try:
                await self._state.adapter.disconnect(device_id)
            except Exception:
                logger.warning("Adapter disconnect of %s failed", device_id, exc_info=True)
            self._mark_disconnected(device_id)

    def _mark_disconnected(self, device_id: str) -> bool:
        device = self._state.devices.get(device_id)
        if device is None:
            return False
        if not device.connected and device.connection_state is ConnectionState.DISCONNECTED:
            return False
        device.connected = False
        device.connection_state = ConnectionState.DISCONNECTED
        device.characteristics = []
        logger.info("%s disconnected", device_id)
        self._bus.publish(DEVICE_DISCONNECTED, {"id": device_id})
        return True

    async def _hydrate(self, device_id: str) -> None:
        device = self._state.devices.get(device_id)
        if device is None or not device.connected:
            return
        try:
            read = await self._interaction.get_light_state(device_id)
        except Exception as exc:
            logger.warning("Initial state read for %s failed: %s", device_id, exc)
            read = {}

        setting = self._store.get(device_id)
        persisted = dict(setting.last_state) if setting and setting.last_state else {}
        applied: Dict[str, Any] = {}
        if self._config.restore_state_on_connect and persisted:
            applied = await self._restore(device_id, persisted)

        merged = {**LIGHT_DEFAULTS, **(device.state or {}), **persisted, **read, **applied}
        await self._reconciler.update_state(device_id, merged, UpdateSource.HARDWARE)

    async def _restore(self, device_id: str, persisted: Dict[str, Any]) -> Dict[str, Any]:
        applied: Dict[str, Any] = {}
        for key in RESTORE_ORDER:
            if key not in persisted:
                continue
            try:
                ok = await self._interaction.send_command(device_id, Command(key, persisted[key]), record_state=False)
            except Exception as exc:
                logger.warning("Restoring %s on %s failed: %s", key, device_id, exc)
                continue
            if ok:
                applied[key] = persisted[key]
        if applied:
            logger.info("Restored %s on %s", ", ".join(applied), device_id)
        return applied
