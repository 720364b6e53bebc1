from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .codec import Command
from .controllers.wifi import WiFiController
from .events import EventBus
from .interaction import InteractionLayer
from .models import DEVICE_UPDATED, UpdateSource
from .settings_store import DeviceSettingsStore
from .state import HubState

logger = logging.getLogger(__name__)


class HubReconciler:
    """Single entry point for device state changes.

    Merges a partial state into the registry, persists it as the device's
    ``lastState`` and notifies observers. Changes that did not come from the
    hardware are pushed to the device one key at a time.
    """

    def __init__(
        self,
        state: HubState,
        store: DeviceSettingsStore,
        bus: EventBus,
        interaction: InteractionLayer,
        wifi: Optional[WiFiController] = None,
    ) -> None:
        self._state = state
        self._store = store
        self._bus = bus
        self._interaction = interaction
        self._wifi = wifi

    async def update_state(
        self, device_id: str, partial: Dict[str, Any], source: UpdateSource = UpdateSource.UI
    ) -> Optional[Dict[str, Any]]:
        device = self._state.devices.get(device_id)
        if device is None:
            logger.warning("State update for unknown device %s ignored", device_id)
            return None
        device.state = {**(device.state or {}), **partial}
        self._store.update_last_state(device_id, partial)
        self._bus.publish(
            DEVICE_UPDATED, {"id": device_id, "state": dict(device.state), "source": UpdateSource(source).value}
        )
        if source != UpdateSource.HARDWARE:
            await self._sync_to_hardware(device_id, partial)
        return dict(device.state)

    async def _sync_to_hardware(self, device_id: str, partial: Dict[str, Any]) -> None:
        device = self._state.devices.get(device_id)
        if device is None:
            return
        for key, value in partial.items():
            try:
                if device.is_wifi:
                    if self._wifi is None:
                        logger.warning("No WiFi controller for %s; %s not sent", device_id, key)
                        continue
                    await self._wifi.send_command(device_id, key, value)
                elif device.connected:
                    await self._interaction.send_command(device_id, Command(key, value), record_state=False)
                else:
                    logger.debug("%s is offline; %s kept for the next connect", device_id, key)
            except Exception:
                logger.exception("Failed to sync %s=%r to %s", key, value, device_id)
