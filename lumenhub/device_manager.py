from __future__ import annotations

import asyncio
import logging
import sys
import time
from typing import Any, Dict, List, Optional

from .codec import COMMAND_TYPES, Command
from .config import HubConfig
from .connection import ConnectionManager
from .controllers import Adapter, BleakAdapter, MockAdapter, WiFiController
from .controllers.wifi import validate_ac_command
from .discovery import DiscoveryEngine
from .errors import AdapterNotReady
from .events import EventBus
from .interaction import InteractionLayer
from .models import (
    AC_DEFAULTS,
    DEVICE_UPDATED,
    ConnectionState,
    Device,
    DeviceSetting,
    ScanKind,
    UpdateSource,
    normalize_uuid,
)
from .profiles import PROFILES
from .reconciler import HubReconciler
from .reconnect import AutoReconnectLoop
from .settings_store import DeviceSettingsStore
from .state import HubState

logger = logging.getLogger(__name__)

BLE_PLATFORMS = ("linux", "darwin", "win32")
SAVED_PLACEHOLDER_NAME = "Saved Device"
WIFI_PLACEHOLDER_NAME = "WiFi AC"
DEFAULT_SWEEP_READ_CHAR = "a041"


class DeviceManager:
    """Owns one hub: registry, settings, transports and background loops.

    Construction is cheap and touches neither disk nor radio; ``startup``
    loads persisted settings, picks the adapter and starts auto-reconnect.
    """

    def __init__(
        self,
        config: Optional[HubConfig] = None,
        *,
        adapter: Optional[Adapter] = None,
        store: Optional[DeviceSettingsStore] = None,
        wifi: Optional[WiFiController] = None,
    ) -> None:
        self.config = config or HubConfig()
        self.store = store or DeviceSettingsStore(self.config.settings_path)
        self.wifi = wifi or WiFiController(self.config.wifi_store_path, seed_demo=self.config.seed_wifi_demo)
        self.bus = EventBus(self.config.event_queue_size)
        self.state = HubState(adapter, command_log_size=self.config.command_log_size)
        self.interaction = InteractionLayer(self.state, self.store, self.bus)
        self.reconciler = HubReconciler(self.state, self.store, self.bus, self.interaction, self.wifi)
        self.interaction.reconciler = self.reconciler
        self.discovery = DiscoveryEngine(self.state, self.store, self.bus, self.config, connect=self.connect)
        self.connections = ConnectionManager(
            self.state,
            self.store,
            self.bus,
            self.config,
            self.interaction,
            self.reconciler,
            stop_scan=self.discovery.stop_scan,
        )
        self.reconnect = AutoReconnectLoop(self.state, self.config, self.connect, self.discovery.start_scan)
        self._started = False

    @property
    def events(self) -> EventBus:
        return self.bus

    @property
    def mock_mode(self) -> bool:
        return self.state.mock_mode

    async def startup(self) -> None:
        if self._started:
            return
        self.store.load()
        await self.wifi.startup(self._last_state_for)
        self._populate_saved_devices()
        await self._select_adapter()
        if self.config.auto_reconnect:
            self.reconnect.start()
        self._started = True
        logger.info(
            "Hub started with %d known device(s) using the %s adapter",
            len(self.state.devices),
            getattr(self.state.adapter, "name", "unknown"),
        )

    async def shutdown(self) -> None:
        await self.reconnect.stop()
        await self.discovery.stop_scan()
        for device in list(self.state.devices.values()):
            if device.connected and not device.is_wifi:
                try:
                    await self.connections.disconnect(device.id)
                except Exception:
                    logger.warning("Failed to disconnect %s during shutdown", device.id, exc_info=True)
        await self.state.cancel_tasks()
        self._started = False

    def _last_state_for(self, device_id: str) -> Optional[Dict[str, Any]]:
        setting = self.store.get(device_id)
        return setting.last_state if setting else None

    def _populate_saved_devices(self) -> None:
        devices = self.state.devices
        for unit in self.wifi.list_devices():
            setting = self.store.get(unit.id)
            devices[unit.id] = Device(
                id=unit.id,
                name=(setting.custom_name if setting else None) or unit.name,
                connected=True,
                connection_state=ConnectionState.CONNECTED,
                saved=setting.saved if setting else False,
                custom_name=setting.custom_name if setting else None,
                state=self.wifi.get_state(unit.id),
                kind="wifi",
            )
        for device_id, setting in self.store.items():
            if device_id in devices or not (setting.saved or setting.is_wifi):
                continue
            if setting.is_wifi:
                devices[device_id] = Device(
                    id=device_id,
                    name=setting.custom_name or WIFI_PLACEHOLDER_NAME,
                    connected=True,
                    connection_state=ConnectionState.CONNECTED,
                    saved=setting.saved,
                    custom_name=setting.custom_name,
                    state={**AC_DEFAULTS, **(setting.last_state or {})},
                    kind="wifi",
                )
            else:
                devices[device_id] = Device(
                    id=device_id,
                    name=setting.custom_name or SAVED_PLACEHOLDER_NAME,
                    saved=True,
                    custom_name=setting.custom_name,
                    profile_id=setting.profile_id,
                    target_char=setting.target_char,
                    state=dict(setting.last_state) if setting.last_state else None,
                )

    async def _select_adapter(self) -> None:
        state = self.state
        if state.adapter is not None:
            state.mock_mode = isinstance(state.adapter, MockAdapter)
            return
        if self.config.force_mock:
            logger.warning("Mock BLE mode forced by configuration")
            state.adapter, state.mock_mode = MockAdapter(), True
        elif sys.platform not in BLE_PLATFORMS:
            logger.warning("BLE is not supported on %s; using mock devices", sys.platform)
            state.adapter, state.mock_mode = MockAdapter(), True
        else:
            adapter = BleakAdapter()
            try:
                await adapter.wait_ready(self.config.adapter_ready_timeout)
            except AdapterNotReady as exc:
                logger.warning("Bluetooth adapter unavailable (%s); using mock devices", exc)
                state.adapter, state.mock_mode = MockAdapter(), True
            else:
                state.adapter, state.mock_mode = adapter, False
                state.adapter_state = "poweredOn"

    # Registry

    def list_devices(self, include_wifi: bool = False) -> List[Dict[str, object]]:
        return self.discovery.list_devices(include_wifi=include_wifi)

    def get_device(self, device_id: str) -> Optional[Device]:
        return self.state.devices.get(device_id)

    # Lifecycle

    async def start_scan(self, duration_ms: Optional[int] = None) -> List[Dict[str, object]]:
        return await self.discovery.start_scan(duration_ms, ScanKind.MANUAL)

    async def stop_scan(self) -> None:
        await self.discovery.stop_scan()

    async def connect(self, device_id: str) -> Dict[str, object]:
        return await self.connections.connect(device_id)

    async def disconnect(self, device_id: str) -> None:
        await self.connections.disconnect(device_id)

    async def ping_device(self, device_id: str) -> bool:
        device = self.state.require(device_id)
        if device.is_wifi:
            return await self.wifi.ping(device_id)
        return device.connected

    # Commands

    async def send_command(self, device_id: str, command_type: str, value: Any = None) -> bool:
        device = self.state.require(device_id)
        if device.is_wifi:
            value = validate_ac_command(command_type, value)
            if not await self.wifi.send_command(device_id, command_type, value):
                logger.warning("WiFi unit %s did not accept %s", device_id, command_type)
                return False
            await self.reconciler.update_state(device_id, {command_type: value}, UpdateSource.HARDWARE)
            return True
        if command_type not in COMMAND_TYPES:
            raise ValueError("Unsupported command type %r" % command_type)
        return await self.interaction.send_command(device_id, Command(command_type, value))

    async def write_raw(self, device_id: str, characteristic: str, data: str) -> bool:
        return await self.interaction.write(device_id, characteristic, data)

    async def read_raw(self, device_id: str, characteristic: str) -> Optional[str]:
        return await self.interaction.read(device_id, characteristic)

    async def subscribe(self, device_id: str, characteristic: str) -> bool:
        return await self.interaction.subscribe(device_id, characteristic)

    async def get_light_state(self, device_id: str) -> Dict[str, Any]:
        device = self.state.require(device_id)
        if device.is_wifi:
            return self.wifi.get_state(device_id) or dict(device.state or {})
        read = await self.interaction.get_light_state(device_id)
        if read:
            await self.reconciler.update_state(device_id, read, UpdateSource.HARDWARE)
        return read

    async def update_state(
        self, device_id: str, partial: Dict[str, Any], source: UpdateSource = UpdateSource.UI
    ) -> Optional[Dict[str, Any]]:
        return await self.reconciler.update_state(device_id, partial, source)

    async def run_pattern_sweep(
        self,
        device_id: str,
        patterns: List[Dict[str, Any]],
        delay_ms: int = 1000,
        read_after: Optional[str] = DEFAULT_SWEEP_READ_CHAR,
    ) -> List[Dict[str, Any]]:
        """Write each byte pattern, wait, and optionally read a characteristic back.

        Used to probe undocumented controllers. A failing step is reported in
        its result and the sweep moves on.
        """
        self.state.require(device_id)
        results: List[Dict[str, Any]] = []
        for pattern in patterns:
            name = pattern.get("name")
            try:
                success = await self.interaction.write(device_id, pattern["characteristic"], pattern["hex"])
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)
                read_value = await self.interaction.read(device_id, read_after) if read_after else None
                results.append(
                    {
                        "name": name,
                        "hex": pattern["hex"],
                        "success": success,
                        "readValue": read_value,
                        "timestamp": time.time(),
                    }
                )
            except Exception as exc:
                logger.debug("Sweep step %s failed", name, exc_info=True)
                results.append({"name": name, "error": str(exc) or "Step failed", "timestamp": time.time()})
        return results

    # Settings

    def toggle_saved(self, device_id: str) -> bool:
        device = self.state.require(device_id)
        saved = self.store.toggle_saved(device_id)
        device.saved = saved
        self.bus.publish(DEVICE_UPDATED, device.to_dict(include_characteristics=False))
        return saved

    def get_settings(self, device_id: str) -> Dict[str, object]:
        setting = self.store.get(device_id) or DeviceSetting()
        return setting.to_dict()

    def set_settings(self, device_id: str, **fields: Any) -> Dict[str, object]:
        profile_id = fields.get("profile_id")
        if profile_id and profile_id not in PROFILES:
            raise ValueError("Unknown profile %r" % profile_id)
        if fields.get("target_char"):
            fields["target_char"] = normalize_uuid(fields["target_char"])
        setting = self.store.update(device_id, **fields)

        device = self.state.devices.get(device_id)
        if device is not None:
            if "custom_name" in fields:
                device.custom_name = setting.custom_name
                if setting.custom_name:
                    device.name = setting.custom_name
            if "profile_id" in fields:
                device.profile_id = setting.profile_id
            if "target_char" in fields:
                device.target_char = setting.target_char
            if "saved" in fields:
                device.saved = setting.saved
            self.bus.publish(DEVICE_UPDATED, device.to_dict(include_characteristics=False))
        return setting.to_dict()

    # Command log

    def get_command_log(self, limit: int = 50, device_id: Optional[str] = None) -> List[Dict[str, object]]:
        return [entry.to_dict() for entry in self.interaction.command_log(limit, device_id)]

    def clear_command_log(self) -> None:
        self.interaction.clear_command_log()
