from __future__ import annotations

import dataclasses
import logging
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .codec import Command, decode_vendor_a_status, encode_command
from .errors import CharacteristicNotFound, DeviceNotConnected, EncodingUnsupported, HubError
from .events import EventBus
from .models import DEVICE_UPDATED, CommandLogEntry, Device, DeviceSetting, UpdateSource, normalize_uuid
from .profiles import DeviceProfile, Encoding, resolve_profile
from .settings_store import DeviceSettingsStore
from .state import HubState

if TYPE_CHECKING:
    from .reconciler import HubReconciler

logger = logging.getLogger(__name__)

FALLBACK_TARGET = "ffe1"


def _clean_hex(data: str) -> str:
    text = str(data).strip().lower().replace(" ", "")
    if text.startswith("0x"):
        text = text[2:]
    if len(text) % 2:
        raise ValueError("Hex payload must have an even number of digits")
    bytes.fromhex(text)
    return text


class InteractionLayer:
    """Reads, writes and notifications on connected BLE devices.

    Every write attempt lands in the bounded command log. A successful write
    is logged with no response; the next notification from the same device
    fills it in.
    """

    def __init__(self, state: HubState, store: DeviceSettingsStore, bus: EventBus) -> None:
        self._state = state
        self._store = store
        self._bus = bus
        self.reconciler: Optional["HubReconciler"] = None

    def _connected_device(self, device_id: str) -> Device:
        device = self._state.require(device_id)
        if not device.connected:
            raise DeviceNotConnected("Device %s is not connected" % device_id)
        return device

    def _log(self, device_id: str, uuid: str, data: str, success: bool, error: Optional[str] = None) -> None:
        self._state.log_command(
            CommandLogEntry(
                timestamp=time.time(),
                device_id=device_id,
                characteristic=uuid,
                command=data,
                success=success,
                response=error,
            )
        )

    async def write(self, device_id: str, uuid: str, data: str) -> bool:
        device = self._connected_device(device_id)
        uuid = normalize_uuid(uuid)
        data = _clean_hex(data)
        char = device.characteristic(uuid)
        if char is None:
            logger.warning("Characteristic %s not found on %s", uuid, device_id)
            self._log(device_id, uuid, data, False, "Characteristic not found")
            return False
        response = "writeWithoutResponse" not in char.properties
        try:
            await self._state.adapter.write(device_id, uuid, bytes.fromhex(data), response=response)
        except Exception as exc:
            logger.warning("Write of %s to %s/%s failed: %s", data, device_id, uuid, exc)
            self._log(device_id, uuid, data, False, str(exc))
            return False
        logger.debug("Wrote %s to %s/%s", data, device_id, uuid)
        self._log(device_id, uuid, data, True)
        self._bus.publish(DEVICE_UPDATED, {"deviceId": device_id, "command": data})
        return True

    async def read(self, device_id: str, uuid: str) -> Optional[str]:
        device = self._connected_device(device_id)
        uuid = normalize_uuid(uuid)
        if device.characteristic(uuid) is None:
            logger.debug("Characteristic %s not found on %s", uuid, device_id)
            return None
        try:
            data = await self._state.adapter.read(device_id, uuid)
        except Exception as exc:
            logger.warning("Read of %s/%s failed: %s", device_id, uuid, exc)
            return None
        return bytes(data).hex()

    async def subscribe(self, device_id: str, uuid: str) -> bool:
        device = self._connected_device(device_id)
        uuid = normalize_uuid(uuid)
        char = device.characteristic(uuid)
        if char is None or not char.notifiable:
            raise CharacteristicNotFound("Characteristic %s on %s does not support notifications" % (uuid, device_id))
        await self._state.adapter.subscribe(device_id, uuid, lambda data: self._on_notification(device_id, uuid, data))
        logger.info("Subscribed to %s/%s", device_id, uuid)
        return True

    def _on_notification(self, device_id: str, uuid: str, data: bytes) -> None:
        hex_data = bytes(data).hex()
        self._bus.publish(
            DEVICE_UPDATED,
            {"deviceId": device_id, "characteristic": uuid, "notification": hex_data, "timestamp": time.time()},
        )
        self._backfill_response(device_id, hex_data)

        device = self._state.devices.get(device_id)
        if device is None or self.reconciler is None:
            return
        if self.profile_for(device).encoding is Encoding.VENDOR_A:
            decoded = decode_vendor_a_status(hex_data)
            if decoded:
                self._state.spawn(
                    self.reconciler.update_state(device_id, decoded, UpdateSource.HARDWARE),
                    "status notification from %s" % device_id,
                )

    def _backfill_response(self, device_id: str, hex_data: str) -> None:
        log = self._state.command_log
        for index in range(len(log) - 1, -1, -1):
            entry = log[index]
            if entry.device_id == device_id and entry.success and entry.response is None:
                log[index] = dataclasses.replace(entry, response=hex_data)
                return

    def profile_for(self, device: Device) -> DeviceProfile:
        setting = self._store.get(device.id)
        return resolve_profile(device, setting.profile_id if setting else None)

    def _target_for(self, device: Device, profile: DeviceProfile, setting: Optional[DeviceSetting]) -> str:
        explicit = (setting.target_char if setting else None) or device.target_char
        if explicit:
            return normalize_uuid(explicit)
        if not device.characteristics or device.characteristic(profile.target_char):
            return profile.target_char
        for char in device.characteristics:
            if char.writable:
                return char.uuid
        return FALLBACK_TARGET

    async def get_light_state(self, device_id: str) -> Dict[str, Any]:
        """Read and decode the profile's status characteristic, ``{}`` if unknown."""
        device = self._state.devices.get(device_id)
        if device is None:
            return {}
        profile = self.profile_for(device)
        if not profile.status_char or profile.encoding is not Encoding.VENDOR_A:
            return {}
        try:
            hex_data = await self.read(device_id, profile.status_char)
        except HubError as exc:
            logger.debug("Status read skipped for %s: %s", device_id, exc)
            return {}
        if not hex_data:
            return {}
        return decode_vendor_a_status(hex_data)

    async def send_command(self, device_id: str, command: Command, *, record_state: bool = True) -> bool:
        device = self._state.require(device_id)
        setting = self._store.get(device_id)
        profile = resolve_profile(device, setting.profile_id if setting else None)
        try:
            frame = encode_command(profile.encoding, command)
        except EncodingUnsupported as exc:
            logger.warning("Cannot send %s to %s: %s", command.type, device_id, exc)
            return False
        target = self._target_for(device, profile, setting)
        ok = await self.write(device_id, target, frame)
        if ok and record_state and command.type != "raw" and self.reconciler is not None:
            await self.reconciler.update_state(device_id, {command.type: command.value}, UpdateSource.HARDWARE)
        return ok

    def command_log(self, limit: int = 50, device_id: Optional[str] = None) -> List[CommandLogEntry]:
        entries = [e for e in self._state.command_log if device_id is None or e.device_id == device_id]
        return entries[-limit:] if limit > 0 else []

    def clear_command_log(self) -> None:
        self._state.command_log.clear()
