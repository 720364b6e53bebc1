from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Set

UNKNOWN_NAME = "Unknown Device"
BLUETOOTH_BASE_SUFFIX = "00001000800000805f9b34fb"

LIGHT_DEFAULTS: Dict[str, Any] = {"power": False, "brightness": 100, "colorTemperature": 50}
AC_DEFAULTS: Dict[str, Any] = {
    "power": False,
    "targetTemp": 22,
    "currentTemp": 24,
    "mode": "cool",
    "fanSpeed": "auto",
    "swing": False,
}

# Event types published on the bus
DEVICE_DISCOVERED = "device_discovered"
DEVICE_UPDATED = "device_updated"
DEVICE_CONNECTED = "device_connected"
DEVICE_DISCONNECTED = "device_disconnected"
SCAN_STARTED = "scan_started"
SCAN_STOPPED = "scan_stopped"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class UpdateSource(str, Enum):
    UI = "ui"
    HARDWARE = "hardware"
    SYSTEM = "system"


class ScanKind(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


def normalize_uuid(uuid: str) -> str:
    """Canonical characteristic/service form used for every comparison.

    Lowercase, no ``0x`` prefix, no hyphens; 128-bit UUIDs on the Bluetooth
    base collapse to their 16-bit short form (``0000ffe1-0000-1000-8000-00805f9b34fb``
    becomes ``ffe1``).
    """
    value = str(uuid).strip().lower().replace("-", "")
    if value.startswith("0x"):
        value = value[2:]
    if len(value) == 32 and value.endswith(BLUETOOTH_BASE_SUFFIX) and value.startswith("0000"):
        return value[4:8]
    if len(value) == 8 and value.startswith("0000"):
        return value[4:]
    return value


def is_wifi_id(device_id: str) -> bool:
    """WiFi devices are keyed by their IP address."""
    return "." in device_id or device_id.startswith("192.") or device_id.startswith("10.")


@dataclass(frozen=True)
class Characteristic:
    uuid: str
    service_uuid: str
    properties: FrozenSet[str] = frozenset()

    @property
    def writable(self) -> bool:
        return "write" in self.properties or "writeWithoutResponse" in self.properties

    @property
    def notifiable(self) -> bool:
        return "notify" in self.properties or "indicate" in self.properties

    def to_dict(self) -> Dict[str, object]:
        return {
            "uuid": self.uuid,
            "serviceUuid": self.service_uuid,
            "properties": sorted(self.properties),
        }


@dataclass
class Device:
    id: str
    name: str = UNKNOWN_NAME
    rssi: int = -100
    connected: bool = False
    services: Set[str] = field(default_factory=set)
    saved: bool = False
    last_seen: float = field(default_factory=time.time)
    custom_name: Optional[str] = None
    profile_id: Optional[str] = None
    target_char: Optional[str] = None
    state: Optional[Dict[str, Any]] = None
    characteristics: List[Characteristic] = field(default_factory=list)
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    kind: str = "ble"

    @property
    def is_wifi(self) -> bool:
        return self.kind == "wifi"

    def characteristic(self, uuid: str) -> Optional[Characteristic]:
        wanted = normalize_uuid(uuid)
        for char in self.characteristics:
            if char.uuid == wanted:
                return char
        return None

    def to_dict(self, include_characteristics: bool = True) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "id": self.id,
            "name": self.name,
            "rssi": self.rssi,
            "connected": self.connected,
            "connectionState": self.connection_state.value,
            "services": sorted(self.services),
            "saved": self.saved,
            "lastSeen": self.last_seen,
            "type": self.kind,
        }
        if self.custom_name is not None:
            payload["customName"] = self.custom_name
        if self.profile_id is not None:
            payload["profileId"] = self.profile_id
        if self.target_char is not None:
            payload["targetChar"] = self.target_char
        if self.state is not None:
            payload["state"] = dict(self.state)
        if include_characteristics:
            payload["characteristics"] = [char.to_dict() for char in self.characteristics]
        return payload


@dataclass
class DeviceSetting:
    saved: bool = False
    custom_name: Optional[str] = None
    profile_id: Optional[str] = None
    target_char: Optional[str] = None
    type: Optional[str] = None
    connectivity: Optional[str] = None
    protocol: Optional[str] = None
    last_state: Optional[Dict[str, Any]] = None

    # attribute name -> persisted key
    FIELDS = {
        "saved": "saved",
        "custom_name": "customName",
        "profile_id": "profileId",
        "target_char": "targetChar",
        "type": "type",
        "connectivity": "connectivity",
        "protocol": "protocol",
        "last_state": "lastState",
    }

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {}
        for attr, key in self.FIELDS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            payload[key] = dict(value) if isinstance(value, dict) else value
        return payload

    @classmethod
    def from_dict(cls, entry: Dict[str, Any]) -> "DeviceSetting":
        last_state = entry.get("lastState")
        return cls(
            saved=bool(entry.get("saved", False)),
            custom_name=entry.get("customName"),
            profile_id=entry.get("profileId"),
            target_char=entry.get("targetChar"),
            type=entry.get("type"),
            connectivity=entry.get("connectivity"),
            protocol=entry.get("protocol"),
            last_state=dict(last_state) if isinstance(last_state, dict) else None,
        )

    @property
    def is_wifi(self) -> bool:
        return self.connectivity == "wifi"


@dataclass(frozen=True)
class CommandLogEntry:
    """One write attempt. ``response`` holds the notification hex that answered
    a successful write, or the error text of a failed one."""

    timestamp: float
    device_id: str
    characteristic: str
    command: str
    success: bool
    response: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "deviceId": self.device_id,
            "characteristic": self.characteristic,
            "command": self.command,
            "success": self.success,
            "response": self.response,
        }


@dataclass(frozen=True)
class DeviceEvent:
    type: str
    payload: Dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, object]:
        return {"type": self.type, "data": self.payload, "timestamp": self.timestamp}
