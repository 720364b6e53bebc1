from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..models import AC_DEFAULTS

logger = logging.getLogger(__name__)

DEMO_UNIT = {
    "id": "192.168.1.50",
    "name": "Pro Klima AC (Living Room)",
    "ip": "192.168.1.50",
    "type": "ac",
    "metadata": {"simulated": True},
}

AC_MODES = ("cool", "heat", "dry", "fan", "auto")
FAN_SPEEDS = ("auto", "low", "medium", "high")
MIN_TEMP = 16
MAX_TEMP = 30


@dataclass
class WiFiDeviceEntry:
    id: str
    name: str
    ip: str
    type: str  # only 'ac' today
    metadata: Dict[str, object] = field(default_factory=dict)

    @property
    def simulated(self) -> bool:
        return bool(self.metadata.get("simulated"))


def validate_ac_command(key: str, value: Any) -> Any:
    """Normalise one AC command value; raise ValueError when it is not valid."""
    if key == "power" or key == "swing":
        return bool(value)
    if key == "targetTemp":
        try:
            temp = int(round(float(value)))
        except (TypeError, ValueError) as exc:
            raise ValueError("targetTemp must be a number") from exc
        return max(MIN_TEMP, min(MAX_TEMP, temp))
    if key == "mode":
        if value not in AC_MODES:
            raise ValueError("mode must be one of %s" % ", ".join(AC_MODES))
        return value
    if key == "fanSpeed":
        if value not in FAN_SPEEDS:
            raise ValueError("fanSpeed must be one of %s" % ", ".join(FAN_SPEEDS))
        return value
    raise ValueError("Unsupported AC command %r" % key)


class WiFiController:
    """Known WiFi air-conditioning units and their last commanded state.

    Units are loaded from a JSON store with fields id, name, ip, type and
    metadata; ids are the unit's IP address. When the store is empty a
    simulated demo unit can be seeded. Commands are applied to the local
    state map; units flagged ``simulated`` never touch the network.
    """

    def __init__(self, store_path: Optional[Path] = None, *, seed_demo: bool = True) -> None:
        self._store_path = Path(store_path or "state/wifi-devices.json")
        self._seed_demo = seed_demo
        self._devices: Dict[str, WiFiDeviceEntry] = {}
        self._states: Dict[str, Dict[str, Any]] = {}

    async def startup(self, last_state_for: Optional[Callable[[str], Optional[Dict[str, Any]]]] = None) -> None:
        if self._store_path.exists():
            try:
                data = json.loads(self._store_path.read_text())
                if isinstance(data, dict):
                    for entry in data.get("devices", []):
                        try:
                            self._add(entry)
                        except Exception:
                            logger.debug("Skipping invalid WiFi store entry %r", entry, exc_info=True)
                            continue
            except Exception:
                logger.exception("Failed to load WiFi device store")
        if not self._devices and self._seed_demo:
            self._add(DEMO_UNIT)
        for device_id in self._devices:
            last_state = (last_state_for(device_id) if last_state_for else None) or {}
            self._states[device_id] = {key: last_state.get(key, default) for key, default in AC_DEFAULTS.items()}
        logger.info("Loaded %d WiFi unit(s)", len(self._devices))

    def _add(self, entry: Dict[str, Any]) -> WiFiDeviceEntry:
        device_id = str(entry.get("id") or entry.get("ip") or "")
        if not device_id:
            raise ValueError("Device id required")
        dev = WiFiDeviceEntry(
            id=device_id,
            name=str(entry.get("name") or device_id),
            ip=str(entry.get("ip") or device_id),
            type=str(entry.get("type") or "ac"),
            metadata=entry.get("metadata") or {},
        )
        self._devices[dev.id] = dev
        return dev

    def list_devices(self) -> List[WiFiDeviceEntry]:
        return list(self._devices.values())

    def get_device(self, device_id: str) -> Optional[WiFiDeviceEntry]:
        return self._devices.get(device_id)

    def get_state(self, device_id: str) -> Optional[Dict[str, Any]]:
        state = self._states.get(device_id)
        return dict(state) if state is not None else None

    async def send_command(self, device_id: str, key: str, value: Any) -> bool:
        device = self._devices.get(device_id)
        state = self._states.get(device_id)
        if device is None or state is None:
            return False
        value = validate_ac_command(key, value)
        logger.info("AC %s: %s=%r", device_id, key, value)
        state[key] = value
        return True

    def _probe(self, ip: str, timeout: int) -> bool:
        try:
            with urllib.request.urlopen("http://%s/" % ip, timeout=timeout) as resp:
                return resp.status == 200
        except urllib.error.URLError:
            return False
        except Exception:
            return False

    async def ping(self, device_id: str, timeout: int = 3) -> bool:
        device = self._devices.get(device_id)
        if device is None:
            return False
        if device.simulated:
            return True
        return await asyncio.to_thread(self._probe, device.ip, timeout)
