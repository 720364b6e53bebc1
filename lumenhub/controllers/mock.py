from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional, Tuple

from ..codec import encode_vendor_a
from ..errors import AdapterNotReady, CharacteristicNotFound, ConnectionFailed, DeviceNotConnected, ReadFailed
from ..models import Characteristic, normalize_uuid
from .base import DataCallback, DisconnectCallback, DiscoveredCallback, Peripheral

logger = logging.getLogger(__name__)

COMMON_CHARACTERISTICS = (
    Characteristic("ffe1", "ffe0", frozenset({"write", "writeWithoutResponse", "notify"})),
    Characteristic("ffe2", "ffe0", frozenset({"read", "notify"})),
)
VENDOR_A_CHARACTERISTICS = (
    Characteristic("a040", "a032", frozenset({"write", "writeWithoutResponse"})),
    Characteristic("a042", "a032", frozenset({"read", "notify"})),
)


def default_peripherals() -> List[Peripheral]:
    return [
        Peripheral("mock-bulb-1", "Smart RGB Bulb", -65, {"ffe1", "a032"}),
        Peripheral("mock-strip-1", "LED Strip Controller", -72, {"7e00"}),
        Peripheral("mock-desk-1", "Desk Lamp", -58, {"cc00"}),
    ]


def default_values() -> Dict[str, bytes]:
    return {
        "ffe2": bytes.fromhex("0100640032"),
        # status frame: orange at full brightness
        "a042": bytes.fromhex(encode_vendor_a("8815", "ff8000ff")),
    }


class MockAdapter:
    """In-memory adapter used when no radio is available and in tests.

    Peripherals are reported on every scan, links always succeed unless an id
    is listed in ``fail_connect``, writes are recorded in ``writes`` and every
    adapter call is counted in ``calls``.
    """

    name = "mock"

    def __init__(
        self,
        peripherals: Optional[List[Peripheral]] = None,
        *,
        values: Optional[Dict[str, bytes]] = None,
        ready: bool = True,
    ) -> None:
        self.peripherals: Dict[str, Peripheral] = {
            p.id: p for p in (default_peripherals() if peripherals is None else peripherals)
        }
        self.values: Dict[str, bytes] = default_values() if values is None else dict(values)
        self.ready = ready
        self.scanning = False
        self.calls: Counter = Counter()
        self.writes: List[Tuple[str, str, bytes, bool]] = []
        self.fail_connect: set = set()
        self.fail_read: set = set()
        self.fail_write: set = set()
        self._connected: Dict[str, DisconnectCallback] = {}
        self._subscriptions: Dict[Tuple[str, str], DataCallback] = {}

    def characteristics_for(self, device_id: str) -> List[Characteristic]:
        peripheral = self.peripherals.get(device_id)
        chars = list(COMMON_CHARACTERISTICS)
        if peripheral is not None and "a032" in peripheral.service_uuids:
            chars.extend(VENDOR_A_CHARACTERISTICS)
        return chars

    def is_connected(self, device_id: str) -> bool:
        return device_id in self._connected

    async def wait_ready(self, timeout: float) -> None:
        self.calls["wait_ready"] += 1
        if not self.ready:
            raise AdapterNotReady("mock adapter powered off")

    async def start_scan(self, on_discovered: DiscoveredCallback) -> None:
        self.calls["start_scan"] += 1
        self.scanning = True
        loop = asyncio.get_running_loop()
        for peripheral in list(self.peripherals.values()):
            loop.call_soon(self._report, on_discovered, peripheral)

    def _report(self, on_discovered: DiscoveredCallback, peripheral: Peripheral) -> None:
        if self.scanning:
            on_discovered(peripheral)

    async def stop_scan(self) -> None:
        self.calls["stop_scan"] += 1
        self.scanning = False

    async def connect(self, peripheral: Peripheral, on_disconnect: DisconnectCallback) -> List[Characteristic]:
        self.calls["connect"] += 1
        if peripheral.id in self.fail_connect:
            raise ConnectionFailed("mock link to %s refused" % peripheral.id)
        self._connected[peripheral.id] = on_disconnect
        return self.characteristics_for(peripheral.id)

    async def disconnect(self, device_id: str) -> None:
        self.calls["disconnect"] += 1
        self._connected.pop(device_id, None)
        for key in [key for key in self._subscriptions if key[0] == device_id]:
            del self._subscriptions[key]

    def simulate_disconnect(self, device_id: str) -> None:
        """Drop the link as if the peripheral went out of range."""
        callback = self._connected.pop(device_id, None)
        if callback is not None:
            callback(device_id)

    def _require_link(self, device_id: str, uuid: str) -> str:
        if device_id not in self._connected:
            raise DeviceNotConnected(device_id)
        uuid = normalize_uuid(uuid)
        if all(char.uuid != uuid for char in self.characteristics_for(device_id)):
            raise CharacteristicNotFound(uuid)
        return uuid

    async def read(self, device_id: str, uuid: str) -> bytes:
        self.calls["read"] += 1
        uuid = self._require_link(device_id, uuid)
        if device_id in self.fail_read:
            raise ReadFailed("mock read of %s failed" % uuid)
        return self.values.get(uuid, b"")

    async def write(self, device_id: str, uuid: str, data: bytes, *, response: bool) -> None:
        self.calls["write"] += 1
        uuid = self._require_link(device_id, uuid)
        if device_id in self.fail_write:
            raise OSError("mock write to %s failed" % uuid)
        self.writes.append((device_id, uuid, bytes(data), response))
        logger.debug("mock write %s/%s %s", device_id, uuid, bytes(data).hex())

    async def subscribe(self, device_id: str, uuid: str, on_data: DataCallback) -> None:
        self.calls["subscribe"] += 1
        uuid = self._require_link(device_id, uuid)
        self._subscriptions[(device_id, uuid)] = on_data

    def notify(self, device_id: str, uuid: str, data: bytes) -> bool:
        callback = self._subscriptions.get((device_id, normalize_uuid(uuid)))
        if callback is None:
            return False
        callback(bytes(data))
        return True
