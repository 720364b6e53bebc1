from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from bleak import BleakClient, BleakScanner

from ..errors import AdapterNotReady, CharacteristicNotFound, ConnectionFailed, DeviceNotConnected, ReadFailed, WriteFailed
from ..models import Characteristic, normalize_uuid
from .base import DataCallback, DisconnectCallback, DiscoveredCallback, Peripheral

logger = logging.getLogger(__name__)

# bleak property name -> hub property name
PROPERTY_NAMES = {
    "read": "read",
    "write": "write",
    "write-without-response": "writeWithoutResponse",
    "notify": "notify",
    "indicate": "indicate",
}

DBUS_CLOSED = "BLE backend DBus connection closed unexpectedly; restart bluetoothd and retry"


def _extract_rssi(device: Any, advertisement: Any = None) -> int:
    rssi = getattr(advertisement, "rssi", None)
    if rssi is None:
        rssi = getattr(device, "rssi", None)
    if rssi is None:
        metadata = getattr(device, "metadata", {}) or {}
        rssi = metadata.get("rssi")
    if rssi is None:
        details = getattr(device, "details", {})
        if isinstance(details, dict):
            rssi = details.get("RSSI") or details.get("rssi")
    return int(rssi) if rssi is not None else -100


class BleakAdapter:
    """Adapter backed by Bleak scanners and clients.

    Device ids are the lowercase peripheral address. One BleakClient is kept
    per connected device together with a map from normalised UUID to the
    Bleak characteristic object, so reads and writes address the exact
    characteristic even when several services reuse a short UUID.
    """

    name = "bleak"

    def __init__(self, connect_timeout: float = 10.0) -> None:
        self._connect_timeout = connect_timeout
        self._scanner: Optional[BleakScanner] = None
        self._ready = False
        self._clients: Dict[str, BleakClient] = {}
        self._characteristics: Dict[str, Dict[str, Any]] = {}

    async def wait_ready(self, timeout: float) -> None:
        if self._ready or self._scanner is not None:
            return
        probe = BleakScanner()
        try:
            await asyncio.wait_for(probe.start(), timeout)
            await probe.stop()
        except EOFError as exc:
            logger.warning("DBus EOFError while probing the Bluetooth adapter", exc_info=True)
            raise AdapterNotReady(DBUS_CLOSED) from exc
        except Exception as exc:
            logger.debug("Bluetooth adapter probe failed", exc_info=True)
            raise AdapterNotReady("Bluetooth adapter not ready: %s" % exc) from exc
        self._ready = True

    async def start_scan(self, on_discovered: DiscoveredCallback) -> None:
        def detection_callback(device: Any, advertisement: Any) -> None:
            name = getattr(advertisement, "local_name", None) or device.name
            services = {normalize_uuid(uuid) for uuid in (getattr(advertisement, "service_uuids", None) or [])}
            on_discovered(
                Peripheral(
                    id=device.address.lower(),
                    name=name,
                    rssi=_extract_rssi(device, advertisement),
                    service_uuids=services,
                    handle=device,
                )
            )

        scanner = self._scanner = BleakScanner(detection_callback=detection_callback)
        try:
            await scanner.start()
        except Exception:
            if self._scanner is scanner:
                self._scanner = None
            raise
        if self._scanner is not scanner:
            # stop_scan ran while the scanner was starting
            try:
                await scanner.stop()
            except Exception:
                logger.debug("Bleak scanner stop failed", exc_info=True)

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except Exception:
            logger.debug("Bleak scanner stop failed", exc_info=True)

    async def connect(self, peripheral: Peripheral, on_disconnect: DisconnectCallback) -> List[Characteristic]:
        device_id = peripheral.id
        client = BleakClient(
            peripheral.handle or device_id,
            disconnected_callback=lambda _client: on_disconnect(device_id),
            timeout=self._connect_timeout,
        )
        try:
            await client.connect()
        except EOFError as exc:
            logger.warning("DBus EOFError during Bleak connect for %s", device_id, exc_info=True)
            raise ConnectionFailed(DBUS_CLOSED) from exc
        except Exception as exc:
            logger.debug("BLE connect failed for %s", device_id, exc_info=True)
            raise ConnectionFailed("Could not connect to %s: %s" % (device_id, exc)) from exc

        characteristics: List[Characteristic] = []
        handles: Dict[str, Any] = {}
        for service in client.services:
            service_uuid = normalize_uuid(service.uuid)
            for char in service.characteristics:
                uuid = normalize_uuid(char.uuid)
                properties = frozenset(PROPERTY_NAMES[p] for p in char.properties if p in PROPERTY_NAMES)
                characteristics.append(Characteristic(uuid, service_uuid, properties))
                handles.setdefault(uuid, char)
        self._clients[device_id] = client
        self._characteristics[device_id] = handles
        logger.info("Connected to %s (%d characteristics)", device_id, len(characteristics))
        return characteristics

    async def disconnect(self, device_id: str) -> None:
        client = self._clients.pop(device_id, None)
        self._characteristics.pop(device_id, None)
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception:
            logger.debug("BLE disconnect failed for %s", device_id, exc_info=True)

    def _resolve(self, device_id: str, uuid: str) -> Tuple[BleakClient, Any]:
        client = self._clients.get(device_id)
        if client is None or not client.is_connected:
            raise DeviceNotConnected(device_id)
        char = self._characteristics.get(device_id, {}).get(normalize_uuid(uuid))
        if char is None:
            raise CharacteristicNotFound(uuid)
        return client, char

    async def read(self, device_id: str, uuid: str) -> bytes:
        client, char = self._resolve(device_id, uuid)
        try:
            return bytes(await client.read_gatt_char(char))
        except EOFError as exc:
            logger.exception("DBus EOFError while reading %s on %s", uuid, device_id)
            raise ReadFailed(DBUS_CLOSED) from exc
        except Exception as exc:
            raise ReadFailed("Failed to read %s on %s: %s" % (uuid, device_id, exc)) from exc

    async def write(self, device_id: str, uuid: str, data: bytes, *, response: bool) -> None:
        client, char = self._resolve(device_id, uuid)
        try:
            await client.write_gatt_char(char, data, response=response)
        except EOFError as exc:
            logger.exception("DBus EOFError while writing characteristic %s on %s", uuid, device_id)
            raise WriteFailed(DBUS_CLOSED) from exc
        except Exception as exc:
            raise WriteFailed("Failed to write characteristic %s on %s: %s" % (uuid, device_id, exc)) from exc

    async def subscribe(self, device_id: str, uuid: str, on_data: DataCallback) -> None:
        client, char = self._resolve(device_id, uuid)
        await client.start_notify(char, lambda _sender, data: on_data(bytes(data)))
