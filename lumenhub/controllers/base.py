"""Radio adapter interface."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol, Set

from ..models import Characteristic


@dataclass
class Peripheral:
    """A radio-level handle reported by a scan."""

    id: str
    name: Optional[str] = None
    rssi: int = -100
    service_uuids: Set[str] = field(default_factory=set)
    handle: Any = None


DiscoveredCallback = Callable[[Peripheral], None]
DisconnectCallback = Callable[[str], None]
DataCallback = Callable[[bytes], None]


class Adapter(Protocol):
    name: str

    async def wait_ready(self, timeout: float) -> None:
        """Block until the radio can scan; raise AdapterNotReady after ``timeout``."""

    async def start_scan(self, on_discovered: DiscoveredCallback) -> None:
        """Begin reporting advertisements to ``on_discovered``."""

    async def stop_scan(self) -> None:
        ...

    async def connect(self, peripheral: Peripheral, on_disconnect: DisconnectCallback) -> List[Characteristic]:
        """Open a link and return the discovered characteristics."""

    async def disconnect(self, device_id: str) -> None:
        ...

    async def read(self, device_id: str, uuid: str) -> bytes:
        ...

    async def write(self, device_id: str, uuid: str, data: bytes, *, response: bool) -> None:
        ...

    async def subscribe(self, device_id: str, uuid: str, on_data: DataCallback) -> None:
        ...
