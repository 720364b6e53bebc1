from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .models import Device


class Encoding(str, Enum):
    VENDOR_A = "55aa"
    TRIONES = "triones"
    MAGIC_HOME = "magic"
    RAW = "raw"


@dataclass(frozen=True)
class DeviceProfile:
    id: str
    name: str
    description: str
    target_char: str
    status_char: Optional[str]
    encoding: Encoding

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "targetChar": self.target_char,
            "statusChar": self.status_char,
            "encoding": self.encoding.value,
        }


GENERIC_PROFILE_ID = "generic"
VENDOR_A_SERVICE = "a032"

PROFILES: Dict[str, DeviceProfile] = {
    profile.id: profile
    for profile in (
        DeviceProfile(
            id="ilink",
            name="iLink / Vendor A",
            description="55AA framed protocol with checksum (service A032)",
            target_char="a040",
            status_char="a042",
            encoding=Encoding.VENDOR_A,
        ),
        DeviceProfile(
            id="triones",
            name="Triones",
            description="Fixed-template RGB controller",
            target_char="ffe1",
            status_char="ffe1",
            encoding=Encoding.TRIONES,
        ),
        DeviceProfile(
            id="magic-home",
            name="Magic Home",
            description="7E...EF framed LED strip controller",
            target_char="ffe1",
            status_char="ffe1",
            encoding=Encoding.MAGIC_HOME,
        ),
        DeviceProfile(
            id=GENERIC_PROFILE_ID,
            name="Generic",
            description="Single byte power, two byte brightness",
            target_char="ffe1",
            status_char=None,
            encoding=Encoding.RAW,
        ),
    )
}


def get_profile(profile_id: Optional[str]) -> Optional[DeviceProfile]:
    if not profile_id:
        return None
    return PROFILES.get(profile_id)


def vendor_a_service_heuristic(device: Device) -> Optional[DeviceProfile]:
    """Guess the vendor A profile from its advertised or discovered service."""
    if VENDOR_A_SERVICE in device.services:
        return PROFILES["ilink"]
    if any(char.service_uuid == VENDOR_A_SERVICE for char in device.characteristics):
        return PROFILES["ilink"]
    return None


def resolve_profile(device: Device, profile_id: Optional[str] = None) -> DeviceProfile:
    """Pick the profile for a device.

    An explicit (known) profile id wins, then the service heuristic, then the
    generic profile.
    """
    explicit = get_profile(profile_id or device.profile_id)
    if explicit is not None:
        return explicit
    return vendor_a_service_heuristic(device) or PROFILES[GENERIC_PROFILE_ID]
