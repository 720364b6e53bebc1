"""Wire encodings for the supported light controllers.

Every function here is pure: it takes an abstract command and returns the hex
frame to write, or decodes a status frame into a partial light state. Frames
are lowercase hex strings without separators.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .errors import EncodingUnsupported
from .profiles import Encoding

VENDOR_A_HEADER = "55aa"
VENDOR_A_POWER = "0805"
VENDOR_A_BRIGHTNESS = "0801"
VENDOR_A_COLOR = "0802"
VENDOR_A_STATUS_IDS = ("8815", "8814")
VENDOR_A_STATIC_INFO = "8425"

COMMAND_TYPES = ("power", "brightness", "colorTemperature", "color", "raw")


@dataclass(frozen=True)
class Command:
    type: str
    value: Any = None


def _clamp(value: Any, low: int, high: int) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = float(low)
    if math.isnan(number):
        number = float(low)
    return max(float(low), min(float(high), number))


def _byte(value: Any) -> str:
    return "%02x" % int(_clamp(value, 0, 255))


def _color_hex(value: Any) -> str:
    color = value if isinstance(value, dict) else {}
    return "".join(_byte(color.get(channel, 0)) for channel in ("r", "g", "b"))


def _clean_hex(value: Any) -> str:
    text = str(value or "").strip().lower().replace(" ", "")
    if text.startswith("0x"):
        text = text[2:]
    return text


def checksum_vendor_a(length: int, command_id: str, payload_hex: str = "") -> int:
    cid = bytes.fromhex(command_id)
    total = length + sum(cid) + sum(bytes.fromhex(payload_hex))
    return (256 - total % 256) % 256


def encode_vendor_a(command_id: str, payload_hex: str = "") -> str:
    """Build a ``55aa | len | cid | payload | checksum`` frame."""
    command_id = _clean_hex(command_id)
    payload_hex = _clean_hex(payload_hex)
    length = len(payload_hex) // 2
    checksum = checksum_vendor_a(length, command_id, payload_hex)
    return "%s%02x%s%s%02x" % (VENDOR_A_HEADER, length, command_id, payload_hex, checksum)


def verify_vendor_a(frame_hex: str) -> bool:
    frame = _clean_hex(frame_hex)
    if not frame.startswith(VENDOR_A_HEADER) or len(frame) < 12 or len(frame) % 2:
        return False
    try:
        raw = bytes.fromhex(frame)
    except ValueError:
        return False
    length = raw[2]
    if len(raw) != length + 6:
        return False
    return sum(raw[2:]) % 256 == 0


def decode_vendor_a_status(frame_hex: str) -> Dict[str, Any]:
    """Decode a vendor A status notification.

    Returns ``{}`` for anything that is not a checksummed status frame.
    """
    frame = _clean_hex(frame_hex)
    if not verify_vendor_a(frame):
        return {}
    command_id = frame[6:10]
    data = frame[10:-2]
    if command_id == VENDOR_A_STATIC_INFO:
        # firmware and model block, carries no light state
        return {}
    if command_id not in VENDOR_A_STATUS_IDS or len(data) < 8:
        return {}
    r, g, b, level = bytes.fromhex(data[:8])
    return {
        "power": True,
        "brightness": int(round(level / 2.55)),
        "color": {"r": r, "g": g, "b": b},
    }


def encode_vendor_a_command(command: Command) -> Optional[str]:
    if command.type == "power":
        return encode_vendor_a(VENDOR_A_POWER, "01" if command.value else "00")
    if command.type == "brightness":
        level = min(255, math.floor(_clamp(command.value, 0, 100) * 2.55))
        return encode_vendor_a(VENDOR_A_BRIGHTNESS, "%02x" % level)
    if command.type == "color":
        return encode_vendor_a(VENDOR_A_COLOR, _color_hex(command.value))
    return None


def encode_triones(command: Command) -> Optional[str]:
    if command.type == "power":
        return "cc2333" if command.value else "cc2433"
    if command.type == "color":
        return "56%s00f0aa" % _color_hex(command.value)
    return None


def encode_magic_home(command: Command) -> Optional[str]:
    if command.type == "power":
        return "7e0404f00001ff00ef" if command.value else "7e0404000000ff00ef"
    if command.type == "color":
        return "7e070503%s10ef" % _color_hex(command.value)
    if command.type == "brightness":
        level = math.floor(_clamp(command.value, 0, 100) / 100 * 255)
        return "7e0401%02x000000ef" % level
    return None


def encode_raw(command: Command) -> Optional[str]:
    if command.type == "power":
        return "01" if command.value else "00"
    if command.type == "brightness":
        return "02%02x" % int(_clamp(command.value, 0, 100))
    return None


ENCODERS: Dict[Encoding, Callable[[Command], Optional[str]]] = {
    Encoding.VENDOR_A: encode_vendor_a_command,
    Encoding.TRIONES: encode_triones,
    Encoding.MAGIC_HOME: encode_magic_home,
    Encoding.RAW: encode_raw,
}


def encode_command(encoding: Encoding, command: Command) -> str:
    """Translate an abstract command to the frame for ``encoding``.

    ``raw`` commands carry their own hex and pass through unchanged.
    """
    if command.type == "raw":
        frame = _clean_hex(command.value)
        if not frame:
            raise EncodingUnsupported("raw command without payload")
        return frame
    frame = ENCODERS[encoding](command)
    if not frame:
        raise EncodingUnsupported(
            "command %r is not supported by encoding %s" % (command.type, encoding.value)
        )
    return frame
