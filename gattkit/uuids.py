"""Bluetooth UUID helpers built on :class:`uuid.UUID`.

Every UUID is held as a full 128-bit :class:`uuid.UUID`. Short 16- and
32-bit values are expanded against the Bluetooth base UUID. Equality
therefore works across representations.
"""

from __future__ import annotations

import struct
import uuid

__all__ = [
    "BASE_UUID",
    "PRIMARY_SERVICE",
    "SECONDARY_SERVICE",
    "INCLUDE",
    "CHARACTERISTIC",
    "CLIENT_CHARAC_CFG",
    "uuid16",
    "uuid32",
    "is_uuid16",
    "uuid_to_le",
    "le_to_uuid",
]

BASE_UUID = uuid.UUID("00000000-0000-1000-8000-00805f9b34fb")

_BASE_INT = BASE_UUID.int
_LOW_96_MASK = (1 << 96) - 1


def uuid32(value: int) -> uuid.UUID:
    """Expand a 32-bit Bluetooth UUID to its 128-bit form."""
    if not 0 <= value <= 0xFFFFFFFF:
        raise ValueError(f"32-bit UUID out of range: {value!r}")
    return uuid.UUID(int=_BASE_INT | (value << 96))


def uuid16(value: int) -> uuid.UUID:
    """Expand a 16-bit Bluetooth UUID to its 128-bit form."""
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"16-bit UUID out of range: {value!r}")
    return uuid32(value)


def is_uuid16(value: uuid.UUID) -> bool:
    """Return True if ``value`` can be written as a 16-bit Bluetooth UUID."""
    if (value.int & _LOW_96_MASK) != _BASE_INT:
        return False
    return (value.int >> 96) <= 0xFFFF


def uuid_to_le(value: uuid.UUID) -> bytes:
    """Encode a UUID in little-endian wire order: 2 bytes if short, else 16."""
    if is_uuid16(value):
        return struct.pack("<H", value.int >> 96)
    return value.bytes[::-1]


def le_to_uuid(data: bytes) -> uuid.UUID:
    """Decode a little-endian UUID of 2, 4 or 16 bytes."""
    data = bytes(data)
    if len(data) == 2:
        return uuid16(int.from_bytes(data, "little"))
    if len(data) == 4:
        return uuid32(int.from_bytes(data, "little"))
    if len(data) == 16:
        return uuid.UUID(bytes=data[::-1])
    raise ValueError(f"invalid UUID length: {len(data)}")


PRIMARY_SERVICE = uuid16(0x2800)
SECONDARY_SERVICE = uuid16(0x2801)
INCLUDE = uuid16(0x2802)
CHARACTERISTIC = uuid16(0x2803)
CLIENT_CHARAC_CFG = uuid16(0x2902)