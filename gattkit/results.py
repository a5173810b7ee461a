"""Results of GATT discovery procedures and the entries they decode to.

A :class:`GattResult` collects the response PDUs of one procedure as
:class:`ResultChunk` objects, in the order they arrived. Each chunk holds
the attribute data list of one response (without the opcode byte and,
where present, without the length/format byte) and the size of one
element of that list.
"""

from __future__ import annotations

import struct
import uuid as _uuid
from dataclasses import dataclass, field
from typing import Iterator, List, NamedTuple, Optional, Tuple

from .protocol import Opcode
from .uuids import uuid16

__all__ = [
    "ServiceEntry",
    "CharacteristicEntry",
    "DescriptorEntry",
    "IncludedEntry",
    "ResultChunk",
    "GattResult",
    "convert_uuid_le",
]

_MAX_HANDLE = 0xFFFF
_CHRC_DATA_LENS = (7, 21)
_INCL_DATA_LENS = (6, 8)


def convert_uuid_le(data: bytes) -> _uuid.UUID:
    """Decode a little-endian UUID of 2 or 16 bytes as found in responses."""
    data = bytes(data)
    if len(data) == 16:
        return _uuid.UUID(bytes=data[::-1])
    if len(data) == 2:
        return uuid16(int.from_bytes(data, "little"))
    raise ValueError(f"invalid UUID length: {len(data)}")


class ServiceEntry(NamedTuple):
    start_handle: int
    end_handle: int
    uuid: _uuid.UUID


class CharacteristicEntry(NamedTuple):
    start_handle: int
    end_handle: int
    value_handle: int
    properties: int
    uuid: _uuid.UUID


class DescriptorEntry(NamedTuple):
    handle: int
    uuid: _uuid.UUID


class IncludedEntry(NamedTuple):
    handle: int
    start_handle: int
    end_handle: int
    uuid: _uuid.UUID


@dataclass
class ResultChunk:
    """The data list of one response PDU."""

    opcode: int
    pdu: bytes
    data_len: int

    @property
    def count(self) -> int:
        """Number of elements in the data list."""
        return len(self.pdu) // self.data_len

    def elements(self) -> Iterator[bytes]:
        """Yield each element of the data list."""
        for pos in range(0, len(self.pdu) - self.data_len + 1, self.data_len):
            yield self.pdu[pos:pos + self.data_len]


@dataclass
class GattResult:
    """The accumulated responses of one discovery or read-by-type procedure.

    ``uuid`` is the UUID the procedure searched for (None for plain
    characteristic and include discovery); ``end_handle`` is the end of
    the searched range, used as the end of the last characteristic.
    """

    uuid: Optional[_uuid.UUID] = None
    end_handle: int = _MAX_HANDLE
    chunks: List[ResultChunk] = field(default_factory=list)

    def __iter__(self) -> Iterator[ResultChunk]:
        return iter(self.chunks)

    def __len__(self) -> int:
        return len(self.chunks)

    def append(self, opcode: int, pdu: bytes, data_len: int) -> ResultChunk:
        """Store the data list of one response and return its chunk."""
        pdu = bytes(pdu)
        if data_len <= 0:
            raise ValueError(f"invalid element length: {data_len!r}")
        if not pdu or len(pdu) % data_len:
            raise ValueError(
                f"data list of {len(pdu)} bytes is not a multiple of {data_len}"
            )
        chunk = ResultChunk(opcode, pdu, data_len)
        self.chunks.append(chunk)
        return chunk

    # -- counts ------------------------------------------------------------

    def _first_opcode(self) -> Optional[int]:
        return self.chunks[0].opcode if self.chunks else None

    def _element_count(self) -> int:
        return sum(chunk.count for chunk in self.chunks)

    def service_count(self) -> int:
        """Number of services held, or 0 if this is not a service result."""
        if self._first_opcode() not in (
            Opcode.READ_BY_GRP_TYPE_RSP,
            Opcode.FIND_BY_TYPE_VAL_RSP,
        ):
            return 0
        return self._element_count()

    def characteristic_count(self) -> int:
        """Number of characteristics held, or 0 if not a characteristic result."""
        if self._first_opcode() != Opcode.READ_BY_TYPE_RSP:
            return 0
        if self.chunks[0].data_len not in _CHRC_DATA_LENS:
            return 0
        return self._element_count()

    def descriptor_count(self) -> int:
        """Number of descriptors held, or 0 if not a descriptor result."""
        if self._first_opcode() != Opcode.FIND_INFO_RSP:
            return 0
        return self._element_count()

    def included_count(self) -> int:
        """Number of include definitions held, or 0 if not an include result."""
        if self._first_opcode() != Opcode.READ_BY_TYPE_RSP:
            return 0
        if self.chunks[0].data_len not in _INCL_DATA_LENS:
            return 0
        return sum(
            chunk.count
            for chunk in self.chunks
            if chunk.opcode == Opcode.READ_BY_TYPE_RSP
        )

    # -- iteration ---------------------------------------------------------

    def iter_services(self) -> Iterator[ServiceEntry]:
        """Yield the services of a primary or secondary service discovery."""
        for chunk in self.chunks:
            if chunk.opcode == Opcode.READ_BY_GRP_TYPE_RSP:
                for element in chunk.elements():
                    start, end = struct.unpack_from("<HH", element)
                    yield ServiceEntry(start, end, convert_uuid_le(element[4:]))
            elif chunk.opcode == Opcode.FIND_BY_TYPE_VAL_RSP:
                if self.uuid is None:
                    return
                for element in chunk.elements():
                    start, end = struct.unpack_from("<HH", element)
                    yield ServiceEntry(start, end, self.uuid)
            else:
                return

    def iter_characteristics(self) -> Iterator[CharacteristicEntry]:
        """Yield the characteristics of a characteristic discovery.

        A characteristic ends one handle before the next declaration; the
        last one ends at the end of the searched range.
        """
        if self.uuid is not None:
            return
        chunks = self.chunks
        for index, chunk in enumerate(chunks):
            if chunk.opcode != Opcode.READ_BY_TYPE_RSP:
                return
            if chunk.data_len not in _CHRC_DATA_LENS:
                return
            elements = list(chunk.elements())
            for pos, element in enumerate(elements):
                start, properties, value_handle = struct.unpack_from("<HBH", element)
                if pos + 1 < len(elements):
                    following = elements[pos + 1]
                elif index + 1 < len(chunks):
                    following = chunks[index + 1].pdu
                else:
                    following = None
                if following is None:
                    end = self.end_handle
                else:
                    end = (struct.unpack_from("<H", following)[0] - 1) & _MAX_HANDLE
                yield CharacteristicEntry(
                    start, end, value_handle, properties, convert_uuid_le(element[5:])
                )

    def iter_descriptors(self) -> Iterator[DescriptorEntry]:
        """Yield the descriptors of a descriptor discovery."""
        for chunk in self.chunks:
            if chunk.opcode != Opcode.FIND_INFO_RSP:
                return
            for element in chunk.elements():
                (handle,) = struct.unpack_from("<H", element)
                yield DescriptorEntry(handle, convert_uuid_le(element[2:]))

    def iter_included_services(self) -> Iterator[IncludedEntry]:
        """Yield the include definitions of an included service discovery.

        Definitions without a 16-bit UUID take theirs from the read
        responses that follow their chunk, one per definition.
        """
        if self.uuid is not None:
            return
        chunks = self.chunks
        index = 0
        while index < len(chunks):
            chunk = chunks[index]
            if chunk.opcode != Opcode.READ_BY_TYPE_RSP:
                return
            if chunk.data_len not in _INCL_DATA_LENS:
                return
            if chunk.data_len == 8:
                for element in chunk.elements():
                    handle, start, end = struct.unpack_from("<HHH", element)
                    yield IncludedEntry(handle, start, end, convert_uuid_le(element[6:8]))
                index += 1
                continue
            for n, element in enumerate(chunk.elements()):
                read_index = index + 1 + n
                if read_index >= len(chunks):
                    return
                handle, start, end = struct.unpack_from("<HHH", element)
                read_chunk = chunks[read_index]
                uuid = convert_uuid_le(read_chunk.pdu[: read_chunk.data_len])
                yield IncludedEntry(handle, start, end, uuid)
            index += 1 + chunk.count

    def iter_read_by_type(self) -> Iterator[Tuple[int, bytes]]:
        """Yield ``(handle, value)`` pairs of a read-by-type procedure."""
        if self.uuid is None:
            return
        for chunk in self.chunks:
            if chunk.opcode != Opcode.READ_BY_TYPE_RSP:
                return
            for element in chunk.elements():
                (handle,) = struct.unpack_from("<H", element)
                yield handle, element[2:]