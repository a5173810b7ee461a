import struct
import uuid

import pytest

from gattkit.protocol import Opcode
from gattkit.results import (
    CharacteristicEntry,
    DescriptorEntry,
    GattResult,
    IncludedEntry,
    ServiceEntry,
    convert_uuid_le,
)
from gattkit.uuids import uuid16, uuid_to_le

CUSTOM = uuid.UUID("12345678-1234-5678-1234-56789abcdef0")


def test_convert_uuid_le_short():
    assert convert_uuid_le(b"\x0d\x18") == uuid16(0x180D)


def test_convert_uuid_le_long_round_trip():
    assert convert_uuid_le(uuid_to_le(CUSTOM)) == CUSTOM


def test_convert_uuid_le_rejects_32_bit():
    with pytest.raises(ValueError):
        convert_uuid_le(b"\x01\x02\x03\x04")


def test_append_rejects_partial_element():
    result = GattResult()
    with pytest.raises(ValueError):
        result.append(Opcode.READ_BY_GRP_TYPE_RSP, b"\x01\x00\x05", 6)


def test_append_rejects_empty_list():
    with pytest.raises(ValueError):
        GattResult().append(Opcode.FIND_INFO_RSP, b"", 4)


def _grp(start, end, svc_uuid):
    return struct.pack("<HH", start, end) + uuid_to_le(svc_uuid)


def test_services_from_group_responses():
    result = GattResult()
    result.append(
        Opcode.READ_BY_GRP_TYPE_RSP,
        _grp(1, 5, uuid16(0x1800)) + _grp(6, 9, uuid16(0x1801)),
        6,
    )
    result.append(Opcode.READ_BY_GRP_TYPE_RSP, _grp(10, 20, CUSTOM), 20)
    assert result.service_count() == 3
    assert list(result.iter_services()) == [
        ServiceEntry(1, 5, uuid16(0x1800)),
        ServiceEntry(6, 9, uuid16(0x1801)),
        ServiceEntry(10, 20, CUSTOM),
    ]


def test_services_by_uuid_use_searched_uuid():
    result = GattResult(uuid=CUSTOM)
    result.append(Opcode.FIND_BY_TYPE_VAL_RSP, struct.pack("<HHHH", 3, 7, 30, 40), 4)
    assert result.service_count() == 2
    assert [e.uuid for e in result.iter_services()] == [CUSTOM, CUSTOM]
    assert [(e.start_handle, e.end_handle) for e in result.iter_services()] == [
        (3, 7),
        (30, 40),
    ]


def test_counts_zero_for_other_kinds():
    result = GattResult()
    result.append(Opcode.FIND_INFO_RSP, struct.pack("<HH", 4, 0x2902), 4)
    assert result.service_count() == 0
    assert result.characteristic_count() == 0
    assert result.included_count() == 0
    assert result.descriptor_count() == 1
    assert GattResult().service_count() == 0


def _chrc(decl, props, value, chrc_uuid):
    return struct.pack("<HBH", decl, props, value) + uuid_to_le(chrc_uuid)


def test_characteristics_end_handles():
    result = GattResult(end_handle=40)
    result.append(
        Opcode.READ_BY_TYPE_RSP,
        _chrc(2, 0x02, 3, uuid16(0x2A00)) + _chrc(4, 0x0A, 5, uuid16(0x2A01)),
        7,
    )
    result.append(Opcode.READ_BY_TYPE_RSP, _chrc(10, 0x10, 11, CUSTOM), 21)
    assert result.characteristic_count() == 3
    entries = list(result.iter_characteristics())
    assert entries[0] == CharacteristicEntry(2, 3, 3, 0x02, uuid16(0x2A00))
    assert entries[1] == CharacteristicEntry(4, 9, 5, 0x0A, uuid16(0x2A01))
    assert entries[2] == CharacteristicEntry(10, 40, 11, 0x10, CUSTOM)


def test_characteristics_need_plain_discovery():
    result = GattResult(uuid=CUSTOM)
    result.append(Opcode.READ_BY_TYPE_RSP, _chrc(2, 0x02, 3, uuid16(0x2A00)), 7)
    assert list(result.iter_characteristics()) == []


def test_characteristic_count_rejects_bad_length():
    result = GattResult()
    result.append(Opcode.READ_BY_TYPE_RSP, struct.pack("<HHH", 1, 2, 3), 6)
    assert result.characteristic_count() == 0
    assert list(result.iter_characteristics()) == []


def test_descriptors_short_and_long():
    result = GattResult()
    result.append(Opcode.FIND_INFO_RSP, struct.pack("<HH", 4, 0x2902), 4)
    result.append(Opcode.FIND_INFO_RSP, struct.pack("<H", 5) + uuid_to_le(CUSTOM), 18)
    assert result.descriptor_count() == 2
    assert list(result.iter_descriptors()) == [
        DescriptorEntry(4, uuid16(0x2902)),
        DescriptorEntry(5, CUSTOM),
    ]


def test_included_with_short_uuid():
    result = GattResult()
    result.append(Opcode.READ_BY_TYPE_RSP, struct.pack("<HHHH", 2, 20, 25, 0x180F), 8)
    assert result.included_count() == 1
    assert list(result.iter_included_services()) == [
        IncludedEntry(2, 20, 25, uuid16(0x180F))
    ]


def test_included_with_uuid_from_read_responses():
    other = uuid.UUID("abcdefab-0000-1111-2222-333344445555")
    result = GattResult()
    result.append(
        Opcode.READ_BY_TYPE_RSP, struct.pack("<HHHHHH", 2, 20, 25, 3, 30, 35), 6
    )
    result.append(Opcode.READ_RSP, uuid_to_le(CUSTOM), 16)
    result.append(Opcode.READ_RSP, uuid_to_le(other), 16)
    assert result.included_count() == 2
    assert list(result.iter_included_services()) == [
        IncludedEntry(2, 20, 25, CUSTOM),
        IncludedEntry(3, 30, 35, other),
    ]


def test_included_stops_without_read_response():
    result = GattResult()
    result.append(
        Opcode.READ_BY_TYPE_RSP, struct.pack("<HHHHHH", 2, 20, 25, 3, 30, 35), 6
    )
    result.append(Opcode.READ_RSP, uuid_to_le(CUSTOM), 16)
    assert list(result.iter_included_services()) == [IncludedEntry(2, 20, 25, CUSTOM)]


def test_read_by_type_values():
    result = GattResult(uuid=uuid16(0x2A00))
    result.append(Opcode.READ_BY_TYPE_RSP, struct.pack("<H", 3) + b"ab" + struct.pack("<H", 7) + b"cd", 4)
    assert list(result.iter_read_by_type()) == [(3, b"ab"), (7, b"cd")]


def test_read_by_type_needs_uuid():
    result = GattResult()
    result.append(Opcode.READ_BY_TYPE_RSP, struct.pack("<H", 3) + b"ab", 4)
    assert list(result.iter_read_by_type()) == []