import uuid

import pytest

from gattkit.attribute import GattDbError
from gattkit.db import GattDb
from gattkit.uuids import (
    CHARACTERISTIC,
    CLIENT_CHARAC_CFG,
    PRIMARY_SERVICE,
    SECONDARY_SERVICE,
    uuid16,
)

HEART = uuid16(0x180D)
BATTERY = uuid16(0x180F)
LONG = uuid.UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def db():
    return GattDb()


def test_new_db_is_empty(db):
    assert db.is_empty()
    db.add_service(HEART, True, 3)
    assert not db.is_empty()


def test_add_service_assigns_sequential_handles(db):
    first = db.add_service(HEART, True, 4)
    second = db.add_service(BATTERY, True, 2)
    assert first.handle == 1
    assert second.handle == first.handle + 4
    assert first.uuid == PRIMARY_SERVICE
    assert second.service.handles() == (5, 6)


def test_secondary_service_declaration(db):
    decl = db.add_service(HEART, False, 1)
    assert decl.uuid == SECONDARY_SERVICE
    assert decl.service_uuid() == HEART


def test_insert_same_service_returns_existing(db):
    decl = db.insert_service(10, HEART, True, 3)
    assert db.insert_service(10, HEART, True, 3) is decl
    assert len(db) == 1


def test_insert_overlapping_service_raises(db):
    db.insert_service(10, HEART, True, 3)
    with pytest.raises(GattDbError):
        db.insert_service(11, BATTERY, True, 3)
    with pytest.raises(GattDbError):
        db.insert_service(10, BATTERY, True, 3)


def test_insert_invalid_handles_raise(db):
    with pytest.raises(GattDbError):
        db.insert_service(0, HEART, True, 1)
    with pytest.raises(GattDbError):
        db.insert_service(0xFFFF, HEART, True, 2)


def test_services_kept_in_handle_order(db):
    db.insert_service(20, BATTERY, True, 2)
    db.insert_service(5, HEART, True, 2)
    starts = [s.handle for s in db.services()]
    assert starts == sorted(starts)
    assert [s.service_uuid() for s in db.services()] == [HEART, BATTERY]


def test_get_attribute(db):
    decl = db.add_service(HEART, True, 4)
    value = decl.service.add_characteristic(uuid16(0x2A37), 0, 0x10)
    assert db.get_attribute(value.handle) is value
    assert db.get_attribute(decl.handle) is decl
    assert db.get_attribute(value.handle - 1).uuid == CHARACTERISTIC
    assert db.get_attribute(0) is None
    assert db.get_attribute(200) is None


def test_get_service_with_uuid(db):
    db.add_service(HEART, True, 2)
    battery = db.add_service(BATTERY, True, 2)
    assert db.get_service_with_uuid(BATTERY) is battery
    assert db.get_service_with_uuid(LONG) is None


def test_clear_range_removes_overlapping(db):
    a = db.insert_service(1, HEART, True, 5)
    db.insert_service(10, BATTERY, True, 5)
    db.clear_range(12, 12)
    assert db.services() == [a]
    with pytest.raises(ValueError):
        db.clear_range(5, 4)


def test_clear_then_add_restarts(db):
    db.add_service(HEART, True, 5)
    db.clear()
    assert db.is_empty()
    decl = db.add_service(BATTERY, True, 1)
    assert decl.handle == 1


def test_listeners_hear_activation_and_removal(db):
    added, removed = [], []
    db.register(added.append, removed.append)
    decl = db.add_service(HEART, True, 2)
    assert added == []
    decl.service.set_active(True)
    assert added == [decl]
    db.remove_service(decl)
    assert removed == [decl]
    assert db.is_empty()


def test_inactive_service_removal_is_silent(db):
    removed = []
    db.register(None, removed.append)
    decl = db.add_service(HEART, True, 2)
    db.remove_service(decl)
    assert removed == []


def test_unregister(db):
    added = []
    notify_id = db.register(added.append)
    db.unregister(notify_id)
    db.add_service(HEART, True, 1).service.set_active(True)
    assert added == []
    with pytest.raises(KeyError):
        db.unregister(notify_id)


def test_register_requires_a_listener(db):
    with pytest.raises(ValueError):
        db.register()


def test_read_by_group_type_stops_at_size_change(db):
    first = db.add_service(HEART, True, 2)
    second = db.add_service(LONG, True, 2)
    third = db.add_service(BATTERY, True, 2)
    for decl in (first, second, third):
        decl.service.set_active(True)
    assert db.read_by_group_type(1, 0xFFFF, PRIMARY_SERVICE) == [first]


def test_read_by_group_type_skips_inactive(db):
    first = db.add_service(HEART, True, 2)
    second = db.add_service(BATTERY, True, 2)
    second.service.set_active(True)
    assert db.read_by_group_type(1, 0xFFFF, PRIMARY_SERVICE) == [second]
    assert first not in db.read_by_group_type(1, 0xFFFF, PRIMARY_SERVICE)


def test_find_by_type_and_value(db):
    decl = db.add_service(HEART, True, 2)
    other = db.add_service(BATTERY, True, 2)
    decl.service.set_active(True)
    other.service.set_active(True)
    assert db.find_by_type(1, 0xFFFF, PRIMARY_SERVICE) == [decl, other]
    assert db.find_by_type_value(1, 0xFFFF, PRIMARY_SERVICE, bytes([0x0F, 0x18])) == [other]
    assert db.find_by_type(other.handle, 0xFFFF, PRIMARY_SERVICE) == [other]


def test_read_by_type_and_find_information(db):
    decl = db.add_service(HEART, True, 5)
    svc = decl.service
    value = svc.add_characteristic(uuid16(0x2A37), 0, 0x10)
    ccc = svc.add_descriptor(CLIENT_CHARAC_CFG)
    assert db.read_by_type(1, 0xFFFF, CHARACTERISTIC) == []
    svc.set_active(True)
    chars = db.read_by_type(1, 0xFFFF, CHARACTERISTIC)
    assert [c.char_data().value_handle for c in chars] == [value.handle]
    info = db.find_information(value.handle, 0xFFFF)
    assert info == [value, ccc]


def test_services_in_range_filters(db):
    a = db.insert_service(1, HEART, True, 2)
    b = db.insert_service(10, BATTERY, True, 2)
    assert db.services_in_range(None, 5, 20) == [b]
    assert db.services(HEART) == [a]
    assert db.services_in_range(None, 20, 5) == []


def test_remove_service_cancels_pending_reads(db):
    decl = db.add_service(HEART, True, 3)
    results = []
    value = decl.service.add_characteristic(
        uuid16(0x2A37), 0, 0x02, read_func=lambda *args: None
    )
    value.read(0, 0, None, lambda attr, err, data: results.append(err))
    db.remove_service(decl)
    assert len(results) == 1
    assert results[0] < 0