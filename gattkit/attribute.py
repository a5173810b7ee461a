"""Attributes and services of a GATT database.

A :class:`Service` owns a fixed number of handle slots. Slot 0 holds the
service declaration; characteristics, descriptors and include
definitions fill the remaining slots in order.
"""

from __future__ import annotations

import errno
import struct
import threading
import uuid as _uuid
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional

from .protocol import ErrorCode
from .uuids import (
    CHARACTERISTIC,
    INCLUDE,
    PRIMARY_SERVICE,
    SECONDARY_SERVICE,
    le_to_uuid,
    uuid_to_le,
)

__all__ = [
    "ATTRIBUTE_TIMEOUT",
    "GattDbError",
    "CharData",
    "IncludeData",
    "ServiceData",
    "Attribute",
    "Service",
]

ATTRIBUTE_TIMEOUT = 5.0
_MAX_HANDLE = 0xFFFF

ReadHandler = Callable[["Attribute", int, int, int, Any], None]
WriteHandler = Callable[["Attribute", int, int, bytes, int, Any], None]
ReadCompletion = Callable[["Attribute", int, bytes], None]
WriteCompletion = Callable[["Attribute", int], None]
ActiveListener = Callable[["Service", bool], None]


class GattDbError(ValueError):
    """An attribute or service could not be placed in the database."""


class CharData(NamedTuple):
    handle: int
    value_handle: int
    properties: int
    uuid: _uuid.UUID


class IncludeData(NamedTuple):
    handle: int
    start_handle: int
    end_handle: int


class ServiceData(NamedTuple):
    start_handle: int
    end_handle: int
    primary: bool
    uuid: _uuid.UUID


class _Pending:
    __slots__ = ("func", "timer")

    def __init__(self, func: Callable[..., None], timer: threading.Timer) -> None:
        self.func = func
        self.timer = timer


class Attribute:
    """One attribute: a handle, a type and either a stored value or handlers.

    When ``read_func`` or ``write_func`` is set, reads and writes are handed
    to it with a request id, and the outcome is reported later through
    :meth:`read_result` or :meth:`write_result`. A request that gets no
    result within :attr:`timeout` seconds completes with ``-ETIMEDOUT``.
    """

    timeout: float = ATTRIBUTE_TIMEOUT

    def __init__(
        self,
        service: "Service",
        handle: int,
        uuid: _uuid.UUID,
        value: bytes = b"",
    ) -> None:
        self.service = service
        self.handle = handle
        self.uuid = uuid
        self.value = bytes(value)
        self.permissions = 0
        self.read_func: Optional[ReadHandler] = None
        self.write_func: Optional[WriteHandler] = None
        self.user_data: Any = None
        self._lock = threading.Lock()
        self._read_id = 0
        self._write_id = 0
        self._pending_reads: Dict[int, _Pending] = {}
        self._pending_writes: Dict[int, _Pending] = {}

    def __repr__(self) -> str:
        return f"Attribute(handle=0x{self.handle:04x}, uuid={self.uuid})"

    def _configure(
        self,
        read_func: Optional[ReadHandler],
        write_func: Optional[WriteHandler],
        permissions: int,
        user_data: Any,
    ) -> None:
        self.permissions = permissions
        self.read_func = read_func
        self.write_func = write_func
        self.user_data = user_data

    def _track(
        self,
        table: Dict[int, _Pending],
        request_id: int,
        func: Callable[..., None],
        expire: Callable[[int], None],
    ) -> None:
        timer = threading.Timer(self.timeout, expire, args=(request_id,))
        timer.daemon = True
        table[request_id] = _Pending(func, timer)
        timer.start()

    def _take(self, table: Dict[int, _Pending], request_id: int) -> Optional[_Pending]:
        with self._lock:
            pending = table.pop(request_id, None)
        if pending is not None:
            pending.timer.cancel()
        return pending

    def _expire_read(self, request_id: int) -> None:
        pending = self._take(self._pending_reads, request_id)
        if pending is not None:
            pending.func(self, -errno.ETIMEDOUT, b"")

    def _expire_write(self, request_id: int) -> None:
        pending = self._take(self._pending_writes, request_id)
        if pending is not None:
            pending.func(self, -errno.ETIMEDOUT)

    def _cancel_pending(self) -> None:
        with self._lock:
            reads = list(self._pending_reads.values())
            writes = list(self._pending_writes.values())
            self._pending_reads.clear()
            self._pending_writes.clear()
        for pending in reads:
            pending.timer.cancel()
            pending.func(self, -errno.ECANCELED, b"")
        for pending in writes:
            pending.timer.cancel()
            pending.func(self, -errno.ECANCELED)

    def read(self, offset: int, opcode: int, att: Any, func: ReadCompletion) -> None:
        """Read the value from ``offset``; ``func(attr, err, value)`` gets the outcome."""
        if self.read_func is not None:
            with self._lock:
                self._read_id += 1
                request_id = self._read_id
                self._track(self._pending_reads, request_id, func, self._expire_read)
            self.read_func(self, request_id, offset, opcode, att)
            return

        if offset > len(self.value):
            func(self, ErrorCode.INVALID_OFFSET, b"")
            return
        func(self, 0, self.value[offset:])

    def read_result(self, request_id: int, err: int, value: bytes = b"") -> None:
        """Complete a pending read. Raises KeyError if no such read is pending."""
        pending = self._take(self._pending_reads, request_id)
        if pending is None:
            raise KeyError(request_id)
        pending.func(self, err, bytes(value))

    def write(
        self,
        offset: int,
        value: bytes,
        opcode: int,
        att: Any,
        func: WriteCompletion,
    ) -> None:
        """Write ``value`` at ``offset``; ``func(attr, err)`` gets the outcome."""
        value = bytes(value)
        if self.write_func is not None:
            with self._lock:
                self._write_id += 1
                request_id = self._write_id
                self._track(self._pending_writes, request_id, func, self._expire_write)
            self.write_func(self, request_id, offset, value, opcode, att)
            return

        if value:
            buf = bytearray(self.value)
            end = offset + len(value)
            if end > len(buf):
                buf.extend(bytes(end - len(buf)))
            buf[offset:end] = value
            self.value = bytes(buf)
        func(self, 0)

    def write_result(self, request_id: int, err: int) -> None:
        """Complete a pending write. Raises KeyError if no such write is pending."""
        pending = self._take(self._pending_writes, request_id)
        if pending is None:
            raise KeyError(request_id)
        pending.func(self, err)

    def reset(self) -> None:
        """Drop the stored value."""
        self.value = b""

    def service_uuid(self) -> _uuid.UUID:
        """Return the UUID of the service this attribute belongs to."""
        decl_value = self.service.declaration.value
        if len(decl_value) not in (2, 16):
            raise ValueError("service declaration holds no valid UUID")
        return le_to_uuid(decl_value)

    def service_handles(self) -> tuple:
        """Return the (start, end) handles of the owning service."""
        return self.service.handles()

    def service_data(self) -> ServiceData:
        """Return handles, kind and UUID of the owning service."""
        decl = self.service.declaration
        start, end = self.service.handles()
        return ServiceData(start, end, decl.uuid != SECONDARY_SERVICE, le_to_uuid(decl.value))

    def char_data(self) -> CharData:
        """Decode a characteristic declaration. Raises ValueError otherwise."""
        if self.uuid != CHARACTERISTIC or len(self.value) not in (5, 19):
            raise ValueError(f"{self!r} is not a characteristic declaration")
        properties, value_handle = struct.unpack_from("<BH", self.value)
        return CharData(self.handle, value_handle, properties, le_to_uuid(self.value[3:]))

    def incl_data(self) -> IncludeData:
        """Decode an include definition. Raises ValueError otherwise."""
        if self.uuid != INCLUDE or not 4 <= len(self.value) <= 6:
            raise ValueError(f"{self!r} is not an include definition")
        start, end = struct.unpack_from("<HH", self.value)
        return IncludeData(self.handle, start, end)


class Service:
    """A service and the handle slots it reserves."""

    def __init__(
        self,
        uuid: _uuid.UUID,
        handle: int,
        primary: bool = True,
        num_handles: int = 1,
    ) -> None:
        if num_handles < 1:
            raise GattDbError("a service needs at least one handle")
        self.num_handles = num_handles
        self.attributes: List[Optional[Attribute]] = [None] * num_handles
        decl_type = PRIMARY_SERVICE if primary else SECONDARY_SERVICE
        self.attributes[0] = Attribute(self, handle, decl_type, uuid_to_le(uuid))
        self._active = False
        self.claimed = False
        self.on_active_change: Optional[ActiveListener] = None

    def __repr__(self) -> str:
        start, end = self.handles()
        return f"Service(0x{start:04x}-0x{end:04x}, uuid={self.uuid})"

    def __iter__(self) -> Iterator[Attribute]:
        return (attr for attr in self.attributes if attr is not None)

    @property
    def declaration(self) -> Attribute:
        decl = self.attributes[0]
        assert decl is not None
        return decl

    @property
    def primary(self) -> bool:
        return self.declaration.uuid != SECONDARY_SERVICE

    @property
    def uuid(self) -> _uuid.UUID:
        return self.declaration.service_uuid()

    @property
    def active(self) -> bool:
        return self._active

    def handles(self) -> tuple:
        """Return the (start, end) handle range of the service."""
        start = self.declaration.handle
        return start, start + self.num_handles - 1

    def set_active(self, active: bool) -> None:
        """Mark the service active or inactive, telling the listener on change."""
        active = bool(active)
        if self._active == active:
            return
        self._active = active
        if self.on_active_change is not None:
            self.on_active_change(self, active)

    def _free_index(self, end_offset: int) -> Optional[int]:
        limit = self.num_handles - end_offset
        for index, attr in enumerate(self.attributes[:limit]):
            if attr is None:
                return index
        return None

    def _previous_handle(self, index: int) -> int:
        prev = self.attributes[index - 1]
        assert prev is not None
        return prev.handle

    def _insert_characteristic(
        self,
        handle: int,
        uuid: _uuid.UUID,
        permissions: int,
        properties: int,
        read_func: Optional[ReadHandler],
        write_func: Optional[WriteHandler],
        user_data: Any,
    ) -> Attribute:
        if handle and handle <= self.declaration.handle:
            raise GattDbError(f"handle 0x{handle:04x} precedes the service")
        # The value needs a handle of its own after the declaration.
        if handle == _MAX_HANDLE:
            raise GattDbError("no handle left for the characteristic value")
        if not 0 <= properties <= 0xFF:
            raise ValueError(f"properties out of range: {properties!r}")

        index = self._free_index(1)
        if index is None:
            raise GattDbError("no room left in the service")
        if not handle:
            handle = self._previous_handle(index) + 2
        if handle > _MAX_HANDLE:
            raise GattDbError("no handle left for the characteristic value")

        decl_value = struct.pack("<BH", properties, handle) + uuid_to_le(uuid)
        decl = Attribute(self, handle - 1, CHARACTERISTIC, decl_value)
        value_attr = Attribute(self, handle, uuid)
        value_attr._configure(read_func, write_func, permissions, user_data)

        self.attributes[index] = decl
        self.attributes[index + 1] = value_attr
        return value_attr

    def insert_characteristic(
        self,
        handle: int,
        uuid: _uuid.UUID,
        permissions: int = 0,
        properties: int = 0,
        read_func: Optional[ReadHandler] = None,
        write_func: Optional[WriteHandler] = None,
        user_data: Any = None,
    ) -> Attribute:
        """Add a characteristic whose value sits at ``handle``; return the value attribute."""
        if not handle:
            raise ValueError("handle must be non-zero")
        return self._insert_characteristic(
            handle, uuid, permissions, properties, read_func, write_func, user_data
        )

    def add_characteristic(
        self,
        uuid: _uuid.UUID,
        permissions: int = 0,
        properties: int = 0,
        read_func: Optional[ReadHandler] = None,
        write_func: Optional[WriteHandler] = None,
        user_data: Any = None,
    ) -> Attribute:
        """Add a characteristic at the next free handles; return the value attribute."""
        return self._insert_characteristic(
            0, uuid, permissions, properties, read_func, write_func, user_data
        )

    def _insert_descriptor(
        self,
        handle: int,
        uuid: _uuid.UUID,
        permissions: int,
        read_func: Optional[ReadHandler],
        write_func: Optional[WriteHandler],
        user_data: Any,
    ) -> Attribute:
        index = self._free_index(0)
        if index is None:
            raise GattDbError("no room left in the service")
        if handle and handle <= self.declaration.handle:
            raise GattDbError(f"handle 0x{handle:04x} precedes the service")
        if not handle:
            handle = self._previous_handle(index) + 1

        attr = Attribute(self, handle, uuid)
        attr._configure(read_func, write_func, permissions, user_data)
        self.attributes[index] = attr
        return attr

    def insert_descriptor(
        self,
        handle: int,
        uuid: _uuid.UUID,
        permissions: int = 0,
        read_func: Optional[ReadHandler] = None,
        write_func: Optional[WriteHandler] = None,
        user_data: Any = None,
    ) -> Attribute:
        """Add a descriptor at ``handle``."""
        if not handle:
            raise ValueError("handle must be non-zero")
        return self._insert_descriptor(
            handle, uuid, permissions, read_func, write_func, user_data
        )

    def add_descriptor(
        self,
        uuid: _uuid.UUID,
        permissions: int = 0,
        read_func: Optional[ReadHandler] = None,
        write_func: Optional[WriteHandler] = None,
        user_data: Any = None,
    ) -> Attribute:
        """Add a descriptor at the next free handle."""
        return self._insert_descriptor(0, uuid, permissions, read_func, write_func, user_data)

    def add_included(self, include: Attribute) -> Attribute:
        """Add an include definition referring to the service of ``include``."""
        included = include.service
        decl = included.declaration
        start, end = included.handles()

        value = struct.pack("<HH", start, end)
        # Only a 16-bit service UUID is carried in the definition.
        if len(decl.value) == 2:
            value += decl.value

        index = self._free_index(0)
        if index is None:
            raise GattDbError("no room left in the service")

        attr = Attribute(self, self._previous_handle(index) + 1, INCLUDE, value)
        self.attributes[index] = attr
        return attr

    def attributes_of_type(self, uuid: Optional[_uuid.UUID] = None) -> Iterator[Attribute]:
        """Yield the attributes of type ``uuid`` in handle order (all if None)."""
        for attr in self:
            if uuid is None or attr.uuid == uuid:
                yield attr

    def characteristics(self) -> Iterator[Attribute]:
        """Yield the characteristic declarations."""
        return self.attributes_of_type(CHARACTERISTIC)

    def included(self) -> Iterator[Attribute]:
        """Yield the include definitions."""
        return self.attributes_of_type(INCLUDE)

    def descriptors_of(self, declaration: Attribute) -> Iterator[Attribute]:
        """Yield the descriptors following a characteristic declaration."""
        if declaration.uuid != CHARACTERISTIC:
            return
        index = next(
            (i for i, attr in enumerate(self.attributes) if attr is declaration), None
        )
        if index is None:
            return
        for attr in self.attributes[index + 2:]:
            if attr is None:
                continue
            if attr.uuid in (CHARACTERISTIC, INCLUDE):
                return
            yield attr

    def _destroy(self) -> None:
        for attr in self:
            attr._cancel_pending()