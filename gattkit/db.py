"""An in-memory GATT database: an ordered set of services keyed by handle."""

from __future__ import annotations

import uuid as _uuid
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .attribute import Attribute, GattDbError, Service
from .uuids import PRIMARY_SERVICE, SECONDARY_SERVICE

__all__ = ["GattDb", "ServiceListener"]

_MIN_HANDLE = 0x0001
_MAX_HANDLE = 0xFFFF

ServiceListener = Callable[[Attribute], None]


class _Listener:
    __slots__ = ("service_added", "service_removed")

    def __init__(
        self,
        service_added: Optional[ServiceListener],
        service_removed: Optional[ServiceListener],
    ) -> None:
        self.service_added = service_added
        self.service_removed = service_removed


class GattDb:
    """Services ordered by their start handle.

    Listeners registered with :meth:`register` hear about services that
    become active (``service_added``) and active services that become
    inactive or are removed (``service_removed``). Both receive the
    service declaration attribute.
    """

    def __init__(self) -> None:
        self._services: List[Service] = []
        self._listeners: Dict[int, _Listener] = {}
        self._next_notify_id = 1
        self.next_handle = _MIN_HANDLE

    def __iter__(self) -> Iterator[Service]:
        return iter(list(self._services))

    def __len__(self) -> int:
        return len(self._services)

    def __repr__(self) -> str:
        return f"GattDb(services={len(self._services)})"

    def is_empty(self) -> bool:
        """Return True if the database holds no service."""
        return not self._services

    # -- listeners -------------------------------------------------------

    def _notify(self, service: Service, added: bool) -> None:
        decl = service.declaration
        for listener in list(self._listeners.values()):
            func = listener.service_added if added else listener.service_removed
            if func is not None:
                func(decl)

    def _on_active_change(self, service: Service, active: bool) -> None:
        self._notify(service, active)

    def register(
        self,
        service_added: Optional[ServiceListener] = None,
        service_removed: Optional[ServiceListener] = None,
    ) -> int:
        """Register service listeners and return their id."""
        if service_added is None and service_removed is None:
            raise ValueError("at least one listener is required")
        notify_id = self._next_notify_id
        self._next_notify_id += 1
        self._listeners[notify_id] = _Listener(service_added, service_removed)
        return notify_id

    def unregister(self, notify_id: int) -> None:
        """Drop the listeners with ``notify_id``. Raises KeyError if unknown."""
        if notify_id not in self._listeners:
            raise KeyError(notify_id)
        del self._listeners[notify_id]

    # -- services ----------------------------------------------------------

    def _destroy(self, service: Service) -> None:
        if service.active:
            self._notify(service, False)
        service._destroy()
        service.on_active_change = None

    def _find_insert_loc(self, start: int, end: int) -> Tuple[Optional[Service], int]:
        for index, service in enumerate(self._services):
            cur_start, cur_end = service.handles()
            if cur_start <= start <= cur_end or cur_start <= end <= cur_end:
                return service, index
            if end < cur_start:
                return None, index
        return None, len(self._services)

    def insert_service(
        self,
        handle: int,
        uuid: _uuid.UUID,
        primary: bool = True,
        num_handles: int = 1,
    ) -> Attribute:
        """Place a service at ``handle`` and return its declaration.

        If the range is already taken by the very same service, that
        service's declaration is returned; any other overlap raises
        :class:`GattDbError`.
        """
        if handle < _MIN_HANDLE:
            raise GattDbError(f"invalid service handle: {handle!r}")
        if num_handles < 1 or handle + num_handles - 1 > _MAX_HANDLE:
            raise GattDbError("service does not fit in the handle space")

        end = handle + num_handles - 1
        existing, index = self._find_insert_loc(handle, end)
        if existing is not None:
            decl_type = PRIMARY_SERVICE if primary else SECONDARY_SERVICE
            decl = existing.declaration
            if (
                decl.uuid == decl_type
                and existing.uuid == uuid
                and existing.num_handles == num_handles
                and decl.handle == handle
            ):
                return decl
            raise GattDbError(
                f"handles 0x{handle:04x}-0x{end:04x} overlap {existing!r}"
            )

        service = Service(uuid, handle, primary, num_handles)
        service.on_active_change = self._on_active_change
        self._services.insert(index, service)
        self.next_handle = max(handle + num_handles, self.next_handle)
        return service.declaration

    def add_service(
        self,
        uuid: _uuid.UUID,
        primary: bool = True,
        num_handles: int = 1,
    ) -> Attribute:
        """Place a service at the next free handle and return its declaration."""
        return self.insert_service(self.next_handle, uuid, primary, num_handles)

    def remove_service(self, attribute: Attribute) -> None:
        """Remove the service that ``attribute`` belongs to."""
        service = attribute.service
        if service in self._services:
            self._services.remove(service)
        self._destroy(service)

    def clear(self) -> None:
        """Remove every service."""
        services, self._services = self._services, []
        for service in services:
            self._destroy(service)
        self.next_handle = _MIN_HANDLE

    def clear_range(self, start_handle: int, end_handle: int) -> None:
        """Remove every service that overlaps the handle range."""
        if start_handle > end_handle:
            raise ValueError("start handle is after end handle")
        keep: List[Service] = []
        drop: List[Service] = []
        for service in self._services:
            svc_start, svc_end = service.handles()
            if svc_start <= end_handle and svc_end >= start_handle:
                drop.append(service)
            else:
                keep.append(service)
        self._services = keep
        for service in drop:
            self._destroy(service)

    # -- lookups -----------------------------------------------------------

    def get_attribute(self, handle: int) -> Optional[Attribute]:
        """Return the attribute at ``handle``, or None."""
        if not handle:
            return None
        for service in self._services:
            start, end = service.handles()
            if start <= handle <= end:
                return next((a for a in service if a.handle == handle), None)
        return None

    def get_service_with_uuid(self, uuid: _uuid.UUID) -> Optional[Attribute]:
        """Return the declaration of the first service with ``uuid``, or None."""
        for service in self._services:
            if service.uuid == uuid:
                return service.declaration
        return None

    def read_by_group_type(
        self, start_handle: int, end_handle: int, uuid: _uuid.UUID
    ) -> List[Attribute]:
        """Return active service declarations of type ``uuid`` starting in range.

        The list stops at the first declaration whose UUID size differs from
        the first one found, as one response can carry only one size.
        """
        found: List[Attribute] = []
        uuid_size = 0
        for service in self._services:
            if not service.active:
                continue
            decl = service.declaration
            if decl.uuid != uuid:
                continue
            grp_start, grp_end = service.handles()
            if grp_end < start_handle or grp_start > end_handle:
                continue
            if grp_start < start_handle:
                continue
            if not uuid_size:
                uuid_size = len(decl.value)
            elif uuid_size != len(decl.value):
                break
            found.append(decl)
        return found

    def _find_by_type(
        self,
        start_handle: int,
        end_handle: int,
        uuid: _uuid.UUID,
        value: Optional[bytes],
    ) -> List[Attribute]:
        found: List[Attribute] = []
        for service in self._services:
            if not service.active:
                continue
            for attr in service:
                if not start_handle <= attr.handle <= end_handle:
                    continue
                if attr.uuid != uuid:
                    continue
                if value is not None and attr.value[: len(value)] != value:
                    continue
                found.append(attr)
        return found

    def find_by_type(
        self, start_handle: int, end_handle: int, uuid: _uuid.UUID
    ) -> List[Attribute]:
        """Return attributes of type ``uuid`` in range within active services."""
        return self._find_by_type(start_handle, end_handle, uuid, None)

    def find_by_type_value(
        self,
        start_handle: int,
        end_handle: int,
        uuid: _uuid.UUID,
        value: bytes,
    ) -> List[Attribute]:
        """Like :meth:`find_by_type`, keeping attributes whose value starts with ``value``."""
        return self._find_by_type(start_handle, end_handle, uuid, bytes(value))

    def read_by_type(
        self, start_handle: int, end_handle: int, uuid: _uuid.UUID
    ) -> List[Attribute]:
        """Return attributes of type ``uuid`` in range, in handle order."""
        found: List[Attribute] = []
        for service in self._services:
            if not service.active:
                continue
            for attr in service:
                if attr.handle < start_handle:
                    continue
                if attr.handle > end_handle:
                    break
                if attr.uuid == uuid:
                    found.append(attr)
        return found

    def find_information(self, start_handle: int, end_handle: int) -> List[Attribute]:
        """Return every attribute in range within active services."""
        found: List[Attribute] = []
        for service in self._services:
            if not service.active:
                continue
            if service.handles()[1] < start_handle:
                continue
            for attr in service:
                if attr.handle < start_handle:
                    continue
                if attr.handle > end_handle:
                    break
                found.append(attr)
        return found

    def services(self, uuid: Optional[_uuid.UUID] = None) -> List[Attribute]:
        """Return the declarations of all services, optionally of one UUID."""
        return self.services_in_range(uuid, _MIN_HANDLE, _MAX_HANDLE)

    def services_in_range(
        self,
        uuid: Optional[_uuid.UUID] = None,
        start_handle: int = _MIN_HANDLE,
        end_handle: int = _MAX_HANDLE,
    ) -> List[Attribute]:
        """Return declarations of services starting within the range."""
        if start_handle > end_handle:
            return []
        found: List[Attribute] = []
        for service in self._services:
            svc_start = service.declaration.handle
            if not start_handle <= svc_start <= end_handle:
                continue
            if uuid is not None and service.uuid != uuid:
                continue
            found.append(service.declaration)
        return found