"""Client-side GATT procedures run over an :class:`AttTransport`.

Each procedure sends its first request at once and keeps issuing
follow-up requests as responses come in, collecting them in a
:class:`GattResult`. When it ends, the callback is called with
``(success, att_ecode, result)``; ``result`` is None on failure.
A procedure whose last response is "attribute not found" but which
already collected data counts as a success.
"""

from __future__ import annotations

import struct
import uuid as _uuid
from typing import Callable, Optional

from .protocol import AttTransport, ErrorCode, Opcode, parse_error
from .results import GattResult, ResultChunk
from .uuids import uuid_to_le

__all__ = [
    "GattRequest",
    "RequestCallback",
    "MtuCallback",
    "exchange_mtu",
    "discover_all_primary_services",
    "discover_primary_services",
    "discover_secondary_services",
    "discover_included_services",
    "discover_characteristics",
    "discover_descriptors",
    "read_by_type",
]

PRIMARY_SERVICE_TYPE = 0x2800
SECONDARY_SERVICE_TYPE = 0x2801
INCLUDE_TYPE = 0x2802
CHARACTERISTIC_TYPE = 0x2803

_MAX_HANDLE = 0xFFFF
_UUID128_LEN = 16

RequestCallback = Callable[[bool, int, Optional[GattResult]], None]
MtuCallback = Callable[[bool, int], None]


def _le16(data: bytes, offset: int = 0) -> int:
    return struct.unpack_from("<H", data, offset)[0]


class GattRequest:
    """One running discovery or read-by-type procedure."""

    def __init__(
        self,
        att: AttTransport,
        start: int,
        end: int,
        callback: Optional[RequestCallback],
        uuid: Optional[_uuid.UUID] = None,
        service_type: int = 0,
    ) -> None:
        self.att = att
        self.start_handle = start
        self.end_handle = end
        self.uuid = uuid
        self.service_type = service_type
        self.callback = callback
        self.id = 0
        self.result = GattResult(uuid=uuid, end_handle=end)

    def __repr__(self) -> str:
        return (
            f"GattRequest(0x{self.start_handle:04x}-0x{self.end_handle:04x}, "
            f"pending={self.pending})"
        )

    @property
    def pending(self) -> bool:
        """True while a request of the procedure awaits its response."""
        return bool(self.id)

    def cancel(self) -> None:
        """Cancel the outstanding request; the callback will not be called."""
        if not self.id:
            return
        self.att.cancel(self.id)
        self.id = 0

    # -- plumbing ----------------------------------------------------------

    def _start(self, opcode: int, pdu: bytes, handler: Callable[[int, bytes], None]) -> None:
        self.id = self.att.send(opcode, pdu, handler)

    def _send(self, opcode: int, pdu: bytes, handler: Callable[[int, bytes], None]) -> bool:
        try:
            self.id = self.att.send(opcode, pdu, handler)
        except ConnectionError:
            self.id = 0
            return False
        return True

    def _complete(self, success: bool, att_ecode: int) -> None:
        if att_ecode == ErrorCode.ATTRIBUTE_NOT_FOUND and self.result.chunks:
            success = True
        self.id = 0
        if self.callback is not None:
            self.callback(success, att_ecode, self.result if success else None)

    def _fail(self) -> None:
        self._complete(False, 0)

    # -- primary / secondary services -------------------------------------

    def _group_type_pdu(self) -> bytes:
        return struct.pack("<HHH", self.start_handle, self.end_handle, self.service_type)

    def _find_by_type_value_pdu(self) -> bytes:
        assert self.uuid is not None
        return (
            struct.pack("<HHH", self.start_handle, self.end_handle, self.service_type)
            + uuid_to_le(self.uuid)
        )

    def _on_group_type(self, opcode: int, pdu: Optional[bytes]) -> None:
        pdu = bytes(pdu or b"")
        if opcode == Opcode.ERROR_RSP:
            self._complete(False, parse_error(pdu))
            return
        # Length byte plus at least one (handle, end handle, 16-bit UUID).
        if opcode != Opcode.READ_BY_GRP_TYPE_RSP or len(pdu) < 7:
            self._fail()
            return
        data_length = pdu[0]
        data = pdu[1:]
        if data_length not in (6, 20) or len(data) % data_length:
            self._fail()
            return

        chunk = self.result.append(opcode, data, data_length)
        last_end = _le16(pdu, len(pdu) - data_length + 2)
        # A response going backwards would loop forever.
        if last_end < self.start_handle:
            self._fail()
            return
        self.start_handle = (last_end + 1) & _MAX_HANDLE

        if last_end < self.end_handle:
            if self._send(Opcode.READ_BY_GRP_TYPE_REQ, self._group_type_pdu(),
                          self._on_group_type):
                return
            self._fail()
            return

        # Some devices report 0xffff as the group end within a smaller range.
        if last_end == _MAX_HANDLE and last_end != self.end_handle:
            _patch_end(chunk, len(pdu) - data_length + 1, self.end_handle)
        self._complete(True, 0)

    def _on_find_by_type_value(self, opcode: int, pdu: Optional[bytes]) -> None:
        pdu = bytes(pdu or b"")
        if opcode == Opcode.ERROR_RSP:
            self._complete(False, parse_error(pdu))
            return
        if opcode != Opcode.FIND_BY_TYPE_VAL_RSP or not pdu or len(pdu) % 4:
            self._fail()
            return

        self.result.append(opcode, pdu, 4)
        last_end = _le16(pdu, len(pdu) - 2)
        if last_end < self.start_handle:
            self._fail()
            return
        self.start_handle = (last_end + 1) & _MAX_HANDLE

        if last_end < self.end_handle:
            if self._send(Opcode.FIND_BY_TYPE_VAL_REQ, self._find_by_type_value_pdu(),
                          self._on_find_by_type_value):
                return
        self._fail()

    # -- included services -------------------------------------------------

    def _include_pdu(self, start: int) -> bytes:
        return struct.pack("<HHH", start, self.end_handle, INCLUDE_TYPE)

    def _on_included(self, opcode: int, pdu: Optional[bytes]) -> None:
        pdu = bytes(pdu or b"")
        if opcode == Opcode.ERROR_RSP:
            self._complete(False, parse_error(pdu))
            return
        if opcode != Opcode.READ_BY_TYPE_RSP or len(pdu) < 6:
            self._fail()
            return
        data_length = pdu[0]
        data = pdu[1:]
        if data_length not in (6, 8) or len(data) % data_length:
            self._fail()
            return

        chunk = self.result.append(opcode, data, data_length)
        if data_length == 6:
            # 128-bit UUIDs are not carried; read each one separately.
            _IncludedReader(self, chunk).start()
            return

        last_handle = _le16(pdu, len(pdu) - data_length)
        if last_handle < self.start_handle:
            self._fail()
            return
        self.start_handle = (last_handle + 1) & _MAX_HANDLE

        if last_handle != self.end_handle:
            if self._send(Opcode.READ_BY_TYPE_REQ, self._include_pdu(self.start_handle),
                          self._on_included):
                return
            self._fail()
            return
        self._complete(True, 0)

    # -- characteristics ---------------------------------------------------

    def _on_characteristics(self, opcode: int, pdu: Optional[bytes]) -> None:
        pdu = bytes(pdu or b"")
        if opcode == Opcode.ERROR_RSP:
            self._complete(False, parse_error(pdu))
            return
        if opcode != Opcode.READ_BY_TYPE_RSP or len(pdu) < 8:
            self._fail()
            return
        data_length = pdu[0]
        data = pdu[1:]
        if data_length not in (7, 21) or len(data) % data_length:
            self._fail()
            return

        self.result.append(opcode, data, data_length)
        last_handle = _le16(pdu, len(pdu) - data_length)
        if last_handle < self.start_handle:
            self._fail()
            return
        self.start_handle = (last_handle + 1) & _MAX_HANDLE

        if last_handle != self.end_handle:
            request = struct.pack(
                "<HHH", self.start_handle, self.end_handle, CHARACTERISTIC_TYPE
            )
            if self._send(Opcode.READ_BY_TYPE_REQ, request, self._on_characteristics):
                return
            self._fail()
            return
        self._complete(True, 0)

    # -- read by type ------------------------------------------------------

    def _read_by_type_pdu(self) -> bytes:
        assert self.uuid is not None
        return struct.pack("<HH", self.start_handle, self.end_handle) + uuid_to_le(self.uuid)

    def _on_read_by_type(self, opcode: int, pdu: Optional[bytes]) -> None:
        if opcode == Opcode.ERROR_RSP:
            self._complete(False, parse_error(pdu))
            return
        if opcode != Opcode.READ_BY_TYPE_RSP or not pdu:
            self._fail()
            return
        pdu = bytes(pdu)
        data_length = pdu[0]
        data = pdu[1:]
        if data_length < 2 or not data or len(data) % data_length:
            self._fail()
            return

        self.result.append(opcode, data, data_length)
        last_handle = _le16(pdu, len(pdu) - data_length)
        if last_handle < self.start_handle:
            self._fail()
            return
        self.start_handle = (last_handle + 1) & _MAX_HANDLE

        if last_handle != self.end_handle:
            if self._send(Opcode.READ_BY_TYPE_REQ, self._read_by_type_pdu(),
                          self._on_read_by_type):
                return
            self._fail()
            return
        self._complete(True, 0)

    # -- descriptors -------------------------------------------------------

    def _on_descriptors(self, opcode: int, pdu: Optional[bytes]) -> None:
        pdu = bytes(pdu or b"")
        if opcode == Opcode.ERROR_RSP:
            self._complete(False, parse_error(pdu))
            return
        if opcode != Opcode.FIND_INFO_RSP or len(pdu) < 5:
            self._fail()
            return
        fmt = pdu[0]
        if fmt == 0x01:
            data_length = 4
        elif fmt == 0x02:
            data_length = 18
        else:
            self._fail()
            return
        data = pdu[1:]
        if len(data) % data_length:
            self._fail()
            return

        self.result.append(opcode, data, data_length)
        last_handle = _le16(pdu, len(pdu) - data_length)
        if last_handle < self.start_handle:
            self._fail()
            return
        self.start_handle = (last_handle + 1) & _MAX_HANDLE

        if last_handle != self.end_handle:
            request = struct.pack("<HH", self.start_handle, self.end_handle)
            if self._send(Opcode.FIND_INFO_REQ, request, self._on_descriptors):
                return
        self._complete(True, 0)


def _patch_end(chunk: ResultChunk, offset: int, end_handle: int) -> None:
    buf = bytearray(chunk.pdu)
    struct.pack_into("<H", buf, offset, end_handle)
    chunk.pdu = bytes(buf)


class _IncludedReader:
    """Reads the 128-bit UUID of each include definition in one chunk."""

    def __init__(self, op: GattRequest, chunk: ResultChunk) -> None:
        self.op = op
        self.chunk = chunk
        self.pos = 0

    def _read_next(self) -> bool:
        start = self.chunk.pdu[self.pos + 2:self.pos + 4]
        self.pos += self.chunk.data_len
        return self.op._send(Opcode.READ_REQ, start, self._on_read)

    def start(self) -> None:
        if self._read_next():
            return
        self.op.id = 0
        if self.op.callback is not None:
            self.op.callback(False, 0, None)

    def _on_read(self, opcode: int, pdu: Optional[bytes]) -> None:
        op = self.op
        pdu = bytes(pdu or b"")
        if opcode == Opcode.ERROR_RSP:
            op._complete(False, parse_error(pdu))
            return
        if opcode != Opcode.READ_RSP or len(pdu) != _UUID128_LEN:
            op._fail()
            return

        op.result.append(opcode, pdu, len(pdu))

        if self.pos == len(self.chunk.pdu):
            last_handle = _le16(self.chunk.pdu, self.pos - self.chunk.data_len)
            if last_handle == op.end_handle:
                op._complete(True, 0)
                return
            if op._send(Opcode.READ_BY_TYPE_REQ, op._include_pdu(last_handle + 1),
                        op._on_included):
                return
            op._fail()
            return

        if self._read_next():
            return
        op._fail()


# -- public procedures ---------------------------------------------------


def exchange_mtu(
    att: AttTransport,
    client_rx_mtu: int,
    callback: Optional[MtuCallback] = None,
) -> int:
    """Negotiate the ATT MTU and return the request id.

    On a valid response the transport MTU becomes the smaller of the two
    receive MTUs. ``callback(success, att_ecode)`` reports the outcome.
    """
    if not client_rx_mtu:
        raise ValueError("client receive MTU must be non-zero")

    def on_response(opcode: int, pdu: Optional[bytes]) -> None:
        success = True
        att_ecode = 0
        if opcode == Opcode.ERROR_RSP:
            success = False
            att_ecode = parse_error(pdu)
        elif opcode != Opcode.MTU_RSP or not pdu or len(pdu) != 2:
            success = False
        else:
            server_rx_mtu = _le16(bytes(pdu))
            try:
                att.set_mtu(min(client_rx_mtu, server_rx_mtu))
            except ValueError:
                pass
        if callback is not None:
            callback(success, att_ecode)

    return att.send(Opcode.MTU_REQ, struct.pack("<H", client_rx_mtu), on_response)


def _discover_services(
    att: AttTransport,
    uuid: Optional[_uuid.UUID],
    start: int,
    end: int,
    callback: Optional[RequestCallback],
    primary: bool,
) -> GattRequest:
    service_type = PRIMARY_SERVICE_TYPE if primary else SECONDARY_SERVICE_TYPE
    op = GattRequest(att, start, end, callback, uuid=uuid, service_type=service_type)
    if uuid is None:
        op._start(Opcode.READ_BY_GRP_TYPE_REQ, op._group_type_pdu(), op._on_group_type)
    else:
        op._start(Opcode.FIND_BY_TYPE_VAL_REQ, op._find_by_type_value_pdu(),
                  op._on_find_by_type_value)
    return op


def discover_all_primary_services(
    att: AttTransport,
    uuid: Optional[_uuid.UUID],
    callback: Optional[RequestCallback],
) -> GattRequest:
    """Discover primary services over the whole handle range."""
    return discover_primary_services(att, uuid, 0x0001, _MAX_HANDLE, callback)


def discover_primary_services(
    att: AttTransport,
    uuid: Optional[_uuid.UUID],
    start: int,
    end: int,
    callback: Optional[RequestCallback],
) -> GattRequest:
    """Discover primary services in a range, all or only those with ``uuid``."""
    return _discover_services(att, uuid, start, end, callback, True)


def discover_secondary_services(
    att: AttTransport,
    uuid: Optional[_uuid.UUID],
    start: int,
    end: int,
    callback: Optional[RequestCallback],
) -> GattRequest:
    """Discover secondary services in a range, all or only those with ``uuid``."""
    return _discover_services(att, uuid, start, end, callback, False)


def discover_included_services(
    att: AttTransport,
    start: int,
    end: int,
    callback: Optional[RequestCallback],
) -> GattRequest:
    """Discover include definitions in a service's handle range."""
    op = GattRequest(att, start, end, callback)
    op._start(Opcode.READ_BY_TYPE_REQ, op._include_pdu(start), op._on_included)
    return op


def discover_characteristics(
    att: AttTransport,
    start: int,
    end: int,
    callback: Optional[RequestCallback],
) -> GattRequest:
    """Discover characteristic declarations in a handle range."""
    op = GattRequest(att, start, end, callback)
    request = struct.pack("<HHH", start, end, CHARACTERISTIC_TYPE)
    op._start(Opcode.READ_BY_TYPE_REQ, request, op._on_characteristics)
    return op


def discover_descriptors(
    att: AttTransport,
    start: int,
    end: int,
    callback: Optional[RequestCallback],
) -> GattRequest:
    """Discover descriptors in a handle range."""
    op = GattRequest(att, start, end, callback)
    op._start(Opcode.FIND_INFO_REQ, struct.pack("<HH", start, end), op._on_descriptors)
    return op


def read_by_type(
    att: AttTransport,
    start: int,
    end: int,
    uuid: _uuid.UUID,
    callback: Optional[RequestCallback],
) -> GattRequest:
    """Read the values of all attributes of type ``uuid`` in a range."""
    if uuid is None:
        raise ValueError("a UUID is required")
    op = GattRequest(att, start, end, callback, uuid=uuid)
    op._start(Opcode.READ_BY_TYPE_REQ, op._read_by_type_pdu(), op._on_read_by_type)
    return op