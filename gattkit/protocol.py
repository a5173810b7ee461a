"""ATT protocol constants and the transport interface GATT procedures use."""

from __future__ import annotations

import abc
import enum
from typing import Callable, Optional

__all__ = [
    "DEFAULT_LE_MTU",
    "MAX_VALUE_LEN",
    "Opcode",
    "ErrorCode",
    "ResponseCallback",
    "AttTransport",
    "parse_error",
]

DEFAULT_LE_MTU = 23
MAX_VALUE_LEN = 512

_ERROR_RSP_LEN = 4


class Opcode(enum.IntEnum):
    """ATT PDU opcodes."""

    ERROR_RSP = 0x01
    MTU_REQ = 0x02
    MTU_RSP = 0x03
    FIND_INFO_REQ = 0x04
    FIND_INFO_RSP = 0x05
    FIND_BY_TYPE_VAL_REQ = 0x06
    FIND_BY_TYPE_VAL_RSP = 0x07
    READ_BY_TYPE_REQ = 0x08
    READ_BY_TYPE_RSP = 0x09
    READ_REQ = 0x0A
    READ_RSP = 0x0B
    READ_BLOB_REQ = 0x0C
    READ_BLOB_RSP = 0x0D
    READ_MULT_REQ = 0x0E
    READ_MULT_RSP = 0x0F
    READ_BY_GRP_TYPE_REQ = 0x10
    READ_BY_GRP_TYPE_RSP = 0x11
    WRITE_REQ = 0x12
    WRITE_RSP = 0x13
    PREP_WRITE_REQ = 0x16
    PREP_WRITE_RSP = 0x17
    EXEC_WRITE_REQ = 0x18
    EXEC_WRITE_RSP = 0x19
    HANDLE_VAL_NOT = 0x1B
    HANDLE_VAL_IND = 0x1D
    HANDLE_VAL_CONF = 0x1E
    WRITE_CMD = 0x52
    SIGNED_WRITE_CMD = 0xD2


class ErrorCode(enum.IntEnum):
    """ATT error codes carried in an error response."""

    INVALID_HANDLE = 0x01
    READ_NOT_PERMITTED = 0x02
    WRITE_NOT_PERMITTED = 0x03
    INVALID_PDU = 0x04
    AUTHENTICATION = 0x05
    REQUEST_NOT_SUPPORTED = 0x06
    INVALID_OFFSET = 0x07
    AUTHORIZATION = 0x08
    PREPARE_QUEUE_FULL = 0x09
    ATTRIBUTE_NOT_FOUND = 0x0A
    ATTRIBUTE_NOT_LONG = 0x0B
    INSUFFICIENT_ENCRYPTION_KEY_SIZE = 0x0C
    INVALID_ATTRIBUTE_VALUE_LEN = 0x0D
    UNLIKELY = 0x0E
    INSUFFICIENT_ENCRYPTION = 0x0F
    UNSUPPORTED_GROUP_TYPE = 0x10
    INSUFFICIENT_RESOURCES = 0x11


ResponseCallback = Callable[[int, bytes], None]


class AttTransport(abc.ABC):
    """A channel that carries ATT requests and delivers their responses.

    Subclasses implement :meth:`send` and :meth:`cancel`. A response is
    delivered by calling the callback given to :meth:`send` with the
    response opcode and the PDU body (without the opcode byte).
    """

    def __init__(self, mtu: int = DEFAULT_LE_MTU) -> None:
        self._mtu = DEFAULT_LE_MTU
        self.set_mtu(mtu)

    @abc.abstractmethod
    def send(
        self,
        opcode: int,
        pdu: bytes,
        callback: Optional[ResponseCallback],
    ) -> int:
        """Queue a PDU and return a positive request id.

        Raises :class:`ConnectionError` if the PDU cannot be queued.
        """

    @abc.abstractmethod
    def cancel(self, request_id: int) -> bool:
        """Drop a pending request; return True if it was still pending."""

    def get_mtu(self) -> int:
        """Return the ATT MTU currently in force."""
        return self._mtu

    def set_mtu(self, mtu: int) -> None:
        """Set the ATT MTU; it may not be below the LE default."""
        if mtu < DEFAULT_LE_MTU:
            raise ValueError(f"MTU {mtu} is below the minimum {DEFAULT_LE_MTU}")
        self._mtu = mtu


def parse_error(pdu: Optional[bytes]) -> int:
    """Return the error code of an error-response body, or 0 if malformed.

    The body is: request opcode (1), handle (2, little endian), code (1).
    """
    if not pdu or len(pdu) != _ERROR_RSP_LEN:
        return 0
    code = pdu[3]
    try:
        return ErrorCode(code)
    except ValueError:
        return code