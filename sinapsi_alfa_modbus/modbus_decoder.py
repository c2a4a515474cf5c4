"""Formatting of Modbus request and response frames for debug logs."""

from __future__ import annotations

import logging
import struct

_LOGGER = logging.getLogger(__name__)

READ_HOLDING_REGISTERS = 0x03

_READ_REQUEST = struct.Struct(">BBHH")


def _mask_frame(frame: bytes) -> str:
    """Hex dump ``frame`` with the leading unit id byte replaced by ``**``."""

    return f"**{frame[1:].hex()}" if frame else ""


def _build_request_frame(slave_id: int, address: int, count: int) -> bytes:
    """Return the PDU of a holding register read, prefixed with the unit id.

    Only used for logging; out of range values produce an empty frame.
    """

    try:
        return _READ_REQUEST.pack(slave_id, READ_HOLDING_REGISTERS, address, count)
    except struct.error as err:
        _LOGGER.debug("Cannot format read of %s x%s for unit %s: %s", address, count, slave_id, err)
        return b""
