"""Single import point for the pymodbus exceptions used by the poller."""
from __future__ import annotations

from pymodbus.exceptions import (
    ConnectionException,
    ModbusException,
    ModbusIOException,
)

__all__ = ["ConnectionException", "ModbusException", "ModbusIOException"]
