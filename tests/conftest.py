"""Test configuration for the Sinapsi Alfa Modbus poller."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sinapsi_alfa_modbus.modbus_exceptions import (  # noqa: E402
    ConnectionException,
    ModbusIOException,
)
from sinapsi_alfa_modbus.modbus_transport import BaseModbusTransport  # noqa: E402
from sinapsi_alfa_modbus.registers import parse_registers  # noqa: E402

SMALL_TABLE = [
    {"id": "measure_power", "capability": True, "name": "Import power", "address": 2, "type": "uint16", "unit": "W"},
    {"id": "meter_power.imported", "capability": True, "name": "Total import", "address": 5, "type": "uint32", "unit": "Wh"},
    {"id": "energy_phase", "capability": True, "name": "Tariff band", "address": 203, "type": "uint16"},
    {"id": "alarm_generic", "capability": True, "name": "Event date", "address": 780, "type": "uint32"},
    {"id": "energy_detachment", "capability": False, "name": "Residual time", "address": 782, "type": "uint16"},
]

# Words returned by the fake device for SMALL_TABLE, no alarm active
SMALL_TABLE_VALUES = {
    2: [1500],
    5: [0x0001, 0x86A0],
    203: [2],
    780: [0xFFFF, 0xFFFF],
    782: [0],
}


class FakeTransport(BaseModbusTransport):
    """In-memory transport serving fixed register words.

    ``values`` maps an address to the words returned or to an exception to
    raise; ``delays`` maps an address to seconds slept before answering.
    ``connect_results`` is consumed one entry per connect: ``True``,
    ``False`` or an exception instance.  Once empty, connects succeed.
    ``connect_delay`` stalls every connect for that many seconds.
    """

    def __init__(self, values=None, *, delays=None, connect_results=None, connect_delay=0):
        super().__init__(slave_id=1, timeout=1.0)
        self.values = dict(SMALL_TABLE_VALUES if values is None else values)
        self.delays = dict(delays or {})
        self.connect_results = list(connect_results or [])
        self.connected = False
        self.healthy = True
        self.connect_calls = 0
        self.close_calls = 0
        self.reads = []
        self.connect_delay = connect_delay

    def __str__(self):
        return "fake-device:502"

    def is_healthy(self):
        return self.connected and self.healthy

    async def _connect(self):
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        outcome = self.connect_results.pop(0) if self.connect_results else True
        if isinstance(outcome, BaseException):
            raise outcome
        if not outcome:
            raise ConnectionException("connection refused")
        self.connected = True
        self.healthy = True

    async def _reset_connection(self):
        self.connected = False

    async def close(self):
        self.close_calls += 1
        await super().close()

    async def read_holding_registers(self, address, count):
        self.reads.append(address)
        delay = self.delays.get(address)
        if delay:
            await asyncio.sleep(delay)
        value = self.values.get(address)
        if isinstance(value, BaseException):
            raise value
        if value is None:
            raise ModbusIOException(f"no data at {address}")
        return list(value)[:count]

    def drop(self, reason="socket closed"):
        """Simulate the peer closing the socket."""
        self.connected = False
        self._report_fault(reason)


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def small_table():
    """Return a five register table covering both word types and the alarm pair."""
    return parse_registers(SMALL_TABLE)


@pytest.fixture
def fake_transport():
    """Return a transport answering every register of the small table."""
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()
