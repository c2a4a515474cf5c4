"""Tests for the per-cycle register read routine."""

import asyncio
import logging

import pytest
from conftest import SMALL_TABLE_VALUES, FakeTransport

from sinapsi_alfa_modbus.connection import ConnectionManager
from sinapsi_alfa_modbus.diagnostics import Diagnostics
from sinapsi_alfa_modbus.modbus_exceptions import ModbusIOException
from sinapsi_alfa_modbus.read_cycle import ReadCycleExecutor, SensorReading
from sinapsi_alfa_modbus.registers import WordType

pytestmark = pytest.mark.asyncio


def _executor(transport, read_timeout=0.05, **kwargs):
    manager = ConnectionManager(transport, Diagnostics(), reconnect_delay=10)
    return ReadCycleExecutor(manager, read_timeout=read_timeout, **kwargs)


async def test_reads_every_register_in_order(fake_transport, small_table):
    executor = _executor(fake_transport)

    readings = await executor.run_cycle(small_table)

    assert [r.id for r in readings] == [reg.id for reg in small_table]  # nosec B101
    assert fake_transport.reads == [2, 5, 203, 780, 782]  # nosec B101
    values = {r.id: r.value for r in readings}
    assert values["measure_power"] == 1500  # nosec B101
    assert values["meter_power.imported"] == 100000  # nosec B101
    assert values["alarm_generic"] == 0xFFFFFFFF  # nosec B101
    assert executor.diagnostics.cycles_succeeded == 1  # nosec B101
    assert executor.diagnostics.registers_read == 5  # nosec B101
    await executor.connection.async_stop()


async def test_reading_carries_descriptor_fields(fake_transport, small_table):
    executor = _executor(fake_transport)
    readings = await executor.run_cycle(small_table)

    assert readings[1] == SensorReading(  # nosec B101
        id="meter_power.imported",
        addressable=True,
        display_name="Total import",
        value=100000,
        unit="Wh",
        word_type=WordType.UINT32,
    )
    await executor.connection.async_stop()


async def test_two_timeouts_of_five_still_successful(small_table):
    transport = FakeTransport(delays={5: 1.0, 782: 1.0})
    executor = _executor(transport, read_timeout=0.02)

    readings = await executor.run_cycle(small_table)

    assert len(readings) == 3  # nosec B101
    assert {r.id for r in readings} == {"measure_power", "energy_phase", "alarm_generic"}  # nosec B101
    assert executor.diagnostics.cycles_succeeded == 1  # nosec B101
    assert executor.diagnostics.cycles_failed == 0  # nosec B101
    assert executor.diagnostics.timeout_errors == 2  # nosec B101
    assert executor.diagnostics.register_failures == 2  # nosec B101
    # Suspect link is reconciled by the next cycle, not reconnected inline
    assert not executor.connection.state.is_connected  # nosec B101
    assert not executor.connection.state.pending_reconnect  # nosec B101
    await executor.connection.async_stop()


async def test_protocol_and_decode_errors_are_isolated(small_table, caplog):
    values = dict(SMALL_TABLE_VALUES)
    values[2] = ModbusIOException("illegal address")
    values[5] = [1]  # short uint32 payload
    values[203] = OSError("reset by peer")
    executor = _executor(FakeTransport(values))

    with caplog.at_level(logging.WARNING):
        readings = await executor.run_cycle(small_table)

    assert [r.id for r in readings] == ["alarm_generic", "energy_detachment"]  # nosec B101
    assert executor.diagnostics.register_failures == 3  # nosec B101
    assert "Failed to read measure_power at 0x0002" in caplog.text  # nosec B101
    await executor.connection.async_stop()


async def test_cannot_connect_aborts_without_reads(small_table):
    transport = FakeTransport(connect_results=[False])
    executor = _executor(transport)

    readings = await executor.run_cycle(small_table)

    assert readings == []  # nosec B101
    assert transport.reads == []  # nosec B101
    assert executor.diagnostics.cycles_failed == 1  # nosec B101
    assert executor.diagnostics.consecutive_failures == 1  # nosec B101
    await executor.connection.async_stop()


async def test_all_registers_failing_is_a_failed_cycle(small_table):
    values = {address: ModbusIOException("busy") for address in SMALL_TABLE_VALUES}
    transport = FakeTransport(values)
    executor = _executor(transport)

    readings = await executor.run_cycle(small_table)

    assert readings == []  # nosec B101
    assert executor.diagnostics.cycles_failed == 1  # nosec B101
    assert executor.diagnostics.last_error == "no register could be read"  # nosec B101
    assert executor.connection.state.pending_reconnect  # nosec B101
    await executor.connection.async_stop()


async def test_overlapping_cycle_rejected(small_table):
    transport = FakeTransport(delays={2: 0.05})
    executor = _executor(transport, read_timeout=1)

    first = asyncio.create_task(executor.run_cycle(small_table))
    await asyncio.sleep(0.01)
    second = await executor.run_cycle(small_table)
    readings = await first

    assert second == []  # nosec B101
    assert len(readings) == 5  # nosec B101
    assert executor.diagnostics.cycles_run == 1  # nosec B101
    await executor.connection.async_stop()


@pytest.mark.parametrize("threshold, level", [(5, logging.WARNING), (20, logging.ERROR)])
async def test_consecutive_failure_alerts(small_table, caplog, threshold, level):
    transport = FakeTransport(connect_results=[False] * 30)
    executor = _executor(transport)
    executor.connection.state.max_reconnect_attempts = 100

    with caplog.at_level(logging.WARNING):
        for _ in range(threshold):
            # Reconnects are not under test here
            executor.connection.state.pending_reconnect = True
            await executor.run_cycle(small_table)

    alerts = [
        r
        for r in caplog.records
        if "consecutive read cycles failed" in r.getMessage() and r.levelno == level
    ]
    assert len(alerts) == 1  # nosec B101
    assert alerts[0].getMessage().startswith(f"{threshold} consecutive")  # nosec B101
    await executor.connection.async_stop()


async def test_structured_sink_receives_component(small_table):
    records = []

    class _Collector(logging.Handler):
        def emit(self, record):
            records.append(record)

    sink = logging.getLogger("tests.sink.read_cycle")
    sink.addHandler(_Collector())
    sink.setLevel(logging.DEBUG)
    sink.propagate = False

    values = dict(SMALL_TABLE_VALUES)
    values[203] = ModbusIOException("boom")
    executor = _executor(FakeTransport(values), log_sink=sink)
    await executor.run_cycle(small_table)

    (record,) = [r for r in records if getattr(r, "component", None) == "READ"]
    assert record.details == {"register": "energy_phase", "address": 203}  # nosec B101
    await executor.connection.async_stop()


async def test_stop_abandons_remaining_registers(small_table):
    transport = FakeTransport(delays={2: 0.05})
    executor = _executor(transport, read_timeout=1)

    task = asyncio.create_task(executor.run_cycle(small_table))
    await asyncio.sleep(0.01)
    executor.connection.stop()
    readings = await task

    # The register in flight finishes, nothing after it is read
    assert [r.id for r in readings] == ["measure_power"]  # nosec B101
    assert transport.reads == [2]  # nosec B101
    await executor.connection.async_stop()
