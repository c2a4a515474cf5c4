"""One pass over the register table with per-register fault isolation."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from .connection import ConnectionManager
from .const import (
    COMPONENT_READ,
    DEFAULT_READ_TIMEOUT,
    FAILURE_ERROR_THRESHOLD,
    FAILURE_WARNING_THRESHOLD,
)
from .diagnostics import Diagnostics, LogSink, log_event
from .modbus_exceptions import ModbusException
from .registers import RegisterDescriptor, WordType

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SensorReading:
    """Decoded value of one register, created fresh each cycle."""

    id: str
    addressable: bool
    display_name: str
    value: int
    unit: str
    word_type: WordType

    @classmethod
    def from_descriptor(cls, descriptor: RegisterDescriptor, value: int) -> SensorReading:
        return cls(
            id=descriptor.id,
            addressable=descriptor.addressable,
            display_name=descriptor.display_name,
            value=value,
            unit=descriptor.unit,
            word_type=descriptor.word_type,
        )


class ReadCycleExecutor:
    """Read every register once per call, isolating and timing out each read."""

    def __init__(
        self,
        connection: ConnectionManager,
        diagnostics: Diagnostics | None = None,
        *,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        log_sink: LogSink | None = None,
    ) -> None:
        self.connection = connection
        self.diagnostics = diagnostics if diagnostics is not None else connection.diagnostics
        self.read_timeout = read_timeout
        self.log_sink = log_sink
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        """Return whether a cycle is currently running."""
        return self._in_progress

    async def run_cycle(self, registers: Sequence[RegisterDescriptor]) -> list[SensorReading]:
        """Return the readings obtained in one pass over ``registers``.

        A second call while a cycle is running returns an empty list at once.
        """

        if self._in_progress:
            _LOGGER.warning("Read cycle already in progress, rejecting overlapping call")
            return []
        self._in_progress = True
        try:
            return await self._run_cycle(registers)
        finally:
            self._in_progress = False

    async def _run_cycle(self, registers: Sequence[RegisterDescriptor]) -> list[SensorReading]:
        self.diagnostics.cycles_run += 1
        start = time.monotonic()

        if not await self.connection.ensure_connected():
            self._cycle_failed("not connected")
            return []

        readings: list[SensorReading] = []
        for descriptor in registers:
            if self.connection.stopped:
                _LOGGER.debug("Stop requested, abandoning remaining registers")
                break
            reading = await self._read_register(descriptor)
            if reading is not None:
                readings.append(reading)

        if readings:
            elapsed = time.monotonic() - start
            self.diagnostics.record_success(len(readings), elapsed)
            _LOGGER.debug(
                "Read %d/%d registers in %.2fs", len(readings), len(registers), elapsed
            )
            return readings

        self._cycle_failed("no register could be read")
        if not self.connection.stopped:
            self.connection.schedule_reconnect("read cycle returned no data")
        return readings

    async def _read_register(self, descriptor: RegisterDescriptor) -> SensorReading | None:
        transport = self.connection.transport
        try:
            words = await asyncio.wait_for(
                transport.read_holding_registers(
                    descriptor.start_address, descriptor.word_count
                ),
                timeout=self.read_timeout,
            )
            value = descriptor.decode(words)
        except TimeoutError:
            self.diagnostics.timeout_errors += 1
            self._register_failed(descriptor, f"timed out after {self.read_timeout}s")
            return None
        except ModbusException as err:
            self._register_failed(descriptor, str(err))
            return None
        except (OSError, ValueError) as err:
            self._register_failed(descriptor, str(err))
            return None

        _LOGGER.debug(
            "%s - %s: %s %s", descriptor.id, descriptor.display_name, value, descriptor.unit
        )
        return SensorReading.from_descriptor(descriptor, value)

    def _register_failed(self, descriptor: RegisterDescriptor, reason: str) -> None:
        self.diagnostics.register_failures += 1
        log_event(
            _LOGGER,
            self.log_sink,
            logging.WARNING,
            COMPONENT_READ,
            "Failed to read %s at 0x%04X: %s",
            descriptor.id,
            descriptor.start_address,
            reason,
            details={"register": descriptor.id, "address": descriptor.start_address},
        )
        self.connection.mark_unhealthy(f"{descriptor.id}: {reason}")

    def _cycle_failed(self, reason: str) -> None:
        self.diagnostics.record_failure(reason)
        failures = self.diagnostics.consecutive_failures
        if failures in (FAILURE_WARNING_THRESHOLD, FAILURE_ERROR_THRESHOLD):
            level = logging.ERROR if failures >= FAILURE_ERROR_THRESHOLD else logging.WARNING
            log_event(
                _LOGGER,
                self.log_sink,
                level,
                COMPONENT_READ,
                "%d consecutive read cycles failed: %s",
                failures,
                reason,
                details=self.diagnostics.snapshot(),
            )
        else:
            _LOGGER.debug("Read cycle failed (%d in a row): %s", failures, reason)
