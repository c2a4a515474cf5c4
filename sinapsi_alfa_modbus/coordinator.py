"""Polling coordinator for one Sinapsi Alfa energy meter."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import timedelta
from enum import Enum
from typing import Any

from .config import validate_config
from .connection import ConnectionManager
from .const import (
    ALARM_EVENT_REGISTER,
    COMPONENT_COUNTDOWN,
    COMPONENT_DEVICE,
    CONF_HOST,
    CONF_INCLUDE_EXPORT_ENERGY,
    CONF_MAX_RECONNECT_ATTEMPTS,
    CONF_NAME,
    CONF_PORT,
    CONF_READ_TIMEOUT,
    CONF_RECONNECT_DELAY,
    CONF_RESPONSE_TIMEOUT,
    CONF_SCAN_INTERVAL,
    CONF_SLAVE_ID,
    DEFAULT_NAME,
    DEFAULT_PORT,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_RESPONSE_TIMEOUT,
    DEFAULT_SCAN_INTERVAL,
    DEFAULT_SLAVE_ID,
    MAX_RECONNECT_ATTEMPTS,
    REMAINING_TIME_REGISTER,
)
from .countdown import CountdownUpdate, DisconnectionCountdown, normalize_event_timestamp
from .diagnostics import Diagnostics, LogSink, log_event
from .modbus_transport import BaseModbusTransport, TcpModbusTransport
from .read_cycle import ReadCycleExecutor, SensorReading
from .registers import RegisterDescriptor, get_register_table
from .scheduler import TaskScheduler

_LOGGER = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Notifications a coordinator can emit."""

    CYCLE_COMPLETED = "cycle_completed"
    DISCONNECTION_WARNING = "disconnection_warning"
    FIRST_DISCONNECTION_WARNING = "first_disconnection_warning"
    STOP_WARNING = "stop_warning"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_RESTORED = "connection_restored"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    CYCLE_FAILED = "cycle_failed"
    TASK_STUCK = "task_stuck"


class SinapsiAlfaCoordinator:
    """Poll an Alfa meter on a fixed schedule and derive disconnection warnings.

    The coordinator owns exactly one transport, connection manager, read
    cycle executor, scheduler and countdown.  Listeners registered with
    :meth:`add_listener` are called synchronously from the event loop and
    must not block.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        slave_id: int = DEFAULT_SLAVE_ID,
        name: str = DEFAULT_NAME,
        scan_interval: timedelta | float = DEFAULT_SCAN_INTERVAL,
        include_export_energy: bool = False,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        log_sink: LogSink | None = None,
        transport: BaseModbusTransport | None = None,
        registers: Sequence[RegisterDescriptor] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = validate_config(
            {
                CONF_HOST: host,
                CONF_PORT: port,
                CONF_SLAVE_ID: slave_id,
                CONF_NAME: name,
                CONF_SCAN_INTERVAL: scan_interval,
                CONF_INCLUDE_EXPORT_ENERGY: include_export_energy,
                CONF_READ_TIMEOUT: read_timeout,
                CONF_RESPONSE_TIMEOUT: response_timeout,
                CONF_RECONNECT_DELAY: reconnect_delay,
                CONF_MAX_RECONNECT_ATTEMPTS: max_reconnect_attempts,
            }
        )
        self.host: str = self.config[CONF_HOST]
        self.port: int = self.config[CONF_PORT]
        self.slave_id: int = self.config[CONF_SLAVE_ID]
        self.name: str = self.config[CONF_NAME]
        self.log_sink = log_sink

        if registers is None:
            registers = get_register_table(self.config[CONF_INCLUDE_EXPORT_ENERGY])
        self._registers = tuple(registers)

        if transport is None:
            transport = TcpModbusTransport(
                host=self.host,
                port=self.port,
                slave_id=self.slave_id,
                timeout=self.config[CONF_RESPONSE_TIMEOUT],
            )

        self.diagnostics = Diagnostics()
        self.connection = ConnectionManager(
            transport,
            self.diagnostics,
            reconnect_delay=self.config[CONF_RECONNECT_DELAY],
            max_reconnect_attempts=self.config[CONF_MAX_RECONNECT_ATTEMPTS],
            log_sink=log_sink,
            on_connection_lost=self._on_connection_lost,
            on_connection_restored=self._on_connection_restored,
            on_reconnect_exhausted=self._on_reconnect_exhausted,
        )
        self.executor = ReadCycleExecutor(
            self.connection,
            self.diagnostics,
            read_timeout=self.config[CONF_READ_TIMEOUT],
            log_sink=log_sink,
        )
        self.scheduler = TaskScheduler(
            self._async_poll,
            self.config[CONF_SCAN_INTERVAL],
            on_completed=self._on_cycle_completed,
            on_failed=self._on_cycle_failed,
            on_stuck=self._on_task_stuck,
            run_budget=self._run_budget(),
            name=f"{self.name} ({self.host})",
            log_sink=log_sink,
        )
        self.countdown = DisconnectionCountdown(clock)

        self._listeners: dict[NotificationKind, list[Callable[..., Any]]] = {
            kind: [] for kind in NotificationKind
        }
        # Latest values of the two alarm registers, kept across cycles
        self.event_timestamp: int | None = None
        self.remaining_seconds: int | None = None
        self._started = False
        self._stopped = False

    @classmethod
    def from_config(cls, data: Mapping[str, Any], **kwargs: Any) -> SinapsiAlfaCoordinator:
        """Create a coordinator from a configuration mapping."""

        config = validate_config(data)
        return cls(
            config[CONF_HOST],
            config[CONF_PORT],
            slave_id=config[CONF_SLAVE_ID],
            name=config[CONF_NAME],
            scan_interval=config[CONF_SCAN_INTERVAL],
            include_export_energy=config[CONF_INCLUDE_EXPORT_ENERGY],
            read_timeout=config[CONF_READ_TIMEOUT],
            response_timeout=config[CONF_RESPONSE_TIMEOUT],
            reconnect_delay=config[CONF_RECONNECT_DELAY],
            max_reconnect_attempts=config[CONF_MAX_RECONNECT_ATTEMPTS],
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def registers(self) -> tuple[RegisterDescriptor, ...]:
        return self._registers

    @property
    def is_connected(self) -> bool:
        return self.connection.is_healthy()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def add_listener(
        self, kind: NotificationKind | str, callback: Callable[..., Any]
    ) -> Callable[[], None]:
        """Register ``callback`` for ``kind`` and return a function removing it."""

        kind = NotificationKind(kind)
        listeners = self._listeners[kind]
        listeners.append(callback)

        def remove_listener() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return remove_listener

    def remove_all_listeners(self) -> None:
        for listeners in self._listeners.values():
            listeners.clear()

    def start(self) -> None:
        """Start polling; must be called from the running event loop."""

        if self._stopped:
            _LOGGER.warning("Coordinator for %s was stopped and cannot be restarted", self.host)
            return
        if self._started:
            _LOGGER.warning("Coordinator for %s already started", self.host)
            return
        self._started = True
        log_event(
            _LOGGER,
            self.log_sink,
            logging.INFO,
            COMPONENT_DEVICE,
            "Polling %s:%s every %.0fs (%d registers)",
            self.host,
            self.port,
            self.scheduler.interval,
            len(self._registers),
        )
        self.scheduler.start()

    def request_refresh(self) -> None:
        """Poll now instead of waiting for the next tick."""
        self.scheduler.request_run()

    def set_interval(self, interval: timedelta | float) -> None:
        """Change the poll interval; raises ``InvalidIntervalError`` if not positive."""

        self.scheduler.set_interval(interval)
        self.config[CONF_SCAN_INTERVAL] = self.scheduler.interval
        _LOGGER.info("Poll interval for %s set to %.0fs", self.host, self.scheduler.interval)

    async def async_stop(self) -> None:
        """Stop polling and release the connection.

        No new cycle starts once this is called.  A cycle already reading
        registers is allowed to finish the register in progress before the
        transport is closed.
        """

        if self._stopped:
            return
        self._stopped = True
        self.scheduler.stop()
        self.connection.stop()
        if not await self.scheduler.async_wait(timeout=self.config[CONF_READ_TIMEOUT]):
            _LOGGER.warning("Read cycle for %s still running at shutdown", self.host)
        await self.connection.async_stop()
        self.countdown.reset()
        self.event_timestamp = None
        self.remaining_seconds = None
        log_event(
            _LOGGER,
            self.log_sink,
            logging.INFO,
            COMPONENT_DEVICE,
            "Polling of %s stopped",
            self.host,
        )

    def get_diagnostics(self) -> dict[str, Any]:
        """Return a JSON friendly snapshot; never changes any state."""

        state = self.connection.state
        countdown = self.countdown.state
        return {
            "connection": {
                "host": self.host,
                "port": self.port,
                "slave_id": self.slave_id,
                "connected": self.is_connected,
                "reconnect_attempts": state.reconnect_attempts,
                "max_reconnect_attempts": state.max_reconnect_attempts,
                "pending_reconnect": state.pending_reconnect,
                "reconnect_exhausted": state.exhausted,
            },
            "statistics": self.diagnostics.snapshot(),
            "scheduler": {
                "scheduled": self.scheduler.is_scheduled,
                "running": self.scheduler.is_running,
                "interval": self.scheduler.interval,
                "runs": self.scheduler.runs,
                "skipped_ticks": self.scheduler.skipped_ticks,
                "consecutive_errors": self.scheduler.consecutive_errors,
                "run_budget": self.scheduler.run_budget,
            },
            "countdown": {
                "phase": self.countdown.phase.value,
                "event_timestamp": self.event_timestamp,
                "remaining_seconds": self.remaining_seconds,
                "countdown_start_time": countdown.countdown_start_time,
                "countdown_start_value": countdown.countdown_start_value,
                "warning_triggered": countdown.warning_triggered,
            },
            "registers": [reg.id for reg in self._registers],
            "include_export_energy": self.config[CONF_INCLUDE_EXPORT_ENERGY],
            "stopped": self._stopped,
        }

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _run_budget(self) -> float:
        """Longest a cycle can take when every read runs into its timeout."""
        return (
            self.config[CONF_RESPONSE_TIMEOUT]
            + len(self._registers) * self.config[CONF_READ_TIMEOUT]
        )

    async def _async_poll(self) -> list[SensorReading]:
        readings = await self.executor.run_cycle(self._registers)
        if not readings:
            return readings

        for reading in readings:
            if reading.id == ALARM_EVENT_REGISTER:
                self.event_timestamp = normalize_event_timestamp(reading.value)
            elif reading.id == REMAINING_TIME_REGISTER:
                self.remaining_seconds = reading.value

        if not self._stopped:
            self._dispatch_countdown(
                self.countdown.update(self.event_timestamp, self.remaining_seconds)
            )
        return readings

    def _dispatch_countdown(self, update: CountdownUpdate) -> None:
        if update.seconds_remaining is not None:
            log_event(
                _LOGGER,
                self.log_sink,
                logging.INFO,
                COMPONENT_COUNTDOWN,
                "Disconnection warning: %d seconds",
                update.seconds_remaining,
                details={
                    "event_timestamp": self.event_timestamp,
                    "disconnection_at": (
                        update.disconnection_at.isoformat() if update.disconnection_at else None
                    ),
                },
            )
            self._emit(NotificationKind.DISCONNECTION_WARNING, update.seconds_remaining)
            if update.first_warning:
                self._emit(NotificationKind.FIRST_DISCONNECTION_WARNING, update.seconds_remaining)
        if update.warning_stopped:
            log_event(
                _LOGGER,
                self.log_sink,
                logging.INFO,
                COMPONENT_COUNTDOWN,
                "Disconnection warning ended",
            )
            self._emit(NotificationKind.STOP_WARNING)

    def _emit(self, kind: NotificationKind, *args: Any) -> None:
        if self._stopped:
            _LOGGER.debug("Dropping %s notification after stop", kind.value)
            return
        for callback in list(self._listeners[kind]):
            try:
                callback(*args)
            except Exception:
                _LOGGER.exception("Listener for %s failed", kind.value)

    # ------------------------------------------------------------------
    # Component callbacks
    # ------------------------------------------------------------------

    def _on_cycle_completed(self, readings: list[SensorReading]) -> None:
        if readings:
            self._emit(NotificationKind.CYCLE_COMPLETED, readings)

    def _on_cycle_failed(self, err: BaseException) -> None:
        self._emit(NotificationKind.CYCLE_FAILED, err)

    def _on_task_stuck(self, skipped: int) -> None:
        self._emit(NotificationKind.TASK_STUCK, skipped)

    def _on_connection_lost(self, reason: str) -> None:
        self._emit(NotificationKind.CONNECTION_LOST, reason)

    def _on_connection_restored(self) -> None:
        self._emit(NotificationKind.CONNECTION_RESTORED)

    def _on_reconnect_exhausted(self) -> None:
        self.scheduler.stop()
        self._emit(NotificationKind.RECONNECT_EXHAUSTED)
