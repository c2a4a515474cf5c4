"""Connection management with capped, deduplicated reconnects."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .const import (
    COMPONENT_MODBUS,
    DEFAULT_RECONNECT_DELAY,
    MAX_RECONNECT_ATTEMPTS,
)
from .diagnostics import Diagnostics, LogSink, log_event
from .modbus_exceptions import ModbusException
from .modbus_transport import BaseModbusTransport

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ConnectionState:
    """Mutable connection state owned by a :class:`ConnectionManager`."""

    is_connected: bool = False
    reconnect_attempts: int = 0
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    pending_reconnect: bool = False
    exhausted: bool = False


class ConnectionManager:
    """Lazily (re)establish a Modbus transport and recover from faults.

    Faults never trigger an inline retry.  A reconnect is scheduled after a
    flat delay instead, at most one at a time, and after
    ``max_reconnect_attempts`` failed attempts the manager gives up for good
    and reports it once.
    """

    def __init__(
        self,
        transport: BaseModbusTransport,
        diagnostics: Diagnostics | None = None,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        log_sink: LogSink | None = None,
        on_connection_lost: Callable[[str], None] | None = None,
        on_connection_restored: Callable[[], None] | None = None,
        on_reconnect_exhausted: Callable[[], None] | None = None,
    ) -> None:
        self.transport = transport
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.reconnect_delay = max(0.0, float(reconnect_delay))
        self.state = ConnectionState(max_reconnect_attempts=max(1, int(max_reconnect_attempts)))
        self.log_sink = log_sink
        self.on_connection_lost = on_connection_lost
        self.on_connection_restored = on_connection_restored
        self.on_reconnect_exhausted = on_reconnect_exhausted

        self._lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._stopped = False
        self._closed = False
        # True between a fault on an established link and the next successful connect
        self._lost = False

    @property
    def stopped(self) -> bool:
        """Return whether :meth:`stop` has been called."""
        return self._stopped

    def is_healthy(self) -> bool:
        """Return whether the link is flagged connected and the socket is alive."""
        return self.state.is_connected and self.transport.is_healthy()

    async def ensure_connected(self) -> bool:
        """Return ``True`` if connected, otherwise try exactly one fresh connect."""

        if self._stopped or self.state.exhausted:
            return False
        async with self._lock:
            if self.is_healthy():
                return True
            if self._stopped:
                return False
            return await self._connect()

    async def _connect(self) -> bool:
        if self.state.is_connected:
            # Flag was stale-true while the socket underneath had died
            self.diagnostics.socket_resets += 1
            self._mark_lost("stale socket")
        self.state.is_connected = False
        self.diagnostics.connection_attempts += 1
        self.transport.set_fault_handler(None)

        try:
            await self.transport.connect()
        except (ModbusException, asyncio.TimeoutError, TimeoutError) as exc:
            self._connect_failed(exc)
            return False
        except OSError as exc:
            self._connect_failed(exc)
            return False

        self.transport.set_fault_handler(self._handle_transport_fault)
        self.state.is_connected = True
        self.state.reconnect_attempts = 0
        self.diagnostics.consecutive_failures = 0
        log_event(
            _LOGGER,
            self.log_sink,
            logging.INFO,
            COMPONENT_MODBUS,
            "Connected to Modbus device at %s",
            self.transport,
        )
        if self._lost:
            self._lost = False
            self._notify(self.on_connection_restored)
        return True

    def _connect_failed(self, exc: BaseException) -> None:
        self.diagnostics.connection_errors += 1
        self.diagnostics.last_error = str(exc) or type(exc).__name__
        log_event(
            _LOGGER,
            self.log_sink,
            logging.WARNING,
            COMPONENT_MODBUS,
            "Failed to connect to %s: %s",
            self.transport,
            exc,
        )
        self.state.reconnect_attempts += 1
        if self.state.reconnect_attempts >= self.state.max_reconnect_attempts:
            self._give_up()
            return
        self.schedule_reconnect(f"connect failed: {exc}")

    def _handle_transport_fault(self, reason: str) -> None:
        """Record a socket fault; only flips flags and schedules a reconnect.

        May run at any point of an in-flight cycle.  The read in progress
        observes the same fault through its own error or timeout path.
        """

        if self._stopped:
            return
        self.state.is_connected = False
        self.diagnostics.socket_resets += 1
        self.diagnostics.last_error = reason
        self._mark_lost(reason)
        self.schedule_reconnect(reason)

    def mark_unhealthy(self, reason: str) -> None:
        """Flag the link as suspect so the next ``ensure_connected`` reconnects."""

        if self.state.is_connected:
            _LOGGER.debug("Marking connection to %s unhealthy: %s", self.transport, reason)
        self.state.is_connected = False

    def _mark_lost(self, reason: str) -> None:
        if self._lost:
            return
        self._lost = True
        log_event(
            _LOGGER,
            self.log_sink,
            logging.WARNING,
            COMPONENT_MODBUS,
            "Modbus connection lost: %s",
            reason,
        )
        self._notify(self.on_connection_lost, reason)

    # ------------------------------------------------------------------
    # Reconnect scheduling
    # ------------------------------------------------------------------

    def schedule_reconnect(self, reason: str) -> None:
        """Schedule one delayed reconnect unless one is already pending."""

        if self._stopped or self.state.exhausted:
            return
        if self.state.pending_reconnect:
            _LOGGER.debug("Reconnect already pending, ignoring: %s", reason)
            return
        self.state.pending_reconnect = True
        self.diagnostics.reconnect_attempts += 1
        log_event(
            _LOGGER,
            self.log_sink,
            logging.WARNING,
            COMPONENT_MODBUS,
            "Reconnecting in %.1fs (%d/%d connect attempts failed): %s",
            self.reconnect_delay,
            self.state.reconnect_attempts,
            self.state.max_reconnect_attempts,
            reason,
            details={
                "attempt": self.state.reconnect_attempts,
                "max_attempts": self.state.max_reconnect_attempts,
                "reason": reason,
            },
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after_delay()
        )

    def _give_up(self) -> None:
        """Enter the terminal state after the last allowed connect failed."""

        self.state.exhausted = True
        log_event(
            _LOGGER,
            self.log_sink,
            logging.ERROR,
            COMPONENT_MODBUS,
            "Maximum reconnection attempts (%d) reached for %s, giving up",
            self.state.max_reconnect_attempts,
            self.transport,
            details={"last_error": self.diagnostics.last_error},
        )
        self._notify(self.on_reconnect_exhausted)

    async def _reconnect_after_delay(self) -> None:
        try:
            await asyncio.sleep(self.reconnect_delay)
        finally:
            self.state.pending_reconnect = False
        if self._stopped:
            return
        await self.ensure_connected()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Stop reconnecting; the transport stays open until :meth:`async_stop`."""

        if self._stopped:
            return
        self._stopped = True
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self.state.pending_reconnect = False
        self.transport.set_fault_handler(None)

    async def async_stop(self) -> None:
        """Cancel any pending reconnect and release the transport."""

        self.stop()
        if self._closed:
            return
        self._closed = True
        self.state.is_connected = False
        await self.transport.close()
        _LOGGER.debug("Connection to %s released", self.transport)

    def _notify(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            _LOGGER.exception("Connection listener %s failed", callback)
