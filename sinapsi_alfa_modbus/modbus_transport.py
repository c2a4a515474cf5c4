"""Transport abstractions for Modbus communication."""

from __future__ import annotations

import inspect
import logging
import socket
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from pymodbus.client import AsyncModbusTcpClient

from .const import DEFAULT_RESPONSE_TIMEOUT, DEFAULT_SLAVE_ID, KEEPALIVE_IDLE
from .modbus_exceptions import ConnectionException, ModbusIOException
from .modbus_helpers import _call_modbus

_LOGGER = logging.getLogger(__name__)

FaultHandler = Callable[[str], None]


class BaseModbusTransport(ABC):
    """Base interface for Modbus transports.

    A transport owns at most one live client.  Socket level faults are reported
    to a single fault handler slot; installing a handler replaces the previous
    one so handlers never accumulate across reconnects.
    """

    def __init__(self, *, slave_id: int = DEFAULT_SLAVE_ID, timeout: float) -> None:
        self.slave_id = slave_id
        self.timeout = float(timeout)
        self._fault_handler: FaultHandler | None = None

    def set_fault_handler(self, handler: FaultHandler | None) -> None:
        """Install ``handler`` for socket faults, removing any previous one."""

        self._fault_handler = handler

    def _report_fault(self, reason: str) -> None:
        handler = self._fault_handler
        if handler is None:
            return
        try:
            handler(reason)
        except Exception:  # pragma: no cover - handler bugs must not kill the socket callback
            _LOGGER.exception("Transport fault handler failed for %s", reason)

    async def connect(self) -> None:
        """Open a fresh connection, closing any stale one first."""

        await self._reset_connection()
        await self._connect()

    async def close(self) -> None:
        """Close the transport."""

        await self._reset_connection()

    @abstractmethod
    def is_healthy(self) -> bool:
        """Return whether the underlying connection is usable."""

    @abstractmethod
    async def read_holding_registers(self, address: int, count: int) -> list[int]:
        """Read ``count`` holding registers starting at ``address``."""

    @abstractmethod
    async def _connect(self) -> None:
        """Connect the underlying transport."""

    @abstractmethod
    async def _reset_connection(self) -> None:
        """Reset the underlying connection."""


class TcpModbusTransport(BaseModbusTransport):
    """TCP Modbus transport implementation."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        slave_id: int = DEFAULT_SLAVE_ID,
        timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        keepalive_idle: int = KEEPALIVE_IDLE,
    ) -> None:
        super().__init__(slave_id=slave_id, timeout=timeout)
        self.host = host
        self.port = port
        self.keepalive_idle = keepalive_idle
        self.client: AsyncModbusTcpClient | None = None
        # Incremented for every client so callbacks from a replaced client are ignored
        self._generation = 0

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _client_kwargs(self, generation: int) -> dict[str, Any]:
        """Return constructor arguments supported by the installed pymodbus."""

        params = inspect.signature(AsyncModbusTcpClient).parameters
        kwargs: dict[str, Any] = {"port": self.port, "timeout": self.timeout}
        # Reconnects are driven by the connection manager, not by pymodbus
        if "retries" in params:
            kwargs["retries"] = 0
        if "reconnect_delay" in params:
            kwargs["reconnect_delay"] = 0

        def _on_connect(connected: bool) -> None:
            if connected or generation != self._generation or self.client is None:
                return
            _LOGGER.debug("Socket to %s:%s closed by peer or error", self.host, self.port)
            self._report_fault("socket closed")

        if "trace_connect" in params:
            kwargs["trace_connect"] = _on_connect
        elif "on_connect_callback" in params:
            kwargs["on_connect_callback"] = _on_connect
        return kwargs

    async def _connect(self) -> None:
        self._generation += 1
        self.client = AsyncModbusTcpClient(self.host, **self._client_kwargs(self._generation))
        connected = await self.client.connect()
        if not connected:
            await self._reset_connection()
            raise ConnectionException(f"Could not connect to {self.host}:{self.port}")
        self._enable_keepalive()
        _LOGGER.debug("TCP Modbus connection established to %s:%s", self.host, self.port)

    async def _reset_connection(self) -> None:
        client, self.client = self.client, None
        self._generation += 1
        if client is None:
            return
        result = client.close()
        if inspect.isawaitable(result):
            await result

    def _socket_transport(self) -> Any:
        """Return the asyncio transport below the pymodbus protocol, if any."""

        protocol = getattr(self.client, "ctx", None)
        return getattr(protocol, "transport", None)

    def _enable_keepalive(self) -> None:
        transport = self._socket_transport()
        sock = transport.get_extra_info("socket") if transport is not None else None
        if sock is None:
            _LOGGER.debug("No socket available to enable keep-alive")
            return
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            if hasattr(socket, "TCP_KEEPIDLE"):
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, self.keepalive_idle)
        except OSError as err:
            _LOGGER.debug("Failed to enable TCP keep-alive: %s", err)

    def is_healthy(self) -> bool:
        """Return whether the socket is really alive.

        ``client.connected`` can stay true after the socket died, so the
        asyncio transport and the file descriptor are checked too.  An idle
        socket that is neither readable nor writable is still healthy.
        """

        client = self.client
        if client is None or not getattr(client, "connected", False):
            return False
        transport = self._socket_transport()
        if transport is None or transport.is_closing():
            return False
        sock = transport.get_extra_info("socket")
        if sock is not None and sock.fileno() == -1:
            return False
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read_holding_registers(self, address: int, count: int) -> list[int]:
        client = self.client
        if client is None or not getattr(client, "connected", False):
            raise ConnectionException("Modbus client is not connected")

        response = await _call_modbus(
            client.read_holding_registers, self.slave_id, address, count=count
        )
        if response is None or response.isError():
            raise ModbusIOException(f"Error response reading registers at 0x{address:04X}")
        registers = list(response.registers)
        if len(registers) < count:
            raise ModbusIOException(
                f"Short response at 0x{address:04X}: {len(registers)}/{count} words"
            )
        return registers[:count]
