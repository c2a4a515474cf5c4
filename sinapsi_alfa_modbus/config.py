"""Configuration validation for a Sinapsi Alfa poller instance."""

from __future__ import annotations

import asyncio
import logging
import socket
import traceback
from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Any

import voluptuous as vol

from .const import (
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
)
from .errors import CannotConnect, is_connection_refused
from .exceptions import InvalidConfigError
from .modbus_exceptions import ConnectionException, ModbusException, ModbusIOException
from .modbus_transport import BaseModbusTransport, TcpModbusTransport

_LOGGER = logging.getLogger(__name__)


def _seconds(value: Any) -> float:
    """Coerce ``value`` (number or ``timedelta``) into seconds."""

    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, bool):
        raise vol.Invalid("expected a number of seconds")
    try:
        return float(value)
    except (TypeError, ValueError) as err:
        raise vol.Invalid("expected a number of seconds") from err


_POSITIVE_SECONDS = vol.All(_seconds, vol.Range(min=0, min_included=False))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_HOST): vol.All(str, vol.Strip, vol.Length(min=1)),
        vol.Optional(CONF_PORT, default=DEFAULT_PORT): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=65535)
        ),
        vol.Optional(CONF_SLAVE_ID, default=DEFAULT_SLAVE_ID): vol.All(
            vol.Coerce(int), vol.Range(min=0, max=247)
        ),
        vol.Optional(CONF_NAME, default=DEFAULT_NAME): str,
        vol.Optional(CONF_SCAN_INTERVAL, default=DEFAULT_SCAN_INTERVAL): _POSITIVE_SECONDS,
        vol.Optional(CONF_INCLUDE_EXPORT_ENERGY, default=False): vol.Boolean(),
        vol.Optional(CONF_READ_TIMEOUT, default=DEFAULT_READ_TIMEOUT): _POSITIVE_SECONDS,
        vol.Optional(CONF_RESPONSE_TIMEOUT, default=DEFAULT_RESPONSE_TIMEOUT): _POSITIVE_SECONDS,
        vol.Optional(CONF_RECONNECT_DELAY, default=DEFAULT_RECONNECT_DELAY): vol.All(
            _seconds, vol.Range(min=0)
        ),
        vol.Optional(CONF_MAX_RECONNECT_ATTEMPTS, default=MAX_RECONNECT_ATTEMPTS): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
    }
)


def validate_config(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return a validated copy of ``data`` with defaults filled in.

    Raises :class:`InvalidConfigError` naming the offending key.
    """

    try:
        return CONFIG_SCHEMA(dict(data))
    except vol.Invalid as err:
        path = ".".join(str(part) for part in err.path) or "config"
        raise InvalidConfigError(f"Invalid {path}: {err.error_message}") from err


async def async_validate_input(
    data: Mapping[str, Any],
    *,
    transport_factory: Callable[[dict[str, Any]], BaseModbusTransport] | None = None,
) -> dict[str, Any]:
    """Validate ``data`` and prove the device accepts a Modbus TCP connection.

    Configuration errors raise :class:`InvalidConfigError`; any failure to
    reach the device raises :class:`CannotConnect` with a short reason code.
    """

    config = validate_config(data)
    host = config[CONF_HOST]
    port = config[CONF_PORT]

    if transport_factory is None:
        transport: BaseModbusTransport = TcpModbusTransport(
            host=host,
            port=port,
            slave_id=config[CONF_SLAVE_ID],
            timeout=config[CONF_RESPONSE_TIMEOUT],
        )
    else:
        transport = transport_factory(config)

    try:
        await asyncio.wait_for(transport.connect(), timeout=config[CONF_READ_TIMEOUT])
        _LOGGER.info("Modbus device reachable at %s:%s", host, port)
        return {"title": f"{config[CONF_NAME]} ({host})", "config": config}
    except ConnectionException as exc:
        _LOGGER.error("Connection error: %s", exc)
        _LOGGER.debug("Traceback:\n%s", traceback.format_exc())
        raise CannotConnect("cannot_connect") from exc
    except ModbusIOException as exc:
        _LOGGER.error("Modbus IO error during device validation: %s", exc)
        raise CannotConnect("io_error") from exc
    except ModbusException as exc:
        _LOGGER.error("Modbus error: %s", exc)
        raise CannotConnect("modbus_error") from exc
    except TimeoutError as exc:
        _LOGGER.warning("Timeout connecting to %s:%s", host, port)
        raise CannotConnect("timeout") from exc
    except OSError as exc:
        if isinstance(exc, socket.gaierror):
            _LOGGER.error("DNS resolution failed: %s", exc)
            raise CannotConnect("dns_failure") from exc
        if isinstance(exc, ConnectionRefusedError) or is_connection_refused(exc):
            _LOGGER.error("Connection refused: %s", exc)
            raise CannotConnect("connection_refused") from exc
        _LOGGER.error("Unexpected error during device validation: %s", exc)
        raise CannotConnect("cannot_connect") from exc
    finally:
        await transport.close()
