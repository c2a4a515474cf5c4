"""Resilient Modbus TCP poller for the Sinapsi Alfa energy meter."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .config import CONFIG_SCHEMA, async_validate_input, validate_config
from .connection import ConnectionManager, ConnectionState
from .const import DOMAIN
from .coordinator import NotificationKind, SinapsiAlfaCoordinator
from .countdown import CountdownState, CountdownUpdate, DisconnectionCountdown
from .diagnostics import Diagnostics
from .errors import CannotConnect
from .exceptions import (
    InvalidConfigError,
    InvalidIntervalError,
    RegisterDecodeError,
    RegisterTableError,
    SinapsiError,
)
from .modbus_transport import BaseModbusTransport, TcpModbusTransport
from .read_cycle import ReadCycleExecutor, SensorReading
from .registers import RegisterDescriptor, WordType, get_register_table
from .scheduler import TaskScheduler

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "BaseModbusTransport",
    "CONFIG_SCHEMA",
    "CannotConnect",
    "ConnectionManager",
    "ConnectionState",
    "CountdownState",
    "CountdownUpdate",
    "DOMAIN",
    "Diagnostics",
    "DisconnectionCountdown",
    "InvalidConfigError",
    "InvalidIntervalError",
    "NotificationKind",
    "ReadCycleExecutor",
    "RegisterDecodeError",
    "RegisterDescriptor",
    "RegisterTableError",
    "SensorReading",
    "SinapsiAlfaCoordinator",
    "SinapsiError",
    "TaskScheduler",
    "TcpModbusTransport",
    "WordType",
    "async_setup",
    "async_unload",
    "async_validate_input",
    "get_register_table",
    "validate_config",
]


async def async_setup(data: Mapping[str, Any], **kwargs: Any) -> SinapsiAlfaCoordinator:
    """Create a coordinator from ``data`` and start polling."""

    coordinator = SinapsiAlfaCoordinator.from_config(data, **kwargs)
    coordinator.start()
    _LOGGER.debug("Set up %s coordinator for %s", DOMAIN, coordinator.host)
    return coordinator


async def async_unload(coordinator: SinapsiAlfaCoordinator) -> bool:
    """Stop ``coordinator`` and drop its listeners."""

    await coordinator.async_stop()
    coordinator.remove_all_listeners()
    return True
