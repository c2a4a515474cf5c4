"""Constants for the Sinapsi Alfa Modbus poller."""

from __future__ import annotations

from typing import Final

DOMAIN: Final = "sinapsi_alfa_modbus"
DEFAULT_NAME: Final = "Alfa"

# Configuration keys
CONF_HOST: Final = "host"
CONF_NAME: Final = "name"
CONF_PORT: Final = "port"
CONF_SLAVE_ID: Final = "slave_id"
CONF_SCAN_INTERVAL: Final = "scan_interval"
CONF_INCLUDE_EXPORT_ENERGY: Final = "include_export_energy"
CONF_READ_TIMEOUT: Final = "read_timeout"
CONF_RESPONSE_TIMEOUT: Final = "response_timeout"
CONF_RECONNECT_DELAY: Final = "reconnect_delay"
CONF_MAX_RECONNECT_ATTEMPTS: Final = "max_reconnect_attempts"

# Connection defaults
DEFAULT_PORT: Final = 502
DEFAULT_SLAVE_ID: Final = 1
DEFAULT_SCAN_INTERVAL: Final = 30  # seconds, callers also use 15 and 10
DEFAULT_READ_TIMEOUT: Final = 3.0
DEFAULT_RESPONSE_TIMEOUT: Final = 2.0
DEFAULT_RECONNECT_DELAY: Final = 5.0
MAX_RECONNECT_ATTEMPTS: Final = 10
KEEPALIVE_IDLE: Final = 10  # seconds of idle before the first TCP keep-alive probe

# Scheduler limits
MAX_SKIPPED_TICKS: Final = 3
MAX_CONSECUTIVE_TASK_ERRORS: Final = 3

# Consecutive failed cycles at which a diagnostic alert is raised
FAILURE_WARNING_THRESHOLD: Final = 5
FAILURE_ERROR_THRESHOLD: Final = 20

# Distinguished registers feeding the disconnection countdown
ALARM_EVENT_REGISTER: Final = "alarm_generic"
REMAINING_TIME_REGISTER: Final = "energy_detachment"

# Raw event timestamp values meaning "no alarm"; all normalise to NO_ALARM
NO_ALARM: Final = -1
NO_ALARM_SENTINELS: Final = frozenset({-1, 0xFFFF, 0xFFFFFFFF})

# Log components mirrored to the structured sink
COMPONENT_MODBUS: Final = "MODBUS"
COMPONENT_READ: Final = "READ"
COMPONENT_SCHEDULER: Final = "SCHEDULER"
COMPONENT_COUNTDOWN: Final = "COUNTDOWN"
COMPONENT_DEVICE: Final = "DEVICE"
