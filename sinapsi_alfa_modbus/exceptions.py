"""Custom exceptions for the Sinapsi Alfa Modbus poller."""
from __future__ import annotations


class SinapsiError(Exception):
    """Base exception for the Sinapsi Alfa poller."""


class InvalidConfigError(SinapsiError, ValueError):
    """Exception for invalid configuration values."""


class InvalidIntervalError(InvalidConfigError):
    """Exception for a non-positive scheduling interval."""


class RegisterTableError(SinapsiError, ValueError):
    """Exception for an invalid register table."""


class RegisterDecodeError(SinapsiError, ValueError):
    """Exception for register payloads that cannot be decoded."""
