"""Shared errors for validating a Sinapsi Alfa device."""

from __future__ import annotations


class CannotConnect(Exception):
    """Error to indicate we cannot connect."""


def is_connection_refused(exc: Exception) -> bool:
    """Check if an OS error message hints a refused connection."""

    message = str(exc).lower()
    return any(token in message for token in ("refused", "errno 111", "errno 61"))
