"""Diagnostics counters and structured event logging for the poller."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

LogSink = logging.Logger | logging.LoggerAdapter


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Diagnostics:
    """Monotonically accumulating statistics for one poller instance."""

    cycles_run: int = 0
    cycles_succeeded: int = 0
    cycles_failed: int = 0
    consecutive_failures: int = 0
    registers_read: int = 0
    register_failures: int = 0
    timeout_errors: int = 0
    connection_attempts: int = 0
    connection_errors: int = 0
    reconnect_attempts: int = 0
    socket_resets: int = 0
    average_cycle_time: float = 0.0
    last_error: str | None = None
    last_success: datetime | None = None
    last_failure: datetime | None = None

    def record_success(self, registers: int, elapsed: float) -> None:
        """Record a cycle that produced at least one reading."""
        self.cycles_succeeded += 1
        self.consecutive_failures = 0
        self.registers_read += registers
        self.last_success = utcnow()
        self.average_cycle_time = (
            self.average_cycle_time * (self.cycles_succeeded - 1) + elapsed
        ) / self.cycles_succeeded

    def record_failure(self, error: str) -> None:
        """Record a cycle that produced no readings."""
        self.cycles_failed += 1
        self.consecutive_failures += 1
        self.last_error = error
        self.last_failure = utcnow()

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON friendly copy of the counters."""
        data = asdict(self)
        for key in ("last_success", "last_failure"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        total = self.cycles_succeeded + self.cycles_failed
        data["success_rate"] = (self.cycles_succeeded / max(1, total)) * 100
        return data


def log_event(
    logger: logging.Logger,
    sink: LogSink | None,
    level: int,
    component: str,
    message: str,
    *args: Any,
    details: dict[str, Any] | None = None,
) -> None:
    """Log ``message`` and mirror it to the structured ``sink`` if one is set.

    The sink receives the same record with ``component`` and ``details``
    attached as ``extra`` fields so a handler can persist them.
    """

    logger.log(level, message, *args)
    if sink is None:
        return
    try:
        sink.log(
            level,
            message,
            *args,
            extra={"component": component, "details": dict(details or {})},
        )
    except Exception:  # pragma: no cover - sink failures must not break polling
        logger.exception("Structured log sink failed for %s event", component)
