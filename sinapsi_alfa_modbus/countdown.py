"""Smoothed countdown to an impending forced disconnection.

The meter reports two values once an alarm is raised: the event timestamp
(``alarm_generic``) and its own residual time before the supply is cut
(``energy_detachment``).  The residual value is refreshed less often than the
poll interval, so forwarding it as is would produce a stair-stepped countdown.
Between device updates the countdown is extrapolated from wall-clock time, and
it is reset whenever the device reports less time than the extrapolation.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from .const import NO_ALARM, NO_ALARM_SENTINELS

_LOGGER = logging.getLogger(__name__)


class CountdownPhase(str, Enum):
    IDLE = "idle"
    COUNTING = "counting"


@dataclass(slots=True)
class CountdownState:
    countdown_start_time: float | None = None
    countdown_start_value: int | None = None
    warning_triggered: bool = False


@dataclass(frozen=True, slots=True)
class CountdownUpdate:
    """Outcome of one countdown step.

    ``seconds_remaining`` is set on every cycle of an active alarm episode;
    ``first_warning`` only on the first of them and ``warning_stopped`` only on
    the cycle the episode ends, if a warning had been emitted.
    """

    seconds_remaining: int | None = None
    first_warning: bool = False
    warning_stopped: bool = False
    disconnection_at: datetime | None = None


def normalize_event_timestamp(value: int | None) -> int | None:
    """Map every "no alarm" sentinel onto ``NO_ALARM``."""

    if value is None:
        return None
    if value in NO_ALARM_SENTINELS:
        if value == 0xFFFF:
            # A genuine uint32 timestamp cannot be this small; still worth flagging
            _LOGGER.debug("Event timestamp 65535 treated as 'no alarm'")
        return NO_ALARM
    return value


class DisconnectionCountdown:
    """Two-state (idle/counting) estimator fed once per read cycle."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.state = CountdownState()

    @property
    def phase(self) -> CountdownPhase:
        if self.state.countdown_start_time is None:
            return CountdownPhase.IDLE
        return CountdownPhase.COUNTING

    def reset(self) -> None:
        self.state = CountdownState()

    def update(self, event_timestamp: int | None, remaining_seconds: int | None) -> CountdownUpdate:
        """Advance the state machine with the latest device values."""

        event_timestamp = normalize_event_timestamp(event_timestamp)
        if event_timestamp is None:
            return CountdownUpdate()

        if event_timestamp == NO_ALARM:
            had_warning = self.state.warning_triggered
            if self.phase is CountdownPhase.COUNTING:
                _LOGGER.info("Disconnection alarm cleared")
            self.reset()
            return CountdownUpdate(warning_stopped=had_warning)

        if remaining_seconds is None:
            # Alarm raised but the residual time has not been read yet
            return CountdownUpdate()

        now = self._clock()
        state = self.state
        if state.countdown_start_time is None or state.countdown_start_value is None:
            state.countdown_start_time = now
            state.countdown_start_value = remaining_seconds
            _LOGGER.info(
                "Disconnection alarm raised at %s, %s seconds remaining",
                event_timestamp,
                remaining_seconds,
            )
        else:
            extrapolated = self._extrapolate(now)
            if remaining_seconds < extrapolated:
                _LOGGER.debug(
                    "Device reports %ss remaining, below extrapolated %ss; resetting countdown",
                    remaining_seconds,
                    extrapolated,
                )
                state.countdown_start_time = now
                state.countdown_start_value = remaining_seconds

        seconds = self._extrapolate(now)
        first = not state.warning_triggered
        state.warning_triggered = True
        return CountdownUpdate(
            seconds_remaining=seconds,
            first_warning=first,
            disconnection_at=datetime.fromtimestamp(
                event_timestamp + remaining_seconds, tz=timezone.utc
            ),
        )

    def _extrapolate(self, now: float) -> int:
        start_time = self.state.countdown_start_time
        start_value = self.state.countdown_start_value
        if start_time is None or start_value is None:
            return 0
        # Clock stepping backwards must not extend the countdown
        elapsed = max(0.0, now - start_time)
        return max(0, math.floor(start_value - elapsed))
