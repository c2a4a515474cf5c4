"""Fixed-interval task scheduler with overlap protection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from .const import COMPONENT_SCHEDULER, MAX_CONSECUTIVE_TASK_ERRORS, MAX_SKIPPED_TICKS
from .diagnostics import LogSink, log_event
from .exceptions import InvalidIntervalError

_LOGGER = logging.getLogger(__name__)


def _interval_seconds(interval: timedelta | float) -> float:
    if isinstance(interval, timedelta):
        seconds = interval.total_seconds()
    else:
        try:
            seconds = float(interval)
        except (TypeError, ValueError) as err:
            raise InvalidIntervalError(f"Invalid interval: {interval!r}") from err
    if seconds <= 0:
        raise InvalidIntervalError(f"Interval must be positive, got {interval!r}")
    return seconds


class TaskScheduler:
    """Run an async task immediately and then every ``interval`` seconds.

    At most one execution is in flight.  The next tick is armed only once the
    current run finishes, measured from completion, so missed ticks are never
    caught up.  A tick that lands on a run still in flight (``request_run`` or
    the watchdog) is skipped rather than queued, and after
    ``max_skipped_ticks`` consecutive skips the scheduler stops itself and
    calls ``on_stuck``.

    ``run_budget`` is the longest a healthy run may take.  When set, a run
    still going after ``run_budget`` seconds gets a tick every interval, so a
    hung task is detected while a slow but bounded one is left alone.
    """

    def __init__(
        self,
        task: Callable[[], Awaitable[Any]],
        interval: timedelta | float,
        *,
        on_completed: Callable[[Any], None] | None = None,
        on_failed: Callable[[BaseException], None] | None = None,
        on_stuck: Callable[[int], None] | None = None,
        name: str = "task",
        max_skipped_ticks: int = MAX_SKIPPED_TICKS,
        max_consecutive_errors: int = MAX_CONSECUTIVE_TASK_ERRORS,
        run_budget: float | None = None,
        log_sink: LogSink | None = None,
    ) -> None:
        self._task_func = task
        self._interval = _interval_seconds(interval)
        self.run_budget = run_budget
        self.on_completed = on_completed
        self.on_failed = on_failed
        self.on_stuck = on_stuck
        self.name = name
        self.max_skipped_ticks = max_skipped_ticks
        self.max_consecutive_errors = max_consecutive_errors
        self.log_sink = log_sink

        self._scheduled = False
        self._timer: asyncio.TimerHandle | None = None
        self._running: asyncio.Task[None] | None = None
        self._running_since = 0.0
        self.skipped_ticks = 0
        self.consecutive_errors = 0
        self.runs = 0

    @property
    def interval(self) -> float:
        """Return the interval in seconds."""
        return self._interval

    @property
    def is_scheduled(self) -> bool:
        """Return whether ticks are being scheduled."""
        return self._scheduled

    @property
    def is_running(self) -> bool:
        """Return whether an execution is currently in flight."""
        return self._running is not None and not self._running.done()

    def start(self) -> None:
        """Run the task now and keep running it every interval."""

        if self._scheduled:
            _LOGGER.warning("Scheduler %s already started", self.name)
            return
        self._scheduled = True
        self.skipped_ticks = 0
        _LOGGER.debug("Scheduler %s started with %.1fs interval", self.name, self._interval)
        self._tick()

    def stop(self) -> None:
        """Stop scheduling; an execution already in flight finishes on its own."""

        if not self._scheduled and self._timer is None:
            return
        self._scheduled = False
        self._cancel_timer()
        _LOGGER.debug("Scheduler %s stopped", self.name)

    def set_interval(self, interval: timedelta | float) -> None:
        """Change the interval, restarting the schedule if it is active."""

        seconds = _interval_seconds(interval)
        was_scheduled = self._scheduled
        if was_scheduled:
            self.stop()
        self._interval = seconds
        if was_scheduled:
            self.start()

    def request_run(self) -> None:
        """Run the task now instead of waiting for the next tick."""

        if not self._scheduled:
            _LOGGER.debug("Scheduler %s not started, ignoring run request", self.name)
            return
        self._cancel_timer()
        self._tick()

    async def async_wait(self, timeout: float | None = None) -> bool:
        """Wait for the execution in flight, if any, to finish.

        Return ``False`` if it is still running after ``timeout`` seconds.
        """

        task = self._running
        if task is None or task.done() or task is asyncio.current_task():
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        return bool(done)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _tick(self) -> None:
        self._timer = None
        if not self._scheduled:
            return
        if self.is_running:
            self.skipped_ticks += 1
            log_event(
                _LOGGER,
                self.log_sink,
                logging.WARNING,
                COMPONENT_SCHEDULER,
                "Skipping %s tick, previous run still in progress (%d/%d)",
                self.name,
                self.skipped_ticks,
                self.max_skipped_ticks,
            )
            if self.skipped_ticks >= self.max_skipped_ticks:
                skipped = self.skipped_ticks
                self.stop()
                log_event(
                    _LOGGER,
                    self.log_sink,
                    logging.ERROR,
                    COMPONENT_SCHEDULER,
                    "Task %s appears stuck after %d skipped ticks, scheduler stopped",
                    self.name,
                    skipped,
                    details={"skipped_ticks": skipped},
                )
                self._notify(self.on_stuck, skipped)
                return
            self._arm_watchdog()
            return
        self._running_since = asyncio.get_running_loop().time()
        self._running = asyncio.get_running_loop().create_task(self._execute())
        self._arm_watchdog()

    async def _execute(self) -> None:
        self.runs += 1
        try:
            result = await self._task_func()
        except asyncio.CancelledError:
            raise
        except Exception as err:
            self.consecutive_errors += 1
            if self.consecutive_errors >= self.max_consecutive_errors:
                log_event(
                    _LOGGER,
                    self.log_sink,
                    logging.ERROR,
                    COMPONENT_SCHEDULER,
                    "Task %s failed %d times in a row: %s",
                    self.name,
                    self.consecutive_errors,
                    err,
                )
                self._notify(self.on_failed, err)
            else:
                _LOGGER.warning("Task %s failed: %s", self.name, err)
        else:
            self.consecutive_errors = 0
            self._notify(self.on_completed, result)
        finally:
            self.skipped_ticks = 0
            if self._scheduled:
                self._arm()

    def _arm(self, delay: float | None = None) -> None:
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().call_later(
            self._interval if delay is None else delay, self._tick
        )

    def _arm_watchdog(self) -> None:
        """Tick again once the run in flight has used up its budget."""

        if self.run_budget is None:
            self._cancel_timer()
            return
        overdue_at = self._running_since + self.run_budget
        self._arm(max(self._interval, overdue_at - asyncio.get_running_loop().time()))

    def _notify(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            _LOGGER.exception("Scheduler %s callback %s failed", self.name, callback)
