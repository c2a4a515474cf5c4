"""Tests for diagnostics counters and structured event logging."""

import logging
from unittest.mock import MagicMock

from sinapsi_alfa_modbus.diagnostics import Diagnostics, log_event


def test_record_success_updates_average_and_resets_failures():
    diag = Diagnostics(consecutive_failures=4)

    diag.record_success(5, 1.0)
    diag.record_success(3, 3.0)

    assert diag.cycles_succeeded == 2  # nosec B101
    assert diag.consecutive_failures == 0  # nosec B101
    assert diag.registers_read == 8  # nosec B101
    assert diag.average_cycle_time == 2.0  # nosec B101
    assert diag.last_success is not None  # nosec B101


def test_record_failure_counts_consecutive():
    diag = Diagnostics()
    diag.record_failure("not connected")
    diag.record_failure("not connected")

    assert diag.cycles_failed == 2  # nosec B101
    assert diag.consecutive_failures == 2  # nosec B101
    assert diag.last_error == "not connected"  # nosec B101


def test_snapshot_is_a_copy_with_iso_dates():
    diag = Diagnostics()
    diag.record_success(1, 0.1)
    diag.record_failure("boom")

    snapshot = diag.snapshot()
    snapshot["cycles_failed"] = 99

    assert diag.cycles_failed == 1  # nosec B101
    assert isinstance(snapshot["last_success"], str)  # nosec B101
    assert snapshot["success_rate"] == 50  # nosec B101


def test_log_event_mirrors_to_sink_with_component(caplog):
    logger = logging.getLogger("tests.diagnostics")
    sink = MagicMock(spec=logging.Logger)

    with caplog.at_level(logging.INFO, logger="tests.diagnostics"):
        log_event(
            logger, sink, logging.INFO, "MODBUS", "Connected to %s", "meter", details={"a": 1}
        )

    assert "Connected to meter" in caplog.text  # nosec B101
    sink.log.assert_called_once_with(
        logging.INFO,
        "Connected to %s",
        "meter",
        extra={"component": "MODBUS", "details": {"a": 1}},
    )


def test_log_event_without_sink(caplog):
    logger = logging.getLogger("tests.diagnostics")
    with caplog.at_level(logging.WARNING, logger="tests.diagnostics"):
        log_event(logger, None, logging.WARNING, "READ", "Register %s failed", "x")
    assert "Register x failed" in caplog.text  # nosec B101
