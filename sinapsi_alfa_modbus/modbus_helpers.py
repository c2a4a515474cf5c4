"""Call pymodbus client methods across the 3.x keyword renames."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .modbus_decoder import _build_request_frame, _mask_frame

_LOGGER = logging.getLogger(__name__)

# Names pymodbus has used for the unit id keyword, newest first
_UNIT_KWARGS = ("device_id", "slave", "unit")

_CallPlan = tuple[tuple[str, ...], str]

# Keyed on the underlying function so bound methods of every client share an entry
_PLANS: dict[Any, _CallPlan] = {}


def _call_plan(func: Callable[..., Awaitable[Any]]) -> _CallPlan:
    """Return the keyword-only parameter names of ``func`` and its unit keyword."""

    key = getattr(func, "__func__", func)
    plan = _PLANS.get(key)
    if plan is not None:
        return plan

    params = inspect.signature(func).parameters
    keyword_only = tuple(
        name for name, param in params.items() if param.kind is inspect.Parameter.KEYWORD_ONLY
    )
    unit = next(
        (
            name
            for name in _UNIT_KWARGS
            if name in params and params[name].kind is not inspect.Parameter.POSITIONAL_ONLY
        ),
        "",
    )
    plan = (keyword_only, unit)
    try:
        _PLANS[key] = plan
    except TypeError:
        pass
    return plan


async def _call_modbus(
    func: Callable[..., Awaitable[Any]],
    slave_id: int,
    address: int,
    count: int = 1,
    **kwargs: Any,
) -> Any:
    """Await ``func(address, count=...)`` with ``slave_id`` under the right keyword.

    pymodbus 3.x made ``count`` keyword-only and renamed the unit keyword
    from ``unit`` to ``slave`` to ``device_id``; the callable's signature is
    inspected once to decide how to pass both.
    """

    keyword_only, unit = _call_plan(func)
    kwargs.setdefault("count", count)
    args: tuple[Any, ...] = (address,)
    if "count" not in keyword_only:
        args = (address, kwargs.pop("count"))
    if unit:
        kwargs[unit] = slave_id

    func_name = getattr(func, "__name__", repr(func))
    if _LOGGER.isEnabledFor(logging.DEBUG):
        frame = b""
        if func_name == "read_holding_registers":
            frame = _build_request_frame(slave_id, address, count)
        if frame:
            _LOGGER.debug("Modbus request: %s", _mask_frame(frame))
        else:
            _LOGGER.debug("Calling %s(%s, count=%s) on unit %s", func_name, address, count, slave_id)

    try:
        return await func(*args, **kwargs)
    except Exception:
        _LOGGER.debug("Call to %s at %s failed", func_name, address)
        raise
