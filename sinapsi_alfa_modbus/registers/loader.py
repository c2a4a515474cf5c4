"""Loader for the bundled Alfa register map.

The JSON file ``alfa_registers.json`` lists every register the poller reads,
in the order they are read.  Entries are validated once through
:mod:`.schema` and turned into immutable :class:`RegisterDescriptor`
instances; the parsed bundle is cached for the lifetime of the process.
"""

from __future__ import annotations

import importlib.resources as resources
import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import pydantic

from ..exceptions import RegisterDecodeError, RegisterTableError
from .schema import WORD_COUNTS, RegisterList, WordType

_LOGGER = logging.getLogger(__name__)

# Path to the bundled register definition file.  Tests pass their own paths to
# ``load_registers`` instead of patching this constant.
_REGISTERS_PATH = Path(str(resources.files(__package__).joinpath("alfa_registers.json")))


def get_registers_path() -> Path:
    """Return resolved path to the bundled register definitions JSON file."""
    return _REGISTERS_PATH.resolve()


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


def decode_words(words: Sequence[int], word_type: WordType) -> int:
    """Decode register ``words`` into a plain integer.

    ``uint32`` values are big-endian with the high word first; ``uint16``
    values pass the single word through. No scaling is applied.
    """

    expected = WORD_COUNTS[word_type]
    if len(words) < expected:
        raise RegisterDecodeError(
            f"{word_type.value} needs {expected} word(s), got {len(words)}"
        )
    values = [int(w) for w in words[:expected]]
    if any(not 0 <= w <= 0xFFFF for w in values):
        raise RegisterDecodeError(f"register words out of range: {values}")

    if word_type is WordType.UINT32:
        return (values[0] << 16) | values[1]
    return values[0]


@dataclass(frozen=True, slots=True)
class RegisterDescriptor:
    """Definition of a single holding register (or register pair)."""

    id: str
    addressable: bool
    display_name: str
    start_address: int
    word_count: int
    word_type: WordType
    unit: str = ""
    export_energy: bool = False

    def decode(self, words: Sequence[int]) -> int:
        """Decode ``words`` returned for this register."""
        return decode_words(words, self.word_type)


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


def parse_registers(items: Iterable[dict[str, Any]]) -> tuple[RegisterDescriptor, ...]:
    """Validate raw register entries and return descriptors in declared order."""

    try:
        parsed = RegisterList.model_validate(list(items)).root
    except pydantic.ValidationError as err:
        raise RegisterTableError(f"Invalid register table: {err}") from err

    return tuple(
        RegisterDescriptor(
            id=reg.id,
            addressable=reg.addressable,
            display_name=reg.display_name,
            start_address=reg.start_address,
            word_count=reg.word_count,
            word_type=reg.word_type,
            unit=reg.unit,
            export_energy=reg.export_energy,
        )
        for reg in parsed
    )


@lru_cache(maxsize=4)
def load_registers(path: Path | None = None) -> tuple[RegisterDescriptor, ...]:
    """Load and cache register descriptors from ``path`` or the bundled file."""

    path = path or get_registers_path()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as err:
        raise RegisterTableError(f"Register definition file missing: {path}") from err
    except (OSError, json.JSONDecodeError) as err:
        raise RegisterTableError(f"Failed to read register definitions from {path}") from err

    items = raw.get("registers", raw) if isinstance(raw, dict) else raw
    registers = parse_registers(items)
    _LOGGER.debug("Loaded %d register definitions from %s", len(registers), path)
    return registers


def get_all_registers() -> tuple[RegisterDescriptor, ...]:
    """Return every bundled register descriptor."""
    return load_registers()


def get_register_table(include_export_energy: bool = False) -> tuple[RegisterDescriptor, ...]:
    """Return the registers to poll, dropping export energy unless enabled."""

    return tuple(
        reg
        for reg in get_all_registers()
        if include_export_energy or not reg.export_energy
    )


def get_register_definition(register_id: str) -> RegisterDescriptor:
    """Return the bundled descriptor with ``register_id``."""

    for reg in get_all_registers():
        if reg.id == register_id:
            return reg
    raise KeyError(register_id)
