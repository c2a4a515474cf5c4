"""Pydantic models describing register definitions.

This module validates the raw JSON register map bundled with the package.
Every entry is checked once when the map is loaded so the read path never has
to re-validate a descriptor.

Key rules implemented:

* ``address``, ``count``, ``name`` and ``capability`` are accepted as aliases
  for ``start_address``, ``word_count``, ``display_name`` and ``addressable``.
* ``type`` accepts ``uint16``/``u16`` and ``uint32``/``u32`` and is normalised
  to :class:`WordType`.
* ``word_count`` defaults from the word type and must match it (``1`` for
  ``uint16``, ``2`` for ``uint32``).
* Register ids are unique across the list.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import pydantic
from pydantic import ConfigDict, Field, field_validator, model_validator


class WordType(str, Enum):
    """Supported register word types."""

    UINT16 = "uint16"
    UINT32 = "uint32"


# Expected register counts for each word type
WORD_COUNTS: dict[WordType, int] = {
    WordType.UINT16: 1,
    WordType.UINT32: 2,
}

_TYPE_ALIASES: dict[str, str] = {
    "u16": "uint16",
    "uint16": "uint16",
    "u32": "uint32",
    "uint32": "uint32",
}

_FIELD_ALIASES: dict[str, str] = {
    "address": "start_address",
    "count": "word_count",
    "name": "display_name",
    "capability": "addressable",
    "type": "word_type",
}


def _normalise_word_type(value: Any) -> Any:
    """Return the canonical word type string for ``value``."""

    if isinstance(value, WordType):
        return value
    if isinstance(value, str):
        key = value.strip().lower()
        if key not in _TYPE_ALIASES:
            raise ValueError(f"unsupported word type: {value}")
        return _TYPE_ALIASES[key]
    raise ValueError(f"unsupported word type: {value!r}")


class RegisterDefinition(pydantic.BaseModel):
    """Schema describing a raw register definition from JSON."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)
    addressable: bool = False
    display_name: str = Field(min_length=1)
    start_address: int = Field(ge=0, le=0xFFFF)
    word_count: int
    word_type: WordType
    unit: str = ""
    export_energy: bool = False

    # ------------------------------------------------------------------
    # Normalisation helpers
    # ------------------------------------------------------------------

    @model_validator(mode="before")
    @classmethod
    def _normalise_fields(cls, data: Any) -> Any:
        """Normalise raw input from JSON."""

        if not isinstance(data, dict):
            return data
        data = dict(data)

        for alias, field in _FIELD_ALIASES.items():
            if alias in data:
                if field in data:
                    raise ValueError(f"both {alias!r} and {field!r} given")
                data[field] = data.pop(alias)

        if "word_type" in data:
            data["word_type"] = _normalise_word_type(data["word_type"])
            data.setdefault("word_count", WORD_COUNTS[WordType(data["word_type"])])

        if isinstance(data.get("start_address"), str):
            data["start_address"] = int(data["start_address"], 0)

        if data.get("unit") is None:
            data["unit"] = ""

        return data

    @field_validator("word_count")
    @classmethod
    def _check_word_count(cls, v: int) -> int:
        if v not in {1, 2}:
            raise ValueError("word_count must be 1 or 2")
        return v

    @model_validator(mode="after")
    def _check_consistency(self) -> "RegisterDefinition":
        expected = WORD_COUNTS[self.word_type]
        if self.word_count != expected:
            raise ValueError(
                f"word_count {self.word_count} does not match {self.word_type.value}"
            )
        if self.start_address + self.word_count - 1 > 0xFFFF:
            raise ValueError("register range exceeds the 16-bit address space")
        return self


class RegisterList(pydantic.RootModel[list[RegisterDefinition]]):
    """Container model to validate a list of registers."""

    root: list[RegisterDefinition]

    @model_validator(mode="after")
    def unique(self) -> "RegisterList":
        seen: set[str] = set()
        for reg in self.root:
            if reg.id in seen:
                raise ValueError(f"duplicate register id: {reg.id}")
            seen.add(reg.id)
        return self
