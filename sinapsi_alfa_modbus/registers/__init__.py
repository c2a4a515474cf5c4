"""Register definitions for the Alfa energy meter."""

from .loader import (
    RegisterDescriptor,
    decode_words,
    get_all_registers,
    get_register_definition,
    get_register_table,
    load_registers,
    parse_registers,
)
from .schema import RegisterDefinition, RegisterList, WordType

__all__ = [
    "RegisterDefinition",
    "RegisterDescriptor",
    "RegisterList",
    "WordType",
    "decode_words",
    "get_all_registers",
    "get_register_definition",
    "get_register_table",
    "load_registers",
    "parse_registers",
]
