"""
Symbol resolution.

Reads instrument names from a text file and resolves each to its contract
definitions by probing security types until the gateway answers.
"""

from ibmux.symbols.collection import Symbols
from ibmux.symbols.loader import SymbolSeed, parse_symbols, read_symbols
from ibmux.symbols.symbol import NEXT_PROBE, PROBE_DEFAULTS, ProbeState, Symbol


__all__ = [
    "Symbols",
    "Symbol",
    "SymbolSeed",
    "ProbeState",
    "PROBE_DEFAULTS",
    "NEXT_PROBE",
    "parse_symbols",
    "read_symbols",
]
