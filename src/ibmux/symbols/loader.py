"""
Symbol list reader.

One record per line: ``name[,sec_type[,exchange[,currency]]]``. Lines
starting with ``#`` and blank lines are skipped, whitespace around lines and
fields is trimmed and missing fields default to the empty string.

Example file:
    # name, security type, exchange, currency
    AAPL
    SPX,IND,CBOE,USD
    ES,FUT,GLOBEX
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path


MAX_FIELDS = 4


@dataclass(frozen=True, slots=True)
class SymbolSeed:
    """One parsed symbol record."""

    name: str
    sec_type: str = ""
    exchange: str = ""
    currency: str = ""


def parse_symbols(lines: Iterable[str]) -> list[SymbolSeed]:
    """
    Parse symbol records.

    Raises:
        ValueError: If a line has more than four fields or an empty name
    """
    seeds = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        fields = [field.strip() for field in line.split(",")]
        if len(fields) > MAX_FIELDS:
            raise ValueError(
                f"line {lineno}: expected at most {MAX_FIELDS} fields, got {len(fields)}"
            )
        if not fields[0]:
            raise ValueError(f"line {lineno}: missing symbol name")

        seeds.append(SymbolSeed(*fields))
    return seeds


def read_symbols(path: str | Path) -> list[SymbolSeed]:
    """Read and parse a UTF-8 symbol file."""
    with Path(path).open(encoding="utf-8") as f:
        return parse_symbols(f)
