"""
Symbols: resolve a list of instrument names to contract definitions.

Usage:
    async with GatewaySession(config) as session:
        symbols = Symbols.from_file(session, "symbols.txt")
        if await symbols.wait(timeout=15):
            for sym in symbols.symbols():
                print(sym.name, len(sym.data))
        await symbols.cleanup()
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING, cast

from ibmux.collection import items as collection
from ibmux.symbols.loader import SymbolSeed, read_symbols
from ibmux.symbols.symbol import Symbol


if TYPE_CHECKING:
    from ibmux.gateway.session import GatewaySession


class Symbols:
    """Collection of Symbol items tracked by one multiplexer."""

    def __init__(self, session: GatewaySession, seeds: Iterable[SymbolSeed] = ()) -> None:
        self._session = session
        self._items = collection.make(session)
        for seed in seeds:
            self._items.add(Symbol.from_seed(seed))

    @classmethod
    def from_file(cls, session: GatewaySession, path: str | Path) -> Symbols:
        """Load seeds from a symbol file."""
        return cls(session, read_symbols(path))

    @classmethod
    def from_seeds(cls, session: GatewaySession, seeds: Iterable[SymbolSeed]) -> Symbols:
        return cls(session, seeds)

    def add(self, symbol: Symbol) -> None:
        self._items.add(symbol)

    def symbols(self) -> list[Symbol]:
        """Symbols in file order."""
        return [cast(Symbol, item) for item in self._items.items()]

    def lookup(self, name: str) -> Symbol | None:
        return cast("Symbol | None", self._items.lookup(name))

    def notify(self, channel: asyncio.Queue[bool]) -> None:
        self._items.notify(channel)

    async def start_update(self) -> None:
        await self._items.start_update()

    async def wait(self, timeout: float = 15.0) -> bool:
        """Start every symbol and wait until all have resolved."""
        return await collection.wait(self._items, timeout=timeout)

    async def cleanup(self) -> None:
        await self._items.cleanup()

    @property
    def items(self) -> collection.Items:
        """Underlying multiplexer."""
        return self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self.symbols())
