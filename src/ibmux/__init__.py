"""
IBMUX: asynchronous request tracking for the TWS/IB Gateway API.

- One persistent gateway session with per-request reply routing
- A multiplexer that follows correlation IDs across retries
- Contract resolution for symbol lists with security-type probing

Quick Start:
    from ibmux import GatewayConfig, GatewaySession, Symbols

    async with GatewaySession(GatewayConfig(port=4002)) as session:
        symbols = Symbols.from_file(session, "symbols.txt")
        if await symbols.wait(timeout=15):
            for sym in symbols:
                print(sym.name, len(sym.data))
        await symbols.cleanup()
"""

__version__ = "0.1.0"

from ibmux.collection import Items, ItemStartError, Sink, make, wait
from ibmux.gateway import (
    GatewayConfig,
    GatewayError,
    GatewaySession,
    SessionState,
    TransportError,
)
from ibmux.symbols import ProbeState, Symbol, Symbols, SymbolSeed


__all__ = [
    # Gateway
    "GatewayConfig",
    "GatewaySession",
    "SessionState",
    "GatewayError",
    "TransportError",
    # Collection
    "Items",
    "ItemStartError",
    "Sink",
    "make",
    "wait",
    # Symbols
    "Symbols",
    "Symbol",
    "SymbolSeed",
    "ProbeState",
]
