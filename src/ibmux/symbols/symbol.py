"""
Symbol: a contract lookup that probes security types until one resolves.

The gateway only returns a contract definition when the request names the
right security type and exchange. A Symbol whose caller left those blank
tries, in order:

    REQUEST_STOCK   ("STK", "SMART")
    REQUEST_INDEX   ("IND", "")
    REQUEST_FUTURE  ("FUT", "")

Each probe is a new request with a new correlation ID. An ErrorMessage moves
to the next probe; ContractDataEnd completes the symbol. After the last
probe fails the symbol is EXHAUSTED and never completes.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from ibmux.gateway.errors import GatewayError
from ibmux.gateway.messages import (
    CancelMarketData,
    ContractData,
    ContractDataEnd,
    ErrorMessage,
    RequestContractData,
)


if TYPE_CHECKING:
    from ibmux.gateway.messages import Reply
    from ibmux.gateway.session import GatewaySession
    from ibmux.symbols.loader import SymbolSeed


logger = logging.getLogger(__name__)


class ProbeState(str, Enum):
    """Probe automaton states."""

    REQUEST_STOCK = "request_stock"
    REQUEST_INDEX = "request_index"
    REQUEST_FUTURE = "request_future"
    DONE = "done"
    EXHAUSTED = "exhausted"


# (security type, exchange) used when the caller leaves them blank
PROBE_DEFAULTS: dict[ProbeState, tuple[str, str]] = {
    ProbeState.REQUEST_STOCK: ("STK", "SMART"),
    ProbeState.REQUEST_INDEX: ("IND", ""),
    ProbeState.REQUEST_FUTURE: ("FUT", ""),
}

NEXT_PROBE: dict[ProbeState, ProbeState] = {
    ProbeState.REQUEST_STOCK: ProbeState.REQUEST_INDEX,
    ProbeState.REQUEST_INDEX: ProbeState.REQUEST_FUTURE,
    ProbeState.REQUEST_FUTURE: ProbeState.EXHAUSTED,
}


class Symbol:
    """
    Contract description for one instrument name.

    Attributes:
        name: Instrument symbol, also the unique key
        sec_type: Security type; blank means probe the defaults
        exchange: Exchange; blank means use the probe default
        currency: Currency passed through to every probe
        data: ContractData replies received, in arrival order
        state: Current probe state
        valid: True once the gateway ended a non-empty answer
    """

    def __init__(
        self,
        name: str,
        sec_type: str = "",
        exchange: str = "",
        currency: str = "",
    ) -> None:
        self.name = name
        self.sec_type = sec_type
        self.exchange = exchange
        self.currency = currency
        self.data: list[ContractData] = []
        self.state = ProbeState.REQUEST_STOCK
        self.valid = False
        self._id = 0
        self._sent = False
        self._session: GatewaySession | None = None

    @classmethod
    def from_seed(cls, seed: SymbolSeed) -> Symbol:
        """Build a symbol from a loader record."""
        return cls(seed.name, seed.sec_type, seed.exchange, seed.currency)

    def __repr__(self) -> str:
        return (
            f"Symbol(name={self.name!r}, sec_type={self.sec_type!r}, "
            f"exchange={self.exchange!r}, state={self.state.value}, "
            f"contracts={len(self.data)})"
        )

    # -------------------------------------------------------------------------
    # Sink protocol
    # -------------------------------------------------------------------------

    @property
    def id(self) -> int:
        """Correlation ID of the outstanding probe."""
        return self._id

    def unique(self) -> str:
        return self.name

    async def start(self, session: GatewaySession) -> int:
        """Send the first probe and return its correlation ID."""
        self._session = session
        await self._request(ProbeState.REQUEST_STOCK)
        return self._id

    async def stop(self) -> None:
        """Cancel the outstanding request."""
        if self._session is None or not self._sent:
            return
        await self._session.send(CancelMarketData(id=self._id))

    async def update(self, reply: Reply) -> tuple[int, bool]:
        """Consume one reply; see the module docstring for the transitions."""
        if isinstance(reply, ContractData):
            self.data.append(reply)
        elif isinstance(reply, ContractDataEnd):
            self.state = ProbeState.DONE
            self.valid = bool(self.data)
            return self._id, True
        elif isinstance(reply, ErrorMessage):
            await self._advance(reply)

        return self._id, False

    # -------------------------------------------------------------------------
    # Probe automaton
    # -------------------------------------------------------------------------

    @property
    def is_probing(self) -> bool:
        """Whether a probe is outstanding."""
        return self.state in PROBE_DEFAULTS

    async def _advance(self, error: ErrorMessage) -> None:
        if not self.is_probing:
            return

        next_state = NEXT_PROBE[self.state]
        if next_state is ProbeState.EXHAUSTED:
            self.state = next_state
            logger.warning(
                "No contract found for %s (last error [%d]: %s)",
                self.name,
                error.error_code,
                error.message,
            )
            return

        logger.debug(
            "%s: probe failed [%d], trying %s", self.name, error.error_code, next_state.value
        )
        await self._request(next_state)

    async def _request(self, state: ProbeState) -> None:
        """Send the probe for ``state``; the ID and state change only once it is sent."""
        if self._session is None:
            raise GatewayError(f"symbol {self.name} not started")
        sec_type, exchange = PROBE_DEFAULTS[state]
        request_id = self._session.next_request_id()
        await self._session.send(
            RequestContractData(
                id=request_id,
                symbol=self.name,
                security_type=self.sec_type or sec_type,
                exchange=self.exchange or exchange,
                currency=self.currency,
            )
        )
        self._id = request_id
        self._sent = True
        self.state = state
