"""
Gateway request and reply messages.

Uses msgspec.Struct like the rest of the data structures:
- frozen=True: replies are shared between the reader and subscribers
- gc=False: replies are short-lived and never form cycles

Requests are translated into ib_async client calls by the session; replies
are built from ib_async wrapper callbacks (see ibmux.gateway.wrapper).
"""

from __future__ import annotations

import msgspec


# Correlation ID reported by replies that are not tied to a request.
# Never minted by a session.
UNMATCHED_REPLY_ID = -(2**63)


class Request(msgspec.Struct, frozen=True, gc=False):
    """Base class for messages sent to the gateway."""


class Reply(msgspec.Struct, frozen=True, gc=False):
    """Base class for messages received from the gateway."""

    @property
    def id(self) -> int:
        """Correlation ID of the request this reply answers."""
        return UNMATCHED_REPLY_ID


# =============================================================================
# Requests
# =============================================================================


class CancelMarketData(Request, frozen=True, gc=False):
    """Cancel a market data subscription."""

    id: int = 0


class RequestContractData(Request, frozen=True, gc=False):
    """
    Ask for the contract definitions matching a partial description.

    The gateway answers with zero or more ContractData replies followed by
    ContractDataEnd, or with an ErrorMessage if nothing matches.
    """

    id: int = 0
    contract_id: int = 0
    symbol: str = ""
    security_type: str = ""
    expiry: str = ""
    strike: float = 0.0
    right: str = ""
    multiplier: str = ""
    exchange: str = ""
    currency: str = ""
    local_symbol: str = ""
    include_expired: bool = False


class RequestCurrentTime(Request, frozen=True, gc=False):
    """Ask for the gateway clock; answered by an unmatched CurrentTime."""


# =============================================================================
# Replies
# =============================================================================


class ErrorMessage(Reply, frozen=True, gc=False):
    """Error or notice; ``request_id`` is -1 for connection-level notices."""

    request_id: int = -1
    error_code: int = 0
    message: str = ""

    @property
    def id(self) -> int:
        return self.request_id


class NextValidId(Reply, frozen=True, gc=False):
    """Next order ID the gateway will accept."""

    order_id: int = 0


class ContractData(Reply, frozen=True, gc=False):
    """One contract definition answering a RequestContractData."""

    request_id: int = 0
    symbol: str = ""
    security_type: str = ""
    expiry: str = ""
    strike: float = 0.0
    right: str = ""
    exchange: str = ""
    currency: str = ""
    local_symbol: str = ""
    market_name: str = ""
    trading_class: str = ""
    contract_id: int = 0
    min_tick: float = 0.0
    multiplier: str = ""
    order_types: str = ""
    valid_exchanges: str = ""
    price_magnifier: int = 0
    under_contract_id: int = 0
    long_name: str = ""
    primary_exchange: str = ""
    contract_month: str = ""
    industry: str = ""
    category: str = ""
    subcategory: str = ""
    timezone_id: str = ""
    trading_hours: str = ""
    liquid_hours: str = ""

    @property
    def id(self) -> int:
        return self.request_id


class CurrentTime(Reply, frozen=True, gc=False):
    """Gateway clock in epoch seconds."""

    time: int = 0


class ContractDataEnd(Reply, frozen=True, gc=False):
    """All ContractData replies for a request have been sent."""

    request_id: int = 0

    @property
    def id(self) -> int:
        return self.request_id
