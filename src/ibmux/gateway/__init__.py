"""
Gateway connection layer.

Provides the ib_async-backed session to TWS/IB Gateway, its configuration
and the request/reply messages used by the collection layer.

Usage:
    from ibmux.gateway import GatewayConfig, GatewaySession

    async with GatewaySession(GatewayConfig(port=4002)) as session:
        request_id = session.next_request_id()
        ...
"""

from ibmux.gateway.config import GatewayConfig, GatewayPort
from ibmux.gateway.errors import (
    EncodeError,
    GatewayError,
    HandshakeError,
    ReservedIdError,
    SessionClosedError,
    TransportError,
)
from ibmux.gateway.messages import (
    UNMATCHED_REPLY_ID,
    CancelMarketData,
    ContractData,
    ContractDataEnd,
    CurrentTime,
    ErrorMessage,
    NextValidId,
    Reply,
    Request,
    RequestContractData,
    RequestCurrentTime,
)
from ibmux.gateway.session import GatewaySession, SessionState


__all__ = [
    # Session
    "GatewaySession",
    "SessionState",
    # Config
    "GatewayConfig",
    "GatewayPort",
    # Messages
    "UNMATCHED_REPLY_ID",
    "Request",
    "Reply",
    "CancelMarketData",
    "RequestContractData",
    "RequestCurrentTime",
    "ErrorMessage",
    "NextValidId",
    "ContractData",
    "CurrentTime",
    "ContractDataEnd",
    # Exceptions
    "GatewayError",
    "TransportError",
    "SessionClosedError",
    "HandshakeError",
    "EncodeError",
    "ReservedIdError",
]
