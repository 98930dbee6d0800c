"""
Gateway exceptions.

Every error raised by the session derives from GatewayError so callers can
catch the whole family at once.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base exception for gateway errors."""


class TransportError(GatewayError):
    """Socket I/O failed while talking to the gateway."""


class SessionClosedError(TransportError):
    """The session has already terminated and cannot send."""


class HandshakeError(GatewayError):
    """The gateway negotiated a server version the session cannot use."""


class EncodeError(GatewayError):
    """A request cannot be translated into a client call."""


class ReservedIdError(GatewayError):
    """A request carries the reserved unmatched-reply ID."""
