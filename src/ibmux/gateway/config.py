"""
Gateway session configuration.

Handles TWS/IB Gateway connection settings and the handful of knobs the
session layers on top of ib_async (server version floor, first request ID,
delivery warnings).
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass
from enum import Enum


class GatewayPort(int, Enum):
    """Standard gateway API ports."""

    TWS_LIVE = 7496
    TWS_PAPER = 7497
    GATEWAY_LIVE = 4001
    GATEWAY_PAPER = 4002


@dataclass
class GatewayConfig:
    """
    Gateway session configuration.

    Attributes:
        host: TWS/IB Gateway host (default: localhost)
        port: API port - determines paper vs live and TWS vs Gateway
        client_id: Client ID (0 allocates one from a process-wide sequence)
        timeout: Connect and handshake timeout in seconds
        min_server_version: Oldest negotiated server version the session accepts
        first_request_id: First correlation ID minted by the session
        delivery_warn_after: Seconds to wait on a slow subscriber before warning
        dump_conversation: Log every request and reply at DEBUG level

    Example:
        # IB Gateway on the default live port
        config = GatewayConfig()

        # Paper TWS on another machine
        config = GatewayConfig.tws_paper(host="10.0.0.5", client_id=7)
    """

    host: str = "127.0.0.1"
    port: int = GatewayPort.GATEWAY_LIVE
    client_id: int = 0
    timeout: float = 10.0
    min_server_version: int = 157
    first_request_id: int = 100
    delivery_warn_after: float = 5.0
    dump_conversation: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_ports = {p.value for p in GatewayPort}
        if self.port not in valid_ports:
            warnings.warn(
                f"Non-standard port {self.port}. "
                f"Standard ports: {', '.join(f'{p.name}={p.value}' for p in GatewayPort)}",
                UserWarning,
                stacklevel=2,
            )

        if self.client_id < 0:
            raise ValueError("client_id must be >= 0")
        if self.client_id > 999:
            raise ValueError("client_id must be <= 999")

        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.delivery_warn_after <= 0:
            raise ValueError("delivery_warn_after must be positive")
        if self.min_server_version < 1:
            raise ValueError("min_server_version must be >= 1")

    @property
    def address(self) -> str:
        """host:port string for log messages."""
        return f"{self.host}:{self.port}"

    @property
    def is_paper(self) -> bool:
        """Check if configured for a paper trading port."""
        return self.port in (GatewayPort.TWS_PAPER, GatewayPort.GATEWAY_PAPER)

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """
        Create config from environment variables.

        Environment Variables:
            IBMUX_HOST: Gateway host (default: 127.0.0.1)
            IBMUX_PORT: API port (default: 4001)
            IBMUX_CLIENT_ID: Client ID (default: 0, auto-allocated)
            IBMUX_TIMEOUT: Connect timeout in seconds (default: 10)
            IBMUX_DUMP: Set to "true" to log every request and reply

        Returns:
            GatewayConfig instance
        """
        return cls(
            host=os.environ.get("IBMUX_HOST", "127.0.0.1"),
            port=int(os.environ.get("IBMUX_PORT", str(int(GatewayPort.GATEWAY_LIVE)))),
            client_id=int(os.environ.get("IBMUX_CLIENT_ID", "0")),
            timeout=float(os.environ.get("IBMUX_TIMEOUT", "10")),
            dump_conversation=os.environ.get("IBMUX_DUMP", "").lower() == "true",
        )

    @classmethod
    def tws_paper(cls, **kwargs) -> GatewayConfig:
        """Create TWS paper trading config."""
        return cls(port=GatewayPort.TWS_PAPER, **kwargs)

    @classmethod
    def tws_live(cls, **kwargs) -> GatewayConfig:
        """Create TWS live trading config."""
        return cls(port=GatewayPort.TWS_LIVE, **kwargs)

    @classmethod
    def gateway_paper(cls, **kwargs) -> GatewayConfig:
        """Create IB Gateway paper config (for servers)."""
        return cls(port=GatewayPort.GATEWAY_PAPER, **kwargs)

    @classmethod
    def gateway_live(cls, **kwargs) -> GatewayConfig:
        """Create IB Gateway live config (for servers)."""
        return cls(port=GatewayPort.GATEWAY_LIVE, **kwargs)
