"""
Pytest configuration and shared fixtures for IBMUX tests.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import struct
import warnings
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import pytest

from ibmux.gateway.config import GatewayConfig
from ibmux.gateway.errors import TransportError
from ibmux.gateway.messages import (
    CancelMarketData,
    ContractDataEnd,
    CurrentTime,
    ErrorMessage,
    NextValidId,
    Reply,
    Request,
    RequestContractData,
    RequestCurrentTime,
)


# =============================================================================
# In-memory session
# =============================================================================


class FakeSession:
    """
    Records sends and subscriptions; tests push replies with ``deliver``.

    Mirrors the routing contract of GatewaySession without a socket.
    """

    def __init__(self, first_id: int = 10) -> None:
        self._ids = itertools.count(first_id)
        self.sent: list[Request] = []
        self.subscriptions: dict[int, asyncio.Queue[Reply]] = {}
        self.fail_sends_after: int | None = None

    def next_request_id(self) -> int:
        return next(self._ids)

    async def send(self, request: Request) -> None:
        if self.fail_sends_after is not None and len(self.sent) >= self.fail_sends_after:
            raise TransportError("connection reset by peer")
        self.sent.append(request)

    def subscribe(self, queue: asyncio.Queue[Reply], request_id: int) -> None:
        self.subscriptions[request_id] = queue

    def unsubscribe(self, request_id: int, queue: asyncio.Queue[Reply] | None = None) -> None:
        self.subscriptions.pop(request_id, None)

    async def deliver(self, reply: Reply) -> bool:
        """Route ``reply`` like the session; False if nobody is subscribed."""
        queue = self.subscriptions.get(reply.id)
        if queue is None:
            return False
        await queue.put(reply)
        return True


async def settle(delay: float = 0.02) -> None:
    """Give dispatch tasks time to drain their queues."""
    await asyncio.sleep(delay)


# =============================================================================
# In-process gateway
# =============================================================================


Responder = Callable[[Request], Iterable[Reply]]

# Server version offered when the client's range allows it
NEGOTIATED_VERSION = 176

GATEWAY_CLOCK = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


def frame(fields: Iterable[Any]) -> bytes:
    """Length-prefixed run of NUL-terminated fields, as TWS sends them."""
    payload = b"".join(str(field).encode() + b"\0" for field in fields)
    return struct.pack(">I", len(payload)) + payload


async def read_payload(reader: asyncio.StreamReader) -> bytes:
    (size,) = struct.unpack(">I", await reader.readexactly(4))
    return await reader.readexactly(size)


async def read_fields(reader: asyncio.StreamReader) -> list[str]:
    return (await read_payload(reader)).decode().split("\0")[:-1]


def parse_request(fields: list[str]) -> Request | None:
    """Decode the client messages the session sends; None for anything else."""
    code = fields[0]
    if code == "9":
        # code, version, reqId, then the contract: conId, symbol, secType,
        # expiry, strike, right, multiplier, exchange, primaryExchange,
        # currency, localSymbol, tradingClass, includeExpired, ...
        return RequestContractData(
            id=int(fields[2]),
            contract_id=int(fields[3] or 0),
            symbol=fields[4],
            security_type=fields[5],
            expiry=fields[6],
            strike=float(fields[7] or 0),
            right=fields[8],
            multiplier=fields[9],
            exchange=fields[10],
            currency=fields[12],
            local_symbol=fields[13],
        )
    if code == "2":
        return CancelMarketData(id=int(fields[2]))
    if code == "49":
        return RequestCurrentTime()
    return None


def encode_reply(reply: Reply) -> bytes:
    """Encode the replies the gateway simulator can send."""
    if isinstance(reply, ContractDataEnd):
        return frame([52, 1, reply.request_id])
    if isinstance(reply, ErrorMessage):
        return frame([4, 2, reply.request_id, reply.error_code, reply.message, ""])
    if isinstance(reply, CurrentTime):
        return frame([49, 1, reply.time])
    if isinstance(reply, NextValidId):
        return frame([9, 1, reply.order_id])
    raise TypeError(f"cannot encode {type(reply).__name__}")


class FakeGateway:
    """
    Gateway simulator on a loopback port.

    Speaks the server side of the TWS API handshake that ib_async's client
    performs (version negotiation, startApi, nextValidId, managedAccounts),
    answers RequestCurrentTime itself, records every decoded request and
    answers with whatever ``responder`` returns for it.

    Usage:
        async with FakeGateway(responder) as gw:
            session = await GatewaySession.connect(gw.config())
    """

    def __init__(
        self,
        responder: Responder | None = None,
        server_version: int | None = None,
        answer_time: bool = True,
    ) -> None:
        self.responder = responder
        self.server_version = server_version
        self.answer_time = answer_time
        self.requests: asyncio.Queue[Request] = asyncio.Queue()
        self.hello = ""
        self.client_id = 0
        self.connected = asyncio.Event()
        self.port = 0
        self._server: asyncio.Server | None = None
        self._writers: list[asyncio.StreamWriter] = []

    def config(self, **kwargs) -> GatewayConfig:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            kwargs.setdefault("timeout", 2.0)
            return GatewayConfig(port=self.port, **kwargs)

    async def __aenter__(self) -> FakeGateway:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *args: object) -> None:
        for writer in self._writers:
            writer.close()
        assert self._server is not None
        self._server.close()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._server.wait_closed(), timeout=1.0)

    def _negotiate(self) -> int:
        low, high = (int(v) for v in self.hello.split()[0].lstrip("v").split(".."))
        if self.server_version is not None:
            return self.server_version
        return max(low, min(NEGOTIATED_VERSION, high))

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.append(writer)
        try:
            if await reader.readexactly(4) != b"API\0":
                return
            self.hello = (await read_payload(reader)).decode()
            writer.write(frame([self._negotiate(), "20261018 09:30:00 UTC"]))
            await writer.drain()

            start_api = await read_fields(reader)
            self.client_id = int(start_api[2])
            writer.write(frame([9, 1, 1]))
            writer.write(frame([15, 1, "DU123456"]))
            await writer.drain()
            self.connected.set()

            while True:
                request = parse_request(await read_fields(reader))
                if request is None:
                    continue
                await self.requests.put(request)
                for reply in self._answer(request):
                    writer.write(encode_reply(reply))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    def _answer(self, request: Request) -> Iterable[Reply]:
        if isinstance(request, RequestCurrentTime):
            if self.answer_time:
                yield CurrentTime(time=int(GATEWAY_CLOCK.timestamp()))
            return
        if self.responder is not None:
            yield from self.responder(request)

    async def next_request(self, timeout: float = 1.0) -> Request:
        """Next recorded request other than the session's clock query."""
        while True:
            request = await asyncio.wait_for(self.requests.get(), timeout)
            if not isinstance(request, RequestCurrentTime):
                return request

    async def push(self, reply: Reply) -> None:
        """Send an unsolicited reply to every connected client."""
        await self.push_fields(encode_reply(reply))

    async def push_fields(self, data: bytes | Iterable[Any]) -> None:
        """Send a raw message (framed bytes or a field list)."""
        await self.connected.wait()
        payload = data if isinstance(data, bytes) else frame(data)
        for writer in self._writers:
            writer.write(payload)
            await writer.drain()

    async def disconnect(self) -> None:
        """Drop every client connection."""
        for writer in self._writers:
            writer.close()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def session() -> FakeSession:
    """In-memory session minting IDs from 10."""
    return FakeSession(first_id=10)


@pytest.fixture
def fake_gateway() -> type[FakeGateway]:
    """Gateway simulator class; use as an async context manager."""
    return FakeGateway


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
