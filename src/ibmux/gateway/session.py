"""
Gateway session: one ib_async client connection to TWS/IB Gateway.

The session owns an ``ib_async.client.Client``, mints correlation IDs and
routes every reply to the queue subscribed under the reply's correlation ID.
The client decodes messages and calls a ReplyWrapper; replies are queued in
arrival order and a single delivery task hands them to subscribers.
Messages the session does not model are ignored. A lost connection
terminates the session; there is no reconnection.

Usage:
    config = GatewayConfig(port=4002)
    async with GatewaySession(config) as session:
        replies: asyncio.Queue[Reply] = asyncio.Queue()
        request_id = session.next_request_id()
        session.subscribe(replies, request_id)
        await session.send(RequestContractData(id=request_id, symbol="AAPL"))
        reply = await replies.get()
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from datetime import datetime, timezone
from enum import Enum

from ib_async.client import Client

from ibmux.gateway.config import GatewayConfig
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
    CurrentTime,
    ErrorMessage,
    Reply,
    Request,
    RequestContractData,
    RequestCurrentTime,
)
from ibmux.gateway.wrapper import ReplyWrapper, to_contract


logger = logging.getLogger(__name__)

# Connection-level notices (market data farm status and the like)
NOTICE_CODES = frozenset({2104, 2106, 2107, 2108, 2158})

# Package scope so concurrent sessions never share a client ID
_client_ids = itertools.count(1)


class SessionState(str, Enum):
    """Session lifecycle."""

    DISCONNECTED = "disconnected"
    READY = "ready"
    EXIT_ERROR = "exit_error"
    EXIT_NORMAL = "exit_normal"


class GatewaySession:
    """
    Connection to the gateway with per-request reply routing.

    Replies are delivered to subscriber queues in arrival order. Delivery
    waits for space on bounded queues, logging a warning every
    ``delivery_warn_after`` seconds, so subscribers must drain promptly.
    """

    def __init__(self, config: GatewayConfig | None = None) -> None:
        self._config = config or GatewayConfig()
        self._client_id = self._config.client_id or next(_client_ids)

        self._wrapper = ReplyWrapper(self._receive)
        self._client = Client(self._wrapper)
        self._inbox: asyncio.Queue[Reply] = asyncio.Queue()
        self._delivery_task: asyncio.Task[None] | None = None

        self._observers: dict[int, asyncio.Queue[Reply]] = {}
        self._unmatched: list[asyncio.Queue[Reply]] = []
        self._state_observers: list[asyncio.Queue[SessionState]] = []

        self._state = SessionState.DISCONNECTED
        self._fatal_error: BaseException | None = None
        self._terminated = asyncio.Event()

        self.server_version = 0
        self.server_time: datetime | None = None

    @classmethod
    async def connect(cls, config: GatewayConfig | None = None) -> GatewaySession:
        """Create a session and open it."""
        session = cls(config)
        await session.open()
        return session

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> GatewayConfig:
        """Session configuration."""
        return self._config

    @property
    def client_id(self) -> int:
        """Client ID announced to the gateway."""
        return self._client_id

    @property
    def connection_info(self) -> str:
        """Gateway address and client ID, for log messages."""
        return f"{self._config.address}/{self._client_id}"

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self._state

    @property
    def fatal_error(self) -> BaseException | None:
        """Error that terminated the session, if any."""
        return self._fatal_error

    @property
    def is_running(self) -> bool:
        """Whether the session can still send and receive."""
        return self._state is SessionState.READY

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """
        Connect, start delivery and read the gateway clock.

        Raises:
            TransportError: If the gateway cannot be reached
            HandshakeError: If the negotiated server version is too old
        """
        if self._state is not SessionState.DISCONNECTED:
            raise GatewayError(f"session {self.connection_info} already opened")

        logger.info("Connecting to gateway at %s", self.connection_info)
        try:
            await self._client.connectAsync(
                self._config.host,
                self._config.port,
                self._client_id,
                timeout=self._config.timeout,
            )
        except Exception as e:
            raise TransportError(
                f"Failed to connect to gateway at {self._config.address}. "
                f"Ensure TWS/IB Gateway is running with API enabled. Error: {e}"
            ) from e

        version = self._client.serverVersion()
        if version < self._config.min_server_version:
            self._client.disconnect()
            raise HandshakeError(
                f"{self.connection_info} must be at least version "
                f"{self._config.min_server_version} (reported {version})"
            )
        self.server_version = version
        self._client.updateReqId(self._config.first_request_id)

        self._client.apiError += self._on_api_error
        self._client.apiEnd += self._on_api_end
        self._state = SessionState.READY
        self._delivery_task = asyncio.create_task(
            self._deliver_loop(), name=f"gateway-delivery-{self._client_id}"
        )

        try:
            self.server_time = await self.current_time()
        except asyncio.TimeoutError:
            logger.warning("No current time from %s", self.connection_info)

        logger.info(
            "Connected to gateway %s (server version %d)",
            self.connection_info,
            self.server_version,
        )

    async def stop(self) -> None:
        """Terminate the session normally. Safe to call repeatedly."""
        self._finish(SessionState.EXIT_NORMAL, None)
        if self._delivery_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._delivery_task

    async def wait_closed(self) -> None:
        """Block until the session has terminated."""
        await self._terminated.wait()

    def _finish(
        self, state: SessionState, error: BaseException | None, disconnect: bool = True
    ) -> None:
        """Record termination, drop routing and tell state subscribers."""
        if self._terminated.is_set():
            return

        was_running = self._state is SessionState.READY
        self._state = state
        self._fatal_error = error
        self._terminated.set()
        self._observers.clear()
        self._unmatched.clear()

        if was_running and disconnect:
            self._client.disconnect()
        if self._delivery_task is not None and self._delivery_task is not asyncio.current_task():
            self._delivery_task.cancel()

        for queue in self._state_observers:
            try:
                queue.put_nowait(state)
            except asyncio.QueueFull:
                logger.warning("State subscriber %r is full, dropping %s", queue, state.name)
        self._state_observers.clear()

        if error is None:
            logger.info("Gateway session %s stopped", self.connection_info)
        else:
            logger.error("Gateway session %s terminated: %s", self.connection_info, error)

    def _on_api_error(self, msg: str) -> None:
        self._finish(SessionState.EXIT_ERROR, TransportError(msg), disconnect=False)

    def _on_api_end(self) -> None:
        self._finish(
            SessionState.EXIT_ERROR,
            TransportError(f"gateway {self._config.address} closed the connection"),
            disconnect=False,
        )

    async def __aenter__(self) -> GatewaySession:
        """Open the session when entering async context."""
        if self._state is SessionState.DISCONNECTED:
            await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Stop the session when exiting async context."""
        await self.stop()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def next_request_id(self) -> int:
        """
        Return a fresh correlation ID; never UNMATCHED_REPLY_ID.

        Raises:
            SessionClosedError: If the session is not running
        """
        if self._state is not SessionState.READY:
            raise SessionClosedError(self._closed_reason())
        request_id = self._client.getReqId()
        if request_id == UNMATCHED_REPLY_ID:
            request_id = self._client.getReqId()
        return request_id

    async def send(self, request: Request) -> None:
        """
        Issue one request through the client.

        Raises:
            ReservedIdError: If the request uses UNMATCHED_REPLY_ID
            SessionClosedError: If the session has terminated
            EncodeError: If the request type is not supported
            TransportError: If the write fails (the session terminates)
        """
        if getattr(request, "id", None) == UNMATCHED_REPLY_ID:
            raise ReservedIdError(
                f"{UNMATCHED_REPLY_ID} is a reserved ID (try using next_request_id)"
            )
        if self._state is not SessionState.READY:
            raise SessionClosedError(self._closed_reason())

        try:
            if isinstance(request, RequestContractData):
                self._client.reqContractDetails(request.id, to_contract(request))
            elif isinstance(request, CancelMarketData):
                self._client.cancelMktData(request.id)
            elif isinstance(request, RequestCurrentTime):
                self._client.reqCurrentTime()
            else:
                raise EncodeError(f"unsupported request {type(request).__name__}")
        except OSError as e:
            self._finish(SessionState.EXIT_ERROR, TransportError(str(e)))
            raise TransportError(f"send to {self.connection_info} failed: {e}") from e

        if self._config.dump_conversation:
            logger.debug("%d> %r", self._client_id, request)

    async def current_time(self, timeout: float | None = None) -> datetime:
        """
        Ask the gateway for its clock.

        Raises:
            asyncio.TimeoutError: If no CurrentTime arrives within ``timeout``
                (default: the config timeout)
        """
        replies: asyncio.Queue[Reply] = asyncio.Queue()
        self.subscribe(replies, UNMATCHED_REPLY_ID)
        try:
            await self.send(RequestCurrentTime())
            async with asyncio.timeout(timeout or self._config.timeout):
                while True:
                    reply = await replies.get()
                    if isinstance(reply, CurrentTime):
                        return datetime.fromtimestamp(reply.time, tz=timezone.utc)
        finally:
            self.unsubscribe(UNMATCHED_REPLY_ID, replies)

    def _closed_reason(self) -> str:
        if self._fatal_error is not None:
            return f"session {self.connection_info} terminated: {self._fatal_error}"
        if self._state is SessionState.DISCONNECTED:
            return f"session {self.connection_info} is not connected"
        return f"session {self.connection_info} has already exited normally"

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, queue: asyncio.Queue[Reply], request_id: int) -> None:
        """
        Route replies carrying ``request_id`` to ``queue``.

        Re-subscribing an ID replaces its queue. Subscribing under
        UNMATCHED_REPLY_ID adds the queue to the set receiving replies that
        carry no correlation ID.
        """
        if self._terminated.is_set():
            logger.debug("Ignoring subscription to %d on terminated session", request_id)
            return
        if request_id == UNMATCHED_REPLY_ID:
            if queue not in self._unmatched:
                self._unmatched.append(queue)
            return
        self._observers[request_id] = queue
        logger.debug("Subscribed to request %d", request_id)

    def unsubscribe(self, request_id: int, queue: asyncio.Queue[Reply] | None = None) -> None:
        """Remove routing for ``request_id``. Idempotent."""
        if request_id == UNMATCHED_REPLY_ID:
            if queue is None:
                self._unmatched.clear()
            elif queue in self._unmatched:
                self._unmatched.remove(queue)
            return
        if self._observers.pop(request_id, None) is not None:
            logger.debug("Unsubscribed from request %d", request_id)

    def subscribe_state(self, queue: asyncio.Queue[SessionState]) -> None:
        """Deliver the final state to ``queue`` when the session terminates."""
        if self._terminated.is_set():
            queue.put_nowait(self._state)
            return
        self._state_observers.append(queue)

    def unsubscribe_state(self, queue: asyncio.Queue[SessionState]) -> None:
        """Stop notifying ``queue`` of termination."""
        if queue in self._state_observers:
            self._state_observers.remove(queue)

    @property
    def subscriptions(self) -> frozenset[int]:
        """Correlation IDs currently routed to a queue."""
        return frozenset(self._observers)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def _receive(self, reply: Reply) -> None:
        """ReplyWrapper sink; runs inside the client's data callback."""
        if self._terminated.is_set():
            return
        if self._config.dump_conversation:
            logger.debug("%d< %r", self._client_id, reply)
        self._inbox.put_nowait(reply)

    async def _deliver_loop(self) -> None:
        while True:
            reply = await self._inbox.get()
            await self._deliver(reply)

    async def _deliver(self, reply: Reply) -> None:
        request_id = reply.id
        if request_id == UNMATCHED_REPLY_ID:
            for queue in list(self._unmatched):
                await self._deliver_to(queue, reply)
            return

        queue = self._observers.get(request_id)
        if queue is None:
            self._log_unrouted(reply)
            return
        await self._deliver_to(queue, reply)

    async def _deliver_to(self, queue: asyncio.Queue[Reply], reply: Reply) -> None:
        while True:
            try:
                await asyncio.wait_for(queue.put(reply), timeout=self._config.delivery_warn_after)
                return
            except asyncio.TimeoutError:
                logger.warning(
                    "Waited %.1f seconds for subscriber queue %r",
                    self._config.delivery_warn_after,
                    queue,
                )

    def _log_unrouted(self, reply: Reply) -> None:
        if isinstance(reply, ErrorMessage):
            if reply.error_code in NOTICE_CODES:
                logger.debug("Gateway notice [%d]: %s", reply.error_code, reply.message)
            else:
                logger.warning(
                    "Gateway error [%d] id=%d: %s",
                    reply.error_code,
                    reply.request_id,
                    reply.message,
                )
            return
        logger.debug("Dropping %s for unsubscribed id %d", type(reply).__name__, reply.id)
