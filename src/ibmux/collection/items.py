"""
Request-tracking multiplexer over a gateway session.

Items owns a set of sinks (one per domain entity, keyed by a unique
string), starts them against a session, routes each reply to the sink that
issued the request and fires a one-shot readiness notification once every
started sink has completed.

A sink may change its correlation ID whenever it handles a reply (for
example to retry with different parameters). The multiplexer follows the
change: the old ID is unsubscribed, the new one subscribed and the request
and pending maps are rekeyed before completion is tested.

Usage:
    items = make(session)
    items.add(symbol)
    ready: asyncio.Queue[bool] = asyncio.Queue()
    items.notify(ready)
    await items.start_update()
    await asyncio.wait_for(ready.get(), timeout=15)
    ...
    await items.cleanup()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ibmux.gateway.errors import GatewayError


if TYPE_CHECKING:
    from ibmux.gateway.messages import Reply
    from ibmux.gateway.session import GatewaySession


logger = logging.getLogger(__name__)


@runtime_checkable
class Sink(Protocol):
    """
    Contract between the multiplexer and one tracked entity.

    ``update`` returns the sink's current correlation ID (which may differ
    from the ID the reply arrived under) and whether the sink is complete.
    """

    @property
    def id(self) -> int: ...

    async def start(self, session: GatewaySession) -> int: ...

    async def stop(self) -> None: ...

    async def update(self, reply: Reply) -> tuple[int, bool]: ...

    def unique(self) -> str: ...


class ItemStartError(GatewayError):
    """A sink failed to issue its first request."""

    def __init__(self, item: Sink, error: BaseException) -> None:
        super().__init__(f"Items: item error {error} for item {item.unique()!r}")
        self.item = item
        self.error = error


class Items:
    """
    Multiplexer routing session replies to the sinks that requested them.

    Methods that do not suspend (add, notify, lookup, items) run atomically
    on the event loop. start_update and cleanup hold the registry lock
    across their suspension points.
    """

    def __init__(self, session: GatewaySession) -> None:
        self._session = session
        self._lock = asyncio.Lock()
        self._ingress: asyncio.Queue[Reply] = asyncio.Queue()
        self._exit = asyncio.Event()

        self._items: list[Sink] = []
        self._xref: dict[str, int] = {}  # unique key -> position index
        self._requests: dict[int, int] = {}  # correlation ID -> position index
        self._pending: dict[int, int] = {}  # not yet completed
        self._subscribers: list[asyncio.Queue[bool]] = []

        self._started = False
        self._starting = False
        self._armed = False
        self._fired = False

        self._task = asyncio.create_task(self._run(), name="items-dispatch")

    # =========================================================================
    # Registry
    # =========================================================================

    def add(self, item: Sink) -> None:
        """Insert ``item``, replacing any item with the same unique key in place."""
        key = item.unique()
        ix = self._xref.get(key)
        if ix is not None:
            self._items[ix] = item
            return

        self._xref[key] = len(self._items)
        self._items.append(item)

    def lookup(self, unique: str) -> Sink | None:
        """Return the item registered under ``unique``, if any."""
        ix = self._xref.get(unique)
        if ix is None:
            return None
        return self._items[ix]

    def items(self) -> list[Sink]:
        """Snapshot of the current items in insertion order."""
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def notify(self, channel: asyncio.Queue[bool]) -> None:
        """
        Register a one-shot readiness channel.

        Channels registered after readiness has fired receive nothing.
        """
        self._subscribers.append(channel)

    @property
    def is_started(self) -> bool:
        """Whether start_update has been called."""
        return self._started

    @property
    def pending_count(self) -> int:
        """Number of started items that have not completed."""
        return len(self._pending)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start_update(self) -> None:
        """
        Start every item in insertion order and begin tracking its replies.

        Raises:
            ItemStartError: If an item fails to start. Items started before
                it stay registered; later items are not started.
            RuntimeError: If called more than once
        """
        if self._started:
            raise RuntimeError("start_update() already called")
        self._started = True

        async with self._lock:
            self._starting = True
            try:
                for ix, item in enumerate(list(self._items)):
                    try:
                        request_id = await item.start(self._session)
                    except GatewayError as e:
                        raise ItemStartError(item, e) from e
                    # No suspension between the send inside start() and the
                    # subscription, so the first reply cannot be missed.
                    self._requests[request_id] = ix
                    self._pending[request_id] = ix
                    self._session.subscribe(self._ingress, request_id)
                    self._armed = True
            finally:
                self._starting = False
                self._fire_if_ready()

        logger.debug("Started %d items, %d pending", len(self._items), len(self._pending))

    async def cleanup(self) -> None:
        """
        Stop dispatch, release every subscription and stop every item.

        Readiness subscribers are dropped without being signalled. Item stop
        errors are logged and ignored.
        """
        if not self._task.done():
            self._exit.set()
            await self._task

        async with self._lock:
            for request_id in self._requests:
                self._session.unsubscribe(request_id)
            self._xref.clear()
            self._requests.clear()
            self._pending.clear()
            self._subscribers.clear()
            items, self._items = self._items, []

            for item in items:
                try:
                    await item.stop()
                except GatewayError as e:
                    logger.warning("Failed to stop item %r: %s", item.unique(), e)

        logger.debug("Cleaned up %d items", len(items))

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def _run(self) -> None:
        exit_wait = asyncio.ensure_future(self._exit.wait())
        try:
            while True:
                get = asyncio.ensure_future(self._ingress.get())
                done, _ = await asyncio.wait(
                    {get, exit_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if exit_wait in done:
                    get.cancel()
                    return
                await self._route(get.result())
        finally:
            exit_wait.cancel()

    async def _route(self, reply: Reply) -> None:
        request_id = reply.id
        ix = self._requests.get(request_id)
        if ix is None:
            logger.debug("Dropping %s for unknown request %d", type(reply).__name__, request_id)
            return

        item = self._items[ix]
        try:
            new_id, done = await item.update(reply)
        except Exception:
            logger.exception(
                "Item %r failed handling %s for request %d",
                item.unique(),
                type(reply).__name__,
                request_id,
            )
            return

        if new_id != request_id:
            self._rewrite_id(request_id, new_id)
            request_id = new_id

        if not done:
            return

        if self._pending.pop(request_id, None) is not None:
            self._fire_if_ready()

    def _rewrite_id(self, old_id: int, new_id: int) -> None:
        """Move routing for an item from ``old_id`` to ``new_id``."""
        self._session.unsubscribe(old_id)
        self._session.subscribe(self._ingress, new_id)
        self._requests[new_id] = self._requests.pop(old_id)
        if old_id in self._pending:
            self._pending[new_id] = self._pending.pop(old_id)
        logger.debug("Request %d continues as %d", old_id, new_id)

    def _fire_if_ready(self) -> None:
        if self._fired or self._starting or not self._armed or self._pending:
            return
        self._fired = True

        logger.debug("All items updated, notifying %d subscribers", len(self._subscribers))
        for channel in self._subscribers:
            try:
                channel.put_nowait(True)
            except asyncio.QueueFull:
                logger.warning("Readiness channel %r is full, skipping", channel)


def make(session: GatewaySession) -> Items:
    """Create an empty multiplexer bound to ``session``; needs a running loop."""
    return Items(session)


async def wait(collection: Items, timeout: float = 15.0) -> bool:
    """
    Start ``collection`` and wait for readiness.

    Returns:
        True if every item completed before ``timeout`` seconds elapsed
    """
    ready: asyncio.Queue[bool] = asyncio.Queue(maxsize=1)
    collection.notify(ready)
    await collection.start_update()
    try:
        return await asyncio.wait_for(ready.get(), timeout=timeout)
    except asyncio.TimeoutError:
        return False
