"""Push channel connection manager.

Owns the single WebSocket connection of a client:

- connect/reconnect loop running for the life of the process, with a fixed
  delay between attempts (no backoff, no jitter)
- ordered outbound buffer for control messages; everything issued since the
  last successful connection (sent or not) is replayed right after the next
  ``start`` handshake
- inbound ``sync`` dispatch into the TopicRegistry
- ``listen(ref)`` / ``subscribe(token)`` for queries

State machine:

    DISCONNECTED -> CONNECTING -> OPEN
         ^              |          |
         +--- delay ----+----------+   (error or closure)

Connection errors never leave this module. They are logged and only affect
retry timing. All state is mutated from the event loop that runs the
background task, so the manager behaves as a single-writer actor.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

import websockets
from pydantic import ValidationError

from .protocol import SocketEvent, SocketMessage
from .topics import TopicRegistry
from .types import ChangeEvent, ConnectionState

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 1.0
DEFAULT_UNSUBSCRIBE_DELAY = 2.0


class TransportState(str, Enum):
    """Connection lifecycle state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class PushSocket(Protocol):
    """What the manager needs from a WebSocket connection."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


UrlFactory = Callable[[], "str | Awaitable[str]"]
Connector = Callable[[str], Awaitable[PushSocket]]
ReconnectCallback = Callable[[], None]


async def resolve_url(factory: UrlFactory) -> str:
    """Call a URL factory that may return a string or an awaitable."""
    value = factory()
    if inspect.isawaitable(value):
        value = await value
    return str(value)


async def websocket_connector(url: str) -> PushSocket:
    """Open a WebSocket with the ``websockets`` library."""
    return await websockets.connect(url, ping_interval=30, ping_timeout=10)


class TopicSubscription:
    """A listener attached to one topic.

    Iterate it to receive change events. Closing it detaches the listener;
    the topic itself is only unsubscribed after the grace delay.

    Usage:
        async with manager.listen("posts") as changes:
            async for change in changes:
                ...
    """

    def __init__(self, manager: ConnectionManager, ref: str) -> None:
        self._manager = manager
        self.ref = ref
        self._queue = manager.topics.attach(ref)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> TopicSubscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        return await self._queue.get()

    def close(self) -> None:
        """Detach from the topic. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._manager._detach(self.ref, self._queue)

    async def __aenter__(self) -> TopicSubscription:
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.close()


class ConnectionManager:
    """Single logical push connection with transparent reconnection.

    Args:
        url_factory: Returns the WebSocket URL (may be async); called on
            every connection attempt
        reconnect_delay: Seconds to wait between connection attempts
        unsubscribe_delay: Grace window before an idle topic is unsubscribed
        connector: Opens a socket for a URL (defaults to ``websockets``)
    """

    def __init__(
        self,
        url_factory: UrlFactory,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        unsubscribe_delay: float = DEFAULT_UNSUBSCRIBE_DELAY,
        connector: Connector | None = None,
    ) -> None:
        self._url_factory = url_factory
        self._connector = connector or websocket_connector
        self.reconnect_delay = reconnect_delay
        self.unsubscribe_delay = unsubscribe_delay

        self.session_id = str(uuid.uuid4())
        self.topics = TopicRegistry()

        self._state = TransportState.DISCONNECTED
        # Everything issued since the current epoch began; _delivered of them sent
        self._outbound: list[SocketMessage] = []
        self._delivered = 0
        self._outbound_ready = asyncio.Event()
        self._reconnect_callbacks: list[ReconnectCallback] = []
        self._handlers: dict[str, Callable[[dict[str, Any]], None]] = {
            SocketEvent.SYNC.value: self._on_sync,
        }
        self._task: asyncio.Task[None] | None = None
        self._epoch = 0
        self._attempts = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def connection_state(self) -> ConnectionState:
        """0/1 signal used by queries to gate baseline pulls."""
        if self._state == TransportState.OPEN:
            return ConnectionState.OPEN
        return ConnectionState.DISCONNECTED

    @property
    def is_open(self) -> bool:
        return self._state == TransportState.OPEN

    @property
    def epoch(self) -> int:
        """Number of successful connections so far."""
        return self._epoch

    @property
    def attempts(self) -> int:
        """Number of connection attempts so far."""
        return self._attempts

    @property
    def outbound_buffer(self) -> list[SocketMessage]:
        """Control messages issued since the current epoch began, in order.

        Replayed in full after the next ``start`` handshake.
        """
        return list(self._outbound)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background connect loop. Idempotent.

        Must be called with a running event loop.
        """
        if self._task is not None or self._state == TransportState.CLOSED:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def close(self) -> None:
        """Stop the connect loop and drop the current connection."""
        self._state = TransportState.CLOSED
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        for ref in self.topics.refs():
            topic = self.topics.get(ref)
            if topic:
                topic.cancel_pending_removal()

    async def _run(self) -> None:
        """Connect, serve until the socket fails, wait, repeat. Forever."""
        while True:
            self._attempts += 1
            self._state = TransportState.CONNECTING
            logger.info(f"Connecting push channel (attempt {self._attempts})")

            socket: PushSocket | None = None
            try:
                url = await resolve_url(self._url_factory)
                socket = await self._connector(url)
                await self._serve(socket)
                logger.info("Push channel closed by server")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Push channel error: {e}")
            finally:
                if self._state != TransportState.CLOSED:
                    self._state = TransportState.DISCONNECTED
                if socket is not None:
                    with contextlib.suppress(Exception):
                        await socket.close()

            logger.info(f"Push channel dropped, reconnecting in {self.reconnect_delay}s")
            await asyncio.sleep(self.reconnect_delay)

    async def _serve(self, socket: PushSocket) -> None:
        """Run one connection epoch until the socket closes or fails."""
        await socket.send(SocketMessage.start(self.session_id).to_json())

        # Replay everything issued since the previous epoch, then start a fresh buffer
        self._delivered = 0
        await self._flush(socket)
        self._outbound = []
        self._delivered = 0

        self._epoch += 1
        self._state = TransportState.OPEN
        logger.info(f"Push channel connected (epoch {self._epoch})")
        if self._epoch > 1:
            self._notify_reconnect()

        reader = asyncio.create_task(self._read_loop(socket))
        writer = asyncio.create_task(self._write_loop(socket))
        try:
            done, _ = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reader, writer):
                task.cancel()
            for task in (reader, writer):
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        for task in done:
            error = task.exception()
            if error is not None:
                raise error

    async def _flush(self, socket: PushSocket) -> None:
        while self._delivered < len(self._outbound):
            await socket.send(self._outbound[self._delivered].to_json())
            self._delivered += 1

    async def _write_loop(self, socket: PushSocket) -> None:
        while True:
            await self._flush(socket)
            self._outbound_ready.clear()
            await self._outbound_ready.wait()

    async def _read_loop(self, socket: PushSocket) -> None:
        async for raw in socket:
            self._handle_frame(raw)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            message = SocketMessage.from_json(raw)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Invalid push-channel frame: {e}")
            return

        handler = self._handlers.get(message.event)
        if handler is None:
            logger.debug(f"No handler for push event: {message.event}")
            return
        handler(message.data)

    def _on_sync(self, data: dict[str, Any]) -> None:
        for raw_change in data.get("changes") or []:
            try:
                change = ChangeEvent.model_validate(raw_change)
            except ValidationError as e:
                logger.warning(f"Invalid change in sync frame: {e}")
                continue
            delivered = self.topics.dispatch(change)
            logger.debug(f"sync {change.type.value} {change.ref} -> {delivered} listener(s)")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _enqueue(self, message: SocketMessage) -> None:
        """Queue a control message; the writer delivers it in issuance order."""
        self._outbound.append(message)
        self._outbound_ready.set()

    def subscribe(self, realtime_token: str) -> None:
        """Authorize push updates for a baseline result set."""
        self.start()
        self._enqueue(SocketMessage.subscribe(realtime_token))

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    def listen(self, ref: str) -> TopicSubscription:
        """Attach a listener to ``ref`` and return its change stream."""
        self.start()
        return TopicSubscription(self, ref)

    def _detach(self, ref: str, queue: asyncio.Queue[ChangeEvent]) -> None:
        remaining = self.topics.detach(ref, queue)
        topic = self.topics.get(ref)
        if remaining > 0 or topic is None or self._state == TransportState.CLOSED:
            return

        # Debounce: only unsubscribe if nobody re-attached during the grace window
        topic.cancel_pending_removal()
        topic.pending_removal = asyncio.get_running_loop().call_later(
            self.unsubscribe_delay, self._expire_topic, ref
        )
        logger.debug(f"Unsubscribe scheduled in {self.unsubscribe_delay}s: {ref}")

    def _expire_topic(self, ref: str) -> None:
        topic = self.topics.get(ref)
        if topic is None:
            return
        topic.pending_removal = None
        if self.topics.remove_if_idle(ref):
            self._enqueue(SocketMessage.unsubscribe(ref))

    # ------------------------------------------------------------------
    # Reconnect notifications
    # ------------------------------------------------------------------

    def on_reconnect(self, callback: ReconnectCallback) -> Callable[[], None]:
        """Register a callback fired after every reconnect (not the first connect).

        Returns:
            Function that removes the callback
        """
        self._reconnect_callbacks.append(callback)

        def remove() -> None:
            if callback in self._reconnect_callbacks:
                self._reconnect_callbacks.remove(callback)

        return remove

    def _notify_reconnect(self) -> None:
        for callback in list(self._reconnect_callbacks):
            try:
                callback()
            except Exception:
                logger.exception("Error in reconnect callback")
