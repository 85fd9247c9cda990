"""Live query transport - baseline pulls merged with push events.

One QueryTransport serves one (ref, options) pair. It emits QueryStreamItem
values from two sources into a single output queue, in arrival order:

- Baseline pulls: HTTP GET on the ref, triggered on activation, after every
  push-channel reconnect, and on ``reload()`` while the channel is open.
  Pulls run one at a time, in trigger order.
- Push events: changes delivered by ``ConnectionManager.listen(ref)``, each
  wrapped into a one-change item without paging.

No deduplication or causal ordering happens between the two sources.
Consumers reconcile by record identity, last event wins.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from .client import RestClient, unwrap_payload
from .connection import ConnectionManager, TopicSubscription
from .errors import LiveQueryError
from .filters import encode_query
from .types import (
    ChangeEvent,
    ChangeType,
    Paging,
    QueryData,
    QueryError,
    QueryOptions,
    QueryStreamItem,
)

logger = logging.getLogger(__name__)

REALTIME_TOKEN_FIELD = "realtime_token"


def normalize_response(ref: str, payload: Any) -> QueryData:
    """Turn a baseline payload into a change batch.

    A payload with an ``items`` list is a collection page: one ``added``
    change per item plus the server paging (``n`` reset to 0). Anything else
    is a single document wrapped into one ``added`` change.

    Note: a document whose schema has its own ``items`` list is read as a
    collection. The wire format has no explicit discriminator.
    """
    if isinstance(payload, dict) and isinstance(payload.get("items"), list):
        paging = payload.get("paging") or {}
        return QueryData(
            changes=[
                ChangeEvent(ref=ref, data=item, type=ChangeType.ADDED)
                for item in payload["items"]
            ],
            paging=Paging(**{**paging, "n": 0}),
        )

    document = payload if isinstance(payload, dict) else {"value": payload}
    return QueryData(
        changes=[ChangeEvent(ref=ref, data=document, type=ChangeType.ADDED)],
        paging=Paging(n=0),
    )


class QueryTransport:
    """Continuous stream of QueryStreamItem for one query.

    Activation happens on first iteration (or ``async with``). Closing the
    transport ends the pull triggers and detaches from the push topic.

    Usage:
        async with transporter.query(1, "posts") as stream:
            async for item in stream:
                if item.error:
                    stream.reload()
                    continue
                apply(item.data)

    Args:
        ref: Collection or document path
        options: Query options (filters, paging, ordering)
        client: HTTP client used for baseline pulls
        connection: The client's push channel, if realtime is configured.
            Reloads are gated on it and reconnects trigger fresh pulls.
        realtime: Attach to ``connection.listen(ref)`` for push events
        claim: Called on activation to reserve push attachment. Returns a
            release function, or None when another query holds it (the
            transport then runs pull-only).
        on_close: Called once when the transport closes
    """

    def __init__(
        self,
        ref: str,
        options: QueryOptions | None = None,
        *,
        client: RestClient,
        connection: ConnectionManager | None = None,
        realtime: bool = False,
        claim: Callable[[], Callable[[], None] | None] | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self.ref = ref
        self.options = options or QueryOptions()
        self._client = client
        self._connection = connection
        self.realtime = realtime and connection is not None
        self._claim = claim
        self._release: Callable[[], None] | None = None
        self._on_close = on_close

        self._output: asyncio.Queue[QueryStreamItem] = asyncio.Queue()
        self._triggers: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []
        self._subscription: TopicSubscription | None = None
        self._remove_reconnect_listener: Callable[[], None] | None = None
        self._active = False
        self._closed = False
        self._pull_count = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pull_count(self) -> int:
        """Number of baseline pulls issued so far."""
        return self._pull_count

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate(self) -> None:
        """Start pulls and push attachment. Idempotent."""
        if self._active or self._closed:
            return
        self._active = True

        if self.realtime and self._claim is not None:
            self._release = self._claim()
            self.realtime = self._release is not None

        if self._connection is not None:
            self._connection.start()
            self._remove_reconnect_listener = self._connection.on_reconnect(
                lambda: self._trigger("reconnect")
            )
        if self.realtime and self._connection is not None:
            self._subscription = self._connection.listen(self.ref)
            self._tasks.append(asyncio.create_task(self._push_loop(self._subscription)))

        self._tasks.append(asyncio.create_task(self._pull_loop()))
        self._trigger("activate")

    async def close(self) -> None:
        """Detach from everything. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._active = False

        if self._remove_reconnect_listener is not None:
            self._remove_reconnect_listener()
            self._remove_reconnect_listener = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._release is not None:
            self._release()
            self._release = None

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

        if self._on_close is not None:
            self._on_close()

    async def __aenter__(self) -> QueryTransport:
        self.activate()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def __aiter__(self) -> QueryTransport:
        return self

    async def __anext__(self) -> QueryStreamItem:
        if self._closed:
            raise StopAsyncIteration
        self.activate()
        return await self._output.get()

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def reload(self) -> bool:
        """Request a fresh baseline pull.

        Dropped (not queued) while the push channel is configured but not
        open: the reconnect will pull on its own.

        Returns:
            True if a pull was scheduled
        """
        if not self._active:
            return False
        if self._connection is not None and not self._connection.is_open:
            logger.debug(f"Reload dropped while disconnected: {self.ref}")
            return False
        self._trigger("reload")
        return True

    def _trigger(self, reason: str) -> None:
        if self._active:
            self._triggers.put_nowait(reason)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _pull_loop(self) -> None:
        while True:
            reason = await self._triggers.get()
            item = await self.pull(reason)
            self._output.put_nowait(item)

    async def pull(self, reason: str = "manual") -> QueryStreamItem:
        """Run one baseline pull and return its stream item.

        Failures become an error-bearing item; nothing is raised.
        """
        self._pull_count += 1
        logger.debug(f"Baseline pull ({reason}): {self.ref}")
        try:
            params = encode_query(self.options)
            body = await self._client.request("GET", self.ref, query=params)
            payload = unwrap_payload(body)
            data = normalize_response(self.ref, payload)
        except LiveQueryError as e:
            logger.warning(f"Baseline pull failed for {self.ref}: [{e.code}] {e.message}")
            return QueryStreamItem(
                error=QueryError(code=e.code, message=e.message, status=getattr(e, "status", None))
            )
        except Exception as e:
            logger.exception(f"Baseline pull failed for {self.ref}")
            return QueryStreamItem(error=QueryError(code=LiveQueryError.default_code, message=str(e)))

        self._authorize_push(payload)
        return QueryStreamItem(data=data)

    def _authorize_push(self, payload: Any) -> None:
        if not (self.realtime and self._connection is not None and isinstance(payload, dict)):
            return
        token = payload.get(REALTIME_TOKEN_FIELD)
        if token:
            self._connection.subscribe(str(token))

    async def _push_loop(self, subscription: TopicSubscription) -> None:
        async for change in subscription:
            self._output.put_nowait(QueryStreamItem(data=QueryData(changes=[change])))
