"""REST transporter - the client entry point.

Owns one RestClient, at most one ConnectionManager (when realtime is
enabled), and the set of queries currently attached to the push channel.

Usage:
    config = RestTransporterConfig(
        base_url=lambda: "https://api.example.com/livequery",
        websocket_url=lambda: "wss://api.example.com/livequery/ws",
        realtime=True,
    )
    async with RestTransporter(config) as transporter:
        async with transporter.query(1, "posts", QueryOptions(limit=10)) as stream:
            async for item in stream:
                ...
        await transporter.add("posts", {"title": "Hello"})
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from functools import partial
from typing import Any

import httpx

from .client import RestClient
from .config import RestTransporterConfig
from .connection import ConnectionManager, Connector
from .query import QueryTransport
from .types import QueryOptions

logger = logging.getLogger(__name__)

ACTION_PREFIX = "~"


class RestTransporter:
    """Live queries and CRUD calls against a livequery REST backend.

    Args:
        config: Transporter configuration
        http_client: Optional pre-built ``httpx.AsyncClient`` (not closed by us)
        connector: Optional push socket connector (testing, custom TLS, ...)
    """

    def __init__(
        self,
        config: RestTransporterConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config
        self._connection: ConnectionManager | None = None
        if config.realtime and config.websocket_url is not None:
            self._connection = ConnectionManager(
                config.websocket_url,
                reconnect_delay=config.reconnect_delay,
                unsubscribe_delay=config.unsubscribe_delay,
                connector=connector,
            )
        self._client = RestClient(
            config,
            session_id=self._connection.session_id if self._connection else None,
            http_client=http_client,
        )
        self._live_queries: set[Hashable] = set()

    @property
    def connection(self) -> ConnectionManager | None:
        """The push channel, or None in pull-only mode."""
        return self._connection

    @property
    def client(self) -> RestClient:
        return self._client

    @property
    def live_queries(self) -> frozenset[Hashable]:
        """Ids of queries currently attached to the push channel."""
        return frozenset(self._live_queries)

    async def aclose(self) -> None:
        if self._connection is not None:
            await self._connection.close()
        await self._client.aclose()

    async def __aenter__(self) -> RestTransporter:
        if self._connection is not None:
            self._connection.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Live queries
    # ------------------------------------------------------------------

    def query(
        self,
        query_id: Hashable,
        ref: str,
        options: QueryOptions | None = None,
    ) -> QueryTransport:
        """Create a live query on ``ref``.

        The query attaches to the push channel unless realtime is off, the
        options carry a paging cursor (paged views cannot be kept live from
        per-record events), or a query with the same id is already attached
        when it activates.
        """
        options = options or QueryOptions(limit=self.config.default_limit)
        attachable = self._connection is not None and not options.cursor

        logger.debug(f"Query {query_id!r} on {ref} (attachable={attachable})")
        return QueryTransport(
            ref,
            options,
            client=self._client,
            connection=self._connection,
            realtime=attachable,
            claim=partial(self._claim, query_id) if attachable else None,
        )

    def _claim(self, query_id: Hashable) -> Callable[[], None] | None:
        if query_id in self._live_queries:
            return None
        self._live_queries.add(query_id)
        return partial(self._live_queries.discard, query_id)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def get(self, ref: str, query: dict[str, Any] | None = None) -> Any:
        return await self._client.request("GET", ref, query=query)

    async def add(self, ref: str, data: dict[str, Any]) -> Any:
        return await self._client.request("POST", ref, payload=data)

    async def update(self, ref: str, data: dict[str, Any]) -> Any:
        return await self._client.request("PATCH", ref, payload=data)

    async def set(self, ref: str, data: dict[str, Any]) -> Any:
        return await self._client.request("PUT", ref, payload=data)

    async def remove(self, ref: str) -> Any:
        return await self._client.request("DELETE", ref)

    async def trigger(
        self,
        ref: str,
        name: str,
        query: dict[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        """Invoke the named remote action ``{ref}/~{name}``."""
        return await self._client.request(
            "POST", f"{ref.rstrip('/')}/{ACTION_PREFIX}{name}", query=query, payload=payload
        )
