"""End-to-end tests: RestTransporter over fake HTTP and push backends."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from fakes import BASE_URL, FakeConnector, RecordingHandler, wait_until

from livequery_rest import (
    QueryOptions,
    RestTransporter,
    RestTransporterConfig,
    TransportState,
)
from livequery_rest.client import SOCKET_ID_HEADER
from livequery_rest.query import QueryTransport


async def next_item(query: QueryTransport, timeout: float = 1.0):
    return await asyncio.wait_for(anext(query), timeout)


@pytest.fixture
def transporter(
    config: RestTransporterConfig, http_client: httpx.AsyncClient, connector: FakeConnector
) -> RestTransporter:
    return RestTransporter(config, http_client=http_client, connector=connector)


class TestLiveQuery:
    """Baseline, push and reconnect working together."""

    @pytest.mark.asyncio
    async def test_baseline_push_and_reconnect(
        self,
        transporter: RestTransporter,
        handler: RecordingHandler,
        connector: FakeConnector,
    ) -> None:
        async with transporter:
            async with transporter.query("q1", "posts") as stream:
                baseline = await next_item(stream)
                assert [c.data["id"] for c in baseline.changes] == ["1", "2"]
                assert baseline.data is not None
                assert baseline.data.paging is not None
                assert baseline.data.paging.cursor == "c1"
                assert baseline.data.paging.n == 0

                connection = transporter.connection
                assert connection is not None
                await wait_until(lambda: connection.is_open)

                connector.latest.push(
                    "sync",
                    {"changes": [{"ref": "posts", "data": {"id": "3"}, "type": "added"}]},
                )
                pushed = await next_item(stream)
                assert pushed.data is not None
                assert pushed.data.paging is None
                assert [c.data for c in pushed.changes] == [{"id": "3"}]

                # Lost connection: the fresh baseline arrives without any reload
                connector.latest.drop()
                refreshed = await next_item(stream, timeout=2.0)

                assert connection.epoch == 2
                assert len(refreshed.changes) == 2
                assert handler.count == 2
                assert connector.latest.sent[0] == {
                    "event": "start",
                    "data": {"id": connection.session_id},
                }

    @pytest.mark.asyncio
    async def test_reload_while_open(
        self, transporter: RestTransporter, handler: RecordingHandler
    ) -> None:
        async with transporter:
            async with transporter.query("q1", "posts") as stream:
                await next_item(stream)
                connection = transporter.connection
                assert connection is not None
                await wait_until(lambda: connection.state == TransportState.OPEN)

                assert stream.reload() is True
                await next_item(stream)

        assert handler.count == 2

    @pytest.mark.asyncio
    async def test_document_listener_receives_collection_change(
        self, transporter: RestTransporter, handler: RecordingHandler, connector: FakeConnector
    ) -> None:
        handler.queue({"data": {"id": "3", "title": "draft"}})

        async with transporter:
            async with transporter.query("doc", "posts/3") as stream:
                await next_item(stream)
                connection = transporter.connection
                assert connection is not None
                await wait_until(lambda: connection.is_open)

                connector.latest.push(
                    "sync",
                    {
                        "changes": [
                            {
                                "ref": "posts",
                                "data": {"id": "3", "title": "live"},
                                "type": "modified",
                            }
                        ]
                    },
                )
                item = await next_item(stream)

        assert item.changes[0].ref == "posts/3"
        assert item.changes[0].data["title"] == "live"

    @pytest.mark.asyncio
    async def test_closed_query_unsubscribes_after_grace_window(
        self, transporter: RestTransporter, connector: FakeConnector
    ) -> None:
        async with transporter:
            async with transporter.query("q1", "posts") as stream:
                await next_item(stream)
                connection = transporter.connection
                assert connection is not None
                await wait_until(lambda: connection.is_open)

            await wait_until(lambda: "unsubscribe" in connector.latest.events)

            unsubscribe = next(f for f in connector.latest.sent if f["event"] == "unsubscribe")
            assert unsubscribe["data"] == {"ref": "posts"}
            assert "posts" not in connection.topics


class TestAttachmentRules:
    """When a query is kept live by the push channel."""

    @pytest.mark.asyncio
    async def test_cursor_query_is_pull_only(self, transporter: RestTransporter) -> None:
        async with transporter:
            query = transporter.query("page2", "posts", QueryOptions(cursor="c1"))
            async with query:
                await next_item(query)

                assert query.realtime is False
                assert transporter.live_queries == frozenset()
                assert transporter.connection is not None
                assert transporter.connection.topics.listener_count("posts") == 0

    @pytest.mark.asyncio
    async def test_cursor_query_reload_once_channel_open(
        self, transporter: RestTransporter, handler: RecordingHandler, connector: FakeConnector
    ) -> None:
        """The channel runs even when no query attaches to it."""
        async with transporter:
            async with transporter.query("page2", "posts", QueryOptions(cursor="c1")) as query:
                await next_item(query)
                connection = transporter.connection
                assert connection is not None
                await wait_until(lambda: connection.is_open)

                assert query.reload() is True
                await next_item(query)

        assert handler.count == 2
        assert connector.latest.events[0] == "start"

    @pytest.mark.asyncio
    async def test_duplicate_query_id_is_pull_only(self, transporter: RestTransporter) -> None:
        async with transporter:
            async with transporter.query("q1", "posts") as first:
                async with transporter.query("q1", "posts") as second:
                    assert first.realtime is True
                    assert second.realtime is False
                    assert transporter.live_queries == {"q1"}

                assert transporter.live_queries == {"q1"}
            assert transporter.live_queries == frozenset()

    @pytest.mark.asyncio
    async def test_id_claimed_on_activation(self, transporter: RestTransporter) -> None:
        """A query that is created but never started does not hold its id."""
        async with transporter:
            transporter.query("q1", "posts")
            assert transporter.live_queries == frozenset()

            async with transporter.query("q1", "posts") as query:
                assert query.realtime is True
                assert transporter.live_queries == {"q1"}

    @pytest.mark.asyncio
    async def test_id_reusable_after_close(self, transporter: RestTransporter) -> None:
        async with transporter:
            async with transporter.query("q1", "posts"):
                pass

            async with transporter.query("q1", "posts") as again:
                assert again.realtime is True

    @pytest.mark.asyncio
    async def test_pull_only_transporter(
        self,
        pull_only_config: RestTransporterConfig,
        http_client: httpx.AsyncClient,
        handler: RecordingHandler,
    ) -> None:
        async with RestTransporter(pull_only_config, http_client=http_client) as transporter:
            assert transporter.connection is None
            async with transporter.query("q1", "posts") as stream:
                item = await next_item(stream)
                assert stream.reload() is True
                await next_item(stream)

        assert len(item.changes) == 2
        assert handler.count == 2
        assert SOCKET_ID_HEADER not in handler.requests[0].headers

    @pytest.mark.asyncio
    async def test_default_limit_from_config(
        self,
        pull_only_config: RestTransporterConfig,
        http_client: httpx.AsyncClient,
        handler: RecordingHandler,
    ) -> None:
        pull_only_config.default_limit = 5
        async with RestTransporter(pull_only_config, http_client=http_client) as transporter:
            async with transporter.query("q1", "posts") as stream:
                await next_item(stream)

        assert handler.requests[0].url.params["_limit"] == "5"


class TestCrud:
    """One-shot calls."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("method_name", "args", "http_method", "path"),
        [
            ("get", ("posts/1",), "GET", "/livequery/posts/1"),
            ("add", ("posts", {"title": "a"}), "POST", "/livequery/posts"),
            ("update", ("posts/1", {"title": "b"}), "PATCH", "/livequery/posts/1"),
            ("set", ("posts/1", {"title": "c"}), "PUT", "/livequery/posts/1"),
            ("remove", ("posts/1",), "DELETE", "/livequery/posts/1"),
        ],
    )
    async def test_method_and_path(
        self,
        transporter: RestTransporter,
        handler: RecordingHandler,
        method_name: str,
        args: tuple,
        http_method: str,
        path: str,
    ) -> None:
        async with transporter:
            await getattr(transporter, method_name)(*args)

        request = handler.requests[0]
        assert request.method == http_method
        assert request.url.path == path
        if len(args) > 1:
            assert json.loads(request.read()) == args[1]

    @pytest.mark.asyncio
    async def test_trigger_action(
        self, transporter: RestTransporter, handler: RecordingHandler
    ) -> None:
        handler.queue({"data": {"ok": True}})

        async with transporter:
            result = await transporter.trigger("posts", "publish", payload={"id": "1"})

        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/posts/~publish"
        assert json.loads(request.read()) == {"id": "1"}
        assert result == {"data": {"ok": True}}

    @pytest.mark.asyncio
    async def test_requests_carry_session_id(
        self, transporter: RestTransporter, handler: RecordingHandler
    ) -> None:
        async with transporter:
            await transporter.get("posts")

        assert transporter.connection is not None
        assert handler.requests[0].headers[SOCKET_ID_HEADER] == transporter.connection.session_id
