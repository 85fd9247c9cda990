"""Unit tests for the HTTP RestClient."""

from __future__ import annotations

import json

import httpx
import pytest
from fakes import BASE_URL, RecordingHandler

from livequery_rest.client import SOCKET_ID_HEADER, RestClient, unwrap_payload
from livequery_rest.config import RestTransporterConfig, static_url
from livequery_rest.errors import NetworkError, RemoteError


def make_client(
    handler: RecordingHandler,
    session_id: str | None = None,
    **config_kwargs,
) -> RestClient:
    config_kwargs.setdefault("base_url", static_url(BASE_URL))
    config = RestTransporterConfig(**config_kwargs)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RestClient(config, session_id=session_id, http_client=http_client)


class TestRequest:
    """URL, headers and parameters of outgoing requests."""

    @pytest.mark.asyncio
    async def test_url_is_relative_to_base(self) -> None:
        handler = RecordingHandler(body={"data": {}})
        client = make_client(handler)

        await client.request("GET", "posts/123")

        assert str(handler.requests[0].url) == f"{BASE_URL}/posts/123"
        assert handler.requests[0].method == "GET"

    @pytest.mark.asyncio
    async def test_async_base_url_factory(self) -> None:
        handler = RecordingHandler(body={})

        async def base_url() -> str:
            return "http://other.test/api/"

        client = make_client(handler, base_url=base_url)
        await client.request("GET", "/posts")

        assert str(handler.requests[0].url) == "http://other.test/api/posts"

    @pytest.mark.asyncio
    async def test_query_params(self) -> None:
        handler = RecordingHandler(body={})
        client = make_client(handler)

        await client.request("GET", "posts", query={"_limit": "20", "views[gte]": "10"})

        params = handler.requests[0].url.params
        assert params["_limit"] == "20"
        assert params["views[gte]"] == "10"

    @pytest.mark.asyncio
    async def test_json_payload(self) -> None:
        handler = RecordingHandler(body={"data": {"id": "1"}})
        client = make_client(handler)

        await client.request("POST", "posts", payload={"title": "Hello"})

        request = handler.requests[0]
        assert request.method == "POST"
        assert json.loads(request.read()) == {"title": "Hello"}

    @pytest.mark.asyncio
    async def test_headers_provider_and_socket_id(self) -> None:
        """Caller headers are awaited per request; socket_id ties the call to the session."""
        handler = RecordingHandler(body={})

        async def headers() -> dict[str, str]:
            return {"Authorization": "Bearer abc"}

        client = make_client(handler, session_id="session-1", headers=headers)
        await client.request("GET", "posts")

        sent = handler.requests[0].headers
        assert sent["Authorization"] == "Bearer abc"
        assert sent[SOCKET_ID_HEADER] == "session-1"

    @pytest.mark.asyncio
    async def test_no_socket_id_without_session(self) -> None:
        handler = RecordingHandler(body={})
        client = make_client(handler)

        await client.request("GET", "posts")

        assert SOCKET_ID_HEADER not in handler.requests[0].headers


class TestResponses:
    """Success rules and error mapping."""

    @pytest.mark.asyncio
    async def test_returns_decoded_body(self) -> None:
        handler = RecordingHandler(body={"data": {"id": "1"}})
        client = make_client(handler)

        assert await client.request("GET", "posts/1") == {"data": {"id": "1"}}

    @pytest.mark.asyncio
    async def test_status_205_is_success(self) -> None:
        handler = RecordingHandler(body={"data": {}}, status_code=205)
        client = make_client(handler)

        assert await client.request("GET", "posts") == {"data": {}}

    @pytest.mark.asyncio
    async def test_status_above_205_fails(self) -> None:
        handler = RecordingHandler(body={"data": {}}, status_code=206)
        client = make_client(handler)

        with pytest.raises(RemoteError) as exc_info:
            await client.request("GET", "posts")

        assert exc_info.value.status == 206
        assert exc_info.value.code == "http_206"

    @pytest.mark.asyncio
    async def test_error_field_fails_even_with_200(self) -> None:
        handler = RecordingHandler(
            body={"error": {"code": "PERMISSION_DENIED", "message": "Nope"}}, status_code=200
        )
        client = make_client(handler)

        with pytest.raises(RemoteError) as exc_info:
            await client.request("GET", "posts")

        assert exc_info.value.code == "PERMISSION_DENIED"
        assert exc_info.value.message == "Nope"
        assert exc_info.value.status == 200

    @pytest.mark.asyncio
    async def test_string_error_field(self) -> None:
        handler = RecordingHandler(body={"error": "broken"}, status_code=500)
        client = make_client(handler)

        with pytest.raises(RemoteError) as exc_info:
            await client.request("GET", "posts")

        assert exc_info.value.message == "broken"
        assert exc_info.value.code == "http_500"

    @pytest.mark.asyncio
    async def test_network_failure(self) -> None:
        handler = RecordingHandler(body=httpx.ConnectError("connection refused"))
        client = make_client(handler)

        with pytest.raises(NetworkError) as exc_info:
            await client.request("GET", "posts")

        assert exc_info.value.code == "network_error"

    @pytest.mark.asyncio
    async def test_empty_body(self) -> None:
        client = make_client(RecordingHandler(body=None))
        assert await client.request("DELETE", "posts/1") is None


class TestUnwrapPayload:
    """Tests for the {data, error} envelope."""

    def test_envelope(self) -> None:
        assert unwrap_payload({"data": {"items": []}}) == {"items": []}

    def test_bare_body(self) -> None:
        assert unwrap_payload({"id": "1"}) == {"id": "1"}

    def test_non_object(self) -> None:
        assert unwrap_payload(None) is None
