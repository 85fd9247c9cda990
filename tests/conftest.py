"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import httpx
import pytest
from fakes import BASE_URL, WS_URL, FakeConnector, RecordingHandler

from livequery_rest.config import RestTransporterConfig, static_url


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler(
        body={"data": {"items": [{"id": "1"}, {"id": "2"}], "paging": {"cursor": "c1"}}}
    )


@pytest.fixture
def http_client(handler: RecordingHandler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def config() -> RestTransporterConfig:
    return RestTransporterConfig(
        base_url=static_url(BASE_URL),
        websocket_url=static_url(WS_URL),
        realtime=True,
        reconnect_delay=0.02,
        unsubscribe_delay=0.05,
    )


@pytest.fixture
def pull_only_config() -> RestTransporterConfig:
    return RestTransporterConfig(base_url=static_url(BASE_URL))
