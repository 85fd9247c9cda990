"""Transporter configuration."""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

UrlFactory = Callable[[], "str | Awaitable[str]"]
HeaderProvider = Callable[[], Awaitable[dict[str, str]]]

TRUTHY = {"1", "true", "yes", "on"}


def static_url(url: str) -> UrlFactory:
    """Wrap a fixed URL into a factory."""
    return lambda: url


@dataclass
class RestTransporterConfig:
    """Configuration for a RestTransporter.

    URL factories are called on every request / connection attempt, so they
    can return a different endpoint over time (e.g. after a token refresh).
    """

    # HTTP base URL for baseline pulls and CRUD calls
    base_url: UrlFactory

    # Push channel
    websocket_url: UrlFactory | None = None
    realtime: bool = False  # False = pull-only

    # Async provider of extra request headers (e.g. Authorization)
    headers: HeaderProvider | None = None

    # Timing (seconds)
    reconnect_delay: float = 1.0
    unsubscribe_delay: float = 2.0
    timeout: float = 30.0

    default_limit: int = 20

    def __post_init__(self) -> None:
        if self.realtime and self.websocket_url is None:
            raise ValueError("realtime=True requires a websocket_url factory")

    @classmethod
    def from_env(cls, **overrides: object) -> RestTransporterConfig:
        """Build a config from LIVEQUERY_* environment variables.

        Variables:
            LIVEQUERY_BASE_URL: HTTP base URL (default http://localhost:3000)
            LIVEQUERY_WS_URL: WebSocket URL
            LIVEQUERY_REALTIME: 1/true/yes enables the push channel
            LIVEQUERY_TIMEOUT: HTTP timeout in seconds
        """
        ws_url = os.getenv("LIVEQUERY_WS_URL")
        values: dict[str, object] = {
            "base_url": static_url(os.getenv("LIVEQUERY_BASE_URL", "http://localhost:3000")),
            "websocket_url": static_url(ws_url) if ws_url else None,
            "realtime": os.getenv("LIVEQUERY_REALTIME", "").lower() in TRUTHY,
            "timeout": float(os.getenv("LIVEQUERY_TIMEOUT", "30")),
        }
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]
