"""Push-channel wire protocol.

Frames are JSON text, symmetric in both directions:

    {"event": "start", "data": {"id": "<session id>"}}          client -> server
    {"event": "subscribe", "data": {"realtime_token": "..."}}   client -> server
    {"event": "unsubscribe", "data": {"ref": "posts"}}          client -> server
    {"event": "sync", "data": {"changes": [{ref, data, type}]}} server -> client
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SocketEvent(str, Enum):
    """Event names used on the push channel."""

    # Client -> Server
    START = "start"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"

    # Server -> Client
    SYNC = "sync"


class SocketMessage(BaseModel):
    """One push-channel frame."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize to a JSON text frame."""
        return json.dumps({"event": self.event, "data": self.data})

    @classmethod
    def from_json(cls, raw: str | bytes) -> SocketMessage:
        """Deserialize a text frame.

        Raises:
            json.JSONDecodeError: frame is not JSON
            ValueError: frame is not a ``{event, data}`` object
        """
        parsed = json.loads(raw)
        if not isinstance(parsed, dict) or not isinstance(parsed.get("event"), str):
            raise ValueError(f"Not a push-channel frame: {str(raw)[:80]}")
        data = parsed.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError(f"Frame data must be an object, got {type(data).__name__}")
        return cls(event=parsed["event"], data=data)

    @classmethod
    def start(cls, session_id: str) -> SocketMessage:
        return cls(event=SocketEvent.START.value, data={"id": session_id})

    @classmethod
    def subscribe(cls, realtime_token: str) -> SocketMessage:
        return cls(event=SocketEvent.SUBSCRIBE.value, data={"realtime_token": realtime_token})

    @classmethod
    def unsubscribe(cls, ref: str) -> SocketMessage:
        return cls(event=SocketEvent.UNSUBSCRIBE.value, data={"ref": ref})
