"""Exceptions raised by the live query client.

Push-channel failures are not represented here: they are recovered inside
ConnectionManager and never reach callers.
"""

from __future__ import annotations

from typing import Any


class LiveQueryError(Exception):
    """Base class for errors surfaced to callers."""

    default_code = "error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class RemoteError(LiveQueryError):
    """Server reported an error, or answered with a non-success status."""

    default_code = "remote_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message, code or (f"http_{status}" if status else None))
        self.status = status
        self.data = data


class NetworkError(LiveQueryError):
    """HTTP request could not be completed."""

    default_code = "network_error"


class EncodingError(LiveQueryError, ValueError):
    """Query options or filter values cannot be encoded into a request."""

    default_code = "encoding_error"
