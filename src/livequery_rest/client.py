"""HTTP client for baseline pulls and CRUD calls.

Requests are relative to the configured base URL. A call succeeds when the
status is <= 205 and the JSON body carries no top-level ``error``; anything
else raises RemoteError. Requests that never complete raise NetworkError.

Response envelope:
    {"data": {...}, "error": {"code": "...", "message": "..."}}
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .config import RestTransporterConfig
from .connection import resolve_url
from .errors import NetworkError, RemoteError

logger = logging.getLogger(__name__)

MAX_SUCCESS_STATUS = 205
SOCKET_ID_HEADER = "socket_id"


class RestClient:
    """Thin wrapper over ``httpx.AsyncClient``.

    Args:
        config: Transporter configuration (base URL factory, headers, timeout)
        session_id: Push session to correlate requests with (``socket_id`` header)
        http_client: Pre-built client, e.g. one using ``httpx.MockTransport``
    """

    def __init__(
        self,
        config: RestTransporterConfig,
        session_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.session_id = session_id
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout)
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def build_headers(self) -> dict[str, str]:
        """Caller-supplied headers plus the push session id."""
        headers: dict[str, str] = {}
        if self.config.headers is not None:
            headers.update(await self.config.headers() or {})
        if self.session_id:
            headers[SOCKET_ID_HEADER] = self.session_id
        return headers

    async def build_url(self, path: str) -> str:
        base_url = (await resolve_url(self.config.base_url)).rstrip("/")
        return f"{base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        query: dict[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            NetworkError: Request could not be completed
            RemoteError: Non-success status or server-reported error
        """
        url = await self.build_url(path)
        headers = await self.build_headers()
        logger.debug(f"{method} {url} params={query}")

        try:
            response = await self._http_client.request(
                method,
                url,
                params=query or None,
                headers=headers,
                json=payload,
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

        body = _decode_body(response)
        error = body.get("error") if isinstance(body, dict) else None

        if response.status_code > MAX_SUCCESS_STATUS or error:
            raise _remote_error(response.status_code, error, body)
        return body


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _remote_error(status: int, error: Any, body: Any) -> RemoteError:
    if isinstance(error, dict):
        code = error.get("code")
        message = error.get("message") or code or f"HTTP {status}"
        data = error.get("data")
    elif error:
        code = None
        message = str(error)
        data = None
    else:
        code = None
        message = f"HTTP {status}"
        data = body
    return RemoteError(message, code=str(code) if code else None, status=status, data=data)


def unwrap_payload(body: Any) -> Any:
    """Return the ``data`` section of an envelope, or the body itself."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body
