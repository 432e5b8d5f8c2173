"""HTTP transports for the Dune API.

Both transports map network failures to :class:`RequestError` and hand back
status code and raw body untouched; interpreting the body is the client's job.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import aiohttp
import requests

from ...config import DEFAULT_API_URL, HttpClientConfig
from ...core.errors import RequestError
from ...core.ports import TransportResponse
from ..http_client import HttpClient


class RequestsTransport:
    """Synchronous transport backed by :class:`HttpClient` (``requests``)."""

    def __init__(self, base_url: str = DEFAULT_API_URL, *, http_client: Any = None):
        self.base_url = base_url.rstrip("/")
        # anything exposing request(method, url, **kwargs) -> requests.Response-like
        self.http_client = http_client or HttpClient()

    def send(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> TransportResponse:
        url = self.base_url + path
        try:
            response = self.http_client.request(method, url, headers=dict(headers), data=body)
        except requests.RequestException as exc:
            raise RequestError(f"{method} {path} failed: {exc}") from exc
        return TransportResponse(
            status_code=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    def close(self) -> None:
        close = getattr(self.http_client, "close", None)
        if close is not None:
            close()


class AiohttpTransport:
    """Asyncio transport sharing one ``aiohttp.ClientSession``.

    The session is created lazily on first use so the transport can be built
    outside a running event loop.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        config: HttpClientConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.config = config or HttpClientConfig()
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def send(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> TransportResponse:
        session = await self._get_session()
        url = self.base_url + path
        attempts = 0
        backoff = self.config.backoff_seconds
        while True:
            try:
                async with session.request(method, url, headers=dict(headers), data=body) as response:
                    payload = await response.read()
                    status = response.status
                    response_headers = dict(response.headers)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise RequestError(f"{method} {path} failed: {exc!r}") from exc

            retryable = method.upper() == "GET" and status in self.config.retry_statuses
            if not retryable or attempts >= self.config.max_retries:
                return TransportResponse(status_code=status, body=payload, headers=response_headers)
            attempts += 1
            await asyncio.sleep(backoff)
            backoff = min(self.config.max_backoff_seconds, backoff * 2)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
