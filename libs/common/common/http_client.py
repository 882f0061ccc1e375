"""
Control API client for the streaming platform.

Uses a *persistent* ``httpx.AsyncClient`` per ``ControlClient`` instance
to benefit from connection pooling and keep-alive.  The client is created
lazily on first use and closed via :meth:`close`.

Every call is a JSON ``POST``; the platform wraps its answers in an
envelope ``{"code": 0, "data": ...}`` and :meth:`ControlClient.request_json`
returns ``data`` or raises :class:`~common.errors.ApiError`.

Timeouts and retries are configurable; infinite retry loops are prevented
by a bounded retry count with exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from common.config import PLATFORM_API_SECRET
from common.correlation import HEADER_NAME, get_correlation_id
from common.errors import ApiError

logger = logging.getLogger(__name__)

# Defaults
_DEFAULT_TIMEOUT = 10.0
_MAX_RETRIES = 2
_BACKOFF_BASE = 0.3


class ControlClient:
    """Thin wrapper around httpx.AsyncClient for control API calls.

    Connection pooling is managed by a single ``httpx.AsyncClient``
    instance per ``ControlClient`` – no new client is created per request.
    ``transport`` lets tests mount an in-process ASGI app.
    """

    def __init__(
        self,
        base_url: str,
        secret: str = PLATFORM_API_SECRET,
        timeout: float = _DEFAULT_TIMEOUT,
        max_retries: int = _MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily initialise the persistent async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_connections=20,
                    max_keepalive_connections=10,
                    keepalive_expiry=30,
                ),
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        h = {HEADER_NAME: get_correlation_id()}
        if self.secret:
            h["Authorization"] = f"Bearer {self.secret}"
        return h

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with bounded retries + exponential backoff."""
        client = self._get_client()
        last_exc: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = await client.request(
                    method,
                    path,
                    headers=self._headers(),
                    **kwargs,
                )
                return resp
            except (httpx.ConnectError, httpx.ReadTimeout, httpx.WriteTimeout) as exc:
                last_exc = exc
                if attempt < self.max_retries:
                    backoff = _BACKOFF_BASE * (2**attempt)
                    logger.warning(
                        "HTTP %s %s%s failed (attempt %d/%d): %s – retrying in %.1fs",
                        method,
                        self.base_url,
                        path,
                        attempt + 1,
                        self.max_retries + 1,
                        exc,
                        backoff,
                    )
                    await asyncio.sleep(backoff)

        # All retries exhausted
        raise last_exc  # type: ignore[misc]

    async def request_json(self, path: str, body: Any = None) -> Any:
        """POST *body* (JSON, optional) to *path* and return the envelope's ``data``."""
        kwargs: dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body

        try:
            resp = await self._request_with_retry("POST", path, **kwargs)
        except httpx.HTTPError as exc:
            raise ApiError(f"request {path} failed", path=path) from exc

        if resp.status_code != 200:
            raise ApiError(
                f"request {path} status={resp.status_code} body={resp.text[:300]}",
                path=path,
                status_code=resp.status_code,
            )

        try:
            envelope = resp.json()
        except json.JSONDecodeError as exc:
            raise ApiError(f"request {path} returned invalid json {resp.text[:300]!r}", path=path) from exc

        if not isinstance(envelope, dict):
            raise ApiError(f"request {path} returned non-object envelope", path=path)
        code = envelope.get("code", 0)
        if code != 0:
            raise ApiError(f"request {path} invalid code={code} body={resp.text[:300]}", path=path, status_code=200)

        logger.debug("API %s ok", path)
        return envelope.get("data")

    async def close(self) -> None:
        """Close the underlying HTTP client (releases connections)."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
