"""Shared HTTP transport for REST-based vendor adapters.

Adapters build their protocol on top of this class; it only deals with the
session, authentication, pacing, retries and error mapping.
"""
import asyncio
import logging
from typing import Any, Optional

import httpx

from ..errors import VendorAPIError, VendorTimeoutError
from ..utils.retry import with_retry
from .models import APIConfig

logger = logging.getLogger(__name__)


class HTTPTransport:
    """Authenticated JSON session against one vendor API.

    Args:
        config: API entry providing url, credentials, rate_limit and results_limit
        timeout: Per-request timeout in seconds
        max_attempts: Attempts per request for retryable failures
        min_wait: Minimum backoff between attempts (seconds)
        max_wait: Maximum backoff between attempts (seconds)
        transport: Optional httpx transport (tests pass an httpx.MockTransport)
    """

    def __init__(
        self,
        config: APIConfig,
        timeout: float = 30.0,
        max_attempts: int = 3,
        min_wait: float = 1,
        max_wait: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._last_request = 0.0
        self._send = with_retry(
            max_attempts=max_attempts, min_wait=min_wait, max_wait=max_wait
        )(self._send_once)

    @property
    def api_label(self) -> str:
        return self.config.label

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.config.get_credential("api_token")
        if token:
            scheme = self.config.get_credential("auth_scheme") or "Token"
            headers["Authorization"] = f"{scheme} {token}"
        api_key = self.config.get_credential("api_key")
        if api_key:
            header = self.config.get_credential("api_key_header") or "X-API-Key"
            headers[header] = api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.config.url,
                headers=self._headers(),
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._http

    async def _pace(self) -> None:
        """Honour rate_limit (requests per second) between calls."""
        if self.config.rate_limit <= 0:
            return
        loop = asyncio.get_running_loop()
        interval = 1.0 / self.config.rate_limit
        wait = self._last_request + interval - loop.time()
        if wait > 0:
            await asyncio.sleep(wait)
        self._last_request = loop.time()

    async def _send_once(self, method: str, path: str, **kwargs) -> httpx.Response:
        await self._pace()
        try:
            resp = await self._client().request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise VendorTimeoutError(self.api_label, f"{method} {path} timed out: {e}") from e

        if resp.status_code == 429:
            raise VendorTimeoutError(self.api_label, f"{method} {path} rate limited", 429)
        if resp.status_code >= 400:
            raise VendorAPIError(
                self.api_label, f"{method} {path} failed: {resp.text[:200]}", resp.status_code
            )
        return resp

    async def request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and decode the JSON body (None when empty)."""
        logger.debug(f"[{self.api_label}] {method} {path}")
        resp = await self._send(method, path, **kwargs)
        if not resp.content:
            return None
        return resp.json()

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def put(self, path: str, payload: dict[str, Any]) -> Any:
        return await self.request("PUT", path, json=payload)

    async def post(self, path: str, payload: dict[str, Any]) -> Any:
        return await self.request("POST", path, json=payload)

    async def get_paginated(
        self, path: str, params: Optional[dict[str, Any]] = None
    ) -> list[Any]:
        """Fetch every page of a list endpoint.

        Pages are requested with ``page``/``limit`` query parameters until a
        page shorter than ``results_limit`` comes back.
        """
        limit = self.config.results_limit
        results: list[Any] = []
        page = 1
        while True:
            query = dict(params or {})
            query.update({"page": page, "limit": limit})
            batch = await self.get(path, params=query) or []
            if not isinstance(batch, list):
                raise VendorAPIError(self.api_label, f"GET {path} did not return a list")
            results.extend(batch)
            if len(batch) < limit:
                break
            page += 1
        return results

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
