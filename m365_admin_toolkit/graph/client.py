"""
Async REST clients with pagination, throttling, retry, and change-guard enforcement.
GraphClient targets Microsoft Graph; the same ApiClient base backs the
Power Platform admin client.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Optional

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    GRAPH_BETA_VERSION,
    MAX_RETRIES,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    BACKOFF_MULTIPLIER,
    DEFAULT_PAGE_SIZE,
    MAX_PAGES_PER_ENDPOINT,
    MAX_CONCURRENT_REQUESTS,
)
from ..safety.guardian import ChangeGuard, SafetyViolation

logger = logging.getLogger("m365_admin_toolkit.graph")


class GraphAPIError(Exception):
    """Raised when an API returns a non-recoverable error."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"API Error {status_code} for {url}: {message}")


class ApiClient:
    """
    Async REST client.
    Features:
      - Change-guard validation of every request (dry-run for writes)
      - Automatic pagination via @odata.nextLink / nextLink
      - Exponential backoff on 429/503/504, honouring Retry-After
      - Concurrent request semaphore
      - Streaming generators for large result sets
    """

    supports_top: bool = True

    def __init__(
        self,
        access_token: str,
        guardian: ChangeGuard,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.guardian = guardian
        self._transport = transport
        self._semaphore = asyncio.Semaphore(MAX_CONCURRENT_REQUESTS)
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    def _default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=MAX_CONCURRENT_REQUESTS * 2,
                max_keepalive_connections=MAX_CONCURRENT_REQUESTS,
            ),
            headers=self._default_headers(),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str, **kwargs) -> str:
        raise NotImplementedError

    def _default_params(self) -> dict:
        return {}

    # --- Reads ---

    async def get(self, endpoint: str, params: Optional[dict] = None, **kwargs) -> dict:
        """Execute a single GET request with retry/throttle handling."""
        url = self._build_url(endpoint, **kwargs)
        self.guardian.validate_request("GET", url)
        merged = {**self._default_params(), **(params or {})}

        async with self._semaphore:
            return await self._execute_with_retry("GET", url, params=merged or None)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        top: Optional[int] = None,
        skip_top: bool = False,
        **kwargs,
    ) -> list[dict]:
        """
        Fetch all pages of a paginated endpoint into a list.
        Use get_all_pages_stream() for very large datasets.
        """
        items = []
        async for item in self.get_all_pages_stream(
            endpoint, params, top=top, skip_top=skip_top, **kwargs
        ):
            items.append(item)
        return items

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        top: Optional[int] = None,
        skip_top: bool = False,
        **kwargs,
    ) -> AsyncGenerator[dict, None]:
        """
        Stream all pages of a paginated endpoint as an async generator.
        Set skip_top=True for endpoints that don't support $top.
        """
        params = {**self._default_params(), **(params or {})}
        if self.supports_top and not skip_top and "$top" not in params:
            params["$top"] = str(min(top, DEFAULT_PAGE_SIZE) if top else DEFAULT_PAGE_SIZE)

        url: Optional[str] = self._build_url(endpoint, **kwargs)
        pages = 0

        while url and pages < MAX_PAGES_PER_ENDPOINT:
            self.guardian.validate_request("GET", url)

            async with self._semaphore:
                data = await self._execute_with_retry("GET", url, params=params)

            if data.get("_forbidden"):
                raise GraphAPIError(
                    403,
                    data.get("_error_message", "Forbidden — missing API permission"),
                    url,
                )

            for item in data.get("value", []):
                yield item

            url = data.get("@odata.nextLink") or data.get("nextLink")
            params = None  # nextLink carries all params
            pages += 1

        if pages >= MAX_PAGES_PER_ENDPOINT:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
                f"for endpoint: {endpoint}"
            )

    # --- Writes (guarded) ---

    async def post(self, endpoint: str, body: Optional[dict] = None, **kwargs) -> dict:
        return await self._write("POST", endpoint, body, **kwargs)

    async def patch(self, endpoint: str, body: dict, **kwargs) -> dict:
        return await self._write("PATCH", endpoint, body, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> dict:
        return await self._write("DELETE", endpoint, None, **kwargs)

    async def _write(self, method: str, endpoint: str, body: Optional[dict], **kwargs) -> dict:
        url = self._build_url(endpoint, **kwargs)
        if not self.guardian.validate_request(method, url, body):
            return {"_dry_run": True}

        async with self._semaphore:
            try:
                data = await self._execute_with_retry(
                    method, url, params=self._default_params() or None, json_body=body
                )
            except GraphAPIError as e:
                self.guardian.mark_failed(url, str(e))
                raise
        if data.get("_forbidden"):
            error = GraphAPIError(403, data.get("_error_message", "Forbidden"), url)
            self.guardian.mark_failed(url, str(error))
            raise error
        return data

    # --- Transport ---

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """Execute request with exponential backoff on throttling."""
        backoff = INITIAL_BACKOFF_SECONDS

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._execute_raw(
                    method, url, params=params, json_body=json_body
                )
                self._request_count += 1

                if response.status_code in (200, 201, 202):
                    if not response.content or not response.content.strip():
                        return {"value": []}
                    try:
                        return response.json()
                    except ValueError:
                        logger.debug(f"{response.status_code} response with non-JSON body from {url}")
                        return {"value": []}

                if response.status_code == 204:
                    return {}

                if response.status_code == 404 and method == "GET":
                    logger.debug(f"404 Not Found: {url}")
                    return {"value": [], "_not_found": True}

                if response.status_code in (429, 503, 504):
                    self._throttle_count += 1
                    retry_after = _parse_retry_after(response.headers.get("Retry-After"), backoff)
                    wait_time = max(retry_after, backoff)
                    logger.warning(
                        f"Throttled ({response.status_code}) on {url}. "
                        f"Retry {attempt + 1}/{MAX_RETRIES} in {wait_time:.1f}s"
                    )
                    if attempt == MAX_RETRIES:
                        break
                    await asyncio.sleep(wait_time)
                    backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                    continue

                error_msg = _error_message(response)

                if response.status_code == 403:
                    logger.warning(f"403 Forbidden: {url} — {error_msg}")
                    return {"value": [], "_forbidden": True, "_error_message": error_msg}

                raise GraphAPIError(response.status_code, error_msg, url)

            except httpx.TimeoutException:
                logger.warning(f"Timeout on {url}, attempt {attempt + 1}/{MAX_RETRIES}")
                if attempt == MAX_RETRIES:
                    raise
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

            except httpx.ConnectError as e:
                logger.warning(f"Connection error on {url}: {e}")
                if attempt == MAX_RETRIES:
                    raise
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

        raise GraphAPIError(429, f"Still throttled after {MAX_RETRIES} retries", url)

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError(f"{type(self).__name__} not initialized. Use 'async with' context.")

        if method == "GET":
            return await self._client.get(url, params=params)
        if method == "POST":
            return await self._client.post(url, json=json_body, params=params)
        if method == "PATCH":
            return await self._client.patch(url, json=json_body, params=params)
        if method == "DELETE":
            return await self._client.delete(url, params=params)
        raise SafetyViolation(f"Unsupported method at raw level: {method}")

    def get_stats(self) -> dict:
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }


class GraphClient(ApiClient):
    """Microsoft Graph client for the v1.0 and beta endpoints."""

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        headers["ConsistencyLevel"] = "eventual"  # Required for $count, $search
        return headers

    def _build_url(self, endpoint: str, beta: bool = False) -> str:
        if endpoint.startswith("http"):
            return endpoint
        version = GRAPH_BETA_VERSION if beta else GRAPH_API_VERSION
        return f"{GRAPH_BASE_URL}/{version}/{endpoint.lstrip('/')}"


def _parse_retry_after(value: Optional[str], default: float) -> float:
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _error_message(response: httpx.Response) -> str:
    try:
        body: Any = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error", {})
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
    return response.text[:200]
