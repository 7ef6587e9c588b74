"""
HTTP client for the remote data source.

Every resource is a GET endpoint returning a JSON array, paginated with
``limit``/``offset`` query parameters and authorized with a bearer token.
``iter_pages`` walks a resource to exhaustion: it stops at the first page
shorter than the page size.

Transient failures (429, 5xx, connection errors, timeouts) are retried with
exponential backoff. Anything else maps onto the SyncError taxonomy and
aborts the resource being fetched.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from .config import DEFAULT_API_URL, DEFAULT_PAGE_SIZE, validate_api_url
from .errors import AuthorizationError, NotFoundError, TransportError

logger = logging.getLogger(__name__)

# Retry config for page fetches
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0  # seconds
MAX_RETRY_AFTER = 60.0

DEFAULT_TIMEOUT = 30.0


class RemoteClient:
    """Async HTTP client for the paginated remote API."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        token: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_url = validate_api_url(api_url)
        self._token = token

        headers: dict[str, str] = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def api_url(self) -> str:
        return self._api_url

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    async def fetch_page(
        self,
        path: str,
        *,
        limit: int,
        offset: int,
        params: dict[str, Any] | None = None,
    ) -> list:
        """GET one page of a resource -> list of raw items.

        Raises:
            AuthorizationError: no token configured, or the server rejected it
            NotFoundError: the endpoint does not exist
            TransportError: any other HTTP failure, after retries
        """
        if not self._token:
            raise AuthorizationError("API token required")

        query = {**(params or {}), "limit": limit, "offset": offset}
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES):
            logger.debug("Fetching %s offset=%d limit=%d", path, offset, limit)
            try:
                resp = await self._client.get(path, params=query)
            except httpx.TransportError as e:
                last_error = TransportError(f"Request to {path} failed: {e}")
            else:
                if resp.status_code == 429:
                    # Rate limited, back off and retry
                    retry_after = self._retry_after(resp)
                    logger.info("Rate limited, retrying after %.1fs", retry_after)
                    last_error = TransportError(f"Rate limited on {path}", 429)
                    if attempt < MAX_RETRIES - 1:
                        await asyncio.sleep(retry_after)
                    continue
                if resp.status_code >= 500:
                    last_error = TransportError(
                        f"API error {resp.status_code} for {path}", resp.status_code
                    )
                else:
                    return self._parse_page(path, resp)

            if attempt < MAX_RETRIES - 1:
                delay = RETRY_BACKOFF_BASE * (2 ** attempt)
                logger.info(
                    "Fetch attempt %d for %s failed, retrying in %.1fs: %s",
                    attempt + 1, path, delay, last_error,
                )
                await asyncio.sleep(delay)

        raise TransportError(
            f"Fetching {path} failed after {MAX_RETRIES} attempts: {last_error}",
            getattr(last_error, "status_code", None),
        ) from last_error

    def _retry_after(self, resp: httpx.Response) -> float:
        try:
            value = float(resp.headers.get("Retry-After", "5"))
        except ValueError:
            value = 5.0
        return min(max(value, 0.0), MAX_RETRY_AFTER)

    def _parse_page(self, path: str, resp: httpx.Response) -> list:
        status = resp.status_code
        if status >= 400:
            logger.error("Error %d for %s: %s", status, path, resp.text[:500])
        if status in (401, 403):
            raise AuthorizationError("Unauthorized. Please check your API token.")
        if status == 404:
            raise NotFoundError(
                f"Endpoint not found: {path}. API path might be incorrect.", 404
            )
        if status >= 400:
            raise TransportError(f"API error {status} for {path}", status)

        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {path}: {e}", status) from e
        if not isinstance(data, list):
            raise TransportError(f"Expected a JSON array from {path}", status)
        return data

    async def iter_pages(
        self,
        path: str,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[list]:
        """Yield successive non-empty pages in increasing offset order.

        Stops after the first page with fewer than ``page_size`` items.
        """
        offset = 0
        while True:
            page = await self.fetch_page(path, limit=page_size, offset=offset, params=params)
            if page:
                yield page
            if len(page) < page_size:
                return
            offset += page_size

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
