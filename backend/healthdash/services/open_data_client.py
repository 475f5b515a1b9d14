"""HTTP client for public open-data APIs with retry logic and bounded timeouts."""

import asyncio
import logging
from typing import Any

import httpx

from healthdash.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

USER_AGENT = "health-dashboard/1.0 (+https://github.com/nychealth)"


class UpstreamClientError(Exception):
    """Raised when an upstream request fails after retries or with a non-retryable status."""

    pass


class OpenDataClient:
    """
    Client for the dashboard's upstream sources (Socrata/SODA JSON APIs,
    Delphi epidata, raw CSV files, HTML pages and RSS feeds).

    Features:
    - Exponential backoff retry on 429, 5xx and transport errors
    - Per-request timeout (timeouts are treated as transport errors)
    - Conditional GET without retry for the CSV download cache
    """

    def __init__(
        self,
        max_retries: int = settings.sync_retry_attempts,
        timeout: float = settings.sync_timeout_seconds,
        backoff_base: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.max_retries = max_retries
        self.timeout = timeout
        self.backoff_base = backoff_base
        self.transport = transport

        self.headers: dict[str, str] = {
            "User-Agent": USER_AGENT,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=True,
        )

    async def _request_with_retry(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        """Make HTTP GET with exponential backoff retry; returns the 2xx response."""
        last_error: Exception | None = None
        headers = {**self.headers, "Accept": accept}

        for attempt in range(self.max_retries + 1):
            is_last = attempt == self.max_retries
            try:
                async with self._client() as client:
                    response = await client.get(url, headers=headers, params=params)
                    response.raise_for_status()
                    return response

            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if status == 429:  # Rate limited
                    wait_time = 2**attempt * 10 * self.backoff_base
                    if not is_last:
                        logger.warning(f"Rate limited by {url}, waiting {wait_time}s before retry")
                        await asyncio.sleep(wait_time)
                elif status >= 500:
                    wait_time = 2**attempt * self.backoff_base
                    if not is_last:
                        logger.warning(f"Server error {status} from {url}, retry in {wait_time}s")
                        await asyncio.sleep(wait_time)
                else:
                    raise UpstreamClientError(f"HTTP {status} from {url}") from e

            except httpx.RequestError as e:
                last_error = e
                wait_time = 2**attempt * self.backoff_base
                if not is_last:
                    logger.warning(f"Request error for {url}: {e!r}, retry in {wait_time}s")
                    await asyncio.sleep(wait_time)

        raise UpstreamClientError(
            f"Failed after {self.max_retries + 1} attempts: {url}: {last_error!r}"
        )

    async def fetch_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """Fetch and decode a JSON document."""
        response = await self._request_with_retry(url, params)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamClientError(f"Invalid JSON from {url}: {e}") from e

    async def fetch_records(
        self, url: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """
        Fetch a SODA resource as a list of records.

        Args:
            url: Resource URL ending in .json
            params: SoQL parameters ($where, $order, $limit, ...)

        Returns:
            List of raw records
        """
        logger.info(f"Fetching records from {url}: params={params}")
        records = await self.fetch_json(url, params)
        if not isinstance(records, list):
            raise UpstreamClientError(f"Expected a JSON array from {url}")
        logger.info(f"Fetched {len(records)} records from {url}")
        return records

    async def fetch_text(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        accept: str = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    ) -> str:
        """Fetch an HTML page, feed or other text resource."""
        response = await self._request_with_retry(url, params, accept=accept)
        return response.text

    async def conditional_get(
        self,
        url: str,
        last_modified: str | None = None,
        etag: str | None = None,
    ) -> httpx.Response:
        """
        Single GET with If-Modified-Since / If-None-Match validators.

        Returns the response whatever its status (304 included); transport
        errors and timeouts propagate as httpx.RequestError.
        """
        headers = {**self.headers, "Accept": "text/csv,text/plain,*/*"}
        if last_modified:
            headers["If-Modified-Since"] = last_modified
        if etag:
            headers["If-None-Match"] = etag

        async with self._client() as client:
            return await client.get(url, headers=headers)
