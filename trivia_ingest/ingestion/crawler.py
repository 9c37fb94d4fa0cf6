"""
HTTP Crawler Module
===================

Provides HTTP fetching for listing APIs, venue pages and photo downloads
with per-source rate limiting, timeouts and bounded retries.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from trivia_ingest.ingestion.registry import SourceConfig

logger = logging.getLogger(__name__)

# Statuses worth retrying; anything else is returned to the caller as-is
RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})


@dataclass
class FetchResult:
    """Result of an HTTP request."""

    url: str
    content: bytes
    mime_type: str
    status_code: int
    fetched_at: datetime
    error: str | None = None

    @property
    def success(self) -> bool:
        """Check if fetch was successful."""
        return self.error is None and 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON (raises ValueError on malformed bodies)."""
        return json.loads(self.content)

    @classmethod
    def failed(cls, url: str, error: str, status_code: int = 0) -> FetchResult:
        return cls(
            url=url,
            content=b"",
            mime_type="",
            status_code=status_code,
            fetched_at=datetime.now(UTC),
            error=error,
        )


class TokenBucket:
    """
    Token bucket rate limiter for per-source rate limiting.

    Allows bursting up to burst_limit requests, then enforces
    the steady-state rate of requests_per_second.
    """

    def __init__(self, requests_per_second: float, burst_limit: int) -> None:
        self.requests_per_second = requests_per_second
        self.burst_limit = burst_limit
        self.tokens = float(burst_limit)
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.last_update = now

            self.tokens = min(
                self.burst_limit, self.tokens + elapsed * self.requests_per_second
            )

            if self.tokens < 1.0:
                wait_time = (1.0 - self.tokens) / self.requests_per_second
                await asyncio.sleep(wait_time)
                self.tokens = 0.0
            else:
                self.tokens -= 1.0


class Crawler:
    """
    Async HTTP client wrapper used by every outbound scraper request.

    Features:
    - Per-source rate limiting with a token bucket
    - Source allow/deny lists for detail page URLs
    - Exponential backoff on timeouts, transport errors and 429/5xx
    """

    def __init__(
        self,
        user_agent: str = "TriviaIngest/0.1",
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._transport = transport
        self._sleep = sleep
        self._rate_limiters: dict[str, TokenBucket] = {}

    def _get_rate_limiter(self, source: SourceConfig) -> TokenBucket:
        """Get or create a rate limiter for a source."""
        if source.slug not in self._rate_limiters:
            self._rate_limiters[source.slug] = TokenBucket(
                requests_per_second=source.rate_limit.requests_per_second,
                burst_limit=source.rate_limit.burst_limit,
            )
        return self._rate_limiters[source.slug]

    def client(self, timeout: float | None = None) -> httpx.AsyncClient:
        """Build a client carrying the crawler's defaults."""
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.timeout,
            transport=self._transport,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
        )

    async def fetch(
        self,
        url: str,
        source: SourceConfig | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResult:
        """
        GET a URL with rate limiting and retries.

        Args:
            url: URL to fetch
            source: Source configuration for rate limiting and URL filtering
            headers: Extra request headers
            timeout: Per-request timeout overriding the crawler default

        Returns:
            FetchResult with content or error
        """
        if source is not None:
            if not source.is_url_allowed(url):
                return FetchResult.failed(
                    url, f"URL not allowed by source '{source.slug}' configuration"
                )
            await self._get_rate_limiter(source).acquire()

        return await self._request("GET", url, headers=headers, timeout=timeout)

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResult:
        """POST a JSON payload with the same retry policy as ``fetch``."""
        return await self._request(
            "POST", url, headers=headers, timeout=timeout, json_body=payload, auth=auth
        )

    async def _request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        json_body: dict[str, Any] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> FetchResult:
        fetched_at = datetime.now(UTC)
        effective_timeout = timeout if timeout is not None else self.timeout
        last_error: str | None = None
        last_status = 0

        for attempt in range(self.max_retries):
            try:
                async with self.client(effective_timeout) as client:
                    response = await client.request(
                        method, url, headers=headers, json=json_body, auth=auth
                    )

                mime_type = response.headers.get("content-type", "").split(";")[0].strip()
                if response.status_code in RETRYABLE_STATUS_CODES:
                    last_status = response.status_code
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        f"{method} {url} returned {response.status_code} "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                else:
                    error = None
                    if not 200 <= response.status_code < 300:
                        error = f"HTTP {response.status_code}"
                    return FetchResult(
                        url=str(response.url),
                        content=response.content,
                        mime_type=mime_type,
                        status_code=response.status_code,
                        fetched_at=fetched_at,
                        error=error,
                    )

            except httpx.TimeoutException:
                last_error = f"Timeout after {effective_timeout}s"
                logger.warning(
                    f"Timeout on {method} {url} (attempt {attempt + 1}/{self.max_retries})"
                )
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.warning(
                    f"HTTP error on {method} {url}: {e} "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )

            if attempt < self.max_retries - 1:
                await self._sleep(2**attempt)

        return FetchResult.failed(url, last_error or "Unknown error", status_code=last_status)

    async def fetch_batch(
        self,
        urls: list[str],
        source: SourceConfig | None = None,
        concurrency: int = 5,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> list[FetchResult]:
        """
        Fetch multiple URLs with controlled concurrency.

        Returns:
            List of FetchResults in the same order as input URLs
        """
        semaphore = asyncio.Semaphore(concurrency)

        async def fetch_with_semaphore(url: str) -> FetchResult:
            async with semaphore:
                return await self.fetch(url, source, headers=headers, timeout=timeout)

        tasks = [fetch_with_semaphore(url) for url in urls]
        return await asyncio.gather(*tasks)
