"""
Scraping Service Module
=======================

Clients for the external scraping call, ``scrape(url) -> ScrapeResult``,
plus the classifier that turns a failed result into a transient or
permanent fetch error. Clients make exactly one attempt; retries belong
to the run controller.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from booth_beacon.core.errors import FetchError, PermanentFetchError, TransientFetchError
from booth_beacon.ingestion.config import GlobalConfig, RateLimitConfig

logger = logging.getLogger(__name__)

FIRECRAWL_API_URL = "https://api.firecrawl.dev/v1/scrape"

# Status codes worth retrying
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504, 520, 522, 524})
BLOCKED_STATUS_CODES = frozenset({401, 403, 451})


@dataclass
class ScrapeResult:
    """Result of a single scrape attempt."""

    url: str
    content: str = ""
    success: bool = False
    status_code: int = 0
    mime_type: str = "text/html"
    error: str | None = None
    timed_out: bool = False


def is_valid_url(url: str) -> bool:
    """Check that a URL has an http(s) scheme and a host."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def classify_scrape_failure(result: ScrapeResult) -> FetchError:
    """
    Classify a failed scrape.

    Transient: timeouts, network errors, 5xx, 429 and other throttling codes.
    Permanent: invalid URLs, 404/410, blocked responses, other 4xx and
    successful responses with no content.

    Args:
        result: A ScrapeResult with ``success`` False or empty content

    Returns:
        TransientFetchError or PermanentFetchError (not raised)
    """
    url = result.url
    code = result.status_code
    message = result.error or f"HTTP {code}"

    if not is_valid_url(url):
        return PermanentFetchError(url, "invalid URL")
    if result.timed_out:
        return TransientFetchError(url, message or "timeout", code or None)
    if code in TRANSIENT_STATUS_CODES or code >= 500:
        return TransientFetchError(url, message, code)
    if code in BLOCKED_STATUS_CODES:
        return PermanentFetchError(url, f"blocked ({message})", code)
    if code in (404, 410):
        return PermanentFetchError(url, f"not found ({message})", code)
    if 400 <= code < 500:
        return PermanentFetchError(url, message, code)
    if code == 0:
        # No response received
        return TransientFetchError(url, message)
    if result.success and not result.content.strip():
        return PermanentFetchError(url, "empty content", code)
    return TransientFetchError(url, message, code)


class TokenBucket:
    """
    Token bucket rate limiter for per-host rate limiting.

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


class ScrapeClient(ABC):
    """Abstract scraping service."""

    @abstractmethod
    async def scrape(self, url: str) -> ScrapeResult:
        """
        Fetch one page.

        Never raises for HTTP or network failures; those are reported on
        the returned ScrapeResult.
        """

    async def aclose(self) -> None:
        """Release any held connections."""


class HttpScraper(ScrapeClient):
    """Direct HTTP scraper with per-host token-bucket rate limiting."""

    def __init__(
        self,
        user_agent: str = "BoothBeacon/0.1",
        timeout: float = 30.0,
        rate_limit: RateLimitConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.rate_limit = rate_limit or RateLimitConfig()
        self._rate_limiters: dict[str, TokenBucket] = {}
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": user_agent},
            follow_redirects=True,
            transport=transport,
        )

    def _get_rate_limiter(self, host: str) -> TokenBucket:
        """Get or create a rate limiter for a host."""
        if host not in self._rate_limiters:
            self._rate_limiters[host] = TokenBucket(
                requests_per_second=self.rate_limit.requests_per_second,
                burst_limit=self.rate_limit.burst_limit,
            )
        return self._rate_limiters[host]

    async def scrape(self, url: str) -> ScrapeResult:
        if not is_valid_url(url):
            return ScrapeResult(url=url, error="invalid URL")

        await self._get_rate_limiter(urlparse(url).netloc).acquire()

        try:
            response = await self._client.get(url)
        except httpx.TimeoutException:
            logger.warning(f"Timeout fetching {url} after {self.timeout}s")
            return ScrapeResult(url=url, error=f"Timeout after {self.timeout}s", timed_out=True)
        except httpx.HTTPError as e:
            logger.warning(f"HTTP error fetching {url}: {e}")
            return ScrapeResult(url=url, error=str(e) or type(e).__name__)

        mime_type = response.headers.get("content-type", "").split(";")[0].strip()
        success = 200 <= response.status_code < 300
        return ScrapeResult(
            url=url,
            content=response.text if success else "",
            success=success,
            status_code=response.status_code,
            mime_type=mime_type or "text/html",
            error=None if success else f"HTTP {response.status_code}",
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class FirecrawlScraper(ScrapeClient):
    """Scraper backed by the Firecrawl scrape API, for JS-heavy pages."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        wait_for_ms: int = 6000,
        api_url: str = FIRECRAWL_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self.timeout = timeout
        self.wait_for_ms = wait_for_ms
        # Firecrawl renders the page itself, so allow for its own timeout
        self._client = httpx.AsyncClient(
            timeout=timeout + wait_for_ms / 1000 + 10,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    async def scrape(self, url: str) -> ScrapeResult:
        if not is_valid_url(url):
            return ScrapeResult(url=url, error="invalid URL")

        payload = {
            "url": url,
            "formats": ["html"],
            "onlyMainContent": False,
            "waitFor": self.wait_for_ms,
            "timeout": int(self.timeout * 1000),
        }
        try:
            response = await self._client.post(self.api_url, json=payload)
        except httpx.TimeoutException:
            logger.warning(f"Firecrawl timeout for {url}")
            return ScrapeResult(url=url, error="Firecrawl timeout", timed_out=True)
        except httpx.HTTPError as e:
            logger.warning(f"Firecrawl HTTP error for {url}: {e}")
            return ScrapeResult(url=url, error=str(e) or type(e).__name__)

        if response.status_code != 200:
            return ScrapeResult(
                url=url,
                status_code=response.status_code,
                error=f"Firecrawl HTTP {response.status_code}",
            )

        try:
            body = response.json()
        except ValueError:
            return ScrapeResult(url=url, status_code=502, error="Firecrawl returned invalid JSON")
        data = body.get("data") or {}
        page_status = int((data.get("metadata") or {}).get("statusCode") or 200)
        html = data.get("html") or ""
        if not body.get("success", False) or not 200 <= page_status < 300:
            return ScrapeResult(
                url=url,
                status_code=page_status,
                error=body.get("error") or f"HTTP {page_status}",
            )
        return ScrapeResult(url=url, content=html, success=True, status_code=page_status)

    async def aclose(self) -> None:
        await self._client.aclose()


def create_scraper_from_env(config: GlobalConfig) -> ScrapeClient:
    """
    Build the configured scraper.

    ``SCRAPER`` env var overrides ``global.scraper``. Firecrawl requires
    ``FIRECRAWL_API_KEY``.

    Raises:
        ValueError: Firecrawl selected without an API key, or unknown scraper.
    """
    kind = os.environ.get("SCRAPER", config.scraper).lower()
    if kind == "http":
        return HttpScraper(
            user_agent=config.user_agent,
            timeout=config.request_timeout,
            rate_limit=config.default_rate_limit,
        )
    if kind == "firecrawl":
        api_key = os.environ.get("FIRECRAWL_API_KEY", "")
        if not api_key:
            raise ValueError("FIRECRAWL_API_KEY must be set to use the firecrawl scraper")
        return FirecrawlScraper(api_key=api_key, timeout=config.request_timeout)
    raise ValueError(f"Unsupported scraper: {kind}")
