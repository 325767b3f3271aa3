"""Mostaql Hub — Async HTTP Client.

Rate-limited, retrying async HTTP client for mostaql.com, built on
httpx.AsyncClient with:
  - User-agent rotation from config
  - Backoff retry on 429, 5xx, timeouts and connection errors
  - A cache-busting query parameter on listing pages
  - Anti-bot challenge detection (raises ParseError)
  - Request counting for health telemetry
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import Optional
from urllib.parse import urlencode, urlsplit

import httpx

from mostaql_hub.config import ScraperConfig
from mostaql_hub.errors import FetchError, ParseError
from mostaql_hub.utils.logger import get_logger
from mostaql_hub.utils.rate_limiter import AsyncRateLimiter

logger = get_logger(__name__)

# ── Browser-like headers common to all requests ──────────
_COMMON_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ar,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "same-origin",
}

_NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store",
    "Pragma": "no-cache",
}


def with_cache_buster(url: str, now_ms: Optional[int] = None) -> str:
    """Append a _cb=<epoch ms> parameter so proxies never serve a stale list."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    separator = "&" if urlsplit(url).query else "?"
    return f"{url}{separator}{urlencode({'_cb': stamp})}"


def find_challenge_marker(html: str, markers: list[str]) -> Optional[str]:
    """Return the first anti-bot marker present in the body, if any."""
    for marker in markers:
        if marker in html:
            return marker
    return None


class MostaqlClient:
    """Async HTTP client for mostaql.com with retry and rate limiting.

    Attributes:
        config: Scraper configuration from settings.yaml.
        total_requests: Running count of successful requests this session.
    """

    def __init__(
        self,
        config: ScraperConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client from a ScraperConfig.

        Args:
            config: ScraperConfig instance loaded from settings.yaml.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config
        self.total_requests: int = 0
        self._transport = transport
        self._rate_limiter = AsyncRateLimiter(
            max_calls=1,
            period_seconds=float(config.request_delay_seconds),
        )
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily create the httpx.AsyncClient."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={**_COMMON_HEADERS, "User-Agent": random.choice(self.config.user_agents)},
                follow_redirects=True,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    def _rotate_ua(self) -> None:
        if self._client is not None:
            self._client.headers["User-Agent"] = random.choice(self.config.user_agents)

    async def get_list_page(self, url: str) -> str:
        """Fetch a category listing page, bypassing caches.

        Args:
            url: Category listing URL.

        Returns:
            Raw HTML.

        Raises:
            FetchError: If the page could not be retrieved.
            ParseError: If the body is an anti-bot challenge page.
        """
        logger.info("Fetching listing page: %s", url)
        return await self._get_html(with_cache_buster(url), extra_headers=_NO_CACHE_HEADERS)

    async def get_detail_page(self, url: str) -> str:
        """Fetch a project detail page.

        Raises:
            FetchError: If the page could not be retrieved.
            ParseError: If the body is an anti-bot challenge page.
        """
        logger.debug("Fetching detail: %s", url)
        return await self._get_html(url)

    async def _get_html(self, url: str, extra_headers: Optional[dict[str, str]] = None) -> str:
        response = await self._request(url, extra_headers=extra_headers)
        html = response.text
        marker = find_challenge_marker(html, self.config.challenge_markers)
        if marker is not None:
            logger.warning("Anti-bot challenge detected on %s (marker: %s)", url, marker)
            raise ParseError(url, "anti-bot challenge page", marker=marker)
        return html

    async def _request(
        self,
        url: str,
        extra_headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Execute a GET with rate limiting and retry logic.

        Retry strategy (max_retries extra attempts):
          - 429 Too Many Requests: honour Retry-After (capped at 30s)
          - 5xx Server Error: wait 2s × attempt
          - Timeout / connection error: wait 1s × attempt
          - Other 4xx: fail immediately

        Raises:
            FetchError: If the request failed or all retries were exhausted.
        """
        client = self._get_client()
        attempts = self.config.max_retries + 1
        last_reason = "no attempt made"
        last_status: Optional[int] = None

        for attempt in range(1, attempts + 1):
            await self._rate_limiter.acquire()
            self._rotate_ua()

            try:
                resp = await client.get(url, headers=extra_headers or {})
            except httpx.TimeoutException:
                last_reason, last_status = "timeout", None
                wait = 1.0 * attempt
            except httpx.HTTPError as e:
                last_reason, last_status = f"{type(e).__name__}: {e}", None
                wait = 1.0 * attempt
            else:
                if resp.status_code == 429:
                    last_reason, last_status = "rate limited", 429
                    wait = min(_retry_after(resp), 30.0)
                elif resp.status_code >= 500:
                    last_reason, last_status = "server error", resp.status_code
                    wait = 2.0 * attempt
                elif resp.status_code >= 400:
                    raise FetchError(url, "client error", status_code=resp.status_code)
                else:
                    self.total_requests += 1
                    return resp

            logger.warning(
                "%s on attempt %d/%d for %s",
                last_reason.capitalize(), attempt, attempts, url,
            )
            if attempt < attempts:
                await asyncio.sleep(wait)

        logger.error("All %d attempts failed for %s", attempts, url)
        raise FetchError(url, last_reason, status_code=last_status)

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("HTTP client closed (total requests: %d)", self.total_requests)

    async def __aenter__(self) -> "MostaqlClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


def _retry_after(resp: httpx.Response) -> float:
    try:
        return float(resp.headers.get("Retry-After", 30))
    except ValueError:
        return 30.0
