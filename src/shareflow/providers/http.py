"""
Shared aiohttp client for source providers.

Handles session lifetime, concurrency and optional rate limiting. Retries are
left to the caller's RetryPolicy so that one failed file download is one
attempt.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.providers.http")


class TokenBucket:
    """
    Token bucket rate limiter.

    Allows a maximum number of requests per time interval. Tokens are refilled
    at a constant rate; when the bucket is empty, acquire() waits.

    Example:
        bucket = TokenBucket(rate=10, interval=1.0)  # 10 requests per second
        await bucket.acquire()
    """

    def __init__(self, rate: float, interval: float = 1.0):
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.rate = rate
        self.interval = interval
        self.tokens = float(rate)
        self.last_refill = time.monotonic()
        self.lock = asyncio.Lock()
        self.refill_rate = rate / interval

    async def acquire(self) -> None:
        while True:
            async with self.lock:
                now = time.monotonic()
                elapsed = now - self.last_refill
                self.tokens = min(self.rate, self.tokens + elapsed * self.refill_rate)
                self.last_refill = now

                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return

                wait_time = (1.0 - self.tokens) / self.refill_rate

            # Wait outside the lock so other tasks can refill and check
            await asyncio.sleep(min(wait_time * 1.01, 0.1))


@dataclass
class HTTPResponse:
    """A fully read HTTP response."""

    status: int
    url: str
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> str | None:
        value = self.headers.get("Content-Type") or self.headers.get("content-type")
        if not value:
            return None
        return value.split(";", 1)[0].strip() or None

    def json(self) -> Any:
        return json.loads(self.body)


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    # aiohttp/yarl reject bool and None query values
    if not params:
        return params
    clean: dict[str, Any] = {}
    for k, v in params.items():
        if v is None:
            continue
        clean[k] = str(v).lower() if isinstance(v, bool) else v
    return clean


class HTTPClient:
    """
    Reusable aiohttp session wrapper.

    Example:
        client = HTTPClient(timeout=60, rate_limit=10)
        async with client:
            response = await client.request("GET", "https://www.googleapis.com/drive/v3/files", params=...)
    """

    def __init__(
        self,
        headers: dict[str, str] | None = None,
        timeout: int = 120,
        max_concurrent: int = 10,
        rate_limit: int | None = None,
        rate_limit_interval: float = 1.0,
    ):
        """
        Args:
            headers: Default headers sent with every request
            timeout: Total request timeout in seconds (default: 120)
            max_concurrent: Maximum concurrent requests (default: 10)
            rate_limit: Maximum requests per interval; None disables rate limiting
            rate_limit_interval: Interval in seconds for rate limiting (default: 1.0)
        """
        self.default_headers = headers or {}
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: aiohttp.ClientSession | None = None
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._session_lock = asyncio.Lock()
        self._session_refcount = 0

        self.token_bucket: TokenBucket | None = None
        if rate_limit is not None:
            self.token_bucket = TokenBucket(rate=rate_limit, interval=rate_limit_interval)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self.session is None or self.session.closed:
                self.session = aiohttp.ClientSession(timeout=self.timeout, headers=self.default_headers)
            return self.session

    async def __aenter__(self) -> "HTTPClient":
        await self._ensure_session()
        async with self._session_lock:
            self._session_refcount += 1
        return self

    async def __aexit__(self, *exc: Any) -> None:
        async with self._session_lock:
            self._session_refcount -= 1
            if self._session_refcount <= 0 and self.session and not self.session.closed:
                await self.session.close()
                self.session = None
                self._session_refcount = 0

    async def close(self) -> None:
        """Close the session regardless of open contexts."""
        async with self._session_lock:
            if self.session and not self.session.closed:
                await self.session.close()
            self.session = None
            self._session_refcount = 0

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        """
        Send one request and read the full body.

        Raises:
            aiohttp.ClientResponseError: Non-2xx status
            aiohttp.ClientError / asyncio.TimeoutError: Transport failure
        """
        session = await self._ensure_session()

        async with self.semaphore:
            if self.token_bucket:
                await self.token_bucket.acquire()

            start_time = time.monotonic()
            async with session.request(
                method,
                url,
                params=_clean_params(params),
                json=json_body,
                headers=headers,
            ) as response:
                body = await response.read()
                duration = time.monotonic() - start_time
                log_level = logger.debug if response.status <= 299 else logger.warning
                log_level(f"{method} {url} {response.status} {duration:.2f}s {len(body)}B")

                if response.status > 299:
                    logger.warning(f"{method} {response.status} {url} - {body[:200]!r}")
                    response.raise_for_status()

                return HTTPResponse(
                    status=response.status,
                    url=str(response.url),
                    body=body,
                    headers=dict(response.headers),
                )

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        return (await self.request("GET", url, **kwargs)).json()

    async def post_json(self, url: str, payload: Any, **kwargs: Any) -> Any:
        return (await self.request("POST", url, json_body=payload, **kwargs)).json()
