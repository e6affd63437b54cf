"""HTTP client with rate limiting, timeouts and retry/backoff."""

import asyncio
import logging
import random
import time
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from .errors import RetriesExhaustedError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_INITIAL_BACKOFF = 0.5
DEFAULT_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

# Connection pool limits
DEFAULT_LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=10)


class TokenBucket:
    """Async token-bucket rate limiter.

    Allows ``burst`` requests at once and refills at ``rate`` tokens per
    second. Safe to share between concurrent coroutines.
    """

    def __init__(self, rate: float, burst: int = 1):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.burst = max(1, burst)
        self._tokens = float(self.burst)
        self._updated = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self.burst, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    async def acquire(self) -> None:
        """Wait until a token is available and take it."""
        async with self._lock:
            self._refill()
            while self._tokens < 1:
                await asyncio.sleep((1 - self._tokens) / self.rate)
                self._refill()
            self._tokens -= 1


class ResilientClient:
    """Async HTTP client that retries transient failures.

    Every attempt waits on the rate limiter first. Transport errors and
    responses with a retryable status are retried with exponential backoff
    plus up to 25% jitter. Non-retryable responses are returned as-is, even
    4xx/5xx: callers interpret the status.
    """

    def __init__(
        self,
        headers: Mapping[str, str] | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
        rate_limiter: TokenBucket | None = None,
        retryable_status: Iterable[int] = DEFAULT_RETRYABLE_STATUS,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        transport: httpx.AsyncBaseTransport | None = None,
        verify: bool = True,
    ):
        self.headers = dict(headers or {})
        self.max_retries = max_retries
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.retryable_status = frozenset(retryable_status)
        self.initial_backoff = initial_backoff
        self._transport = transport
        self._verify = verify
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=DEFAULT_LIMITS,
                transport=self._transport,
                verify=self._verify,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _backoff(self, backoff: float) -> float:
        """Sleep for backoff plus jitter and return the next backoff."""
        jitter = random.uniform(0, backoff / 4) if backoff > 0 else 0.0
        await asyncio.sleep(backoff + jitter)
        return backoff * 2

    async def _send(self, request: httpx.Request) -> httpx.Response:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()
        return await self._get_client().send(request)

    async def execute(self, request: httpx.Request) -> httpx.Response:
        """Send a request, retrying transient failures.

        Raises:
            RetriesExhaustedError: every attempt failed at the transport level.
            TimeoutError: the overall timeout expired.
        """
        # Buffer the body once so every attempt resends the same bytes
        request.read()
        for key, value in self.headers.items():
            if key not in request.headers:
                request.headers[key] = value

        async with asyncio.timeout(self.timeout):
            return await self._execute(request)

    async def _execute(self, request: httpx.Request) -> httpx.Response:
        backoff = self.initial_backoff
        last_error: httpx.TransportError | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self._send(request)
            except httpx.TransportError as e:
                last_error = e
                logger.debug(
                    "%s %s failed (attempt %d/%d): %s",
                    request.method,
                    request.url,
                    attempt + 1,
                    self.max_retries + 1,
                    e,
                )
                if attempt < self.max_retries:
                    backoff = await self._backoff(backoff)
                continue

            if response.status_code not in self.retryable_status or attempt == self.max_retries:
                return response

            logger.debug(
                "%s %s returned %d, retrying (attempt %d/%d)",
                request.method,
                request.url,
                response.status_code,
                attempt + 1,
                self.max_retries + 1,
            )
            await response.aclose()
            backoff = await self._backoff(backoff)

        raise RetriesExhaustedError(self.max_retries + 1) from last_error

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Build and execute a request."""
        request = self._get_client().build_request(method, url, **kwargs)
        return await self.execute(request)

    async def fetch(self, method: str, url: str, **kwargs: Any) -> bytes:
        """Execute a request and return the body, raising on non-2xx."""
        response = await self.request(method, url, **kwargs)
        response.raise_for_status()
        return response.content
