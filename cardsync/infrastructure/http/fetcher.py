"""Async HTTP fetching with per-attempt timeouts, throttling and retries.

:class:`Fetcher` wraps an ``aiohttp.ClientSession``. Status handling:

* 2xx returns the body;
* 429, 5xx, timeouts and connection errors raise :class:`RetryableFetchError`
  and are retried through the shared :class:`RetryPolicy`;
* any other status raises :class:`FatalFetchError` immediately.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import replace
from typing import Any, Mapping
from urllib.parse import urlparse

import aiohttp

from ..observability import get_logger, record_fetch_attempt
from .retry import RetryPolicy, parse_retry_after

logger = get_logger(__name__)


class FetchError(Exception):
    """Base class for HTTP fetch failures."""

    def __init__(self, message: str, *, url: str, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class RetryableFetchError(FetchError):
    """Transient failure: rate limited, server error, timeout or connection error."""

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, url=url, status=status)
        self.retry_after = retry_after


class FatalFetchError(FetchError):
    """Non-retryable HTTP status such as 400, 401, 403 or 404."""


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


class RateLimiter:
    """Host-level throttle spacing requests ``1 / requests_per_second`` apart."""

    def __init__(self, requests_per_second: float | None) -> None:
        self.min_interval = 1.0 / requests_per_second if requests_per_second else 0.0
        self._next_slot: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def wait(self, host: str) -> None:
        if self.min_interval <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot.get(host, now))
            self._next_slot[host] = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            await asyncio.sleep(delay)


class Fetcher:
    """HTTP client returning JSON or text bodies, with retries and backoff."""

    def __init__(
        self,
        *,
        session: aiohttp.ClientSession | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float = 30.0,
        headers: Mapping[str, str] | None = None,
        throttle_per_host: float | None = None,
        user_agent: str = "",
        sleep=None,
    ) -> None:
        from cardsync import __version__

        self._session = session
        self._owns_session = session is None
        self.retry_policy = replace(
            retry_policy or RetryPolicy(attempts=3, base_delay=0.5, max_delay=30.0),
            retry_on=(RetryableFetchError,),
        )
        self.timeout_seconds = timeout_seconds
        self.rate_limiter = RateLimiter(throttle_per_host)
        self.headers = {"User-Agent": user_agent or f"cardsync/{__version__}"}
        if headers:
            self.headers.update(headers)
        self._sleep = sleep

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _attempt(self, url: str, params: Mapping[str, Any] | None) -> str:
        host = urlparse(url).hostname or ""
        await self.rate_limiter.wait(host)
        started = time.perf_counter()
        outcome = "error"
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with self._get_session().get(
                url, params=dict(params) if params else None, headers=self.headers, timeout=timeout
            ) as resp:
                if 200 <= resp.status < 300:
                    body = await resp.text(errors="replace")
                    if "\ufffd" in body:
                        logger.warning(
                            "Response from %s is not valid in its charset; undecodable bytes replaced",
                            url,
                        )
                    outcome = "ok"
                    return body
                if is_retryable_status(resp.status):
                    outcome = "retryable"
                    raise RetryableFetchError(
                        f"HTTP {resp.status} from {url}",
                        url=url,
                        status=resp.status,
                        retry_after=parse_retry_after(resp.headers.get("Retry-After")),
                    )
                outcome = "fatal"
                raise FatalFetchError(f"HTTP {resp.status} from {url}", url=url, status=resp.status)
        except asyncio.TimeoutError as exc:
            outcome = "retryable"
            raise RetryableFetchError(
                f"Timed out after {self.timeout_seconds}s fetching {url}", url=url
            ) from exc
        except aiohttp.ClientError as exc:
            outcome = "retryable"
            raise RetryableFetchError(f"Connection error fetching {url}: {exc}", url=url) from exc
        finally:
            elapsed = time.perf_counter() - started
            record_fetch_attempt(outcome, elapsed)
            logger.debug("GET %s -> %s in %.3fs", url, outcome, elapsed)

    async def fetch_text(self, url: str, params: Mapping[str, Any] | None = None) -> str:
        """Return the response body, retrying transient failures."""
        return await self.retry_policy.run(
            lambda: self._attempt(url, params),
            description=f"GET {url}",
            sleep=self._sleep,
        )

    async def fetch_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any | None:
        """Return the decoded JSON body, or ``None`` when the body is not JSON."""
        text = await self.fetch_text(url, params)
        try:
            return json.loads(text)
        except (TypeError, ValueError):
            logger.warning("Response from %s is not valid JSON (%s bytes)", url, len(text or ""))
            return None


__all__ = [
    "FatalFetchError",
    "FetchError",
    "Fetcher",
    "RateLimiter",
    "RetryableFetchError",
    "is_retryable_status",
]
