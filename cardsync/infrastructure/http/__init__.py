"""HTTP client helpers."""

from .fetcher import (FatalFetchError, Fetcher, FetchError, RateLimiter,
                      RetryableFetchError, is_retryable_status)
from .retry import RetryPolicy, parse_retry_after

__all__ = [
    "FatalFetchError",
    "FetchError",
    "Fetcher",
    "RateLimiter",
    "RetryPolicy",
    "RetryableFetchError",
    "is_retryable_status",
    "parse_retry_after",
]
