"""Retry policy shared by HTTP fetching and batch persistence."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, TypeVar

from ..observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[Any]]


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header into seconds.

    Accepts delta-seconds or an HTTP date. Returns ``None`` when absent or
    unparseable; never negative.
    """
    if not value:
        return None
    text = value.strip()
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


@dataclass
class RetryPolicy:
    """Bounded retries with exponential backoff.

    The delay before retry ``n`` (1-based) is ``base_delay * 2**(n-1)``,
    capped at ``max_delay``. With ``jitter`` the delay is drawn uniformly
    from ``[0, capped]`` (full jitter). An exception carrying a
    ``retry_after`` attribute overrides the computed delay, still capped.
    Only exceptions in ``retry_on`` are retried; anything else propagates
    on the first occurrence.
    """

    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    jitter: bool = False
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        self.attempts = max(1, int(self.attempts))
        self.base_delay = max(0.0, float(self.base_delay))
        self.max_delay = max(0.0, float(self.max_delay))

    def delay_for(self, attempt: int, exc: BaseException | None = None) -> float:
        retry_after = getattr(exc, "retry_after", None) if exc is not None else None
        if retry_after is not None:
            return min(float(retry_after), self.max_delay)
        capped = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            return self.rng.uniform(0.0, capped)
        return capped

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
        sleep: Sleeper | None = None,
    ) -> T:
        """Await ``operation()`` until it succeeds or attempts are exhausted.

        The last retryable exception is re-raised on exhaustion.
        """
        sleeper = sleep or asyncio.sleep
        for attempt in range(1, self.attempts + 1):
            try:
                return await operation()
            except self.retry_on as exc:
                if attempt >= self.attempts:
                    logger.warning(
                        "%s failed after %s attempts: %s", description, attempt, exc
                    )
                    raise
                delay = self.delay_for(attempt, exc)
                logger.info(
                    "%s failed (attempt %s/%s): %s; retrying in %.2fs",
                    description,
                    attempt,
                    self.attempts,
                    exc,
                    delay,
                )
                await sleeper(delay)
        raise RuntimeError("unreachable")  # pragma: no cover
