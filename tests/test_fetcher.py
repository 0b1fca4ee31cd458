import asyncio
import random
from datetime import datetime, timezone

import aiohttp
import pytest

from cardsync.infrastructure.http import (FatalFetchError, Fetcher,
                                          RetryableFetchError, RetryPolicy,
                                          parse_retry_after)
from cardsync.infrastructure.observability.metrics import (FETCH_ATTEMPTS,
                                                           get_registry)
from fakes import FakeResponse, FakeSession


def _fetcher(responses, attempts=3, base_delay=0.5):
    session = FakeSession(responses)
    delays: list[float] = []

    async def fake_sleep(delay):
        delays.append(delay)

    fetcher = Fetcher(
        session=session,
        retry_policy=RetryPolicy(attempts=attempts, base_delay=base_delay, max_delay=30.0),
        sleep=fake_sleep,
    )
    return fetcher, session, delays


def test_retryable_statuses_back_off_exponentially():
    fetcher, session, delays = _fetcher(
        [FakeResponse(503), FakeResponse(429), FakeResponse(200, {"data": [1]})]
    )

    body = asyncio.run(fetcher.fetch_json("https://api.example/cards", {"set": "a"}))

    assert body == {"data": [1]}
    assert len(session.calls) == 3
    assert delays == [0.5, 1.0]
    counter = get_registry().counter(FETCH_ATTEMPTS)
    assert counter.get({"outcome": "retryable"}) == 2
    assert counter.get({"outcome": "ok"}) == 1


def test_fatal_status_is_not_retried():
    fetcher, session, delays = _fetcher([FakeResponse(404), FakeResponse(200, "[]")])

    with pytest.raises(FatalFetchError) as excinfo:
        asyncio.run(fetcher.fetch_text("https://api.example/missing"))

    assert excinfo.value.status == 404
    assert len(session.calls) == 1
    assert delays == []


def test_exhausted_retries_raise_last_retryable_error():
    fetcher, session, delays = _fetcher([FakeResponse(500), FakeResponse(502), FakeResponse(503)])

    with pytest.raises(RetryableFetchError) as excinfo:
        asyncio.run(fetcher.fetch_text("https://api.example/flaky"))

    assert excinfo.value.status == 503
    assert len(session.calls) == 3
    assert delays == [0.5, 1.0]


def test_timeouts_and_connection_errors_are_retryable():
    fetcher, session, _ = _fetcher(
        [
            asyncio.TimeoutError(),
            aiohttp.ClientConnectionError("reset by peer"),
            FakeResponse(200, "ok"),
        ]
    )

    assert asyncio.run(fetcher.fetch_text("https://api.example/slow")) == "ok"
    assert len(session.calls) == 3


def test_retry_after_header_overrides_backoff():
    fetcher, _, delays = _fetcher(
        [FakeResponse(429, "", {"Retry-After": "7"}), FakeResponse(200, "ok")]
    )

    asyncio.run(fetcher.fetch_text("https://api.example/limited"))

    assert delays == [7.0]


def test_non_json_body_returns_none():
    fetcher, _, _ = _fetcher([FakeResponse(200, "<html>maintenance</html>")])

    assert asyncio.run(fetcher.fetch_json("https://api.example/cards")) is None


def test_undecodable_bytes_are_replaced_instead_of_raising():
    fetcher, session, delays = _fetcher(
        [FakeResponse(200, b"productId,name\n1,Caf\xe9\n"), FakeResponse(200, b"\xff\xfe{")]
    )

    text = asyncio.run(fetcher.fetch_text("https://feed.example/3/1/ProductsAndPrices.csv"))
    body = asyncio.run(fetcher.fetch_json("https://api.example/cards"))

    assert text == "productId,name\n1,Caf\ufffd\n"
    assert body is None
    assert len(session.calls) == 2
    assert delays == []


def test_custom_headers_are_sent():
    session = FakeSession([FakeResponse(200, "{}")])
    fetcher = Fetcher(session=session, headers={"X-API-Key": "secret"})

    asyncio.run(fetcher.fetch_json("https://api.example/cards"))

    _, _, headers = session.calls[0]
    assert headers["X-API-Key"] == "secret"
    assert headers["User-Agent"].startswith("cardsync/")


def test_parse_retry_after_accepts_seconds_and_dates():
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    assert parse_retry_after("3") == 3.0
    assert parse_retry_after("-4") == 0.0
    assert parse_retry_after("Mon, 01 Jan 2024 12:00:30 GMT", now=now) == 30.0
    assert parse_retry_after("soon") is None
    assert parse_retry_after(None) is None


def test_full_jitter_stays_within_cap():
    policy = RetryPolicy(base_delay=1.0, max_delay=4.0, jitter=True, rng=random.Random(7))

    for attempt in range(1, 8):
        delay = policy.delay_for(attempt)
        assert 0.0 <= delay <= min(4.0, 2 ** (attempt - 1))


def test_policy_does_not_retry_unlisted_errors():
    calls = []

    async def operation():
        calls.append(1)
        raise KeyError("nope")

    policy = RetryPolicy(attempts=3, retry_on=(ValueError,))

    with pytest.raises(KeyError):
        asyncio.run(policy.run(operation))
    assert len(calls) == 1
