import asyncio
import sqlite3

from cardsync.domain.models import SyncState, SyncTarget
from cardsync.infrastructure.db import get_connection
from cardsync.infrastructure.db.repositories import (ControlSignalRepository,
                                               RecordRepository)
from cardsync.infrastructure.http import FatalFetchError, RetryPolicy
from cardsync.services.sync import (CancellationToken, ConcurrencyController,
                                    CsvFeedSource, JsonApiSource,
                                    SyncOrchestrator, control_table_reader,
                                    get_status, list_statuses,
                                    storage_writer)
from fakes import FakeFetcher, card_pages

CSV_HEADER = "productId,name,productType\n"


def _csv_for(groups):
    def respond(url, params):
        group = url.rstrip("/").split("/")[-2]
        rows = groups[group]
        if isinstance(rows, Exception):
            raise rows
        return CSV_HEADER + "".join(f"{group}-{i},Product {i},Cards\n" for i in range(rows))

    return respond


def _csv_targets(*groups, expected=None):
    return [
        SyncTarget(source="tcgcsv", external_id=g, category_id="3", expected_count=expected)
        for g in groups
    ]


def test_paginated_set_is_fully_stored(db_path):
    source = JsonApiSource(
        FakeFetcher(json_for=card_pages(50, 20)), "https://api.example/v1", page_size=20
    )
    target = SyncTarget(source="justtcg", external_id="set-1", category_id="pokemon")

    result = asyncio.run(SyncOrchestrator(source, operation_id="op-1", db_path=db_path).run([target]))

    [target_result] = result.targets
    assert target_result.fetched == 50
    assert target_result.upserted == 50
    assert target_result.pages == 3
    assert target_result.stop_reason == "partial_page"
    assert target_result.state == "completed"
    assert result.success is True
    assert result.summary.fetched == 50
    assert get_status("justtcg", "set-1", db_path).synced_count == 50


def test_failures_are_isolated_per_target(db_path):
    fetcher = FakeFetcher(
        text_for=_csv_for(
            {
                "100": 5,
                "200": FatalFetchError("HTTP 404", url="https://feed.example", status=404),
                "300": 7,
            }
        )
    )
    source = CsvFeedSource(fetcher, "https://feed.example")

    result = asyncio.run(
        SyncOrchestrator(source, operation_id="op-2", db_path=db_path).run(
            _csv_targets("100", "200", "300")
        )
    )

    states = {t.target_id: t.state for t in result.targets}
    assert states == {"100": "completed", "200": "error", "300": "completed"}
    assert result.success is False
    failed = next(t for t in result.targets if t.target_id == "200")
    assert "HTTP 404" in failed.error
    assert get_status("tcgcsv", "200", db_path).last_error.startswith("HTTP 404")
    assert result.summary.upserted == 12


def test_empty_feed_completes_with_zero_rows(db_path):
    source = CsvFeedSource(FakeFetcher(text_for=lambda url, params: ""), "https://feed.example")

    result = asyncio.run(
        SyncOrchestrator(source, operation_id="op-3", db_path=db_path).run(_csv_targets("400"))
    )

    [target_result] = result.targets
    assert target_result.state == "completed"
    assert target_result.stop_reason == "empty_page"
    assert target_result.upserted == 0
    assert get_status("tcgcsv", "400", db_path).synced_count == 0


def test_short_feed_is_partial_against_expected_count(db_path):
    source = CsvFeedSource(FakeFetcher(text_for=_csv_for({"500": 6})), "https://feed.example")

    result = asyncio.run(
        SyncOrchestrator(source, operation_id="op-4", db_path=db_path).run(
            _csv_targets("500", expected=10)
        )
    )

    assert result.targets[0].state == "partial"
    assert result.targets[0].stored == 6
    assert result.success is True


def test_cancelled_run_leaves_status_untouched(db_path):
    token = CancellationToken.never("op-5")
    token.cancel()
    fetcher = FakeFetcher(text_for=_csv_for({"100": 3, "200": 3}))
    orchestrator = SyncOrchestrator(
        CsvFeedSource(fetcher, "https://feed.example"),
        operation_id="op-5",
        cancellation=token,
        db_path=db_path,
    )

    result = asyncio.run(orchestrator.run(_csv_targets("100", "200")))

    assert [t.state for t in result.targets] == ["cancelled", "cancelled"]
    assert result.stop_reason == "cancelled"
    assert fetcher.calls == []
    assert list_statuses(db_path=db_path) == []


def test_dry_run_fetches_but_writes_nothing(db_path):
    fetcher = FakeFetcher(text_for=_csv_for({"100": 4}))
    orchestrator = SyncOrchestrator(
        CsvFeedSource(fetcher, "https://feed.example"),
        operation_id="op-6",
        dry_run=True,
        db_path=db_path,
    )

    result = asyncio.run(orchestrator.run(_csv_targets("100")))

    [target_result] = result.targets
    assert target_result.fetched == 4
    assert target_result.upserted == 0
    assert result.dry_run is True
    assert list_statuses(db_path=db_path) == []
    with get_connection(db_path) as conn:
        assert RecordRepository(conn).count_for_group("tcgcsv", "100") == 0


def test_write_failure_after_first_chunk_is_partial(db_path):
    store = storage_writer("tcgcsv", db_path)
    chunks = []

    def failing_writer(chunk):
        chunks.append(len(chunk))
        if len(chunks) > 1:
            raise sqlite3.OperationalError("disk full")
        return store(chunk)

    orchestrator = SyncOrchestrator(
        CsvFeedSource(FakeFetcher(text_for=_csv_for({"100": 50})), "https://feed.example"),
        operation_id="op-7",
        writer=failing_writer,
        chunk_size=20,
        batch_retry=RetryPolicy(attempts=1, retry_on=(sqlite3.Error,)),
        db_path=db_path,
    )

    result = asyncio.run(orchestrator.run(_csv_targets("100")))

    [target_result] = result.targets
    assert target_result.state == "partial"
    assert target_result.upserted == 20
    assert target_result.stored == 20
    assert "disk full" in target_result.error
    assert result.success is True


def test_fetch_concurrency_is_bounded(db_path):
    in_flight = 0
    peak = 0

    class SlowFetcher(FakeFetcher):
        async def fetch_text(self, url, params=None):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return await super().fetch_text(url, params)

    groups = {str(g): 2 for g in range(10)}
    orchestrator = SyncOrchestrator(
        CsvFeedSource(SlowFetcher(text_for=_csv_for(groups)), "https://feed.example"),
        operation_id="op-8",
        controller=ConcurrencyController(max_fetch=3),
        db_path=db_path,
    )

    result = asyncio.run(orchestrator.run(_csv_targets(*groups)))

    assert peak <= 3
    assert all(t.state == "completed" for t in result.targets)
    assert orchestrator.controller.peak_fetch == 3


def test_failed_resync_is_error_despite_rows_from_earlier_runs(db_path):
    first = asyncio.run(
        SyncOrchestrator(
            CsvFeedSource(FakeFetcher(text_for=_csv_for({"100": 5})), "https://feed.example"),
            operation_id="op-9",
            db_path=db_path,
        ).run(_csv_targets("100", expected=5))
    )
    assert first.targets[0].state == "completed"

    gone = FatalFetchError("HTTP 404", url="https://feed.example", status=404)
    second = asyncio.run(
        SyncOrchestrator(
            CsvFeedSource(FakeFetcher(text_for=_csv_for({"100": gone})), "https://feed.example"),
            operation_id="op-10",
            db_path=db_path,
        ).run(_csv_targets("100", expected=5))
    )

    [target_result] = second.targets
    assert target_result.state == "error"
    assert target_result.stored == 5
    assert second.success is False
    status = get_status("tcgcsv", "100", db_path)
    assert status.state is SyncState.ERROR
    assert status.synced_count == 5
    assert status.last_error.startswith("HTTP 404")


def test_long_target_queue_does_not_time_out_waiting_for_a_turn(db_path):
    class SlowFetcher(FakeFetcher):
        async def fetch_text(self, url, params=None):
            await asyncio.sleep(0.05)
            return await super().fetch_text(url, params)

    groups = {str(g): 2 for g in range(8)}
    orchestrator = SyncOrchestrator(
        CsvFeedSource(SlowFetcher(text_for=_csv_for(groups)), "https://feed.example"),
        operation_id="op-11",
        controller=ConcurrencyController(max_fetch=2, acquire_timeout=0.08),
        db_path=db_path,
    )

    result = asyncio.run(orchestrator.run(_csv_targets(*groups)))

    assert [t.target_id for t in result.targets] == list(groups)
    assert [t.state for t in result.targets] == ["completed"] * 8
    assert all(t.error is None for t in result.targets)
    assert orchestrator.controller.peak_fetch == 2
    assert all(
        get_status("tcgcsv", g, db_path).state is SyncState.COMPLETED for g in groups
    )


def test_cancel_signal_mid_target_marks_status_cancelled(db_path):
    pages = card_pages(60, 20)

    def respond(url, params):
        with get_connection(db_path) as conn:
            ControlSignalRepository(conn).set_signal("bulk_sync", "op-12", created_by="ops")
        return pages(url, params)

    fetcher = FakeFetcher(json_for=respond)
    token = CancellationToken("bulk_sync", "op-12", reader=control_table_reader(db_path))
    orchestrator = SyncOrchestrator(
        JsonApiSource(fetcher, "https://api.example/v1", page_size=20),
        operation_id="op-12",
        cancellation=token,
        db_path=db_path,
    )

    result = asyncio.run(
        orchestrator.run([SyncTarget(source="justtcg", external_id="set-1", category_id="pokemon")])
    )

    [target_result] = result.targets
    assert target_result.state == "cancelled"
    assert target_result.stop_reason == "cancelled"
    assert target_result.fetched == 20
    assert target_result.upserted == 0
    assert len(fetcher.calls) == 1
    assert result.stop_reason == "cancelled"
    assert get_status("justtcg", "set-1", db_path).state is SyncState.CANCELLED
