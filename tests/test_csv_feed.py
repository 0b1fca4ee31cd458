import asyncio

from cardsync.domain.models import SyncTarget
from cardsync.services.sync import (CancellationToken, CsvFeedSource,
                                    RowFilter, StopReason, normalize_rows,
                                    parse_csv_rows)
from fakes import FakeFetcher

TARGET = SyncTarget(source="tcgcsv", external_id="3170", category_id="3", name="Base Set")

FEED = (
    "\ufeffproductId,name,cleanName,extRarity,productType,marketPrice\n"
    '1001,"Charizard, Holo",Charizard Holo,Rare Holo,Cards,420.50\n'
    "1002,Booster Box,Booster Box,,Sealed Products,9000\n"
    "\n"
    '1003,"The ""Best"" Pack",,,Cards,\n'
    ",Missing Id,,,Cards,1\n"
)


def test_parse_handles_quotes_bom_and_blank_lines():
    rows = parse_csv_rows(FEED)

    assert len(rows) == 4
    assert rows[0]["productid"] == "1001"
    assert rows[0]["name"] == "Charizard, Holo"
    assert rows[2]["name"] == 'The "Best" Pack'
    assert rows[2]["marketprice"] is None


def test_parse_empty_text():
    assert parse_csv_rows("") == []
    assert parse_csv_rows("productId,name\n") == []


def test_normalize_skips_rows_without_keys():
    normalized = normalize_rows(parse_csv_rows(FEED), TARGET)

    assert [r.external_id for r in normalized.records] == ["1001", "1002", "1003"]
    assert normalized.skipped == 1
    first = normalized.records[0]
    assert first.group_id == "3170"
    assert first.category_id == "3"
    assert first.kind == "single"
    assert first.attributes["marketprice"] == "420.50"
    assert normalized.records[1].kind == "sealed"


def test_row_filters_exclude_product_types():
    rows = parse_csv_rows(FEED)

    no_sealed = normalize_rows(rows, TARGET, row_filter=RowFilter(include_sealed=False))
    no_singles = normalize_rows(rows, TARGET, row_filter=RowFilter(include_singles=False))

    assert [r.external_id for r in no_sealed.records] == ["1001", "1003"]
    assert no_sealed.skipped == 2
    assert [r.external_id for r in no_singles.records] == ["1002"]


def test_source_fetches_one_csv_per_group():
    fetcher = FakeFetcher(text_for=lambda url, params: FEED)
    source = CsvFeedSource(fetcher, "https://feed.example/tcgplayer/")

    fetch = asyncio.run(source.fetch_records(TARGET))

    assert fetcher.calls[0][0] == "https://feed.example/tcgplayer/3/3170/ProductsAndPrices.csv"
    assert fetch.fetched == 4
    assert len(fetch.records) == 3
    assert fetch.skipped == 1
    assert fetch.pages == 1
    assert fetch.bytes == len(FEED.encode("utf-8"))
    assert fetch.stop_reason is StopReason.PARTIAL_PAGE


def test_empty_feed_is_an_empty_page():
    source = CsvFeedSource(FakeFetcher(text_for=lambda url, params: ""), "https://feed.example")

    fetch = asyncio.run(source.fetch_records(TARGET))

    assert fetch.records == []
    assert fetch.stop_reason is StopReason.EMPTY_PAGE


def test_cancelled_before_download_fetches_nothing():
    token = CancellationToken.never()
    token.cancel()
    fetcher = FakeFetcher(text_for=lambda url, params: FEED)

    fetch = asyncio.run(CsvFeedSource(fetcher, "https://feed.example").fetch_records(TARGET, token))

    assert fetch.stop_reason is StopReason.CANCELLED
    assert fetcher.calls == []


def test_groups_are_listed_for_discovery():
    body = {
        "success": True,
        "results": [
            {"groupId": 3170, "name": "Base Set", "abbreviation": "BS", "categoryId": 3},
            {"name": "no id"},
        ],
    }
    fetcher = FakeFetcher(json_for=lambda url, params: body)

    targets = asyncio.run(CsvFeedSource(fetcher, "https://feed.example").list_targets("3"))

    assert fetcher.calls[0][0] == "https://feed.example/3/groups"
    assert len(targets) == 1
    assert targets[0].external_id == "3170"
    assert targets[0].code == "BS"
    assert targets[0].category_id == "3"
