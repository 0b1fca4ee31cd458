"""Provider sources turning a :class:`SyncTarget` into normalised records.

Two sources ship with cardsync:

* :class:`JsonApiSource` pages through ``GET {base}/cards?game=..&set=..``
  with the :class:`Paginator`;
* :class:`CsvFeedSource` downloads ``{base}/{category}/{group}/ProductsAndPrices.csv``
  in one request.

Both also list their targets for discovery (sets or groups).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Protocol

from ...domain.models import Record, SyncTarget
from ...infrastructure.http import Fetcher
from ...infrastructure.observability import get_logger
from .csv_feed import RowFilter, normalize_rows, parse_csv_rows
from .envelope import page_from_body
from .paginator import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE, Paginator, StopReason

if TYPE_CHECKING:
    from .cancellation import CancellationToken

logger = get_logger(__name__)

JSON_API = "justtcg"
CSV_FEED = "tcgcsv"

SOURCES = (JSON_API, CSV_FEED)


@dataclass
class SourceFetch:
    """Everything fetched for one target, ready for the batcher."""

    records: list[Record] = field(default_factory=list)
    fetched: int = 0
    skipped: int = 0
    pages: int = 0
    bytes: int = 0
    stop_reason: StopReason | None = None
    reported_total: int | None = None
    ms: int = 0


class RecordSource(Protocol):
    name: str

    async def fetch_records(
        self, target: SyncTarget, cancellation: "CancellationToken | None" = None
    ) -> SourceFetch: ...

    async def list_targets(
        self, category_id: str, cancellation: "CancellationToken | None" = None
    ) -> list[SyncTarget]: ...


def _first_value(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


_CARD_IDENTITY_KEYS = ("id", "cardId", "card_id", "name", "cleanName")


def normalize_card(raw: Any, target: SyncTarget) -> Record | None:
    """Default normaliser for JSON API cards; ``None`` when id or name is missing."""
    if not isinstance(raw, dict):
        return None
    external_id = _first_value(raw, "id", "cardId", "card_id")
    name = _first_value(raw, "name", "cleanName")
    if external_id is None or name is None:
        return None
    external_id = str(external_id).strip()
    if not external_id:
        return None
    attributes = {
        k: v
        for k, v in raw.items()
        if k not in _CARD_IDENTITY_KEYS and v is not None
    }
    return Record(
        external_id=external_id,
        name=str(name),
        group_id=target.external_id,
        category_id=target.category_id,
        kind="card",
        attributes=attributes,
    )


CardNormalizer = Callable[[Any, SyncTarget], "Record | None"]


class JsonApiSource:
    """Paginated card catalogue keyed by game and set."""

    name = JSON_API

    def __init__(
        self,
        fetcher: Fetcher,
        base_url: str,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        start_page: int = 1,
        normalizer: CardNormalizer = normalize_card,
    ) -> None:
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.max_pages = max_pages
        self.start_page = start_page
        self.normalizer = normalizer

    async def fetch_records(
        self, target: SyncTarget, cancellation: "CancellationToken | None" = None
    ) -> SourceFetch:
        started = time.perf_counter()
        url = f"{self.base_url}/cards"
        base_params: dict[str, Any] = {"set": target.external_id}
        if target.category_id:
            base_params["game"] = target.category_id

        async def fetch_page(params: dict[str, Any]) -> Any:
            return await self.fetcher.fetch_json(url, {**base_params, **params})

        paginator = Paginator(
            fetch_page,
            page_size=self.page_size,
            max_pages=self.max_pages,
            start_page=self.start_page,
            cancellation=cancellation,
            label=target.external_id,
        )
        result = SourceFetch()
        async for page in paginator:
            result.fetched += len(page.records)
            for raw in page.records:
                record = self.normalizer(raw, target)
                if record is None:
                    result.skipped += 1
                    continue
                result.records.append(record)
        result.pages = paginator.pages_fetched
        result.stop_reason = paginator.stop_reason
        result.reported_total = paginator.reported_total
        result.ms = int((time.perf_counter() - started) * 1000)
        return result

    async def list_targets(
        self, category_id: str, cancellation: "CancellationToken | None" = None
    ) -> list[SyncTarget]:
        url = f"{self.base_url}/sets"

        async def fetch_page(params: dict[str, Any]) -> Any:
            return await self.fetcher.fetch_json(url, {"game": category_id, **params})

        paginator = Paginator(
            fetch_page,
            page_size=self.page_size,
            max_pages=self.max_pages,
            cancellation=cancellation,
            label=f"sets:{category_id}",
        )
        targets: list[SyncTarget] = []
        for raw in await paginator.collect():
            if not isinstance(raw, dict):
                continue
            set_id = _first_value(raw, "id", "setId", "set_id")
            if set_id is None:
                continue
            targets.append(
                SyncTarget(
                    source=self.name,
                    external_id=str(set_id),
                    category_id=category_id,
                    name=_first_value(raw, "name"),
                    code=_first_value(raw, "code", "abbreviation"),
                    expected_count=_as_int(
                        _first_value(raw, "cards_count", "cardsCount", "count")
                    ),
                )
            )
        return targets


class CsvFeedSource:
    """Per-group CSV feed of products and prices."""

    name = CSV_FEED

    def __init__(
        self,
        fetcher: Fetcher,
        base_url: str,
        *,
        row_filter: RowFilter | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.row_filter = row_filter or RowFilter()

    def csv_url(self, target: SyncTarget) -> str:
        return f"{self.base_url}/{target.category_id}/{target.external_id}/ProductsAndPrices.csv"

    async def fetch_records(
        self, target: SyncTarget, cancellation: "CancellationToken | None" = None
    ) -> SourceFetch:
        started = time.perf_counter()
        result = SourceFetch()
        if cancellation is not None and await cancellation.should_cancel():
            result.stop_reason = StopReason.CANCELLED
            return result

        text = await self.fetcher.fetch_text(self.csv_url(target))
        result.bytes = len(text.encode("utf-8"))
        result.pages = 1
        rows = parse_csv_rows(text)
        result.fetched = len(rows)
        normalized = normalize_rows(rows, target, row_filter=self.row_filter)
        result.records = normalized.records
        result.skipped = normalized.skipped
        if cancellation is not None and await cancellation.should_cancel():
            result.stop_reason = StopReason.CANCELLED
        elif not rows:
            result.stop_reason = StopReason.EMPTY_PAGE
        else:
            result.stop_reason = StopReason.PARTIAL_PAGE
        result.ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "CSV feed for group %s: %s rows, %s kept, %s skipped, %s bytes",
            target.external_id,
            result.fetched,
            len(result.records),
            result.skipped,
            result.bytes,
        )
        return result

    async def list_targets(
        self, category_id: str, cancellation: "CancellationToken | None" = None
    ) -> list[SyncTarget]:
        body = await self.fetcher.fetch_json(f"{self.base_url}/{category_id}/groups")
        page = page_from_body(body)
        targets: list[SyncTarget] = []
        for raw in page.records:
            if not isinstance(raw, dict):
                continue
            group_id = _first_value(raw, "groupId", "group_id", "id")
            if group_id is None:
                continue
            targets.append(
                SyncTarget(
                    source=self.name,
                    external_id=str(group_id),
                    category_id=str(_first_value(raw, "categoryId") or category_id),
                    name=_first_value(raw, "name"),
                    code=_first_value(raw, "abbreviation", "code"),
                )
            )
        return targets
