"""Drive a page-fetching callable until the provider runs out of data."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable

from ...infrastructure.observability import get_logger
from .envelope import Page, page_from_body

if TYPE_CHECKING:
    from .cancellation import CancellationToken

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 500


class StopReason(str, Enum):
    EMPTY_PAGE = "empty_page"
    HAS_MORE_FALSE = "has_more_false"
    PARTIAL_PAGE = "partial_page"
    PAGE_CAP = "page_cap"
    CANCELLED = "cancelled"


class PaginationMode(str, Enum):
    OFFSET = "offset"
    PAGE = "page"

    @property
    def other(self) -> "PaginationMode":
        return PaginationMode.PAGE if self is PaginationMode.OFFSET else PaginationMode.OFFSET


PageRequest = Callable[[dict[str, Any]], Awaitable[Any]]


class Paginator:
    """Iterate pages from ``fetch_page`` until a stop condition holds.

    ``fetch_page`` receives the pagination parameters (``limit``/``offset``
    or ``page``/``pageSize``) and returns a decoded body. After each page the
    stop conditions are checked in order: empty page, ``hasMore`` explicitly
    false, fewer records than requested, page cap. Exactly one
    :class:`StopReason` is recorded. Fetch errors propagate to the caller.

    Usage::

        paginator = Paginator(fetch, page_size=20)
        async for page in paginator:
            ...
        paginator.stop_reason
    """

    def __init__(
        self,
        fetch_page: PageRequest,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        mode: PaginationMode | str = PaginationMode.OFFSET,
        allow_mode_switch: bool = True,
        start_page: int = 1,
        cancellation: "CancellationToken | None" = None,
        label: str = "",
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.max_pages = max_pages
        self.mode = PaginationMode(mode)
        self.allow_mode_switch = allow_mode_switch
        self.start_page = max(1, start_page)
        self.cancellation = cancellation
        self.label = label

        self.stop_reason: StopReason | None = None
        self.pages_fetched = 0
        self.records_seen = 0
        self.reported_total: int | None = None
        self.switched_mode = False

    def _params(self, index: int) -> dict[str, Any]:
        page_number = self.start_page + index
        if self.mode is PaginationMode.PAGE:
            return {"page": page_number, "pageSize": self.page_size}
        return {"limit": self.page_size, "offset": (page_number - 1) * self.page_size}

    async def _cancelled(self) -> bool:
        if self.cancellation is None:
            return False
        return await self.cancellation.should_cancel()

    async def _fetch(self, index: int) -> Page:
        body = await self.fetch_page(self._params(index))
        return page_from_body(body)

    def _stop_after(self, page: Page) -> StopReason | None:
        if not page.records:
            return StopReason.EMPTY_PAGE
        if page.has_more is False:
            return StopReason.HAS_MORE_FALSE
        if len(page.records) < self.page_size:
            return StopReason.PARTIAL_PAGE
        if self.pages_fetched >= self.max_pages:
            return StopReason.PAGE_CAP
        return None

    def _finish(self, reason: StopReason) -> None:
        self.stop_reason = reason
        if reason is StopReason.PAGE_CAP:
            logger.warning(
                "Pagination for %s hit the page cap (%s pages, %s records); stopping",
                self.label or "target",
                self.pages_fetched,
                self.records_seen,
            )
        else:
            logger.info(
                "Pagination for %s stopped: %s after %s pages (%s records)",
                self.label or "target",
                reason.value,
                self.pages_fetched,
                self.records_seen,
            )

    async def __aiter__(self) -> AsyncIterator[Page]:
        index = 0
        while True:
            if await self._cancelled():
                self._finish(StopReason.CANCELLED)
                return

            page = await self._fetch(index)

            if index == 0 and not page.records and self.allow_mode_switch and not self.switched_mode:
                previous = self.mode
                self.mode = previous.other
                self.switched_mode = True
                logger.info(
                    "First %s page for %s was empty; retrying with %s pagination",
                    previous.value,
                    self.label or "target",
                    self.mode.value,
                )
                page = await self._fetch(index)

            self.pages_fetched += 1
            self.records_seen += len(page.records)
            if page.total is not None:
                self.reported_total = page.total

            if page.records:
                yield page

            if await self._cancelled():
                self._finish(StopReason.CANCELLED)
                return

            reason = self._stop_after(page)
            if reason is not None:
                self._finish(reason)
                return
            index += 1

    async def collect(self) -> list[Any]:
        """Fetch every page and return the concatenated records."""
        records: list[Any] = []
        async for page in self:
            records.extend(page.records)
        return records
