from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Callable, Mapping

from cardsync.app.config import SyncSettings, load_settings
from cardsync.domain.models import SyncTarget
from cardsync.infrastructure.db import get_connection, get_path_config
from cardsync.infrastructure.db.repositories import (ControlSignalRepository,
                                                     TargetRepository)
from cardsync.infrastructure.http import Fetcher, RetryPolicy
from cardsync.infrastructure.observability import (get_logger, log_context,
                                                   log_exception)
from cardsync.services.dto import SyncRequestDTO
from cardsync.services.sync import (CSV_FEED, JSON_API, SOURCES,
                                    CancellationToken, ConcurrencyController,
                                    CsvFeedSource, JsonApiSource, RecordSource,
                                    RowFilter, SyncConfigurationError,
                                    SyncOrchestrator, SyncResult,
                                    TargetNotFoundError, control_table_reader,
                                    default_batch_retry)

BULK_SYNC = "bulk_sync"

FetcherFactory = Callable[[SyncSettings, Mapping[str, str]], Fetcher]


def default_fetcher_factory(settings: SyncSettings, headers: Mapping[str, str]) -> Fetcher:
    return Fetcher(
        retry_policy=RetryPolicy(
            attempts=settings.fetch_attempts,
            base_delay=settings.fetch_base_delay,
            max_delay=settings.fetch_max_delay,
        ),
        timeout_seconds=settings.http_timeout_seconds,
        headers=headers,
        throttle_per_host=settings.throttle_per_host,
    )


def new_operation_id() -> str:
    return uuid.uuid4().hex


class SyncService:
    """Validate sync requests, resolve targets and run the orchestrator.

    Runs either synchronously (the caller awaits the full :class:`SyncResult`)
    or in the background, where :meth:`trigger` returns as soon as the task
    is scheduled. Completion of a background run is observed through the
    ``sync_status`` rows.
    """

    def __init__(
        self,
        *,
        db_path: str | Path | None = None,
        settings: SyncSettings | None = None,
        fetcher_factory: FetcherFactory | None = None,
    ) -> None:
        self._db_path = str(db_path or get_path_config()["db_path"])
        self.settings = settings or load_settings()
        self._fetcher_factory = fetcher_factory or default_fetcher_factory
        self._tasks: dict[str, asyncio.Task[SyncResult]] = {}
        self._logger = get_logger(__name__)

    @property
    def db_path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Validation and wiring
    # ------------------------------------------------------------------

    def validate(self, request: SyncRequestDTO) -> None:
        """Raise :class:`SyncConfigurationError` for requests that cannot start."""
        if request.source not in SOURCES:
            raise SyncConfigurationError(
                f"Unknown source '{request.source}'; expected one of {', '.join(SOURCES)}"
            )
        if request.source == JSON_API and not self.settings.json_api_key:
            raise SyncConfigurationError(
                "JSON API key is not configured (set CARDSYNC_JSON_API_KEY)"
            )
        if not request.category_id and not request.group_ids:
            raise SyncConfigurationError("Provide categoryId or groupIds")
        if request.source == CSV_FEED and not request.category_id:
            raise SyncConfigurationError("categoryId is required for the CSV feed")
        if not request.include_sealed and not request.include_singles:
            raise SyncConfigurationError(
                "includeSealed and includeSingles cannot both be false"
            )

    def _headers(self, source_name: str) -> dict[str, str]:
        if source_name == JSON_API:
            return {"X-API-Key": str(self.settings.json_api_key)}
        return {"Accept": "text/csv, application/json, */*"}

    def build_source(self, request: SyncRequestDTO, fetcher: Fetcher) -> RecordSource:
        if request.source == JSON_API:
            return JsonApiSource(
                fetcher,
                self.settings.json_api_url,
                page_size=request.page_size or self.settings.page_size,
                max_pages=request.max_pages or self.settings.max_pages,
                start_page=request.page or 1,
            )
        return CsvFeedSource(
            fetcher,
            self.settings.csv_base_url,
            row_filter=RowFilter(
                include_sealed=request.include_sealed,
                include_singles=request.include_singles,
            ),
        )

    # ------------------------------------------------------------------
    # Target resolution and discovery
    # ------------------------------------------------------------------

    def _stored_targets(
        self, source: str, category_id: str | None, name_filter: str | None
    ) -> list[SyncTarget]:
        with get_connection(self._db_path) as conn:
            return TargetRepository(conn).list(source, category_id, name_filter)

    def _lookup_targets(
        self, source: str, category_id: str | None, external_ids: list[str]
    ) -> list[SyncTarget]:
        resolved: list[SyncTarget] = []
        with get_connection(self._db_path) as conn:
            repo = TargetRepository(conn)
            for external_id in dict.fromkeys(str(g).strip() for g in external_ids):
                if not external_id:
                    continue
                known = repo.get(source, external_id)
                if known is None:
                    known = SyncTarget(
                        source=source, external_id=external_id, category_id=category_id
                    )
                elif known.category_id is None and category_id:
                    known = replace(known, category_id=category_id)
                resolved.append(known)
        return resolved

    def _store_targets(self, targets: list[SyncTarget]) -> list[SyncTarget]:
        stored: list[SyncTarget] = []
        with get_connection(self._db_path) as conn:
            repo = TargetRepository(conn)
            for target in targets:
                row_id = repo.upsert(target)
                stored.append(repo.get(target.source, target.external_id) or target)
                self._logger.debug("Stored target %s as row %s", target.external_id, row_id)
        return stored

    async def resolve_targets(
        self, request: SyncRequestDTO, source: RecordSource
    ) -> list[SyncTarget]:
        """Explicit ids first; otherwise stored targets, discovering when none are known."""
        if request.group_ids:
            targets = await asyncio.to_thread(
                self._lookup_targets, request.source, request.category_id, request.group_ids
            )
        else:
            targets = await asyncio.to_thread(
                self._stored_targets, request.source, request.category_id, request.name_filter
            )
            if not targets:
                self._logger.info(
                    "No stored targets for %s/%s; discovering", request.source, request.category_id
                )
                discovered = await source.list_targets(str(request.category_id))
                if not request.dry_run:
                    discovered = await asyncio.to_thread(self._store_targets, discovered)
                targets = [t for t in discovered if t.matches_name(request.name_filter)]
        if request.group_ids and request.name_filter:
            targets = [t for t in targets if t.matches_name(request.name_filter) or t.name is None]
        if not targets:
            raise TargetNotFoundError(
                f"No targets found for source={request.source} category={request.category_id}"
                + (f" name~{request.name_filter}" if request.name_filter else "")
            )
        return targets

    async def discover_targets(self, source_name: str, category_id: str) -> list[SyncTarget]:
        """List groups or sets from the provider and store them."""
        request = SyncRequestDTO(source=source_name, category_id=category_id)
        self.validate(request)
        async with self._fetcher_factory(self.settings, self._headers(source_name)) as fetcher:
            source = self.build_source(request, fetcher)
            targets = await source.list_targets(category_id)
        stored = await asyncio.to_thread(self._store_targets, targets)
        self._logger.info(
            "Discovered %d targets for %s/%s", len(stored), source_name, category_id
        )
        return stored

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run(self, request: SyncRequestDTO, *, operation_id: str | None = None) -> SyncResult:
        """Run a sync to completion and return its result."""
        self.validate(request)
        op_id = operation_id or request.operation_id or new_operation_id()
        cancellation = CancellationToken(BULK_SYNC, op_id, control_table_reader(self._db_path))
        with log_context(operation_id=op_id, source=request.source):
            async with self._fetcher_factory(self.settings, self._headers(request.source)) as fetcher:
                source = self.build_source(request, fetcher)
                targets = await self.resolve_targets(request, source)
                orchestrator = SyncOrchestrator(
                    source,
                    operation_id=op_id,
                    controller=ConcurrencyController(
                        self.settings.concurrency,
                        self.settings.max_write_batches,
                        acquire_timeout=self.settings.acquire_timeout_seconds,
                    ),
                    cancellation=cancellation,
                    chunk_size=self.settings.chunk_size,
                    batch_retry=replace(
                        default_batch_retry(),
                        attempts=self.settings.batch_attempts,
                        base_delay=self.settings.batch_base_delay,
                    ),
                    dry_run=request.dry_run,
                    db_path=self._db_path,
                )
                return await orchestrator.run(targets)

    async def trigger(self, request: SyncRequestDTO) -> SyncResult | dict[str, object]:
        """Run synchronously, or schedule in the background when requested.

        Configuration errors are raised before anything is scheduled. The
        background acknowledgement only means the run started.
        """
        self.validate(request)
        if not request.background:
            return await self.run(request)

        op_id = request.operation_id or new_operation_id()
        task = asyncio.create_task(self._run_in_background(request, op_id))
        self._tasks[op_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(op_id, None))
        self._logger.info("Scheduled background sync %s for %s", op_id, request.source)
        return {"started": True, "operationId": op_id}

    async def _run_in_background(self, request: SyncRequestDTO, op_id: str) -> SyncResult | None:
        try:
            return await self.run(request, operation_id=op_id)
        except Exception as exc:
            log_exception(self._logger, "Background sync failed", exc, operation_id=op_id)
            return None

    def running_operations(self) -> list[str]:
        return sorted(op for op, task in self._tasks.items() if not task.done())

    async def wait_for(self, operation_id: str) -> SyncResult | None:
        task = self._tasks.get(operation_id)
        if task is None:
            return None
        return await task

    # ------------------------------------------------------------------
    # Control signals
    # ------------------------------------------------------------------

    def request_cancel(
        self,
        operation_id: str = "*",
        *,
        operation_type: str = BULK_SYNC,
        created_by: str | None = None,
        should_cancel: bool = True,
    ) -> None:
        with get_connection(self._db_path) as conn:
            ControlSignalRepository(conn).set_signal(
                operation_type, operation_id, should_cancel, created_by
            )
        self._logger.warning(
            "Control signal %s/%s set to should_cancel=%s by %s",
            operation_type,
            operation_id,
            should_cancel,
            created_by or "unknown",
        )

    def clear_signal(self, operation_id: str = "*", *, operation_type: str = BULK_SYNC) -> int:
        with get_connection(self._db_path) as conn:
            removed = ControlSignalRepository(conn).clear_signal(operation_type, operation_id)
        self._logger.info("Cleared %d control signal(s) for %s/%s", removed, operation_type, operation_id)
        return removed

