"""Run one sync across many targets with bounded concurrency."""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Sequence

from ...domain.models import Record, SyncState, SyncTarget
from ...domain.models.status import resolve_terminal_state, truncate_error
from ...infrastructure.db import get_connection
from ...infrastructure.db.repositories import RecordRepository
from ...infrastructure.http import FetchError
from ...infrastructure.http.retry import RetryPolicy
from ...infrastructure.observability import (get_logger, log_context,
                                             log_exception,
                                             record_target_result)
from .batcher import DEFAULT_CHUNK_SIZE, BatchOutcome, ChunkWriter, UpsertBatcher
from .cancellation import CancellationToken
from .concurrency import ConcurrencyController
from .errors import BatchWriteError, SlotTimeout
from .paginator import StopReason
from .sources import RecordSource, SourceFetch
from .status import StatusTracker

logger = get_logger(__name__)


@dataclass
class TargetResult:
    target_id: str
    name: str | None = None
    fetched: int = 0
    upserted: int = 0
    skipped: int = 0
    pages: int = 0
    bytes: int = 0
    stored: int = 0
    stop_reason: str | None = None
    state: str = SyncState.IDLE.value
    ms: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SyncSummary:
    fetched: int = 0
    upserted: int = 0
    skipped: int = 0
    rate_rps: float = 0.0
    rate_ups: float = 0.0


@dataclass
class SyncResult:
    operation_id: str
    source: str
    targets: list[TargetResult] = field(default_factory=list)
    duration_seconds: float = 0.0
    stop_reason: str = "completed"
    dry_run: bool = False

    @property
    def success(self) -> bool:
        """False when any target ended in ``error``."""
        return all(t.state != SyncState.ERROR.value for t in self.targets)

    @property
    def summary(self) -> SyncSummary:
        fetched = sum(t.fetched for t in self.targets)
        upserted = sum(t.upserted for t in self.targets)
        skipped = sum(t.skipped for t in self.targets)
        elapsed = self.duration_seconds
        return SyncSummary(
            fetched=fetched,
            upserted=upserted,
            skipped=skipped,
            rate_rps=round(fetched / elapsed, 2) if elapsed > 0 else 0.0,
            rate_ups=round(upserted / elapsed, 2) if elapsed > 0 else 0.0,
        )


def storage_writer(source: str, db_path: str | Path | None = None) -> ChunkWriter:
    """Return a blocking chunk writer using a fresh connection per chunk."""

    def _write(chunk: Sequence[Record]) -> int:
        with get_connection(db_path) as conn:
            return RecordRepository(conn).upsert_batch(source, chunk)

    return _write


class SyncOrchestrator:
    """Run targets on a bounded worker pool, isolating each target's failures.

    Per target: cancellation checkpoint, fetch slot, ``syncing`` status,
    source fetch, release the fetch slot, write slot, batched upsert,
    terminal status from stored counts.
    """

    def __init__(
        self,
        source: RecordSource,
        *,
        operation_id: str,
        controller: ConcurrencyController | None = None,
        cancellation: CancellationToken | None = None,
        status: StatusTracker | None = None,
        writer: ChunkWriter | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        batch_retry: RetryPolicy | None = None,
        dry_run: bool = False,
        db_path: str | Path | None = None,
    ) -> None:
        self.source = source
        self.operation_id = operation_id
        self.controller = controller or ConcurrencyController(max_fetch=4)
        self.cancellation = cancellation or CancellationToken.never(operation_id)
        self.dry_run = dry_run
        self.status = status or StatusTracker(source.name, db_path, enabled=not dry_run)
        self.writer = writer or storage_writer(source.name, db_path)
        self.chunk_size = chunk_size
        self.batch_retry = batch_retry

    def _batcher(self) -> UpsertBatcher:
        return UpsertBatcher(
            self.writer,
            chunk_size=self.chunk_size,
            retry_policy=self.batch_retry,
            cancellation=self.cancellation,
        )

    async def run(self, targets: Sequence[SyncTarget]) -> SyncResult:
        started = time.perf_counter()
        with log_context(operation_id=self.operation_id, source=self.source.name):
            logger.info(
                "Starting sync of %s targets (dry_run=%s, fetch slots=%s, write slots=%s)",
                len(targets),
                self.dry_run,
                self.controller.max_fetch,
                self.controller.max_write,
            )
            results = await self._run_pool(targets)
            result = SyncResult(
                operation_id=self.operation_id,
                source=self.source.name,
                targets=list(results),
                duration_seconds=time.perf_counter() - started,
                stop_reason="cancelled" if self.cancellation.cancelled else "completed",
                dry_run=self.dry_run,
            )
            summary = result.summary
            logger.info(
                "Sync %s: fetched=%s upserted=%s skipped=%s in %.2fs (peak fetch=%s, peak write=%s)",
                result.stop_reason,
                summary.fetched,
                summary.upserted,
                summary.skipped,
                result.duration_seconds,
                self.controller.peak_fetch,
                self.controller.peak_write,
            )
        return result

    async def _run_pool(self, targets: Sequence[SyncTarget]) -> list[TargetResult]:
        """Run targets on ``max_fetch`` workers fed from a queue.

        Targets waiting for a worker hold no slot, so a long queue behind
        slow but healthy targets never runs into the slot acquire timeout.
        Results keep the order of ``targets``.
        """
        results: list[TargetResult | None] = [None] * len(targets)
        queue: asyncio.Queue[tuple[int, SyncTarget]] = asyncio.Queue()
        for item in enumerate(targets):
            queue.put_nowait(item)

        async def worker() -> None:
            while True:
                try:
                    index, target = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results[index] = await self._run_target(target)

        workers = min(self.controller.max_fetch, len(targets))
        await asyncio.gather(*(worker() for _ in range(workers)))
        return [r for r in results if r is not None]

    async def _run_target(self, target: SyncTarget) -> TargetResult:
        started = time.perf_counter()
        result = TargetResult(target_id=target.external_id, name=target.name)
        with log_context(target=target.external_id):
            if await self.cancellation.should_cancel():
                # Never started: report it, leave its status row alone.
                result.state = SyncState.CANCELLED.value
                result.stop_reason = StopReason.CANCELLED.value
                return result

            error: str | None = None
            cancelled = False
            started_status = False
            fetch = SourceFetch()
            outcome = BatchOutcome()
            try:
                async with self.controller.fetch_slot():
                    if await self.cancellation.should_cancel():
                        result.state = SyncState.CANCELLED.value
                        result.stop_reason = StopReason.CANCELLED.value
                        return result
                    await self.status.start(target, self.operation_id)
                    started_status = True
                    fetch = await self.source.fetch_records(target, self.cancellation)
                cancelled = fetch.stop_reason is StopReason.CANCELLED
                if not cancelled and not self.dry_run:
                    async with self.controller.write_slot():
                        outcome = await self._batcher().persist(fetch.records)
                    cancelled = outcome.cancelled
            except BatchWriteError as exc:
                outcome.committed = exc.committed
                error = str(exc)
            except (FetchError, SlotTimeout) as exc:
                error = str(exc)
            except Exception as exc:
                log_exception(logger, "Unexpected failure syncing target", exc)
                error = f"{type(exc).__name__}: {exc}"

            if error is not None and not started_status:
                logger.warning("Target %s failed before starting: %s", target.external_id, error)
            try:
                state, stored = await self.status.finish(
                    target,
                    error=error,
                    cancelled=cancelled,
                    written=outcome.committed,
                )
            except Exception as exc:
                log_exception(logger, "Could not record final status", exc)
                error = error or f"Status update failed: {exc}"
                state = resolve_terminal_state(
                    committed=outcome.committed,
                    expected=target.expected_count,
                    error=error,
                    cancelled=cancelled,
                    written=outcome.committed,
                )
                stored = outcome.committed

            result.fetched = fetch.fetched
            result.skipped = fetch.skipped + outcome.skipped
            result.pages = fetch.pages
            result.bytes = fetch.bytes
            result.upserted = outcome.committed
            result.stored = stored
            result.state = state.value
            result.stop_reason = (
                StopReason.CANCELLED.value
                if cancelled
                else (fetch.stop_reason.value if fetch.stop_reason else None)
            )
            result.error = truncate_error(error)
            result.ms = int((time.perf_counter() - started) * 1000)
            record_target_result(
                self.source.name, result.state, result.ms / 1000, result.upserted
            )
            return result
