"""Deduplicate, chunk and persist records with per-chunk retries."""

from __future__ import annotations

import asyncio
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, Sequence

from ...domain.models import Record
from ...infrastructure.db import DatabaseError
from ...infrastructure.http.retry import RetryPolicy
from ...infrastructure.observability import Timer, get_logger
from ...infrastructure.observability.metrics import CHUNK_WRITE_DURATION
from .errors import BatchWriteError

if TYPE_CHECKING:
    from .cancellation import CancellationToken

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 2000

ChunkWriter = Callable[[Sequence[Record]], int]


@dataclass
class BatchOutcome:
    committed: int = 0
    chunks: int = 0
    cancelled: bool = False
    skipped: int = 0
    duplicates: int = 0


def dedupe_records(records: Iterable[Record]) -> tuple[list[Record], int, int]:
    """Collapse records sharing an ``external_id``.

    The last occurrence wins while the position of the first occurrence is
    kept. Records without an id are dropped. Returns ``(unique, skipped,
    duplicates)``.
    """
    by_id: dict[str, Record] = {}
    skipped = 0
    duplicates = 0
    for record in records:
        if not record.has_key:
            skipped += 1
            continue
        key = str(record.external_id).strip()
        if key in by_id:
            duplicates += 1
        by_id[key] = record
    return list(by_id.values()), skipped, duplicates


def chunked(items: Sequence[Record], size: int) -> Iterator[Sequence[Record]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def default_batch_retry() -> RetryPolicy:
    return RetryPolicy(
        attempts=3,
        base_delay=0.1,
        max_delay=5.0,
        jitter=True,
        retry_on=(sqlite3.Error, DatabaseError),
    )


class UpsertBatcher:
    """Persist one target's records in idempotent chunks.

    ``write_chunk`` is a blocking callable (run in a worker thread) that
    upserts a chunk and returns the number of rows written. A chunk that
    exhausts its retries raises :class:`BatchWriteError` carrying the count
    committed by earlier chunks; nothing after it is attempted.
    """

    def __init__(
        self,
        write_chunk: ChunkWriter,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry_policy: RetryPolicy | None = None,
        cancellation: "CancellationToken | None" = None,
        sleep=None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.write_chunk = write_chunk
        self.chunk_size = chunk_size
        self.retry_policy = retry_policy or default_batch_retry()
        self.cancellation = cancellation
        self._sleep = sleep

    async def persist(self, records: Iterable[Record]) -> BatchOutcome:
        unique, skipped, duplicates = dedupe_records(records)
        outcome = BatchOutcome(skipped=skipped, duplicates=duplicates)
        if duplicates:
            logger.debug("Collapsed %s duplicate records before writing", duplicates)

        for index, chunk in enumerate(chunked(unique, self.chunk_size), start=1):
            if self.cancellation is not None and await self.cancellation.should_cancel():
                outcome.cancelled = True
                logger.info(
                    "Stopping before chunk %s; %s records committed", index, outcome.committed
                )
                break
            try:
                with Timer(CHUNK_WRITE_DURATION, help_text="Upsert chunk write duration in seconds"):
                    written = await self.retry_policy.run(
                        lambda chunk=chunk: asyncio.to_thread(self.write_chunk, chunk),
                        description=f"upsert chunk {index} ({len(chunk)} records)",
                        sleep=self._sleep,
                    )
            except self.retry_policy.retry_on as exc:
                raise BatchWriteError(
                    f"Chunk {index} failed after {self.retry_policy.attempts} attempts: {exc}",
                    committed=outcome.committed,
                ) from exc
            outcome.committed += written
            outcome.chunks += 1
        return outcome
