"""Cooperative cancellation backed by the ``sync_control`` table."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

from ...infrastructure.db import get_connection
from ...infrastructure.db.repositories import ControlSignalRepository
from ...infrastructure.observability import get_logger

logger = get_logger(__name__)

SignalReader = Callable[[str, str], bool]


def control_table_reader(db_path: str | Path | None = None) -> SignalReader:
    """Return a reader that checks ``sync_control`` on a fresh connection."""

    def _read(operation_type: str, operation_id: str) -> bool:
        with get_connection(db_path) as conn:
            return ControlSignalRepository(conn).is_cancel_requested(
                operation_type, operation_id
            )

    return _read


class CancellationToken:
    """Per-run cancellation state passed down to every checkpoint.

    :meth:`should_cancel` consults the signal reader until it reports a
    stop, after which the token stays cancelled for the rest of the run.
    Reader failures are logged and treated as "keep going".
    """

    def __init__(
        self,
        operation_type: str,
        operation_id: str,
        reader: SignalReader | None = None,
    ) -> None:
        self.operation_type = operation_type
        self.operation_id = operation_id
        self._reader = reader
        self._cancelled = False
        self.checks = 0

    @classmethod
    def never(cls, operation_id: str = "local") -> "CancellationToken":
        return cls("local", operation_id, reader=None)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation from inside the process."""
        if not self._cancelled:
            logger.info("Cancellation requested locally for %s", self.operation_id)
        self._cancelled = True

    async def should_cancel(self) -> bool:
        if self._cancelled:
            return True
        if self._reader is None:
            return False
        self.checks += 1
        try:
            requested = await asyncio.to_thread(
                self._reader, self.operation_type, self.operation_id
            )
        except Exception as exc:
            logger.warning(
                "Could not read cancellation signal for %s/%s: %s",
                self.operation_type,
                self.operation_id,
                exc,
            )
            return False
        if requested:
            logger.warning(
                "Cancellation signal observed for %s/%s",
                self.operation_type,
                self.operation_id,
            )
            self._cancelled = True
        return self._cancelled
