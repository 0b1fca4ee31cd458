"""Per-target status lifecycle persisted in ``sync_status``."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

from ...domain.models import SyncState, SyncStatus, SyncTarget
from ...domain.models.status import (MANUAL_RESET_STATES, STUCK_THRESHOLD,
                                     resolve_terminal_state, truncate_error)
from ...infrastructure.db import get_connection, iso_utc_ago
from ...infrastructure.db.repositories import (RecordRepository,
                                               SyncStatusRepository)
from ...infrastructure.observability import get_logger

logger = get_logger(__name__)


class StatusTracker:
    """Moves targets through ``idle -> syncing -> terminal`` for one source.

    The terminal state is derived from the number of records actually stored
    for the target, never from in-memory counters, so a crash between
    writing records and updating status heals on the next run. When
    ``enabled`` is false (dry runs) nothing is written and ``finish`` only
    computes the state.
    """

    def __init__(
        self,
        source: str,
        db_path: str | Path | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        self.source = source
        self.db_path = db_path
        self.enabled = enabled

    def _start(self, target_id: str, operation_id: str | None) -> None:
        with get_connection(self.db_path) as conn:
            SyncStatusRepository(conn).mark_syncing(self.source, target_id, operation_id)

    def _finish(
        self,
        target: SyncTarget,
        error: str | None,
        cancelled: bool,
        written: int | None,
    ) -> tuple[SyncState, int]:
        with get_connection(self.db_path) as conn:
            committed = RecordRepository(conn).count_for_group(self.source, target.external_id)
            state = resolve_terminal_state(
                committed=committed,
                expected=target.expected_count,
                error=error,
                cancelled=cancelled,
                written=written,
            )
            SyncStatusRepository(conn).set_state(
                self.source,
                target.external_id,
                state,
                synced_count=committed,
                last_error=truncate_error(error),
                touch_synced_at=state in (SyncState.COMPLETED, SyncState.PARTIAL),
            )
        return state, committed

    async def start(self, target: SyncTarget, operation_id: str | None = None) -> None:
        if not self.enabled:
            return
        await asyncio.to_thread(self._start, target.external_id, operation_id)
        logger.debug("Target %s is syncing", target.external_id)

    async def finish(
        self,
        target: SyncTarget,
        *,
        error: str | None = None,
        cancelled: bool = False,
        written: int | None = None,
    ) -> tuple[SyncState, int]:
        """Record the terminal state and return it with the stored record count.

        ``written`` is the number of rows this run committed; see
        :func:`resolve_terminal_state`.
        """
        if not self.enabled:
            state = resolve_terminal_state(
                committed=0, expected=None, error=error, cancelled=cancelled, written=written
            )
            return state, 0
        state, committed = await asyncio.to_thread(self._finish, target, error, cancelled, written)
        log = logger.warning if state in (SyncState.ERROR, SyncState.PARTIAL) else logger.info
        log(
            "Target %s finished as %s with %s stored records%s",
            target.external_id,
            state.value,
            committed,
            f" ({truncate_error(error)})" if error else "",
        )
        return state, committed


def get_status(
    source: str, target_id: str, db_path: str | Path | None = None
) -> SyncStatus | None:
    with get_connection(db_path) as conn:
        return SyncStatusRepository(conn).get(source, target_id)


def list_statuses(
    source: str | None = None, db_path: str | Path | None = None
) -> list[SyncStatus]:
    with get_connection(db_path) as conn:
        return SyncStatusRepository(conn).list(source=source)


def list_stuck(
    threshold: timedelta = STUCK_THRESHOLD,
    db_path: str | Path | None = None,
) -> list[SyncStatus]:
    """Rows still ``syncing`` whose last update is older than ``threshold``.

    Reporting only; stuck rows are never reset automatically.
    """
    with get_connection(db_path) as conn:
        return SyncStatusRepository(conn).list_syncing_before(iso_utc_ago(threshold))


def reset_status(
    source: str,
    target_id: str,
    state: SyncState | str = SyncState.ERROR,
    *,
    reason: str | None = None,
    db_path: str | Path | None = None,
) -> SyncStatus | None:
    """Manually move a target to ``error`` or ``idle``."""
    new_state = SyncState(state) if isinstance(state, str) else state
    if new_state not in MANUAL_RESET_STATES:
        raise ValueError(f"Cannot reset to {new_state.value}; use error or idle")
    message = reason
    if new_state is SyncState.ERROR and not message:
        message = "Manually reset after stalled sync"
    with get_connection(db_path) as conn:
        repo = SyncStatusRepository(conn)
        repo.set_state(source, target_id, new_state, last_error=truncate_error(message))
        status = repo.get(source, target_id)
    logger.info("Reset %s/%s to %s", source, target_id, new_state.value)
    return status
