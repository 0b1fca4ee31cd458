"""
Centralized DTOs and input/output models for cardsync services.

Wire names are camelCase (``categoryId``, ``dryRun``); Python attributes are
snake_case. Both spellings are accepted on input.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cardsync.domain.models import SyncStatus, SyncTarget


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Sync request/response DTOs ---
class SyncRequestDTO(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    source: str = "tcgcsv"
    category_id: str | None = None
    group_ids: list[str] | None = None
    name_filter: str | None = None
    page: int | None = Field(None, ge=1)
    page_size: int | None = Field(None, ge=1, le=1000)
    max_pages: int | None = Field(None, ge=1)
    dry_run: bool = False
    background: bool = False
    include_sealed: bool = True
    include_singles: bool = True
    operation_id: str | None = None


class SyncSummaryDTO(CamelModel):
    fetched: int = 0
    upserted: int = 0
    skipped: int = 0
    rate_rps: float = Field(0.0, alias="rateRPS")
    rate_ups: float = Field(0.0, alias="rateUPS")


class TargetResultDTO(CamelModel):
    target_id: str
    name: str | None = None
    fetched: int = 0
    upserted: int = 0
    skipped: int = 0
    pages: int = 0
    bytes: int = 0
    stored: int = 0
    stop_reason: str | None = None
    state: str
    ms: int = 0
    error: str | None = None


class SyncResponseDTO(CamelModel):
    success: bool
    operation_id: str
    source: str
    summary: SyncSummaryDTO
    per_target: list[TargetResultDTO] = Field(default_factory=list)
    stop_reason: str
    dry_run: bool = False
    duration_seconds: float = 0.0


class SyncStartedDTO(CamelModel):
    started: bool = True
    operation_id: str


# --- Control DTOs ---
class ControlSignalDTO(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    operation_type: str = "bulk_sync"
    operation_id: str = "*"
    should_cancel: bool = True
    created_by: str | None = None


# --- Status / target DTOs ---
class SyncStatusDTO(CamelModel):
    source: str
    target_id: str
    state: str
    last_error: str | None = None
    synced_count: int = 0
    last_synced_at: str | None = None
    started_at: str | None = None
    updated_at: str | None = None
    operation_id: str | None = None

    @classmethod
    def from_status(cls, status: SyncStatus) -> "SyncStatusDTO":
        return cls(
            source=status.source,
            target_id=status.target_id,
            state=status.state.value,
            last_error=status.last_error,
            synced_count=status.synced_count,
            last_synced_at=_iso(status.last_synced_at),
            started_at=_iso(status.started_at),
            updated_at=_iso(status.updated_at),
            operation_id=status.operation_id,
        )


class StatusResetDTO(CamelModel):
    source: str
    target_id: str
    state: str = "error"
    reason: str | None = None


class SyncTargetDTO(CamelModel):
    source: str
    external_id: str
    category_id: str | None = None
    name: str | None = None
    code: str | None = None
    expected_count: int | None = None

    @classmethod
    def from_target(cls, target: SyncTarget) -> "SyncTargetDTO":
        return cls(
            source=target.source,
            external_id=target.external_id,
            category_id=target.category_id,
            name=target.name,
            code=target.code,
            expected_count=target.expected_count,
        )


def _iso(value: Any) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")
