"""FastAPI application exposing the cardsync engine.

Run with ``uvicorn cardsync.app.api:app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from cardsync import __version__
from cardsync.app.dependencies import (ControlRepositoryDep,
                                       StatusRepositoryDep,
                                       TargetRepositoryDep)
from cardsync.domain.models import SyncState
from cardsync.infrastructure.observability import (configure_logging,
                                                   format_prometheus,
                                                   get_logger,
                                                   record_api_request)
from cardsync.services.dto import (ControlSignalDTO, StatusResetDTO,
                                   SyncRequestDTO, SyncResponseDTO,
                                   SyncStartedDTO, SyncStatusDTO,
                                   SyncSummaryDTO, SyncTargetDTO,
                                   TargetResultDTO)
from cardsync.services.sync import (SyncConfigurationError, SyncResult,
                                    TargetNotFoundError, list_stuck,
                                    reset_status)
from cardsync.services.sync_service import SyncService

logger = get_logger(__name__)

_sync_service: SyncService | None = None


def get_sync_service() -> SyncService:
    global _sync_service
    if _sync_service is None:
        _sync_service = SyncService()
    return _sync_service


def set_sync_service(service: SyncService | None) -> None:
    global _sync_service
    _sync_service = service


SyncServiceDep = Annotated[SyncService, Depends(get_sync_service)]


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    yield


app = FastAPI(title="cardsync API", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def count_requests(request: Request, call_next):
    response = await call_next(request)
    record_api_request(request.url.path, request.method, response.status_code)
    return response


@app.get("/")
async def root():
    """API root endpoint with links."""
    return {
        "name": "cardsync API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "sync": "/sync",
            "control": "/sync/control",
            "status": "/sync/status",
            "stuck": "/sync/status/stuck",
            "targets": "/targets",
            "metrics": "/metrics",
        },
    }


def to_response(result: SyncResult) -> SyncResponseDTO:
    summary = result.summary
    return SyncResponseDTO(
        success=result.success,
        operation_id=result.operation_id,
        source=result.source,
        summary=SyncSummaryDTO(
            fetched=summary.fetched,
            upserted=summary.upserted,
            skipped=summary.skipped,
            rate_rps=summary.rate_rps,
            rate_ups=summary.rate_ups,
        ),
        per_target=[TargetResultDTO(**t.to_dict()) for t in result.targets],
        stop_reason=result.stop_reason,
        dry_run=result.dry_run,
        duration_seconds=round(result.duration_seconds, 3),
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.post(
    "/sync",
    response_model=SyncResponseDTO,
    responses={202: {"model": SyncStartedDTO}},
)
async def trigger_sync(request: SyncRequestDTO, service: SyncServiceDep) -> Any:
    try:
        outcome = await service.trigger(request)
    except SyncConfigurationError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))
    except TargetNotFoundError as exc:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))
    except Exception as exc:
        logger.exception("Sync request failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    if isinstance(outcome, dict):
        started = SyncStartedDTO(operation_id=str(outcome["operationId"]))
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=started.model_dump(by_alias=True),
        )
    return to_response(outcome)


@app.post("/sync/control")
async def set_control_signal(
    payload: ControlSignalDTO, repository: ControlRepositoryDep
) -> dict[str, Any]:
    repository.set_signal(
        payload.operation_type,
        payload.operation_id,
        payload.should_cancel,
        payload.created_by or "api",
    )
    logger.warning(
        "Control signal %s/%s should_cancel=%s",
        payload.operation_type,
        payload.operation_id,
        payload.should_cancel,
    )
    return {"success": True, **payload.model_dump(by_alias=True)}


@app.delete("/sync/control")
async def clear_control_signal(
    repository: ControlRepositoryDep,
    operation_type: Annotated[str, Query(alias="operationType")] = "bulk_sync",
    operation_id: Annotated[str, Query(alias="operationId")] = "*",
) -> dict[str, Any]:
    removed = repository.clear_signal(operation_type, operation_id)
    return {"success": True, "removed": removed}


@app.get("/sync/status", response_model=list[SyncStatusDTO])
async def list_sync_status(
    repository: StatusRepositoryDep,
    source: str | None = None,
    state: str | None = None,
) -> list[SyncStatusDTO]:
    try:
        state_filter = SyncState(state) if state else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown state '{state}'") from exc
    return [
        SyncStatusDTO.from_status(row)
        for row in repository.list(source=source, state=state_filter)
    ]


@app.get("/sync/status/stuck", response_model=list[SyncStatusDTO])
async def list_stuck_status(
    service: SyncServiceDep,
    minutes: Annotated[float | None, Query(gt=0)] = None,
) -> list[SyncStatusDTO]:
    threshold = (
        timedelta(minutes=minutes) if minutes is not None else service.settings.stuck_threshold
    )
    return [SyncStatusDTO.from_status(row) for row in list_stuck(threshold, service.db_path)]


@app.post("/sync/status/reset", response_model=SyncStatusDTO)
async def reset_sync_status(payload: StatusResetDTO, service: SyncServiceDep) -> SyncStatusDTO:
    try:
        row = reset_status(
            payload.source,
            payload.target_id,
            payload.state,
            reason=payload.reason,
            db_path=service.db_path,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if row is None:
        raise HTTPException(status_code=404, detail="Status row not found")
    return SyncStatusDTO.from_status(row)


@app.get("/targets", response_model=list[SyncTargetDTO])
async def list_targets(
    repository: TargetRepositoryDep,
    source: str = "tcgcsv",
    category_id: Annotated[str | None, Query(alias="categoryId")] = None,
    name: str | None = None,
) -> list[SyncTargetDTO]:
    return [SyncTargetDTO.from_target(t) for t in repository.list(source, category_id, name)]


@app.post("/targets/discover", response_model=list[SyncTargetDTO])
async def discover_targets(
    service: SyncServiceDep,
    category_id: Annotated[str, Query(alias="categoryId")],
    source: str = "tcgcsv",
) -> list[SyncTargetDTO]:
    try:
        targets = await service.discover_targets(source, category_id)
    except SyncConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [SyncTargetDTO.from_target(t) for t in targets]


@app.get("/metrics", response_class=PlainTextResponse)
async def metrics() -> str:
    return format_prometheus()
