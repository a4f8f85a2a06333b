from fastapi import APIRouter, Depends, HTTPException, Query, status

from curator_api.core.config import Settings, get_settings
from curator_api.core.security import INGEST_WRITE, MODERATION_READ, get_human_principal, get_machine_principal, require_scopes
from curator_api.schemas.ingest import IngestRunIn, IngestRunOut, IngestRunStatus, PendingShowBatchOut, PendingShowBatchRequest
from curator_api.services.intake import upsert_pending_shows
from curator_api.services.repository import RepositoryUnavailableError, get_repository

router = APIRouter()


@router.post("/pending-shows", response_model=PendingShowBatchOut)
async def ingest_pending_shows(
    payload: PendingShowBatchRequest,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> PendingShowBatchOut:
    require_scopes(principal, {INGEST_WRITE})

    if len(payload.candidates) > settings.ingest_max_candidates_per_request:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"at most {settings.ingest_max_candidates_per_request} candidates per request",
        )

    try:
        summary = await upsert_pending_shows(
            repository,
            source_url=payload.source_url,
            candidates=payload.candidates,
            module_id=principal.subject,
            run_id=payload.run_id,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return PendingShowBatchOut(**summary.to_payload())


@router.post("/runs", response_model=IngestRunOut, status_code=status.HTTP_201_CREATED)
async def record_ingest_run(
    payload: IngestRunIn,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
) -> IngestRunOut:
    require_scopes(principal, {INGEST_WRITE})

    try:
        row = await repository.record_ingest_run(module_id=principal.subject, run=payload.model_dump())
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return IngestRunOut(**row)


@router.get("/runs", response_model=list[IngestRunOut])
async def list_ingest_runs(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    status_filter: IngestRunStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[IngestRunOut]:
    require_scopes(principal, {MODERATION_READ})

    try:
        rows = await repository.list_ingest_runs(limit=limit, offset=offset, status=status_filter)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [IngestRunOut(**row) for row in rows]
