from dataclasses import asdict
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status

from curator_api.core.config import Settings, get_settings
from curator_api.core.security import MODERATION_READ, MODERATION_WRITE, get_human_principal, require_scopes
from curator_api.schemas.shows import (
    ApproveRequest,
    BatchDecisionOut,
    BatchDecisionRequest,
    BatchItemOut,
    DuplicatePairOut,
    EditRequest,
    FeedbackStatOut,
    ModerationEventOut,
    PendingShowOut,
    PendingShowStatus,
    RejectOut,
    RejectRequest,
    RescoreOut,
    ReviewStatsOut,
    ShowOut,
    SourceStatOut,
)
from curator_api.services.duplicates import DEFAULT_MAX_RESULTS, DEFAULT_SIMILARITY_THRESHOLD, find_duplicate_pairs
from curator_api.services.moderation import summarize_feedback, summarize_sources
from curator_api.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from curator_api.services.review import apply_batch_decision

router = APIRouter()


@router.get("", response_model=list[PendingShowOut])
async def list_pending_shows(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    status_filter: PendingShowStatus = Query(default="PENDING", alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    min_score: float | None = Query(default=None, ge=0, le=100),
    max_score: float | None = Query(default=None, ge=0, le=100),
    source_url: str | None = Query(default=None, min_length=1),
) -> list[PendingShowOut]:
    require_scopes(principal, {MODERATION_READ})

    if min_score is not None and max_score is not None and min_score > max_score:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="min_score must not exceed max_score",
        )

    try:
        rows = await repository.list_pending_shows(
            status=status_filter,
            limit=limit,
            offset=offset,
            min_score=min_score,
            max_score=max_score,
            source_url=source_url,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [PendingShowOut(**row) for row in rows]


@router.get("/feedback-stats", response_model=list[FeedbackStatOut])
async def get_feedback_stats(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    days: int = Query(default=7, ge=1, le=365),
) -> list[FeedbackStatOut]:
    require_scopes(principal, {MODERATION_READ})

    since = datetime.now(timezone.utc) - timedelta(days=days)
    try:
        notes = await repository.list_moderation_notes(since=since)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [FeedbackStatOut(**row) for row in summarize_feedback(notes)]


@router.post("/rescore", response_model=RescoreOut)
async def rescore_pending_shows(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> RescoreOut:
    require_scopes(principal, {MODERATION_WRITE})
    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    try:
        rescored = await repository.rescore_pending_shows(
            actor_user_id=principal.actor_id,
            limit=settings.rescore_batch_limit,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return RescoreOut(count=rescored)


@router.post("/batch", response_model=BatchDecisionOut)
async def batch_decide_pending_shows(
    payload: BatchDecisionRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> BatchDecisionOut:
    require_scopes(principal, {MODERATION_WRITE})
    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")
    if len(payload.ids) > settings.batch_max_ids:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"batch accepts at most {settings.batch_max_ids} ids",
        )

    try:
        summary = await apply_batch_decision(
            repository,
            action=payload.action,
            ids=payload.ids,
            actor_user_id=principal.actor_id,
            notes=payload.notes,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return BatchDecisionOut(
        action=summary.action,
        succeeded=summary.succeeded,
        failed=summary.failed,
        results=[BatchItemOut(**asdict(item)) for item in summary.results],
    )


@router.get("/duplicates", response_model=list[DuplicatePairOut])
async def list_duplicate_pending_shows(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
    threshold: float = Query(default=DEFAULT_SIMILARITY_THRESHOLD, ge=0, le=1),
    max_results: int = Query(default=DEFAULT_MAX_RESULTS, ge=1, le=500),
) -> list[DuplicatePairOut]:
    require_scopes(principal, {MODERATION_READ})

    try:
        rows = await repository.list_pending_for_duplicates(limit=settings.duplicate_scan_limit)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    pairs = find_duplicate_pairs(rows, threshold=threshold, max_results=max_results)
    return [DuplicatePairOut(**pair) for pair in pairs]


@router.get("/stats", response_model=ReviewStatsOut)
async def get_review_stats(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    days: int = Query(default=30, ge=1, le=365),
    min_shows: int = Query(default=1, ge=1),
) -> ReviewStatsOut:
    require_scopes(principal, {MODERATION_READ})

    since = datetime.now(timezone.utc) - timedelta(days=days)
    try:
        notes = await repository.list_moderation_notes(since=since)
        events = await repository.list_source_events(since=since)
        pending = await repository.summarize_pending_by_source()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ReviewStatsOut(
        feedback=[FeedbackStatOut(**row) for row in summarize_feedback(notes)],
        sources=[SourceStatOut(**row) for row in summarize_sources(events, pending, min_shows=min_shows)],
    )


@router.get("/{pending_id}", response_model=PendingShowOut)
async def get_pending_show(
    pending_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> PendingShowOut:
    require_scopes(principal, {MODERATION_READ})

    try:
        row = await repository.get_pending_show(pending_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return PendingShowOut(**row)


@router.get("/{pending_id}/events", response_model=list[ModerationEventOut])
async def list_pending_show_events(
    pending_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ModerationEventOut]:
    require_scopes(principal, {MODERATION_READ})

    try:
        rows = await repository.list_pending_show_events(pending_id=pending_id, limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return [ModerationEventOut(**row) for row in rows]


@router.post("/{pending_id}/approve", response_model=ShowOut)
async def approve_pending_show(
    pending_id: str,
    payload: ApproveRequest | None = None,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ShowOut:
    require_scopes(principal, {MODERATION_WRITE})
    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    request = payload or ApproveRequest()
    try:
        row = await repository.approve_pending_show(
            pending_id=pending_id,
            actor_user_id=principal.actor_id,
            notes=request.notes,
            corrections=request.corrections,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    return ShowOut(**row)


@router.post("/{pending_id}/reject", response_model=RejectOut)
async def reject_pending_show(
    pending_id: str,
    payload: RejectRequest | None = None,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> RejectOut:
    require_scopes(principal, {MODERATION_WRITE})
    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    reason = payload.reason if payload else None
    try:
        row = await repository.reject_pending_show(
            pending_id=pending_id,
            actor_user_id=principal.actor_id,
            reason=reason,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return RejectOut(**row)


@router.patch("/{pending_id}", response_model=PendingShowOut)
async def edit_pending_show(
    pending_id: str,
    payload: EditRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> PendingShowOut:
    require_scopes(principal, {MODERATION_WRITE})
    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    try:
        row = await repository.edit_pending_show(
            pending_id=pending_id,
            actor_user_id=principal.actor_id,
            normalized=payload.normalized_payload.model_dump(mode="json"),
            notes=payload.notes,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    return PendingShowOut(**row)
