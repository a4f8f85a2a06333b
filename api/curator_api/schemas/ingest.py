from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

IngestRunStatus = Literal["succeeded", "partial", "failed"]


class PendingShowCandidateIn(BaseModel):
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    normalized: dict[str, Any]


class PendingShowBatchRequest(BaseModel):
    source_url: str = Field(min_length=1)
    run_id: str | None = None
    candidates: list[PendingShowCandidateIn] = Field(default_factory=list)


class PendingShowBatchOut(BaseModel):
    processed: int
    errors: int
    created: int
    updated: int
    skipped: int
    pending_ids: list[str] = Field(default_factory=list)


class IngestSourceResult(BaseModel):
    address: str
    status: str
    extracted: int = 0
    admitted: int = 0
    processed: int = 0
    errors: int = 0
    error: str | None = None


class IngestRunIn(BaseModel):
    run_id: str = Field(min_length=1)
    status: IngestRunStatus
    processed: int = Field(ge=0)
    errors: int = Field(ge=0)
    skipped: int = Field(default=0, ge=0)
    dropped: int = Field(default=0, ge=0)
    sources_attempted: int = Field(default=0, ge=0)
    sources_failed: int = Field(default=0, ge=0)
    elapsed_seconds: float = Field(ge=0)
    started_at: datetime
    finished_at: datetime | None = None
    fatal_error: str | None = None
    source_results: list[IngestSourceResult] = Field(default_factory=list)


class IngestRunOut(IngestRunIn):
    id: str
    module_id: str
    recorded_at: datetime
