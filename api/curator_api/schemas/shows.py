from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

PendingShowStatus = Literal["PENDING", "ACTIVE", "REJECTED"]


class NormalizedShowPatch(BaseModel):
    """Show fields in canonical form; every field optional so it doubles as a correction set."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    venue_name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    entry_fee: float | None = Field(default=None, ge=0)
    description: str | None = None
    url: str | None = None
    contact_info: str | None = None
    normalized_at: datetime | None = None


class NormalizedShow(NormalizedShowPatch):
    @model_validator(mode="after")
    def _single_day_when_end_missing(self) -> "NormalizedShow":
        if self.start_date is not None and (self.end_date is None or self.end_date < self.start_date):
            self.end_date = self.start_date
        return self


class PendingShowOut(BaseModel):
    id: str
    status: PendingShowStatus
    source_url: str
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    normalized_json: dict[str, Any] | None = None
    confidence_score: float | None = None
    quality_issues: list[str] = Field(default_factory=list)
    admin_notes: str | None = None
    created_at: datetime
    updated_at: datetime


class ApproveRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    notes: str | None = None
    corrections: dict[str, Any] = Field(default_factory=dict)


class RejectRequest(BaseModel):
    reason: str | None = None


class EditRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    normalized_payload: NormalizedShow
    notes: str | None = None


class ShowOut(BaseModel):
    id: str
    name: str
    start_date: date
    end_date: date | None = None
    venue_name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    entry_fee: float | None = None
    description: str | None = None
    website_url: str | None = None
    contact_info: str | None = None
    status: str
    source_url: str | None = None
    created_at: datetime
    updated_at: datetime


class RejectOut(BaseModel):
    id: str
    status: Literal["REJECTED"] = "REJECTED"
    reason: str | None = None


class ModerationEventOut(BaseModel):
    id: int
    pending_show_id: str | None = None
    show_id: str | None = None
    action: str
    actor_type: str
    actor_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class FeedbackStatOut(BaseModel):
    tag: str
    count: int
    percentage: float


class RescoreOut(BaseModel):
    count: int


class BatchDecisionRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action: Literal["approve", "reject"]
    ids: list[str] = Field(min_length=1)
    notes: str | None = None


class BatchItemOut(BaseModel):
    id: str
    outcome: str
    show_id: str | None = None
    detail: str | None = None


class BatchDecisionOut(BaseModel):
    action: str
    succeeded: int
    failed: int
    results: list[BatchItemOut] = Field(default_factory=list)


class DuplicateShowRef(BaseModel):
    id: str
    name: str | None = None
    start_date: date | None = None
    city: str | None = None
    state: str | None = None
    source_url: str | None = None
    created_at: datetime


class DuplicatePairOut(BaseModel):
    first: DuplicateShowRef
    second: DuplicateShowRef
    similarity: float


class SourceStatOut(BaseModel):
    source_url: str
    discovered: int
    approved: int
    rejected: int
    pending: int
    avg_confidence_score: float | None = None
    approval_rate: float
    rejection_rate: float
    common_issues: dict[str, int] = Field(default_factory=dict)


class ReviewStatsOut(BaseModel):
    feedback: list[FeedbackStatOut] = Field(default_factory=list)
    sources: list[SourceStatOut] = Field(default_factory=list)
