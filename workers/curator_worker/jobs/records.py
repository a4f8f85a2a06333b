from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any

_CANDIDATE_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("name", "title", "eventName", "event_name"),
    "start_date_text": ("startDate", "start_date", "date"),
    "end_date_text": ("endDate", "end_date"),
    "venue_name": ("venueName", "venue_name", "venue", "location"),
    "address": ("address", "streetAddress", "street_address"),
    "city": ("city",),
    "state": ("state", "region"),
    "entry_fee_text": ("entryFee", "entry_fee", "admission", "price"),
    "description": ("description", "details"),
    "url": ("url", "eventUrl", "event_url", "link"),
    "contact_info": ("contactInfo", "contact_info", "contact"),
}


@dataclass(slots=True)
class RawDocument:
    source_address: str
    content: str
    status_code: int
    content_type: str | None = None
    truncated: bool = False


@dataclass(slots=True)
class CandidateShowRecord:
    """One loosely-typed event as emitted by the extraction step."""

    name: str | None = None
    start_date_text: str | None = None
    end_date_text: str | None = None
    venue_name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    entry_fee_text: str | None = None
    description: str | None = None
    url: str | None = None
    contact_info: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CandidateShowRecord:
        values: dict[str, str | None] = {}
        for field_name, aliases in _CANDIDATE_KEY_ALIASES.items():
            values[field_name] = next(
                (text for text in (_coerce_text(payload.get(alias)) for alias in aliases) if text),
                None,
            )
        return cls(**values)

    def to_raw_payload(self) -> dict[str, str | None]:
        return {field.name: getattr(self, field.name) for field in fields(self)}


@dataclass(slots=True)
class NormalizedShowCandidate:
    name: str | None
    start_date: date | None
    end_date: date | None
    venue_name: str | None
    address: str | None
    city: str | None
    state: str | None
    entry_fee: float | None
    description: str | None
    url: str | None
    contact_info: str | None
    normalized_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "venue_name": self.venue_name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "entry_fee": self.entry_fee,
            "description": self.description,
            "url": self.url,
            "contact_info": self.contact_info,
            "normalized_at": self.normalized_at.isoformat(),
        }


def _coerce_text(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)):
        return str(value)
    return None
