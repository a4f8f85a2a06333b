from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from curator_api.schemas.shows import NormalizedShow, NormalizedShowPatch

MODERATION_ACTIONS = {"INGEST", "APPROVE", "REJECT", "EDIT", "RESCORE"}

# Structured tags reviewers put at the start of notes, e.g. "DATE_FORMAT, VENUE_MISSING - wrong year".
FEEDBACK_TAGS = (
    "DATE_FORMAT",
    "VENUE_MISSING",
    "ADDRESS_POOR",
    "DUPLICATE",
    "MULTI_EVENT_COLLAPSE",
    "EXTRA_HTML",
    "SPAM",
    "STATE_FULL",
    "CITY_MISSING",
)

_TAG_SECTION_END_RE = re.compile(r"\s[-–]\s|[–:]")
_TAG_SPLIT_RE = re.compile(r"[,\s]+")

_SHOW_FIELD_NAMES = {
    name
    for field_name, info in NormalizedShowPatch.model_fields.items()
    for name in (field_name, info.alias)
    if name
}


class ShowPayloadError(ValueError):
    """Raised when a show payload or a correction set does not validate."""


def validate_show_payload(payload: Mapping[str, Any] | None) -> dict[str, Any]:
    """Validate and canonicalize a normalized show, reapplying the single-day end date rule."""
    try:
        model = NormalizedShow.model_validate(dict(payload or {}))
    except ValidationError as exc:
        raise ShowPayloadError(_describe_validation_error(exc)) from exc
    return model.model_dump(mode="json")


def merge_corrections(normalized: Mapping[str, Any] | None, corrections: Mapping[str, Any]) -> dict[str, Any]:
    unknown = sorted(key for key in corrections if key not in _SHOW_FIELD_NAMES)
    if unknown:
        raise ShowPayloadError(f"unknown correction fields: {unknown}")

    try:
        patch = NormalizedShowPatch.model_validate(dict(corrections))
    except ValidationError as exc:
        raise ShowPayloadError(_describe_validation_error(exc)) from exc

    merged = validate_show_payload(normalized)
    merged.update(patch.model_dump(mode="json", exclude_unset=True))
    return validate_show_payload(merged)


def build_show_fields(normalized: Mapping[str, Any], *, source_url: str | None) -> dict[str, Any]:
    """Column values for the canonical shows table from an approved payload."""
    if not normalized.get("name") or not normalized.get("start_date"):
        raise ShowPayloadError("approval requires a name and a start date")
    return {
        "name": normalized["name"],
        "start_date": normalized["start_date"],
        "end_date": normalized.get("end_date") or normalized["start_date"],
        "venue_name": normalized.get("venue_name"),
        "address": normalized.get("address"),
        "city": normalized.get("city"),
        "state": normalized.get("state"),
        "entry_fee": normalized.get("entry_fee"),
        "description": normalized.get("description"),
        "website_url": normalized.get("url") or source_url,
        "contact_info": normalized.get("contact_info"),
        "source_url": source_url,
    }


def parse_feedback_tags(notes: str | None) -> list[str]:
    if not notes:
        return []
    head = _TAG_SECTION_END_RE.split(notes, maxsplit=1)[0]
    tags: list[str] = []
    for token in _TAG_SPLIT_RE.split(head.upper()):
        if token in FEEDBACK_TAGS and token not in tags:
            tags.append(token)
    return tags


def summarize_feedback(notes: Iterable[str | None]) -> list[dict[str, Any]]:
    """Tag frequencies across reviewer notes; percentage is relative to the number of notes."""
    counts: Counter[str] = Counter()
    total = 0
    for note in notes:
        total += 1
        counts.update(parse_feedback_tags(note))
    if not total:
        return []
    return [
        {"tag": tag, "count": count, "percentage": round(count * 100.0 / total, 1)}
        for tag, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "invalid show payload"


def summarize_sources(
    events: Iterable[Mapping[str, Any]],
    pending: Iterable[Mapping[str, Any]],
    *,
    min_shows: int = 1,
) -> list[dict[str, Any]]:
    """Per-source outcomes from INGEST/APPROVE/REJECT events plus the current queue.

    ``events`` rows carry ``action``, ``source_url`` and ``notes``; ``pending``
    rows carry ``source_url``, ``pending_count`` and ``avg_confidence_score``.
    Rates are relative to decided rows; ``common_issues`` counts feedback tags
    from reject reasons.
    """
    stats: dict[str, dict[str, Any]] = {}

    def _row(source_url: str) -> dict[str, Any]:
        return stats.setdefault(
            source_url,
            {
                "source_url": source_url,
                "discovered": 0,
                "approved": 0,
                "rejected": 0,
                "pending": 0,
                "avg_confidence_score": None,
                "common_issues": Counter(),
            },
        )

    for event in events:
        source_url = event.get("source_url")
        if not source_url:
            continue
        row = _row(source_url)
        action = event.get("action")
        if action == "INGEST":
            row["discovered"] += 1
        elif action == "APPROVE":
            row["approved"] += 1
        elif action == "REJECT":
            row["rejected"] += 1
            row["common_issues"].update(parse_feedback_tags(event.get("notes")))

    for queued in pending:
        row = _row(queued["source_url"])
        row["pending"] = int(queued["pending_count"])
        score = queued.get("avg_confidence_score")
        row["avg_confidence_score"] = round(float(score), 1) if score is not None else None

    summaries = []
    for row in stats.values():
        if row["discovered"] + row["approved"] + row["rejected"] + row["pending"] < min_shows:
            continue
        decided = row["approved"] + row["rejected"]
        row["approval_rate"] = round(row["approved"] * 100.0 / decided, 1) if decided else 0.0
        row["rejection_rate"] = round(row["rejected"] * 100.0 / decided, 1) if decided else 0.0
        row["common_issues"] = dict(row["common_issues"].most_common())
        summaries.append(row)
    summaries.sort(key=lambda row: (-row["discovered"], -row["pending"], row["source_url"]))
    return summaries
