"""Heuristic completeness score for a normalized show payload.

Every component is a non-negative weight that depends only on fields being
present and well formed, so adding a field never lowers the score. Weights sum
to 100.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

WEIGHTS: dict[str, int] = {
    "name": 20,
    "name_length": 5,
    "start_date": 25,
    "end_date": 5,
    "city": 10,
    "state": 10,
    "location": 10,
    "address_complete": 5,
    "entry_fee": 5,
    "description": 5,
}

MIN_NAME_LENGTH = 5
MIN_DESCRIPTION_LENGTH = 20

US_STATE_CODES = frozenset(
    {
        "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FL", "GA", "HI", "ID",
        "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO",
        "MT", "NE", "NV", "NH", "NJ", "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA",
        "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
    }
)

_HTML_ARTIFACT_RE = re.compile(r"<[^>]+>|&(?:amp|lt|gt|quot|nbsp|#\d+);", re.IGNORECASE)


@dataclass(slots=True)
class ConfidenceScore:
    score: int
    issues: list[str] = field(default_factory=list)
    components: dict[str, int] = field(default_factory=dict)


def score_show(normalized: Mapping[str, Any] | None) -> ConfidenceScore:
    payload = normalized or {}
    components: dict[str, int] = {}
    issues: list[str] = []

    name = _text(payload.get("name"))
    if name:
        components["name"] = WEIGHTS["name"]
        if len(name) >= MIN_NAME_LENGTH:
            components["name_length"] = WEIGHTS["name_length"]
    else:
        issues.append("missing name")

    start_date = _iso_date(payload.get("start_date"))
    if start_date:
        components["start_date"] = WEIGHTS["start_date"]
    else:
        issues.append("missing start date")

    end_date = _iso_date(payload.get("end_date"))
    if end_date and (start_date is None or end_date >= start_date):
        components["end_date"] = WEIGHTS["end_date"]

    city = _text(payload.get("city"))
    if city:
        components["city"] = WEIGHTS["city"]
    else:
        issues.append("missing city")

    state = _text(payload.get("state"))
    if state in US_STATE_CODES:
        components["state"] = WEIGHTS["state"]
    elif state:
        issues.append("state is not a 2-letter code")

    venue_name = _text(payload.get("venue_name"))
    address = _text(payload.get("address"))
    if venue_name or address:
        components["location"] = WEIGHTS["location"]
    else:
        issues.append("missing venue and address")

    if address and city and state:
        folded = address.casefold()
        if city.casefold() in folded and state.casefold() in folded:
            components["address_complete"] = WEIGHTS["address_complete"]

    entry_fee = payload.get("entry_fee")
    if isinstance(entry_fee, (int, float)) and not isinstance(entry_fee, bool) and entry_fee >= 0:
        components["entry_fee"] = WEIGHTS["entry_fee"]

    description = _text(payload.get("description"))
    if description and len(description) >= MIN_DESCRIPTION_LENGTH:
        components["description"] = WEIGHTS["description"]
    if description and _HTML_ARTIFACT_RE.search(description):
        issues.append("HTML artifacts in description")

    return ConfidenceScore(score=min(100, sum(components.values())), issues=issues, components=components)


def _text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _iso_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    text = _text(value)
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None
