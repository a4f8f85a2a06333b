"""Near-duplicate detection across PENDING rows.

The natural key already stops exact (name, start date, city) repeats. This
catches the ones it misses: typos in the name, a missing city, or a start date
that one source reports a day off. Two rows pair up when any of these holds:

* same start date and similar names;
* identical names and start dates at most one day apart;
* similar names in the same city, with states equal or one of them missing.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from rapidfuzz import fuzz

from curator_api.core.natural_key import normalize_key_text

DEFAULT_SIMILARITY_THRESHOLD = 0.6
DEFAULT_MAX_RESULTS = 100
MAX_DATE_GAP_DAYS = 1


def name_similarity(left: str, right: str) -> float:
    if not left or not right:
        return 0.0
    return fuzz.token_sort_ratio(left, right) / 100.0


def find_duplicate_pairs(
    rows: Sequence[Mapping[str, Any]],
    *,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> list[dict[str, Any]]:
    """Pairs of pending rows that likely describe the same show, most similar first.

    ``rows`` carry ``id``, ``source_url``, ``normalized_json`` and ``created_at``.
    """
    entries = [_entry(row) for row in rows]
    pairs: list[dict[str, Any]] = []
    for index, first in enumerate(entries):
        for second in entries[index + 1 :]:
            similarity = _match(first, second, threshold)
            if similarity is None:
                continue
            newer, older = (first, second) if first["created_at"] >= second["created_at"] else (second, first)
            pairs.append(
                {
                    "first": newer["ref"],
                    "second": older["ref"],
                    "similarity": round(similarity, 3),
                    "_newest": newer["created_at"],
                }
            )

    pairs.sort(key=lambda pair: (pair["similarity"], pair["_newest"]), reverse=True)
    for pair in pairs:
        del pair["_newest"]
    return pairs[: max(0, max_results)]


def _match(first: dict[str, Any], second: dict[str, Any], threshold: float) -> float | None:
    name_score = name_similarity(first["name_key"], second["name_key"])
    place_score = name_similarity(first["place_key"], second["place_key"])
    similarity = max(name_score, place_score)
    similar_names = name_score >= threshold

    same_day = first["start"] is not None and first["start"] == second["start"]
    if same_day and similar_names:
        return similarity

    if first["name_key"] and first["name_key"] == second["name_key"] and _close_dates(first["start"], second["start"]):
        return similarity

    if similar_names and first["city_key"] and first["city_key"] == second["city_key"] and _compatible_states(first, second):
        return similarity
    return None


def _close_dates(left: date | None, right: date | None) -> bool:
    if left is None or right is None:
        return False
    return abs((left - right).days) <= MAX_DATE_GAP_DAYS


def _compatible_states(first: dict[str, Any], second: dict[str, Any]) -> bool:
    return not first["state_key"] or not second["state_key"] or first["state_key"] == second["state_key"]


def _entry(row: Mapping[str, Any]) -> dict[str, Any]:
    normalized = row.get("normalized_json") or {}
    city_key = normalize_key_text(normalized.get("city"))
    state_key = normalize_key_text(normalized.get("state"))
    start = _parse_date(normalized.get("start_date"))
    return {
        "name_key": normalize_key_text(normalized.get("name")),
        "city_key": city_key,
        "state_key": state_key,
        "place_key": f"{city_key} {state_key}".strip(),
        "start": start,
        "created_at": row["created_at"],
        "ref": {
            "id": row["id"],
            "name": normalized.get("name"),
            "start_date": start,
            "city": normalized.get("city"),
            "state": normalized.get("state"),
            "source_url": row.get("source_url"),
            "created_at": row["created_at"],
        },
    }


def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None
