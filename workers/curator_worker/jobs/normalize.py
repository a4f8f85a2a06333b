"""Field normalizers that turn scraped show text into canonical values.

Every public function here is total and idempotent: bad input yields ``None``
(or, for dates, the original text) and already-normalized input comes back
unchanged.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

from dateutil import parser as date_parser

from curator_worker.jobs.records import CandidateShowRecord, NormalizedShowCandidate

logger = logging.getLogger(__name__)

STATE_CODES_BY_NAME: dict[str, str] = {
    "alabama": "AL",
    "alaska": "AK",
    "arizona": "AZ",
    "arkansas": "AR",
    "california": "CA",
    "colorado": "CO",
    "connecticut": "CT",
    "delaware": "DE",
    "district of columbia": "DC",
    "florida": "FL",
    "georgia": "GA",
    "hawaii": "HI",
    "idaho": "ID",
    "illinois": "IL",
    "indiana": "IN",
    "iowa": "IA",
    "kansas": "KS",
    "kentucky": "KY",
    "louisiana": "LA",
    "maine": "ME",
    "maryland": "MD",
    "massachusetts": "MA",
    "michigan": "MI",
    "minnesota": "MN",
    "mississippi": "MS",
    "missouri": "MO",
    "montana": "MT",
    "nebraska": "NE",
    "nevada": "NV",
    "new hampshire": "NH",
    "new jersey": "NJ",
    "new mexico": "NM",
    "new york": "NY",
    "north carolina": "NC",
    "north dakota": "ND",
    "ohio": "OH",
    "oklahoma": "OK",
    "oregon": "OR",
    "pennsylvania": "PA",
    "rhode island": "RI",
    "south carolina": "SC",
    "south dakota": "SD",
    "tennessee": "TN",
    "texas": "TX",
    "utah": "UT",
    "vermont": "VT",
    "virginia": "VA",
    "washington": "WA",
    "west virginia": "WV",
    "wisconsin": "WI",
    "wyoming": "WY",
}
STATE_CODES = frozenset(STATE_CODES_BY_NAME.values())
# Longest names first so "west virginia" wins over "virginia".
_STATE_NAME_PATTERNS = [
    (re.compile(rf"\b{re.escape(name)}\b"), code)
    for name, code in sorted(STATE_CODES_BY_NAME.items(), key=lambda item: (-len(item[0]), item[0]))
]

MONTH_NAMES = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

_STATE_CODE_RE = re.compile(r"^[A-Z]{2}$")
_STATE_TOKEN_RE = re.compile(r"\b([A-Z]{2})\b")
_DATE_PREFIX_RE = re.compile(r"^(?:date|when|on|starts?|ends?)\b\s*:?\s*", re.IGNORECASE)
_TIME_SUFFIX_RE = re.compile(
    r"\s*(?:\b(?:at|from|to)\b)?\s*(?<![\d./:T-])\d{1,2}[:.]\d{2}\s*(?:am|pm|a\.m\.|p\.m\.)?$",
    re.IGNORECASE,
)
_RELATIVE_DAY_RE = re.compile(r"^(today|tomorrow|now)$", re.IGNORECASE)
_NUMERIC_DATE_RE = re.compile(r"(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})")
_BARE_NUMBER_RE = re.compile(r"^\d{1,4}$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_FREE_RE = re.compile(r"\b(?:free|no\s+charge|complimentary)\b", re.IGNORECASE)
_FEE_RE = re.compile(r"[$€£]?\s*(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d+))?")
_TAG_RE = re.compile(r"<!--.*?-->|</?[a-zA-Z][^<>]*>", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")
_ENTITIES = {
    "nbsp": " ",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "#39": "'",
    "#039": "'",
    "amp": "&",
}
_ENTITY_RE = re.compile(r"&(" + "|".join(_ENTITIES) + r");")


def normalize_date(value: Any, *, today: date | None = None) -> str | None:
    """Return an ISO ``YYYY-MM-DD`` date, the original text, or ``None``."""
    text = _as_text(value)
    if text is None:
        return None

    current = today or date.today()
    try:
        cleaned = _TIME_SUFFIX_RE.sub("", _DATE_PREFIX_RE.sub("", text)).strip()

        relative = _RELATIVE_DAY_RE.match(cleaned)
        if relative:
            offset = 1 if relative.group(1).lower() == "tomorrow" else 0
            return (current + timedelta(days=offset)).isoformat()

        parsed = (
            _parse_iso(cleaned)
            or _parse_numeric(cleaned, full_match=True)
            or _parse_generic(cleaned, today=current)
            or _parse_numeric(cleaned, full_match=False)
            or _parse_month_name(cleaned)
        )
        if parsed is not None:
            return parsed.isoformat()
    except Exception:  # pragma: no cover - normalizers never raise
        logger.debug("date normalization failed for value=%r", text, exc_info=True)

    return text


def is_iso_date(value: Any) -> bool:
    return parse_iso_date(value) is not None


def parse_iso_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value.strip()):
        return None
    return _parse_iso(value.strip())


def normalize_state(value: Any) -> str | None:
    text = _as_text(value)
    if text is None:
        return None
    if _STATE_CODE_RE.match(text):
        return text

    lowered = _WHITESPACE_RE.sub(" ", text.lower())
    direct = STATE_CODES_BY_NAME.get(lowered)
    if direct:
        return direct

    for pattern, code in _STATE_NAME_PATTERNS:
        if pattern.search(lowered):
            return code

    for token in _STATE_TOKEN_RE.findall(text):
        if token in STATE_CODES:
            return token

    if len(text) <= 2:
        return text.upper()
    return None


def normalize_entry_fee(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None

    try:
        text = str(value).strip()
        if not text:
            return None
        if _FREE_RE.search(text) and not re.search(r"\d", text):
            return 0.0

        match = _FEE_RE.search(text)
        if not match:
            return None
        whole = match.group(1).replace(",", "")
        fraction = match.group(2)
        return float(f"{whole}.{fraction}") if fraction else float(whole)
    except (TypeError, ValueError):
        logger.debug("entry fee normalization failed for value=%r", value, exc_info=True)
        return None


def normalize_address(address: Any, city: Any, state: Any) -> str | None:
    address_text = _as_text(address)
    city_text = _as_text(city)
    state_text = _as_text(state)

    if not address_text:
        parts = [part for part in (city_text, state_text) if part]
        return ", ".join(parts) if parts else None

    lowered = address_text.casefold()
    if city_text and state_text and city_text.casefold() in lowered and state_text.casefold() in lowered:
        return address_text

    parts = [address_text]
    for part in (city_text, state_text):
        if part and part.casefold() not in lowered:
            parts.append(part)
    return ", ".join(parts)


def normalize_text(value: Any) -> str | None:
    text = _as_text(value)
    if text is None:
        return None

    # Fixed point: a second call is a no-op.
    previous = None
    while text != previous:
        previous = text
        text = _ENTITY_RE.sub(lambda match: _ENTITIES[match.group(1)], _TAG_RE.sub(" ", text))
    collapsed = _WHITESPACE_RE.sub(" ", text).strip()
    return collapsed or None


def normalize_show(
    candidate: CandidateShowRecord,
    *,
    source_url: str | None = None,
    today: date | None = None,
    now: datetime | None = None,
) -> NormalizedShowCandidate:
    start_date = parse_iso_date(normalize_date(candidate.start_date_text, today=today))
    end_date = parse_iso_date(normalize_date(candidate.end_date_text, today=today))
    if start_date is not None and (end_date is None or end_date < start_date):
        end_date = start_date

    city = normalize_text(candidate.city)
    state = normalize_state(normalize_text(candidate.state))
    return NormalizedShowCandidate(
        name=normalize_text(candidate.name),
        start_date=start_date,
        end_date=end_date,
        venue_name=normalize_text(candidate.venue_name),
        address=normalize_address(normalize_text(candidate.address), city, state),
        city=city,
        state=state,
        entry_fee=normalize_entry_fee(candidate.entry_fee_text),
        description=normalize_text(candidate.description),
        url=_as_text(candidate.url) or _as_text(source_url),
        contact_info=normalize_text(candidate.contact_info),
        normalized_at=now or datetime.now(timezone.utc),
    )


def _parse_iso(text: str) -> date | None:
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def _parse_numeric(text: str, *, full_match: bool) -> date | None:
    match = _NUMERIC_DATE_RE.fullmatch(text) if full_match else _NUMERIC_DATE_RE.search(text)
    if not match:
        return None
    month, day, year = (int(group) for group in match.groups())
    if year < 100:
        year += 2000 if year < 50 else 1900
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_generic(text: str, *, today: date) -> date | None:
    if not re.search(r"\d", text) or _BARE_NUMBER_RE.match(text):
        return None
    try:
        return date_parser.parse(text, default=datetime(today.year, today.month, today.day)).date()
    except (ValueError, OverflowError, TypeError):
        return None


def _parse_month_name(text: str) -> date | None:
    lowered = text.lower()
    for index, month_name in enumerate(MONTH_NAMES, start=1):
        if month_name not in lowered:
            continue
        match = re.search(
            rf"{month_name}\s+(\d{{1,2}})(?:st|nd|rd|th)?(?:\s*-\s*\d{{1,2}}(?:st|nd|rd|th)?)?(?:[,\s]+|\s*-\s*)(\d{{4}})",
            lowered,
        )
        if not match:
            continue
        try:
            return date(int(match.group(2)), index, int(match.group(1)))
        except ValueError:
            continue
    return None


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return None
