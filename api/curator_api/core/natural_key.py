import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class NaturalKey:
    name: str
    start_date: date
    city: str

    def to_payload(self) -> dict[str, str]:
        return {"name": self.name, "start_date": self.start_date.isoformat(), "city": self.city}


def normalize_key_text(value: Any) -> str:
    """Case-folded, whitespace-collapsed text used for identity comparisons."""
    if not isinstance(value, str):
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip().casefold()


def natural_key(normalized: Mapping[str, Any]) -> NaturalKey | None:
    """Identity of a show listing: (name, start date, city). None when name or start date is missing."""
    name = normalize_key_text(normalized.get("name"))
    start_date = _coerce_date(normalized.get("start_date"))
    if not name or start_date is None:
        return None
    return NaturalKey(name=name, start_date=start_date, city=normalize_key_text(normalized.get("city")))


def _coerce_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None
