from __future__ import annotations

import json
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_PRIORITY_SCORE = 50

DEFAULT_SOURCE_ADDRESSES = (
    "https://www.sacramentocardshow916.com/",
    "https://katysportscardshow.com/",
    "https://nonacollects.com/",
    "https://www.collectiblesoncollege.com/showcalendar-834086-307805.html",
    "https://frontrowcardshow.com/collections/san-diego",
    "https://www.frankandsonshow.net/",
    "https://www.trifectacollectibles.com/events/list/",
    "https://cvcshow.com/events/",
    "https://westcoastcardshow.com/events/",
    "https://frontrowcardshow.com/collections/pasadena",
    "https://www.card.party/",
    "https://charliescollectibleshow.com/",
    "https://www.cardshq.com/pages/events",
    "https://www.dallascardshow.com/chicago",
    "https://www.premiercardshows.com/",
    "https://www.nsccshow.com/",
    "https://dpmsportcards.com/indiana-card-shows/",
    "https://jjallstarsportscards.com/show-dates/",
    "https://flippincardshow.com/",
    "https://www.northeastcardexpo.com/",
    "https://www.cardshows.net/methuen-show-dates",
    "https://collectorsarena.net/pages/events-calendar",
    "https://www.cardshowmn.com/",
    "https://www.kccardshows.com/",
    "https://stlsportscollectors.com/",
    "https://www.nyshows.org/show-calendar-new",
    "https://www.tidewatercardsandcollectibles.com/upcoming-shows",
    "https://www.toledosportscardshow.com/",
    "https://gametimesportscollect.com/event-schedule/",
    "https://phillyshow.com/",
    "https://www.sbsportspromotions.com/pages/show-schedule",
    "https://www.dallascardshow.com/",
    "https://htowncardshow.com/",
    "https://csashows.com/",
    "https://pnwshow.com/",
    "https://www.wsscaseattle.com/",
    "https://www.wisconsincardshow.com/",
    "https://madisoncardshow.com/",
    "https://theoshkoshcardshow.com/",
)


class SourceRegistryError(ValueError):
    """Raised when a source registry document cannot be loaded."""


@dataclass(frozen=True, slots=True)
class SourceLocator:
    address: str
    enabled: bool = True
    priority_score: int = DEFAULT_PRIORITY_SCORE
    notes: str | None = None


class SourceRegistry:
    """Operator-maintained list of show-listing sources, read-only at run time."""

    def __init__(self, locators: list[SourceLocator]) -> None:
        seen: set[str] = set()
        deduped: list[SourceLocator] = []
        for locator in locators:
            address = locator.address.strip()
            if not address or address in seen:
                continue
            seen.add(address)
            deduped.append(locator)
        self._locators = tuple(deduped)

    def __len__(self) -> int:
        return len(self._locators)

    def __iter__(self):
        return iter(self._locators)

    def enabled(self) -> list[SourceLocator]:
        rows = [locator for locator in self._locators if locator.enabled]
        return sorted(rows, key=lambda row: (-row.priority_score, row.address))

    def sample(self, size: int, *, rng: random.Random | None = None) -> list[SourceLocator]:
        """Uniform sample without replacement from the enabled sources."""
        candidates = self.enabled()
        if size <= 0 or not candidates:
            return []
        chooser = rng or random.Random()
        return chooser.sample(candidates, min(size, len(candidates)))

    @classmethod
    def default(cls) -> SourceRegistry:
        return cls([SourceLocator(address=address) for address in DEFAULT_SOURCE_ADDRESSES])

    @classmethod
    def from_json(cls, raw: str) -> SourceRegistry:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SourceRegistryError("source registry must be valid JSON") from exc

        if isinstance(payload, dict):
            payload = payload.get("sources")
        if not isinstance(payload, list):
            raise SourceRegistryError("source registry must be a JSON array of sources")

        return cls([_locator_from_entry(entry) for entry in payload if _has_address(entry)])

    @classmethod
    def from_path(cls, path: str | Path) -> SourceRegistry:
        try:
            raw = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise SourceRegistryError(f"unable to read source registry: {path}") from exc
        return cls.from_json(raw)


def load_source_registry(*, registry_json: str | None, registry_path: str | None) -> SourceRegistry:
    if registry_json:
        return SourceRegistry.from_json(registry_json)
    if registry_path:
        return SourceRegistry.from_path(registry_path)
    return SourceRegistry.default()


def _has_address(entry: Any) -> bool:
    if isinstance(entry, str):
        return bool(entry.strip())
    if isinstance(entry, dict):
        address = entry.get("address") or entry.get("url")
        return isinstance(address, str) and bool(address.strip())
    return False


def _locator_from_entry(entry: str | dict[str, Any]) -> SourceLocator:
    if isinstance(entry, str):
        return SourceLocator(address=entry.strip())

    address = str(entry.get("address") or entry.get("url")).strip()
    enabled = entry.get("enabled", True)
    notes = entry.get("notes")
    return SourceLocator(
        address=address,
        enabled=enabled if isinstance(enabled, bool) else True,
        priority_score=_clamp_priority(entry.get("priority_score", entry.get("priorityScore"))),
        notes=(notes.strip() or None) if isinstance(notes, str) else None,
    )


def _clamp_priority(value: Any) -> int:
    try:
        priority = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PRIORITY_SCORE
    return max(0, min(100, priority))
