from __future__ import annotations

import asyncio
from typing import Any

import pytest

from conftest import SOURCE_URL, make_candidate
from curator_api.services.intake import upsert_pending_shows
from curator_api.services.repository import RepositoryConflictError, RepositoryNotFoundError, RepositoryUnavailableError
from curator_api.services.store import InMemoryRepository


class FlakyRepository(InMemoryRepository):
    def __init__(self, fail_names: set[str], error: Exception) -> None:
        super().__init__()
        self.fail_names = fail_names
        self.error = error

    async def upsert_pending_show(self, **kwargs: Any):
        if kwargs["normalized"]["name"] in self.fail_names:
            raise self.error
        return await super().upsert_pending_show(**kwargs)


def _upsert(repository: InMemoryRepository, *candidates) -> Any:
    return asyncio.run(
        upsert_pending_shows(repository, source_url=SOURCE_URL, candidates=list(candidates), module_id="crawler-1")
    )


def test_natural_key_ignores_case_and_spacing() -> None:
    repository = InMemoryRepository()

    first = _upsert(repository, make_candidate("Spring Card Expo", "2025-04-12", city="Springfield"))
    second = _upsert(repository, make_candidate("spring  card expo", "2025-04-12", city="SPRINGFIELD"))

    assert (first.created, second.created, second.updated) == (1, 0, 1)
    assert first.pending_ids == second.pending_ids
    assert len(repository.pending_shows) == 1


def test_different_city_or_date_creates_new_rows() -> None:
    repository = InMemoryRepository()

    summary = _upsert(
        repository,
        make_candidate("Spring Card Expo", "2025-04-12", city="Springfield"),
        make_candidate("Spring Card Expo", "2025-04-12", city="Peoria"),
        make_candidate("Spring Card Expo", "2025-04-19", city="Springfield"),
        make_candidate("Spring Card Expo", "2025-04-12"),
    )

    assert summary.created == 4
    assert len(repository.pending_shows) == 4


def test_duplicates_inside_one_batch_collapse() -> None:
    repository = InMemoryRepository()

    summary = _upsert(
        repository,
        make_candidate("Card Night", "2025-06-07", city="Decatur"),
        make_candidate("Card Night", "2025-06-07", city="Decatur", venue_name="VFW Hall"),
    )

    assert summary.processed == 2
    assert (summary.created, summary.updated) == (1, 1)
    assert len(summary.pending_ids) == 1
    stored = repository.pending_shows[summary.pending_ids[0]]
    assert stored["normalized_json"]["venue_name"] == "VFW Hall"


def test_stored_payload_is_scored_and_single_day() -> None:
    repository = InMemoryRepository()

    summary = _upsert(repository, make_candidate("Card Night", "2025-06-07", city="Decatur", state="IL"))

    stored = repository.pending_shows[summary.pending_ids[0]]
    assert stored["normalized_json"]["end_date"] == "2025-06-07"
    assert stored["confidence_score"] == 75.0
    assert stored["status"] == "PENDING"


def test_one_failing_candidate_does_not_stop_batch() -> None:
    repository = FlakyRepository({"Broken Show"}, RepositoryConflictError("boom"))

    summary = _upsert(
        repository,
        make_candidate("Spring Card Expo", "2025-04-12"),
        make_candidate("Broken Show", "2025-04-13"),
        make_candidate("Card Night", "2025-06-07"),
    )

    assert summary.processed == 2
    assert summary.errors == 1
    assert len(repository.pending_shows) == 2


def test_unavailable_store_aborts_batch() -> None:
    repository = FlakyRepository({"Spring Card Expo"}, RepositoryUnavailableError("database unavailable"))

    with pytest.raises(RepositoryUnavailableError):
        _upsert(repository, make_candidate("Spring Card Expo", "2025-04-12"))


def test_concurrent_approvals_have_one_winner() -> None:
    repository = InMemoryRepository()
    [pending_id] = _upsert(repository, make_candidate("Spring Card Expo", "2025-04-12", city="Springfield")).pending_ids

    async def _race() -> list[Any]:
        return await asyncio.gather(
            repository.approve_pending_show(pending_id=pending_id, actor_user_id="a", notes=None, corrections={}),
            repository.approve_pending_show(pending_id=pending_id, actor_user_id="b", notes=None, corrections={}),
            repository.reject_pending_show(pending_id=pending_id, actor_user_id="c", reason="late"),
            return_exceptions=True,
        )

    results = asyncio.run(_race())

    winners = [result for result in results if not isinstance(result, Exception)]
    assert len(winners) == 1
    assert all(isinstance(result, RepositoryNotFoundError) for result in results if isinstance(result, Exception))
    assert repository.pending_shows == {}
