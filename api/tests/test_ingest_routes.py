from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import SOURCE_URL, login_as
from curator_api.core.config import get_settings
from curator_api.services.store import InMemoryRepository

MODULE_HEADERS = {"X-Module-Id": "crawler-1", "X-API-Key": "crawler-secret"}


@pytest.fixture
def machine_repository(repository: InMemoryRepository) -> InMemoryRepository:
    repository.add_machine_credential("crawler-1", "crawler-secret")
    repository.add_machine_credential("read-only", "read-only-secret", scopes=[])
    return repository


def _batch(*candidates: dict) -> dict:
    return {"source_url": SOURCE_URL, "run_id": "run-1", "candidates": list(candidates)}


def _show(name: str = "Spring Card Expo", **fields) -> dict:
    normalized = {"name": name, "start_date": "2025-04-12", "city": "Springfield", "state": "IL", **fields}
    return {"raw_payload": {"name": name, "startDate": "April 12, 2025"}, "normalized": normalized}


def test_ingest_requires_module_headers(api_client: TestClient, machine_repository: InMemoryRepository) -> None:
    response = api_client.post("/ingest/pending-shows", json=_batch(_show()))
    assert response.status_code == 401


def test_ingest_rejects_wrong_api_key(api_client: TestClient, machine_repository: InMemoryRepository) -> None:
    response = api_client.post(
        "/ingest/pending-shows",
        json=_batch(_show()),
        headers={"X-Module-Id": "crawler-1", "X-API-Key": "wrong"},
    )
    assert response.status_code == 401


def test_ingest_requires_write_scope(api_client: TestClient, machine_repository: InMemoryRepository) -> None:
    response = api_client.post(
        "/ingest/pending-shows",
        json=_batch(_show()),
        headers={"X-Module-Id": "read-only", "X-API-Key": "read-only-secret"},
    )
    assert response.status_code == 403
    assert machine_repository.pending_shows == {}


def test_ingest_counts_invalid_candidates_without_failing_batch(
    api_client: TestClient,
    machine_repository: InMemoryRepository,
) -> None:
    response = api_client.post(
        "/ingest/pending-shows",
        json=_batch(_show(), {"raw_payload": {}, "normalized": {"name": "Undated Swap Meet"}}),
        headers=MODULE_HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == 1
    assert body["errors"] == 1
    assert body["created"] == 1
    assert len(body["pending_ids"]) == 1
    stored = machine_repository.pending_shows[body["pending_ids"][0]]
    assert stored["status"] == "PENDING"
    assert stored["last_run_id"] == "run-1"


def test_ingest_rediscovery_updates_existing_pending_row(
    api_client: TestClient,
    machine_repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    first = api_client.post("/ingest/pending-shows", json=_batch(_show()), headers=MODULE_HEADERS).json()
    second = api_client.post(
        "/ingest/pending-shows",
        json=_batch(_show("  spring card   EXPO ", venue_name="Expo Hall B")),
        headers=MODULE_HEADERS,
    ).json()

    assert second["created"] == 0
    assert second["updated"] == 1
    assert second["pending_ids"] == first["pending_ids"]

    rows = api_client.get("/pending-shows", headers=login_as(monkeypatch, "admin")).json()
    assert len(rows) == 1
    assert rows[0]["normalized_json"]["venue_name"] == "Expo Hall B"


def test_ingest_skips_shows_already_published(
    api_client: TestClient,
    machine_repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    first = api_client.post("/ingest/pending-shows", json=_batch(_show()), headers=MODULE_HEADERS).json()
    approved = api_client.post(
        f"/pending-shows/{first['pending_ids'][0]}/approve",
        headers=login_as(monkeypatch, "admin"),
    )
    assert approved.status_code == 200

    again = api_client.post("/ingest/pending-shows", json=_batch(_show()), headers=MODULE_HEADERS).json()
    assert again["processed"] == 0
    assert again["skipped"] == 1
    assert machine_repository.pending_shows == {}


def test_ingest_enforces_batch_limit(
    api_client: TestClient,
    machine_repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CC_INGEST_MAX_CANDIDATES_PER_REQUEST", "1")
    get_settings.cache_clear()

    response = api_client.post(
        "/ingest/pending-shows",
        json=_batch(_show(), _show("Fall Card Expo")),
        headers=MODULE_HEADERS,
    )
    assert response.status_code == 422


def test_run_summary_is_recorded_and_listed(
    api_client: TestClient,
    machine_repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    run = {
        "run_id": "run-42",
        "status": "partial",
        "processed": 5,
        "errors": 1,
        "skipped": 1,
        "sources_attempted": 3,
        "sources_failed": 1,
        "elapsed_seconds": 12.5,
        "started_at": datetime(2025, 3, 1, 6, 0, tzinfo=timezone.utc).isoformat(),
        "finished_at": datetime(2025, 3, 1, 6, 1, tzinfo=timezone.utc).isoformat(),
        "source_results": [{"address": SOURCE_URL, "status": "failed", "error": "HTTP 503"}],
    }

    recorded = api_client.post("/ingest/runs", json=run, headers=MODULE_HEADERS)
    assert recorded.status_code == 201
    assert recorded.json()["module_id"] == "crawler-1"

    denied = api_client.get("/ingest/runs", headers=login_as(monkeypatch, "user"))
    assert denied.status_code == 403

    listed = api_client.get("/ingest/runs", headers=login_as(monkeypatch, "admin"))
    assert listed.status_code == 200
    body = listed.json()
    assert [row["run_id"] for row in body] == ["run-42"]
    assert body[0]["processed"] == 5
    assert body[0]["source_results"][0]["error"] == "HTTP 503"
