from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import SOURCE_URL, login_as, make_candidate, seed_pending
from curator_api.services.store import InMemoryRepository

FULL_SHOW = {
    "venue_name": "Springfield Expo Center",
    "address": "100 Main St, Springfield, IL",
    "city": "Springfield",
    "state": "IL",
    "entry_fee": 5.0,
    "description": "Over 80 tables of vintage and modern sports cards.",
}


def _seed_queue(repository: InMemoryRepository) -> dict[str, str]:
    full_id, minimal_id, bare_id = seed_pending(
        repository,
        make_candidate("Spring Card Expo", "2025-04-12", **FULL_SHOW),
        make_candidate("Collectors Swap", "2025-05-03", city="Peoria", state="IL"),
        make_candidate("Card Night", "2025-06-07"),
    )
    return {"full": full_id, "minimal": minimal_id, "bare": bare_id}


def test_pending_list_requires_bearer_token(api_client: TestClient) -> None:
    response = api_client.get("/pending-shows")
    assert response.status_code == 401


def test_pending_list_denies_user_role(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    headers = login_as(monkeypatch, "user")

    response = api_client.get("/pending-shows", headers=headers)
    assert response.status_code == 403


def test_moderation_writes_deny_user_role_without_touching_queue(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "user")

    approve = api_client.post(f"/pending-shows/{ids['full']}/approve", json={}, headers=headers)
    reject = api_client.post(f"/pending-shows/{ids['minimal']}/reject", json={"reason": "SPAM"}, headers=headers)
    edit = api_client.patch(
        f"/pending-shows/{ids['bare']}",
        json={"normalized_payload": {"name": "Card Night", "start_date": "2025-06-07"}},
        headers=headers,
    )

    assert [approve.status_code, reject.status_code, edit.status_code] == [403, 403, 403]
    assert set(repository.pending_shows) == set(ids.values())
    assert repository.shows == {}


def test_pending_list_orders_by_confidence_then_recency(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    response = api_client.get("/pending-shows", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert [row["id"] for row in body] == [ids["full"], ids["minimal"], ids["bare"]]
    assert [row["confidence_score"] for row in body] == [100.0, 75.0, 55.0]
    assert all(row["status"] == "PENDING" for row in body)
    assert "missing city" in body[2]["quality_issues"]


def test_pending_list_filters_by_score_and_source(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    above = api_client.get("/pending-shows", params={"min_score": 60}, headers=headers)
    assert [row["id"] for row in above.json()] == [ids["full"], ids["minimal"]]

    band = api_client.get("/pending-shows", params={"min_score": 50, "max_score": 80}, headers=headers)
    assert [row["id"] for row in band.json()] == [ids["minimal"], ids["bare"]]

    paged = api_client.get("/pending-shows", params={"limit": 1, "offset": 1}, headers=headers)
    assert [row["id"] for row in paged.json()] == [ids["minimal"]]

    other_source = api_client.get("/pending-shows", params={"source_url": "https://other.example.com"}, headers=headers)
    assert other_source.json() == []

    inverted = api_client.get("/pending-shows", params={"min_score": 90, "max_score": 10}, headers=headers)
    assert inverted.status_code == 422


def test_approve_merges_corrections_into_active_show(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin", user_id="admin-1")

    response = api_client.post(
        f"/pending-shows/{ids['minimal']}/approve",
        json={"notes": "VENUE_MISSING - added venue", "corrections": {"venueName": "Peoria Civic Hall", "entry_fee": 3}},
        headers=headers,
    )

    assert response.status_code == 200
    show = response.json()
    assert show["status"] == "ACTIVE"
    assert show["name"] == "Collectors Swap"
    assert show["start_date"] == "2025-05-03"
    assert show["end_date"] == "2025-05-03"
    assert show["venue_name"] == "Peoria Civic Hall"
    assert show["entry_fee"] == 3.0
    assert show["website_url"] == SOURCE_URL
    assert ids["minimal"] not in repository.pending_shows
    assert len(repository.shows) == 1

    events = api_client.get(f"/pending-shows/{ids['minimal']}/events", headers=headers).json()
    assert [event["action"] for event in events] == ["APPROVE", "INGEST"]
    assert events[0]["actor_id"] == "admin-1"
    assert events[0]["show_id"] == show["id"]


def test_approve_twice_returns_not_found(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    first = api_client.post(f"/pending-shows/{ids['full']}/approve", headers=headers)
    second = api_client.post(f"/pending-shows/{ids['full']}/approve", headers=headers)

    assert first.status_code == 200
    assert second.status_code == 404
    assert len(repository.shows) == 1


def test_approve_rejects_unknown_correction_fields(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    response = api_client.post(
        f"/pending-shows/{ids['full']}/approve",
        json={"corrections": {"venu": "typo"}},
        headers=headers,
    )

    assert response.status_code == 422
    assert ids["full"] in repository.pending_shows


def test_reject_deletes_row_and_logs_reason(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    response = api_client.post(
        f"/pending-shows/{ids['bare']}/reject",
        json={"reason": "SPAM, DUPLICATE - reposted flyer"},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json() == {"id": ids["bare"], "status": "REJECTED", "reason": "SPAM, DUPLICATE - reposted flyer"}
    assert ids["bare"] not in repository.pending_shows
    reject_event = repository.moderation_events[-1]
    assert reject_event["action"] == "REJECT"
    assert reject_event["payload"]["reason"] == "SPAM, DUPLICATE - reposted flyer"

    again = api_client.post(f"/pending-shows/{ids['bare']}/reject", json={}, headers=headers)
    assert again.status_code == 404


def test_reject_unknown_id_returns_not_found(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    headers = login_as(monkeypatch, "admin")

    response = api_client.post("/pending-shows/does-not-exist/reject", json={"reason": "gone"}, headers=headers)
    assert response.status_code == 404


def test_edit_replaces_payload_and_rescores(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    response = api_client.patch(
        f"/pending-shows/{ids['bare']}",
        json={
            "normalized_payload": {
                "name": "Card Night",
                "startDate": "2025-06-07",
                "endDate": "2025-06-01",
                "city": "Decatur",
                "state": "IL",
            },
            "notes": "DATE_FORMAT - end date was before start",
        },
        headers=headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["normalized_json"]["end_date"] == "2025-06-07"
    assert body["normalized_json"]["city"] == "Decatur"
    assert body["admin_notes"] == "DATE_FORMAT - end date was before start"
    assert body["confidence_score"] == 75.0


def test_edit_without_payload_is_unprocessable(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    response = api_client.patch(f"/pending-shows/{ids['bare']}", json={"notes": "no payload"}, headers=headers)
    assert response.status_code == 422


def test_edit_into_existing_natural_key_conflicts(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    response = api_client.patch(
        f"/pending-shows/{ids['bare']}",
        json={"normalized_payload": {"name": "collectors swap", "start_date": "2025-05-03", "city": "PEORIA"}},
        headers=headers,
    )
    assert response.status_code == 409


def test_feedback_stats_counts_tags_from_notes(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    api_client.post(f"/pending-shows/{ids['bare']}/reject", json={"reason": "SPAM, DUPLICATE - reposted"}, headers=headers)
    api_client.post(
        f"/pending-shows/{ids['minimal']}/approve",
        json={"notes": "DUPLICATE: merged listing"},
        headers=headers,
    )

    response = api_client.get("/pending-shows/feedback-stats", headers=headers)
    assert response.status_code == 200
    assert response.json() == [
        {"tag": "DUPLICATE", "count": 2, "percentage": 100.0},
        {"tag": "SPAM", "count": 1, "percentage": 50.0},
    ]


def test_rescore_updates_stale_scores(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    repository.pending_shows[ids["full"]]["confidence_score"] = 1.0
    headers = login_as(monkeypatch, "admin")

    response = api_client.post("/pending-shows/rescore", headers=headers)

    assert response.status_code == 200
    assert response.json() == {"count": 3}
    assert repository.pending_shows[ids["full"]]["confidence_score"] == 100.0


def test_edit_accepts_camel_case_request_body(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")

    response = api_client.patch(
        f"/pending-shows/{ids['bare']}",
        json={"normalizedPayload": {"name": "Card Night", "startDate": "2025-06-07", "venueName": "Elks Lodge"}},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["normalized_json"]["venue_name"] == "Elks Lodge"


def test_edit_onto_published_show_conflicts(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")
    assert api_client.post(f"/pending-shows/{ids['minimal']}/approve", headers=headers).status_code == 200

    response = api_client.patch(
        f"/pending-shows/{ids['bare']}",
        json={"normalizedPayload": {"name": "Collectors Swap", "startDate": "2025-05-03", "city": "Peoria"}},
        headers=headers,
    )

    assert response.status_code == 409
    assert repository.pending_shows[ids["bare"]]["normalized_json"]["name"] == "Card Night"


def test_approve_corrections_onto_published_show_conflicts(
    api_client: TestClient,
    repository: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed_queue(repository)
    headers = login_as(monkeypatch, "admin")
    published = api_client.post(f"/pending-shows/{ids['minimal']}/approve", headers=headers).json()
    published_row = dict(repository.shows[published["id"]])

    response = api_client.post(
        f"/pending-shows/{ids['bare']}/approve",
        json={"corrections": {"name": "collectors swap", "startDate": "2025-05-03", "city": "PEORIA"}},
        headers=headers,
    )

    assert response.status_code == 409
    assert ids["bare"] in repository.pending_shows
    assert list(repository.shows) == [published["id"]]
    assert repository.shows[published["id"]] == published_row
    assert [event["action"] for event in repository.moderation_events].count("APPROVE") == 1
