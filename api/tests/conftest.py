from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fastapi.testclient import TestClient

import curator_api.core.security as security
from curator_api.core.config import get_settings
from curator_api.main import app
from curator_api.schemas.ingest import PendingShowCandidateIn
from curator_api.services.intake import upsert_pending_shows
from curator_api.services.repository import get_repository
from curator_api.services.store import InMemoryRepository

SOURCE_URL = "https://shows.example.com/calendar"


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def api_client(monkeypatch: pytest.MonkeyPatch, repository: InMemoryRepository) -> TestClient:
    monkeypatch.setenv("CC_SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("CC_SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("CC_STORAGE_BACKEND", "memory")
    get_settings.cache_clear()
    get_repository.cache_clear()
    app.dependency_overrides[get_repository] = lambda: repository

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    get_settings.cache_clear()
    get_repository.cache_clear()


def login_as(monkeypatch: pytest.MonkeyPatch, role: str, user_id: str = "reviewer-1") -> dict[str, str]:
    async def _fake_fetch(**_: Any) -> dict[str, Any]:
        return {"id": user_id, "app_metadata": {"role": role}}

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)
    return {"Authorization": "Bearer token"}


def make_candidate(name: str, start_date: str | None, **fields: Any) -> PendingShowCandidateIn:
    normalized = {"name": name, "start_date": start_date, **fields}
    return PendingShowCandidateIn(raw_payload={"name": name, "startDate": start_date}, normalized=normalized)


def seed_pending(repository: InMemoryRepository, *candidates: PendingShowCandidateIn) -> list[str]:
    summary = asyncio.run(
        upsert_pending_shows(
            repository,
            source_url=SOURCE_URL,
            candidates=list(candidates),
            module_id="test-module",
        )
    )
    return summary.pending_ids
