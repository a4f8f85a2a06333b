from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from curator_worker.services.curator_client import CuratorClient, CuratorClientError, CuratorUnavailableError


def _client(handler) -> CuratorClient:
    return CuratorClient(
        "http://curator.test/",
        "crawler-1",
        "secret-key",
        transport=httpx.MockTransport(handler),
    )


def test_upsert_posts_batch_with_module_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"processed": 1, "errors": 0, "pending_ids": ["p-1"]})

    response = asyncio.run(
        _client(handler).upsert_pending_shows(
            source_url="https://a.example.com",
            candidates=[{"raw_payload": {}, "normalized": {"name": "Card Night"}}],
            run_id="run-1",
        )
    )

    assert response["processed"] == 1
    [request] = seen
    assert request.url.path == "/ingest/pending-shows"
    assert request.headers["X-Module-Id"] == "crawler-1"
    assert request.headers["X-API-Key"] == "secret-key"
    body = json.loads(request.content)
    assert body["source_url"] == "https://a.example.com"
    assert body["run_id"] == "run-1"


def test_record_run_posts_to_runs_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/ingest/runs"
        return httpx.Response(201, json={"id": 1, **json.loads(request.content)})

    response = asyncio.run(_client(handler).record_run({"run_id": "run-1", "status": "succeeded"}))
    assert response["id"] == 1


@pytest.mark.parametrize("status_code", [401, 403, 503])
def test_outage_and_credential_statuses_are_unavailable(status_code: int) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"detail": "nope"})

    with pytest.raises(CuratorUnavailableError):
        asyncio.run(_client(handler).record_run({"run_id": "run-1"}))


def test_validation_rejection_is_a_plain_client_error() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"detail": "bad batch"})

    with pytest.raises(CuratorClientError) as excinfo:
        asyncio.run(_client(handler).upsert_pending_shows(source_url="https://a.example.com", candidates=[]))
    assert not isinstance(excinfo.value, CuratorUnavailableError)
    assert "422" in str(excinfo.value)


def test_connection_errors_are_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CuratorUnavailableError, match="ConnectError"):
        asyncio.run(_client(handler).record_run({"run_id": "run-1"}))
