from __future__ import annotations

from typing import Any

import httpx


UNAVAILABLE_STATUS_CODES = {401, 403, 502, 503, 504}


class CuratorClientError(RuntimeError):
    """Raised when the curator API rejects a request."""


class CuratorUnavailableError(CuratorClientError):
    """Raised when the curator API cannot be reached or refuses this module outright."""


class CuratorClient:
    def __init__(
        self,
        base_url: str,
        module_id: str,
        api_key: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }
        self._transport = transport

    async def upsert_pending_shows(
        self,
        *,
        source_url: str,
        candidates: list[dict[str, Any]],
        run_id: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "source_url": source_url,
            "run_id": run_id,
            "candidates": candidates,
        }
        return await self._post("/ingest/pending-shows", payload)

    async def record_run(self, summary: dict[str, Any]) -> dict[str, Any]:
        return await self._post("/ingest/runs", summary)

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            try:
                response = await client.post(f"{self.base_url}{path}", json=payload, headers=self.headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status_code = exc.response.status_code
                error_cls = CuratorUnavailableError if status_code in UNAVAILABLE_STATUS_CODES else CuratorClientError
                raise error_cls(f"{path} returned status {status_code}: {exc.response.text[:200]}") from exc
            except httpx.TransportError as exc:
                raise CuratorUnavailableError(f"{path} request failed: {exc.__class__.__name__}") from exc
            except httpx.HTTPError as exc:
                raise CuratorClientError(f"{path} request failed: {exc.__class__.__name__}") from exc
            return response.json()
