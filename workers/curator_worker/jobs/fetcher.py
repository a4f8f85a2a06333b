from __future__ import annotations

import httpx

from curator_worker.jobs.records import RawDocument

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; cardshow-curator/0.1)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


class SourceFetchError(RuntimeError):
    """Raised when a source document cannot be retrieved."""


async def fetch_document(
    address: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float = 20.0,
    max_chars: int = 200_000,
) -> RawDocument:
    if client is not None:
        return await _fetch_with_client(client, address, timeout_seconds=timeout_seconds, max_chars=max_chars)

    async with httpx.AsyncClient(headers=DEFAULT_HEADERS, follow_redirects=True) as owned_client:
        return await _fetch_with_client(owned_client, address, timeout_seconds=timeout_seconds, max_chars=max_chars)


async def _fetch_with_client(
    client: httpx.AsyncClient,
    address: str,
    *,
    timeout_seconds: float,
    max_chars: int,
) -> RawDocument:
    try:
        response = await client.get(address, timeout=timeout_seconds)
    except httpx.TimeoutException as exc:
        raise SourceFetchError(f"timeout after {timeout_seconds:.1f}s") from exc
    except httpx.HTTPError as exc:
        raise SourceFetchError(f"request failed: {exc.__class__.__name__}") from exc

    if not response.is_success:
        raise SourceFetchError(f"unexpected status {response.status_code}")

    content = response.text
    truncated = max_chars > 0 and len(content) > max_chars
    if truncated:
        content = content[:max_chars]

    return RawDocument(
        source_address=address,
        content=content,
        status_code=response.status_code,
        content_type=response.headers.get("content-type"),
        truncated=truncated,
    )
