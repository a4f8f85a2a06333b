from __future__ import annotations

import logging
import random
import time
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Protocol
from uuid import uuid4

from curator_worker.core.config import Settings
from curator_worker.core.sources import SourceLocator, SourceRegistry, load_source_registry
from curator_worker.core.telemetry import traced
from curator_worker.jobs.extraction import ExtractionMalformed, ExtractionResult, is_admissible
from curator_worker.jobs.normalize import normalize_show
from curator_worker.jobs.records import RawDocument
from curator_worker.services.curator_client import CuratorUnavailableError

logger = logging.getLogger(__name__)

DocumentFetcher = Callable[[str], Awaitable[RawDocument]]


class Extractor(Protocol):
    async def extract(self, document: RawDocument) -> ExtractionResult: ...


class PendingShowSink(Protocol):
    async def upsert_pending_shows(
        self,
        *,
        source_url: str,
        candidates: list[dict[str, Any]],
        run_id: str | None = None,
    ) -> dict[str, Any]: ...

    async def record_run(self, summary: dict[str, Any]) -> dict[str, Any]: ...


@dataclass(slots=True)
class IngestConfig:
    extraction_api_key: str | None
    batch_size: int
    source_registry: SourceRegistry
    fetch_timeout_seconds: float = 20.0
    max_document_chars: int = 200_000
    upload_chunk_size: int = 200

    @classmethod
    def from_settings(cls, settings: Settings) -> IngestConfig:
        return cls(
            extraction_api_key=settings.extraction_api_key,
            batch_size=settings.batch_size,
            source_registry=load_source_registry(
                registry_json=settings.source_registry_json,
                registry_path=settings.source_registry_path,
            ),
            fetch_timeout_seconds=settings.fetch_timeout_seconds,
            max_document_chars=settings.max_document_chars,
            upload_chunk_size=settings.upload_chunk_size,
        )


@dataclass(slots=True)
class SourceResult:
    address: str
    status: str
    extracted: int = 0
    admitted: int = 0
    processed: int = 0
    errors: int = 0
    error: str | None = None


@dataclass(slots=True)
class IngestRunSummary:
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    status: str = "running"
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    dropped: int = 0
    sources_attempted: int = 0
    sources_failed: int = 0
    elapsed_seconds: float = 0.0
    fatal_error: str | None = None
    source_results: list[SourceResult] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "processed": self.processed,
            "errors": self.errors,
            "skipped": self.skipped,
            "dropped": self.dropped,
            "sources_attempted": self.sources_attempted,
            "sources_failed": self.sources_failed,
            "elapsed_seconds": self.elapsed_seconds,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "fatal_error": self.fatal_error,
            "source_results": [asdict(row) for row in self.source_results],
        }

    def to_report(self) -> dict[str, Any]:
        """Compact summary printed by the CLI for the scheduler."""
        return {
            "runId": self.run_id,
            "status": self.status,
            "processed": self.processed,
            "errors": self.errors,
            "skipped": self.skipped,
            "elapsedSeconds": self.elapsed_seconds,
        }


async def run_ingest_batch(
    config: IngestConfig,
    *,
    fetcher: DocumentFetcher,
    extractor: Extractor,
    sink: PendingShowSink,
    limit: int | None = None,
    rng: random.Random | None = None,
    today: date | None = None,
    record_run: bool = True,
) -> IngestRunSummary:
    started = time.perf_counter()
    summary = IngestRunSummary(run_id=str(uuid4()), started_at=datetime.now(timezone.utc))
    batch_size = limit if limit is not None else config.batch_size
    sources = config.source_registry.sample(batch_size, rng=rng)
    logger.info("ingest run starting run_id=%s sources=%s", summary.run_id, len(sources))

    with traced("ingest.run", run_id=summary.run_id, sources=len(sources)) as run_span:
        for source in sources:
            summary.sources_attempted += 1
            with traced("ingest.source", source=source.address) as source_span:
                try:
                    result = await _process_source(
                        source,
                        run_id=summary.run_id,
                        fetcher=fetcher,
                        extractor=extractor,
                        sink=sink,
                        today=today,
                        chunk_size=config.upload_chunk_size,
                    )
                except CuratorUnavailableError as exc:
                    logger.error("ingest run aborted run_id=%s source=%s: %s", summary.run_id, source.address, exc)
                    summary.errors += 1
                    summary.sources_failed += 1
                    summary.fatal_error = str(exc)
                    summary.source_results.append(SourceResult(address=source.address, status="failed", error=str(exc)))
                    break
                except Exception as exc:
                    logger.exception("ingest source failed run_id=%s source=%s", summary.run_id, source.address)
                    summary.errors += 1
                    summary.sources_failed += 1
                    summary.source_results.append(SourceResult(address=source.address, status="failed", error=str(exc)))
                    continue

                source_span.set_attribute("ingest.source.status", result.status)
                summary.source_results.append(result)
                summary.processed += result.processed
                summary.errors += result.errors
                summary.dropped += result.extracted - result.admitted
                if result.status == "malformed":
                    summary.skipped += 1

        summary.finished_at = datetime.now(timezone.utc)
        summary.elapsed_seconds = round(time.perf_counter() - started, 3)
        summary.status = _resolve_run_status(summary)
        run_span.set_attribute("ingest.status", summary.status)

    logger.info(
        "ingest run finished run_id=%s status=%s processed=%s errors=%s skipped=%s elapsed=%.2fs",
        summary.run_id,
        summary.status,
        summary.processed,
        summary.errors,
        summary.skipped,
        summary.elapsed_seconds,
    )

    if record_run:
        try:
            await sink.record_run(summary.to_payload())
        except Exception:
            logger.warning("failed to record ingest run run_id=%s", summary.run_id, exc_info=True)

    return summary


async def _process_source(
    source: SourceLocator,
    *,
    run_id: str,
    fetcher: DocumentFetcher,
    extractor: Extractor,
    sink: PendingShowSink,
    today: date | None,
    chunk_size: int,
) -> SourceResult:
    with traced("ingest.fetch", source=source.address):
        document = await fetcher(source.address)
    with traced("ingest.extract", source=source.address, truncated=document.truncated):
        extraction = await extractor.extract(document)
    if isinstance(extraction, ExtractionMalformed):
        logger.warning("skipping source=%s: malformed extraction (%s)", source.address, extraction.reason)
        return SourceResult(address=source.address, status="malformed", error=extraction.reason)

    admitted = [candidate for candidate in extraction.candidates if is_admissible(candidate, today=today)]
    result = SourceResult(
        address=source.address,
        status="empty",
        extracted=len(extraction.candidates),
        admitted=len(admitted),
    )
    if not admitted:
        logger.info("no admissible shows source=%s extracted=%s", source.address, result.extracted)
        return result

    payloads = [
        {
            "raw_payload": candidate.to_raw_payload(),
            "normalized": normalize_show(candidate, source_url=source.address, today=today).to_payload(),
        }
        for candidate in admitted
    ]
    step = max(1, chunk_size)
    for start in range(0, len(payloads), step):
        chunk = payloads[start : start + step]
        with traced("ingest.load", source=source.address, candidates=len(chunk), offset=start):
            response = await sink.upsert_pending_shows(source_url=source.address, candidates=chunk, run_id=run_id)
        result.processed += int(response.get("processed", 0))
        result.errors += int(response.get("errors", 0))
    result.status = "loaded"
    logger.info(
        "loaded shows source=%s admitted=%s processed=%s errors=%s",
        source.address,
        result.admitted,
        result.processed,
        result.errors,
    )
    return result


def _resolve_run_status(summary: IngestRunSummary) -> str:
    if summary.fatal_error:
        return "failed"
    if summary.sources_attempted and summary.sources_failed == summary.sources_attempted:
        return "failed"
    if summary.errors:
        return "partial"
    return "succeeded"
