from __future__ import annotations

import asyncio
import random
from datetime import date
from typing import Any

from curator_worker.core.sources import SourceLocator, SourceRegistry
from curator_worker.jobs.extraction import ExtractionMalformed, ExtractionOk, parse_extraction_response
from curator_worker.jobs.ingest import IngestConfig, run_ingest_batch
from curator_worker.jobs.records import RawDocument
from curator_worker.services.curator_client import CuratorClientError, CuratorUnavailableError

TODAY = date(2025, 3, 1)


class FakeExtractor:
    def __init__(self, replies: dict[str, str]) -> None:
        self.replies = replies

    async def extract(self, document: RawDocument) -> ExtractionOk | ExtractionMalformed:
        return parse_extraction_response(self.replies[document.source_address])


class FakeSink:
    def __init__(self, failures: dict[str, Exception] | None = None, fail_record: bool = False) -> None:
        self.failures = failures or {}
        self.fail_record = fail_record
        self.batches: list[dict[str, Any]] = []
        self.runs: list[dict[str, Any]] = []

    async def upsert_pending_shows(
        self,
        *,
        source_url: str,
        candidates: list[dict[str, Any]],
        run_id: str | None = None,
    ) -> dict[str, Any]:
        if source_url in self.failures:
            raise self.failures[source_url]
        self.batches.append({"source_url": source_url, "candidates": candidates, "run_id": run_id})
        return {"processed": len(candidates), "errors": 0, "pending_ids": []}

    async def record_run(self, summary: dict[str, Any]) -> dict[str, Any]:
        if self.fail_record:
            raise CuratorClientError("runs endpoint down")
        self.runs.append(summary)
        return summary


async def _fetch(address: str) -> RawDocument:
    return RawDocument(source_address=address, content=f"<html>{address}</html>", status_code=200)


def _config(*addresses: str) -> IngestConfig:
    return IngestConfig(
        extraction_api_key="test-key",
        batch_size=len(addresses),
        source_registry=SourceRegistry([SourceLocator(address=address) for address in addresses]),
    )


def _run(config: IngestConfig, extractor: FakeExtractor, sink: FakeSink, fetcher=_fetch, **kwargs):
    return asyncio.run(
        run_ingest_batch(
            config,
            fetcher=fetcher,
            extractor=extractor,
            sink=sink,
            rng=random.Random(0),
            today=TODAY,
            **kwargs,
        )
    )


SPRING_EXPO = '[{"name": "Spring Card Expo", "startDate": "May 3, 2025", "state": "california", "entryFee": "free"}]'


def test_single_source_run_loads_normalized_candidate() -> None:
    sink = FakeSink()
    summary = _run(_config("https://a.example.com"), FakeExtractor({"https://a.example.com": SPRING_EXPO}), sink)

    assert summary.status == "succeeded"
    assert summary.processed == 1
    assert summary.errors == 0
    assert summary.skipped == 0

    [batch] = sink.batches
    assert batch["run_id"] == summary.run_id
    normalized = batch["candidates"][0]["normalized"]
    assert normalized["name"] == "Spring Card Expo"
    assert normalized["start_date"] == "2025-05-03"
    assert normalized["end_date"] == "2025-05-03"
    assert normalized["state"] == "CA"
    assert normalized["entry_fee"] == 0.0
    assert normalized["url"] == "https://a.example.com"
    assert batch["candidates"][0]["raw_payload"]["start_date_text"] == "May 3, 2025"

    [run] = sink.runs
    assert run["run_id"] == summary.run_id
    assert run["status"] == "succeeded"


def test_one_failing_source_does_not_stop_the_others() -> None:
    addresses = ("https://a.example.com", "https://b.example.com", "https://c.example.com")
    replies = {address: SPRING_EXPO for address in addresses}

    async def flaky_fetch(address: str) -> RawDocument:
        if address == "https://b.example.com":
            raise RuntimeError("connection reset")
        return await _fetch(address)

    sink = FakeSink()
    summary = _run(_config(*addresses), FakeExtractor(replies), sink, fetcher=flaky_fetch)

    assert summary.sources_attempted == 3
    assert summary.errors == 1
    assert summary.processed == 2
    assert summary.status == "partial"
    failed = [row for row in summary.source_results if row.status == "failed"]
    assert [row.address for row in failed] == ["https://b.example.com"]


def test_malformed_extraction_is_skipped() -> None:
    replies = {
        "https://a.example.com": "```json\n[]\n```",
        "https://b.example.com": SPRING_EXPO,
    }
    sink = FakeSink()
    summary = _run(_config(*replies), FakeExtractor(replies), sink)

    assert summary.skipped == 1
    assert summary.errors == 0
    assert summary.processed == 1
    assert summary.status == "succeeded"
    assert [batch["source_url"] for batch in sink.batches] == ["https://b.example.com"]


def test_inadmissible_candidates_are_dropped_before_loading() -> None:
    reply = (
        '[{"name": "Spring Card Expo", "startDate": "2025-05-03"},'
        ' {"name": "Mystery Show", "startDate": "TBD"},'
        ' {"startDate": "2025-06-01"}]'
    )
    sink = FakeSink()
    summary = _run(_config("https://a.example.com"), FakeExtractor({"https://a.example.com": reply}), sink)

    assert summary.dropped == 2
    assert summary.processed == 1
    assert len(sink.batches[0]["candidates"]) == 1


def test_source_with_no_admissible_shows_sends_nothing() -> None:
    sink = FakeSink()
    summary = _run(_config("https://a.example.com"), FakeExtractor({"https://a.example.com": "[]"}), sink)

    assert sink.batches == []
    assert summary.status == "succeeded"
    assert summary.source_results[0].status == "empty"


def test_unavailable_curator_aborts_the_run() -> None:
    addresses = ("https://a.example.com", "https://b.example.com", "https://c.example.com")
    sink = FakeSink(failures={address: CuratorUnavailableError("503") for address in addresses})
    summary = _run(_config(*addresses), FakeExtractor({address: SPRING_EXPO for address in addresses}), sink)

    assert summary.sources_attempted == 1
    assert summary.status == "failed"
    assert summary.fatal_error == "503"
    assert sink.runs[0]["status"] == "failed"


def test_every_source_failing_marks_run_failed() -> None:
    addresses = ("https://a.example.com", "https://b.example.com")
    sink = FakeSink(failures={address: CuratorClientError("422") for address in addresses})
    summary = _run(_config(*addresses), FakeExtractor({address: SPRING_EXPO for address in addresses}), sink)

    assert summary.sources_attempted == 2
    assert summary.errors == 2
    assert summary.status == "failed"
    assert summary.fatal_error is None


def test_run_record_failure_is_not_fatal() -> None:
    sink = FakeSink(fail_record=True)
    summary = _run(_config("https://a.example.com"), FakeExtractor({"https://a.example.com": SPRING_EXPO}), sink)

    assert summary.status == "succeeded"
    assert sink.runs == []


def test_limit_overrides_batch_size() -> None:
    addresses = tuple(f"https://{index}.example.com" for index in range(5))
    sink = FakeSink()
    summary = _run(
        _config(*addresses),
        FakeExtractor({address: "[]" for address in addresses}),
        sink,
        limit=2,
        record_run=False,
    )

    assert summary.sources_attempted == 2
    assert sink.runs == []


def test_report_uses_scheduler_field_names() -> None:
    sink = FakeSink()
    summary = _run(_config("https://a.example.com"), FakeExtractor({"https://a.example.com": SPRING_EXPO}), sink)

    report = summary.to_report()
    assert set(report) == {"runId", "status", "processed", "errors", "skipped", "elapsedSeconds"}
    assert report["runId"] == summary.run_id


def test_large_sources_upload_in_chunks() -> None:
    names = [f"Card Night {index}" for index in range(5)]
    reply = "[" + ", ".join(f'{{"name": "{name}", "startDate": "2025-06-07"}}' for name in names) + "]"
    config = _config("https://a.example.com")
    config.upload_chunk_size = 2
    sink = FakeSink()

    summary = _run(config, FakeExtractor({"https://a.example.com": reply}), sink)

    assert summary.status == "succeeded"
    assert summary.processed == 5
    assert [len(batch["candidates"]) for batch in sink.batches] == [2, 2, 1]
    assert [candidate["normalized"]["name"] for batch in sink.batches for candidate in batch["candidates"]] == names
    assert {batch["run_id"] for batch in sink.batches} == {summary.run_id}


def test_admission_and_normalization_share_the_run_day() -> None:
    sink = FakeSink()
    reply = '[{"name": "Card Night", "startDate": "tomorrow"}]'

    summary = _run(_config("https://a.example.com"), FakeExtractor({"https://a.example.com": reply}), sink)

    assert summary.processed == 1
    assert sink.batches[0]["candidates"][0]["normalized"]["start_date"] == "2025-03-02"
