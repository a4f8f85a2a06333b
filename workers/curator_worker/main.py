from __future__ import annotations

import argparse
import asyncio
import functools
import json
import logging
import random
import sys

import httpx

from curator_worker.core.config import Settings, get_settings
from curator_worker.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from curator_worker.jobs.extraction import ShowExtractor
from curator_worker.jobs.fetcher import DEFAULT_HEADERS, fetch_document
from curator_worker.jobs.ingest import IngestConfig, IngestRunSummary, run_ingest_batch
from curator_worker.services.curator_client import CuratorClient

logger = logging.getLogger(__name__)


async def run_once(settings: Settings, *, limit: int | None = None) -> IngestRunSummary:
    config = IngestConfig.from_settings(settings)
    extractor = ShowExtractor(
        api_key=config.extraction_api_key,
        model=settings.extraction_model,
        base_url=settings.extraction_base_url,
        timeout_seconds=settings.extraction_timeout_seconds,
        max_tokens=settings.extraction_max_tokens,
    )
    sink = CuratorClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
        timeout_seconds=settings.api_timeout_seconds,
    )

    try:
        async with httpx.AsyncClient(headers=DEFAULT_HEADERS, follow_redirects=True) as http_client:
            fetcher = functools.partial(
                fetch_document,
                client=http_client,
                timeout_seconds=config.fetch_timeout_seconds,
                max_chars=config.max_document_chars,
            )
            return await run_ingest_batch(config, fetcher=fetcher, extractor=extractor, sink=sink, limit=limit)
    finally:
        await extractor.close()


async def run_forever(settings: Settings, *, limit: int | None = None) -> None:
    backoff = settings.run_interval_seconds
    while True:
        try:
            summary = await run_once(settings, limit=limit)
            print(json.dumps(summary.to_report()), flush=True)
            backoff = settings.run_interval_seconds
            await asyncio.sleep(settings.run_interval_seconds)
        except Exception as exc:  # pragma: no cover - scheduler robustness
            jitter = random.uniform(0.0, 0.5)
            sleep_for = min(max(backoff, 1.0) * (2.0 + jitter), settings.max_backoff_seconds)
            logger.exception("ingest run failed: %s; retry in %.1fs", exc, sleep_for)
            await asyncio.sleep(sleep_for)
            backoff = sleep_for


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl card-show sources into the moderation queue.")
    parser.add_argument("--limit", type=int, default=None, help="Override the number of sources sampled this run")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running on the configured interval instead of exiting after one batch",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.limit is not None and args.limit < 0:
        print("--limit must be >= 0", file=sys.stderr)
        return 2

    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings)
    try:
        if args.loop:
            asyncio.run(run_forever(settings, limit=args.limit))
            return 0
        summary = asyncio.run(run_once(settings, limit=args.limit))
    except Exception as exc:
        logger.exception("ingest run failed")
        print(json.dumps({"status": "failed", "error": str(exc)}))
        return 1
    finally:
        shutdown_telemetry(telemetry_runtime)

    print(json.dumps(summary.to_report()))
    return 1 if summary.status == "failed" else 0


if __name__ == "__main__":
    sys.exit(main())
