from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from curator_api.core.natural_key import natural_key
from curator_api.schemas.ingest import PendingShowCandidateIn
from curator_api.services.moderation import ShowPayloadError, validate_show_payload
from curator_api.services.repository import RepositoryError, RepositoryUnavailableError
from curator_api.services.scoring import score_show

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UpsertSummary:
    processed: int = 0
    errors: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    pending_ids: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "errors": self.errors,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "pending_ids": list(self.pending_ids),
        }


async def upsert_pending_shows(
    repository,
    *,
    source_url: str,
    candidates: Sequence[PendingShowCandidateIn],
    module_id: str | None,
    run_id: str | None = None,
) -> UpsertSummary:
    """Stage candidates as PENDING rows keyed by (name, start date, city).

    A failure on one candidate is counted and does not stop the batch; an
    unavailable store aborts it.
    """
    summary = UpsertSummary()
    for index, candidate in enumerate(candidates):
        try:
            normalized = validate_show_payload(candidate.normalized)
            key = natural_key(normalized)
            if key is None:
                raise ShowPayloadError("candidate requires a name and a start date")
            score = score_show(normalized)
            result = await repository.upsert_pending_show(
                source_url=source_url,
                raw_payload=candidate.raw_payload,
                normalized=normalized,
                key=key,
                confidence_score=score.score,
                quality_issues=score.issues,
                run_id=run_id,
                module_id=module_id,
            )
        except RepositoryUnavailableError:
            raise
        except (RepositoryError, ShowPayloadError) as exc:
            summary.errors += 1
            logger.warning(
                "pending show upsert failed source=%s index=%s module=%s: %s",
                source_url,
                index,
                module_id,
                exc,
            )
            continue

        if result.outcome == "skipped":
            summary.skipped += 1
            logger.info("already published, skipping source=%s key=%s", source_url, key.to_payload())
            continue

        summary.processed += 1
        if result.outcome == "created":
            summary.created += 1
        else:
            summary.updated += 1
        if result.pending_id and result.pending_id not in summary.pending_ids:
            summary.pending_ids.append(result.pending_id)

    logger.info(
        "pending shows upserted source=%s processed=%s created=%s updated=%s skipped=%s errors=%s",
        source_url,
        summary.processed,
        summary.created,
        summary.updated,
        summary.skipped,
        summary.errors,
    )
    return summary
