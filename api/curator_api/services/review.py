from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from curator_api.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)

BatchAction = Literal["approve", "reject"]

_FAILURE_OUTCOMES: tuple[tuple[type[Exception], str], ...] = (
    (RepositoryNotFoundError, "not_found"),
    (RepositoryConflictError, "conflict"),
    (RepositoryValidationError, "invalid"),
)


@dataclass(slots=True)
class BatchItemResult:
    id: str
    outcome: str
    show_id: str | None = None
    detail: str | None = None


@dataclass(slots=True)
class BatchDecisionSummary:
    action: BatchAction
    succeeded: int = 0
    failed: int = 0
    results: list[BatchItemResult] = field(default_factory=list)


async def apply_batch_decision(
    repository,
    *,
    action: BatchAction,
    ids: list[str],
    actor_user_id: str,
    notes: str | None,
) -> BatchDecisionSummary:
    """Approve or reject each id in its own transaction.

    Per-row failures are reported in ``results`` and do not stop the batch;
    ``RepositoryUnavailableError`` propagates. Repeated ids are handled once.
    """
    summary = BatchDecisionSummary(action=action)
    for pending_id in dict.fromkeys(ids):
        try:
            row = await _apply_one(repository, action, pending_id, actor_user_id, notes)
        except (RepositoryNotFoundError, RepositoryConflictError, RepositoryValidationError) as exc:
            outcome = next(label for error_cls, label in _FAILURE_OUTCOMES if isinstance(exc, error_cls))
            summary.failed += 1
            summary.results.append(BatchItemResult(id=pending_id, outcome=outcome, detail=str(exc)))
            continue

        summary.succeeded += 1
        summary.results.append(
            BatchItemResult(
                id=pending_id,
                outcome="approved" if action == "approve" else "rejected",
                show_id=row.get("id") if action == "approve" else None,
            )
        )

    logger.info(
        "batch %s actor=%s succeeded=%s failed=%s",
        action,
        actor_user_id,
        summary.succeeded,
        summary.failed,
    )
    return summary


async def _apply_one(
    repository,
    action: BatchAction,
    pending_id: str,
    actor_user_id: str,
    notes: str | None,
) -> dict[str, Any]:
    if action == "approve":
        return await repository.approve_pending_show(
            pending_id=pending_id,
            actor_user_id=actor_user_id,
            notes=notes,
            corrections={},
        )
    return await repository.reject_pending_show(pending_id=pending_id, actor_user_id=actor_user_id, reason=notes)
