from __future__ import annotations

import asyncio
import copy
from datetime import date, datetime, timezone
from itertools import count
from typing import Any
from uuid import uuid4

from curator_api.core.config import Settings
from curator_api.core.natural_key import NaturalKey, natural_key
from curator_api.core.security import INGEST_WRITE, hash_api_key
from curator_api.services.moderation import ShowPayloadError, build_show_fields, merge_corrections, validate_show_payload
from curator_api.services.repository import (
    MachineCredentialRecord,
    PendingUpsertResult,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)
from curator_api.services.scoring import score_show


class InMemoryRepository:
    """Process-local stand-in for PostgresRepository used in local runs and tests.

    A single lock serializes every mutation, so concurrent approve/reject calls
    on the same pending show see exactly one winner.
    """

    def __init__(self, machine_credentials: list[MachineCredentialRecord] | None = None) -> None:
        self.machine_credentials: list[MachineCredentialRecord] = list(machine_credentials or [])
        self.pending_shows: dict[str, dict[str, Any]] = {}
        self.shows: dict[str, dict[str, Any]] = {}
        self.moderation_events: list[dict[str, Any]] = []
        self.ingest_runs: dict[str, dict[str, Any]] = {}
        self._pending_keys: dict[NaturalKey, str] = {}
        self._show_keys: dict[NaturalKey, str] = {}
        self._event_ids = count(1)
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> InMemoryRepository:
        credentials = []
        if settings.dev_module_id and settings.dev_module_api_key:
            credentials.append(
                MachineCredentialRecord(
                    module_db_id=str(uuid4()),
                    module_id=settings.dev_module_id,
                    scopes=[INGEST_WRITE],
                    key_hash=hash_api_key(settings.dev_module_api_key),
                )
            )
        return cls(machine_credentials=credentials)

    def add_machine_credential(self, module_id: str, api_key: str, scopes: list[str] | None = None) -> None:
        self.machine_credentials.append(
            MachineCredentialRecord(
                module_db_id=str(uuid4()),
                module_id=module_id,
                scopes=list(scopes if scopes is not None else [INGEST_WRITE]),
                key_hash=hash_api_key(api_key),
            )
        )

    async def close(self) -> None:
        return None

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        return [record for record in self.machine_credentials if record.module_id == module_id]

    async def upsert_pending_show(
        self,
        *,
        source_url: str,
        raw_payload: dict[str, Any],
        normalized: dict[str, Any],
        key: NaturalKey,
        confidence_score: float,
        quality_issues: list[str],
        run_id: str | None,
        module_id: str | None,
    ) -> PendingUpsertResult:
        async with self._lock:
            if key in self._show_keys:
                return PendingUpsertResult(outcome="skipped", pending_id=None)

            now = _utcnow()
            pending_id = self._pending_keys.get(key)
            if pending_id is not None:
                self.pending_shows[pending_id].update(
                    source_url=source_url,
                    raw_payload=copy.deepcopy(raw_payload),
                    normalized_json=copy.deepcopy(normalized),
                    confidence_score=float(confidence_score),
                    quality_issues=list(quality_issues),
                    last_run_id=run_id,
                    updated_at=now,
                )
                return PendingUpsertResult(outcome="updated", pending_id=pending_id)

            pending_id = str(uuid4())
            self.pending_shows[pending_id] = {
                "id": pending_id,
                "status": "PENDING",
                "source_url": source_url,
                "raw_payload": copy.deepcopy(raw_payload),
                "normalized_json": copy.deepcopy(normalized),
                "confidence_score": float(confidence_score),
                "quality_issues": list(quality_issues),
                "admin_notes": None,
                "last_run_id": run_id,
                "created_at": now,
                "updated_at": now,
            }
            self._pending_keys[key] = pending_id
            self._record_event(
                pending_show_id=pending_id,
                action="INGEST",
                actor_type="machine",
                actor_id=module_id,
                payload={"run_id": run_id, "source_url": source_url, "natural_key": key.to_payload()},
            )
            return PendingUpsertResult(outcome="created", pending_id=pending_id)

    async def list_pending_shows(
        self,
        *,
        status: str = "PENDING",
        limit: int = 50,
        offset: int = 0,
        min_score: float | None = None,
        max_score: float | None = None,
        source_url: str | None = None,
    ) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self.pending_shows.values()
            if row["status"] == status
            and (min_score is None or (row["confidence_score"] is not None and row["confidence_score"] >= min_score))
            and (max_score is None or (row["confidence_score"] is not None and row["confidence_score"] <= max_score))
            and (source_url is None or row["source_url"] == source_url)
        ]
        # created_at desc inside each score band, unscored rows last
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        rows.sort(key=lambda row: (row["confidence_score"] is None, -(row["confidence_score"] or 0.0)))
        return [_public_pending(row) for row in rows[offset : offset + limit]]

    async def get_pending_show(self, pending_id: str) -> dict[str, Any]:
        row = self.pending_shows.get(pending_id)
        if row is None:
            raise RepositoryNotFoundError("pending show not found")
        return _public_pending(row)

    async def approve_pending_show(
        self,
        *,
        pending_id: str,
        actor_user_id: str,
        notes: str | None,
        corrections: dict[str, Any],
    ) -> dict[str, Any]:
        async with self._lock:
            pending = self._pending_or_404(pending_id)
            try:
                merged = merge_corrections(pending["normalized_json"], corrections)
                fields = build_show_fields(merged, source_url=pending["source_url"])
            except ShowPayloadError as exc:
                raise RepositoryValidationError(str(exc)) from exc

            key = natural_key(merged)
            if key is None:
                raise RepositoryConflictError("cannot approve a show without name and start date")

            if key in self._show_keys:
                raise RepositoryConflictError("a published show already has this name, start date and city")

            now = _utcnow()
            show_id = str(uuid4())
            show = {"id": show_id, "created_at": now}
            self.shows[show_id] = show
            self._show_keys[key] = show_id
            show.update(
                fields,
                start_date=date.fromisoformat(fields["start_date"]),
                end_date=date.fromisoformat(fields["end_date"]),
                status="ACTIVE",
                updated_at=now,
            )

            self._drop_pending(pending_id)
            self._record_event(
                pending_show_id=pending_id,
                show_id=show_id,
                action="APPROVE",
                actor_type="human",
                actor_id=actor_user_id,
                payload={
                    "notes": notes,
                    "corrections": copy.deepcopy(corrections),
                    "source_url": pending["source_url"],
                    "natural_key": key.to_payload(),
                },
            )
            return dict(show)

    async def reject_pending_show(self, *, pending_id: str, actor_user_id: str, reason: str | None) -> dict[str, Any]:
        async with self._lock:
            pending = self._pending_or_404(pending_id)
            key = natural_key(pending["normalized_json"] or {})
            self._drop_pending(pending_id)
            self._record_event(
                pending_show_id=pending_id,
                action="REJECT",
                actor_type="human",
                actor_id=actor_user_id,
                payload={
                    "reason": reason,
                    "source_url": pending["source_url"],
                    "natural_key": key.to_payload() if key else None,
                },
            )
            return {"id": pending_id, "status": "REJECTED", "reason": reason}

    async def edit_pending_show(
        self,
        *,
        pending_id: str,
        actor_user_id: str,
        normalized: dict[str, Any],
        notes: str | None,
    ) -> dict[str, Any]:
        try:
            validated = validate_show_payload(normalized)
        except ShowPayloadError as exc:
            raise RepositoryValidationError(str(exc)) from exc
        key = natural_key(validated)
        if key is None:
            raise RepositoryValidationError("edited show requires a name and a start date")
        score = score_show(validated)

        async with self._lock:
            pending = self._pending_or_404(pending_id)
            if key in self._show_keys:
                raise RepositoryConflictError("a published show already has this name, start date and city")
            holder = self._pending_keys.get(key)
            if holder is not None and holder != pending_id:
                raise RepositoryConflictError("another pending show already has this name, start date and city")

            self._pending_keys = {k: v for k, v in self._pending_keys.items() if v != pending_id}
            self._pending_keys[key] = pending_id
            pending.update(
                normalized_json=validated,
                confidence_score=float(score.score),
                quality_issues=list(score.issues),
                updated_at=_utcnow(),
            )
            if notes is not None:
                pending["admin_notes"] = notes
            self._record_event(
                pending_show_id=pending_id,
                action="EDIT",
                actor_type="human",
                actor_id=actor_user_id,
                payload={"notes": notes, "confidence_score": score.score},
            )
            return _public_pending(pending)

    async def rescore_pending_shows(self, *, actor_user_id: str, limit: int) -> int:
        async with self._lock:
            rows = sorted(
                (row for row in self.pending_shows.values() if row["status"] == "PENDING"),
                key=lambda row: row["updated_at"],
            )[:limit]
            now = _utcnow()
            for row in rows:
                score = score_show(row["normalized_json"])
                row.update(confidence_score=float(score.score), quality_issues=list(score.issues), updated_at=now)
            if rows:
                self._record_event(
                    pending_show_id=None,
                    action="RESCORE",
                    actor_type="human",
                    actor_id=actor_user_id,
                    payload={"count": len(rows)},
                )
            return len(rows)

    async def list_pending_show_events(self, *, pending_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        events = [event for event in self.moderation_events if event["pending_show_id"] == pending_id]
        events.sort(key=lambda event: (event["created_at"], event["id"]), reverse=True)
        return [dict(event) for event in events[offset : offset + limit]]

    async def list_moderation_notes(self, *, since: datetime) -> list[str | None]:
        return [
            event["payload"].get("notes") or event["payload"].get("reason")
            for event in self.moderation_events
            if event["action"] in {"APPROVE", "REJECT", "EDIT"} and event["created_at"] >= since
        ]

    async def list_source_events(self, *, since: datetime) -> list[dict[str, Any]]:
        return [
            {
                "action": event["action"],
                "source_url": event["payload"].get("source_url"),
                "notes": event["payload"].get("notes") or event["payload"].get("reason"),
            }
            for event in self.moderation_events
            if event["action"] in {"INGEST", "APPROVE", "REJECT"} and event["created_at"] >= since
        ]

    async def summarize_pending_by_source(self) -> list[dict[str, Any]]:
        grouped: dict[str, list[float | None]] = {}
        for row in self.pending_shows.values():
            if row["status"] == "PENDING":
                grouped.setdefault(row["source_url"], []).append(row["confidence_score"])
        summary = []
        for source_url, scores in grouped.items():
            scored = [score for score in scores if score is not None]
            summary.append(
                {
                    "source_url": source_url,
                    "pending_count": len(scores),
                    "avg_confidence_score": sum(scored) / len(scored) if scored else None,
                }
            )
        return summary

    async def list_pending_for_duplicates(self, *, limit: int) -> list[dict[str, Any]]:
        rows = [row for row in self.pending_shows.values() if row["status"] == "PENDING"]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [
            {
                "id": row["id"],
                "source_url": row["source_url"],
                "normalized_json": copy.deepcopy(row["normalized_json"]),
                "created_at": row["created_at"],
            }
            for row in rows[:limit]
        ]

    async def record_ingest_run(self, *, module_id: str, run: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            existing = self.ingest_runs.get(run["run_id"])
            stored = {
                **run,
                "id": existing["id"] if existing else str(uuid4()),
                "module_id": module_id,
                "source_results": copy.deepcopy(run.get("source_results") or []),
                "recorded_at": _utcnow(),
            }
            self.ingest_runs[run["run_id"]] = stored
            return dict(stored)

    async def list_ingest_runs(self, *, limit: int, offset: int, status: str | None = None) -> list[dict[str, Any]]:
        runs = [run for run in self.ingest_runs.values() if status is None or run["status"] == status]
        runs.sort(key=lambda run: (run["started_at"], run["recorded_at"]), reverse=True)
        return [dict(run) for run in runs[offset : offset + limit]]

    def _pending_or_404(self, pending_id: str) -> dict[str, Any]:
        row = self.pending_shows.get(pending_id)
        if row is None or row["status"] != "PENDING":
            raise RepositoryNotFoundError("pending show not found")
        return row

    def _drop_pending(self, pending_id: str) -> None:
        self.pending_shows.pop(pending_id, None)
        self._pending_keys = {k: v for k, v in self._pending_keys.items() if v != pending_id}

    def _record_event(
        self,
        *,
        action: str,
        actor_type: str,
        actor_id: str | None,
        payload: dict[str, Any],
        pending_show_id: str | None,
        show_id: str | None = None,
    ) -> None:
        self.moderation_events.append(
            {
                "id": next(self._event_ids),
                "pending_show_id": pending_show_id,
                "show_id": show_id,
                "action": action,
                "actor_type": actor_type,
                "actor_id": actor_id,
                "payload": payload,
                "created_at": _utcnow(),
            }
        )


def _public_pending(row: dict[str, Any]) -> dict[str, Any]:
    return {
        key: copy.deepcopy(row[key])
        for key in (
            "id",
            "status",
            "source_url",
            "raw_payload",
            "normalized_json",
            "confidence_score",
            "quality_issues",
            "admin_notes",
            "created_at",
            "updated_at",
        )
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
