from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Literal

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from curator_api.core.config import Settings, get_settings
from curator_api.core.natural_key import NaturalKey, natural_key
from curator_api.services.moderation import ShowPayloadError, build_show_fields, merge_corrections, validate_show_payload
from curator_api.services.scoring import score_show

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(slots=True)
class MachineCredentialRecord:
    module_db_id: str
    module_id: str
    scopes: list[str]
    key_hash: str

    @classmethod
    def from_row(cls, row: Any) -> MachineCredentialRecord:
        return cls(
            module_db_id=row["module_db_id"],
            module_id=row["module_id"],
            scopes=list(row["scopes"] or []),
            key_hash=row["key_hash"],
        )


UpsertOutcome = Literal["created", "updated", "skipped"]


@dataclass(slots=True)
class PendingUpsertResult:
    outcome: UpsertOutcome
    pending_id: str | None


PENDING_SHOW_COLUMNS = """
  id::text as id,
  status,
  source_url,
  raw_payload,
  normalized_json,
  confidence_score,
  quality_issues,
  admin_notes,
  created_at,
  updated_at
"""

SHOW_COLUMNS = """
  id::text as id,
  name,
  start_date,
  end_date,
  venue_name,
  address,
  city,
  state,
  entry_fee,
  description,
  website_url,
  contact_info,
  status,
  source_url,
  created_at,
  updated_at
"""

# Usable keys for one crawler module.
ACTIVE_MODULE_CREDENTIALS_SQL = """
select m.id::text as module_db_id, m.module_id, m.scopes, c.key_hash
  from modules m
  join module_credentials c on c.module_id = m.id
 where m.module_id = $1
   and m.enabled
   and c.is_active
   and c.revoked_at is null
   and coalesce(c.expires_at > now(), true)
"""

INGEST_RUN_COLUMNS = """
  id::text as id,
  run_id,
  module_id,
  status,
  processed,
  errors,
  skipped,
  dropped,
  sources_attempted,
  sources_failed,
  elapsed_seconds,
  started_at,
  finished_at,
  fatal_error,
  source_results,
  recorded_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        command_timeout_seconds: float = 15.0,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout_seconds = command_timeout_seconds
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(ACTIVE_MODULE_CREDENTIALS_SQL, module_id)
        return [MachineCredentialRecord.from_row(row) for row in rows]

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
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    if await self._is_published(conn, key):
                        return PendingUpsertResult(outcome="skipped", pending_id=None)

                    row = await conn.fetchrow(
                        """
                        insert into pending_shows (
                          source_url,
                          raw_payload,
                          normalized_json,
                          name_key,
                          start_date_key,
                          city_key,
                          confidence_score,
                          quality_issues,
                          last_run_id,
                          origin_module_id
                        )
                        values ($1, $2::jsonb, $3::jsonb, $4, $5, $6, $7, $8, $9, $10)
                        on conflict (name_key, start_date_key, city_key) where status = 'PENDING'
                        do update set
                          source_url = excluded.source_url,
                          raw_payload = excluded.raw_payload,
                          normalized_json = excluded.normalized_json,
                          confidence_score = excluded.confidence_score,
                          quality_issues = excluded.quality_issues,
                          last_run_id = excluded.last_run_id,
                          origin_module_id = excluded.origin_module_id,
                          updated_at = now()
                        returning id::text as id, (xmax = 0) as inserted
                        """,
                        source_url,
                        json.dumps(raw_payload),
                        json.dumps(normalized),
                        key.name,
                        key.start_date,
                        key.city,
                        confidence_score,
                        quality_issues,
                        run_id,
                        module_id,
                    )
                    outcome: UpsertOutcome = "created" if row["inserted"] else "updated"
                    if outcome == "created":
                        await self._insert_event(
                            conn,
                            pending_show_id=row["id"],
                            action="INGEST",
                            actor_type="machine",
                            actor_id=module_id,
                            payload={"run_id": run_id, "source_url": source_url, "natural_key": key.to_payload()},
                        )
                    return PendingUpsertResult(outcome=outcome, pending_id=row["id"])
        except (pg_exc.IntegrityConstraintViolationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("pending show rejected by database") from exc
        except (OSError, pg_exc.PostgresConnectionError) as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

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
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {PENDING_SHOW_COLUMNS}
            from pending_shows
            where status = $1
              and ($2::float8 is null or confidence_score >= $2)
              and ($3::float8 is null or confidence_score <= $3)
              and ($4::text is null or source_url = $4)
            order by confidence_score desc nulls last, created_at desc
            limit $5
            offset $6
            """,
            status,
            min_score,
            max_score,
            source_url,
            limit,
            offset,
        )
        return [self._pending_row_to_dict(row) for row in rows]

    async def get_pending_show(self, pending_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"select {PENDING_SHOW_COLUMNS} from pending_shows where id = $1::uuid",
                pending_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("pending show not found") from exc
        if not row:
            raise RepositoryNotFoundError("pending show not found")
        return self._pending_row_to_dict(row)

    async def approve_pending_show(
        self,
        *,
        pending_id: str,
        actor_user_id: str,
        notes: str | None,
        corrections: dict[str, Any],
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    pending = await self._lock_pending_row(conn, pending_id)
                    try:
                        merged = merge_corrections(self._decode_json(pending["normalized_json"]), corrections)
                        fields = build_show_fields(merged, source_url=pending["source_url"])
                    except ShowPayloadError as exc:
                        raise RepositoryValidationError(str(exc)) from exc

                    key = natural_key(merged)
                    if key is None:
                        raise RepositoryConflictError("cannot approve a show without name and start date")

                    show_row = await conn.fetchrow(
                        f"""
                        insert into shows (
                          name,
                          start_date,
                          end_date,
                          venue_name,
                          address,
                          city,
                          state,
                          entry_fee,
                          description,
                          website_url,
                          contact_info,
                          status,
                          source_url,
                          name_key,
                          start_date_key,
                          city_key
                        )
                        values (
                          $1, $2::date, $3::date, $4, $5, $6, $7, $8, $9, $10, $11, 'ACTIVE', $12, $13, $14, $15
                        )
                        on conflict (name_key, start_date_key, city_key) do nothing
                        returning {SHOW_COLUMNS}
                        """,
                        fields["name"],
                        date.fromisoformat(fields["start_date"]),
                        date.fromisoformat(fields["end_date"]),
                        fields["venue_name"],
                        fields["address"],
                        fields["city"],
                        fields["state"],
                        fields["entry_fee"],
                        fields["description"],
                        fields["website_url"],
                        fields["contact_info"],
                        fields["source_url"],
                        key.name,
                        key.start_date,
                        key.city,
                    )
                    if show_row is None:
                        raise RepositoryConflictError("a published show already has this name, start date and city")
                    await conn.execute("delete from pending_shows where id = $1::uuid", pending_id)
                    await self._insert_event(
                        conn,
                        pending_show_id=pending_id,
                        show_id=show_row["id"],
                        action="APPROVE",
                        actor_type="human",
                        actor_id=actor_user_id,
                        payload={
                            "notes": notes,
                            "corrections": corrections,
                            "source_url": pending["source_url"],
                            "natural_key": key.to_payload(),
                        },
                    )
                    return self._show_row_to_dict(show_row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("pending show not found") from exc

    async def reject_pending_show(self, *, pending_id: str, actor_user_id: str, reason: str | None) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    pending = await self._lock_pending_row(conn, pending_id)
                    await conn.execute("delete from pending_shows where id = $1::uuid", pending_id)
                    key = natural_key(self._decode_json(pending["normalized_json"]) or {})
                    await self._insert_event(
                        conn,
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
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("pending show not found") from exc

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

        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await self._lock_pending_row(conn, pending_id)
                    await self._ensure_not_published(conn, key)
                    row = await conn.fetchrow(
                        f"""
                        update pending_shows
                        set
                          normalized_json = $2::jsonb,
                          name_key = $3,
                          start_date_key = $4,
                          city_key = $5,
                          confidence_score = $6,
                          quality_issues = $7,
                          admin_notes = coalesce($8, admin_notes),
                          updated_at = now()
                        where id = $1::uuid
                        returning {PENDING_SHOW_COLUMNS}
                        """,
                        pending_id,
                        json.dumps(validated),
                        key.name,
                        key.start_date,
                        key.city,
                        score.score,
                        score.issues,
                        notes,
                    )
                    await self._insert_event(
                        conn,
                        pending_show_id=pending_id,
                        action="EDIT",
                        actor_type="human",
                        actor_id=actor_user_id,
                        payload={"notes": notes, "confidence_score": score.score},
                    )
                    return self._pending_row_to_dict(row)
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("another pending show already has this name, start date and city") from exc
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("pending show not found") from exc

    async def rescore_pending_shows(self, *, actor_user_id: str, limit: int) -> int:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    """
                    select id::text as id, normalized_json
                    from pending_shows
                    where status = 'PENDING'
                    order by updated_at asc
                    limit $1
                    for update skip locked
                    """,
                    limit,
                )
                for row in rows:
                    score = score_show(self._decode_json(row["normalized_json"]))
                    await conn.execute(
                        """
                        update pending_shows
                        set confidence_score = $2, quality_issues = $3, updated_at = now()
                        where id = $1::uuid
                        """,
                        row["id"],
                        score.score,
                        score.issues,
                    )
                if rows:
                    await self._insert_event(
                        conn,
                        pending_show_id=None,
                        action="RESCORE",
                        actor_type="human",
                        actor_id=actor_user_id,
                        payload={"count": len(rows)},
                    )
                return len(rows)

    async def list_pending_show_events(self, *, pending_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  id,
                  pending_show_id::text as pending_show_id,
                  show_id::text as show_id,
                  action,
                  actor_type,
                  actor_id,
                  payload,
                  created_at
                from moderation_events
                where pending_show_id = $1::uuid
                order by created_at desc, id desc
                limit $2
                offset $3
                """,
                pending_id,
                limit,
                offset,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("pending show not found") from exc
        return [self._event_row_to_dict(row) for row in rows]

    async def list_moderation_notes(self, *, since: datetime) -> list[str | None]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select coalesce(payload->>'notes', payload->>'reason') as note
            from moderation_events
            where action in ('APPROVE', 'REJECT', 'EDIT')
              and created_at >= $1
            """,
            since,
        )
        return [row["note"] for row in rows]

    async def list_source_events(self, *, since: datetime) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              action,
              payload->>'source_url' as source_url,
              coalesce(payload->>'notes', payload->>'reason') as notes
            from moderation_events
            where action in ('INGEST', 'APPROVE', 'REJECT')
              and created_at >= $1
            """,
            since,
        )
        return [dict(row) for row in rows]

    async def summarize_pending_by_source(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              source_url,
              count(*) as pending_count,
              avg(confidence_score)::float8 as avg_confidence_score
            from pending_shows
            where status = 'PENDING'
            group by source_url
            """
        )
        return [dict(row) for row in rows]

    async def list_pending_for_duplicates(self, *, limit: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select id::text as id, source_url, normalized_json, created_at
            from pending_shows
            where status = 'PENDING'
            order by created_at desc
            limit $1
            """,
            limit,
        )
        return [
            {
                "id": row["id"],
                "source_url": row["source_url"],
                "normalized_json": self._decode_json(row["normalized_json"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    async def record_ingest_run(self, *, module_id: str, run: dict[str, Any]) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            insert into ingest_runs (
              run_id,
              module_id,
              status,
              processed,
              errors,
              skipped,
              dropped,
              sources_attempted,
              sources_failed,
              elapsed_seconds,
              started_at,
              finished_at,
              fatal_error,
              source_results
            )
            values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14::jsonb)
            on conflict (run_id)
            do update set
              status = excluded.status,
              processed = excluded.processed,
              errors = excluded.errors,
              skipped = excluded.skipped,
              dropped = excluded.dropped,
              sources_attempted = excluded.sources_attempted,
              sources_failed = excluded.sources_failed,
              elapsed_seconds = excluded.elapsed_seconds,
              finished_at = excluded.finished_at,
              fatal_error = excluded.fatal_error,
              source_results = excluded.source_results,
              recorded_at = now()
            returning {INGEST_RUN_COLUMNS}
            """,
            run["run_id"],
            module_id,
            run["status"],
            run["processed"],
            run["errors"],
            run.get("skipped", 0),
            run.get("dropped", 0),
            run.get("sources_attempted", 0),
            run.get("sources_failed", 0),
            run["elapsed_seconds"],
            run["started_at"],
            run.get("finished_at"),
            run.get("fatal_error"),
            json.dumps(run.get("source_results") or []),
        )
        return self._ingest_run_row_to_dict(row)

    async def list_ingest_runs(self, *, limit: int, offset: int, status: str | None = None) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {INGEST_RUN_COLUMNS}
            from ingest_runs
            where ($1::text is null or status = $1)
            order by started_at desc, recorded_at desc
            limit $2
            offset $3
            """,
            status,
            limit,
            offset,
        )
        return [self._ingest_run_row_to_dict(row) for row in rows]

    async def _lock_pending_row(self, conn: asyncpg.Connection, pending_id: str) -> asyncpg.Record:
        row = await conn.fetchrow(
            """
            select id::text as id, source_url, normalized_json
            from pending_shows
            where id = $1::uuid and status = 'PENDING'
            for update
            """,
            pending_id,
        )
        if not row:
            raise RepositoryNotFoundError("pending show not found")
        return row

    async def _is_published(self, conn: asyncpg.Connection, key: NaturalKey) -> bool:
        found = await conn.fetchval(
            """
            select 1
            from shows
            where name_key = $1 and start_date_key = $2 and city_key = $3
            limit 1
            """,
            key.name,
            key.start_date,
            key.city,
        )
        return bool(found)

    async def _ensure_not_published(self, conn: asyncpg.Connection, key: NaturalKey) -> None:
        if await self._is_published(conn, key):
            raise RepositoryConflictError("a published show already has this name, start date and city")

    async def _insert_event(
        self,
        conn: asyncpg.Connection,
        *,
        action: str,
        actor_type: str,
        actor_id: str | None,
        payload: dict[str, Any],
        pending_show_id: str | None,
        show_id: str | None = None,
    ) -> None:
        await conn.execute(
            """
            insert into moderation_events (pending_show_id, show_id, action, actor_type, actor_id, payload)
            values ($1::uuid, $2::uuid, $3, $4, $5, $6::jsonb)
            """,
            pending_show_id,
            show_id,
            action,
            actor_type,
            actor_id,
            json.dumps(payload),
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("CC_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout_seconds,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            logger.error("database pool creation failed: %s", exc.__class__.__name__)
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _decode_json(value: Any) -> Any:
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return None
        return value

    @classmethod
    def _pending_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        score = row["confidence_score"]
        return {
            "id": row["id"],
            "status": row["status"],
            "source_url": row["source_url"],
            "raw_payload": cls._decode_json(row["raw_payload"]) or {},
            "normalized_json": cls._decode_json(row["normalized_json"]),
            "confidence_score": float(score) if score is not None else None,
            "quality_issues": list(row["quality_issues"] or []),
            "admin_notes": row["admin_notes"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    @staticmethod
    def _show_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        payload = dict(row)
        if payload.get("entry_fee") is not None:
            payload["entry_fee"] = float(payload["entry_fee"])
        return payload

    @classmethod
    def _event_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        payload = dict(row)
        payload["payload"] = cls._decode_json(row["payload"]) or {}
        return payload

    @classmethod
    def _ingest_run_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        payload = dict(row)
        payload["source_results"] = cls._decode_json(row["source_results"]) or []
        return payload


def build_repository(settings: Settings):
    backend = settings.storage_backend
    if backend == "auto":
        backend = "postgres" if settings.database_url else "memory"

    if backend == "memory":
        from curator_api.services.store import InMemoryRepository

        logger.info("using in-memory repository environment=%s", settings.environment)
        return InMemoryRepository.from_settings(settings)

    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        command_timeout_seconds=settings.database_command_timeout_seconds,
    )


@lru_cache
def get_repository():
    return build_repository(get_settings())
