"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

import asyncpg

from ..contracts import ExecutionLogEntry, LogStats, WorkflowDefinition
from ..utils.clock import as_utc
from .repository import WorkflowRepository


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist definitions and the execution log using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                workflow_id TEXT PRIMARY KEY,
                trigger_action TEXT NOT NULL,
                is_active BOOLEAN NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                body JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_logs (
                log_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                booking_id TEXT NOT NULL,
                trigger_action TEXT NOT NULL,
                step_order INTEGER NOT NULL,
                attempt INTEGER NOT NULL,
                status TEXT NOT NULL,
                scheduled_for TIMESTAMPTZ NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                body JSONB NOT NULL,
                UNIQUE (booking_id, workflow_id, step_order, attempt)
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS ix_workflow_logs_due
            ON workflow_logs (status, scheduled_for)
            """
        )

    @staticmethod
    def _entry(row: asyncpg.Record) -> ExecutionLogEntry:
        return ExecutionLogEntry.model_validate_json(row["body"])

    # ------------------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_definitions (workflow_id, trigger_action, is_active, created_at, body)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (workflow_id) DO UPDATE SET
                    trigger_action = EXCLUDED.trigger_action,
                    is_active = EXCLUDED.is_active,
                    body = EXCLUDED.body
                """,
                definition.workflow_id,
                definition.trigger_action,
                definition.is_active,
                definition.created_at,
                definition.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT body::text AS body FROM workflow_definitions WHERE workflow_id = $1",
                workflow_id,
            )
        finally:
            await conn.close()
        return WorkflowDefinition.model_validate_json(row["body"]) if row else None

    async def delete_definition(self, workflow_id: str) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                "DELETE FROM workflow_definitions WHERE workflow_id = $1", workflow_id
            )
        finally:
            await conn.close()
        return result != "DELETE 0"

    async def list_definitions(
        self, trigger_action: str | None = None, active_only: bool = False
    ) -> list[WorkflowDefinition]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT body::text AS body FROM workflow_definitions
                WHERE ($1::text IS NULL OR trigger_action = $1)
                  AND (NOT $2 OR is_active)
                ORDER BY created_at
                """,
                trigger_action,
                active_only,
            )
        finally:
            await conn.close()
        return [WorkflowDefinition.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    async def insert_log(self, entry: ExecutionLogEntry) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                INSERT INTO workflow_logs
                    (log_id, workflow_id, booking_id, trigger_action, step_order, attempt,
                     status, scheduled_for, created_at, body)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb)
                ON CONFLICT (booking_id, workflow_id, step_order, attempt) DO NOTHING
                """,
                entry.log_id,
                entry.workflow_id,
                entry.booking_id,
                entry.trigger_action,
                entry.step.order,
                entry.attempt,
                entry.status,
                entry.scheduled_for,
                entry.created_at,
                entry.model_dump_json(),
            )
        finally:
            await conn.close()
        return result == "INSERT 0 1"

    async def log_exists(self, booking_id: str, workflow_id: str, step_order: int) -> bool:
        conn = await self._connect()
        try:
            found = await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM workflow_logs
                    WHERE booking_id = $1 AND workflow_id = $2 AND step_order = $3
                )
                """,
                booking_id,
                workflow_id,
                step_order,
            )
        finally:
            await conn.close()
        return bool(found)

    async def get_log(self, log_id: str) -> ExecutionLogEntry | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT body::text AS body FROM workflow_logs WHERE log_id = $1", log_id
            )
        finally:
            await conn.close()
        return self._entry(row) if row else None

    async def list_logs(
        self, status: str | None = None, offset: int = 0, limit: int = 20
    ) -> tuple[list[ExecutionLogEntry], int]:
        conn = await self._connect()
        try:
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM workflow_logs WHERE ($1::text IS NULL OR status = $1)",
                status,
            )
            rows = await conn.fetch(
                """
                SELECT body::text AS body FROM workflow_logs
                WHERE ($1::text IS NULL OR status = $1)
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                """,
                status,
                limit,
                offset,
            )
        finally:
            await conn.close()
        return [self._entry(r) for r in rows], total

    async def log_stats(self) -> LogStats:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT status, COUNT(*) AS n FROM workflow_logs GROUP BY status"
            )
        finally:
            await conn.close()
        stats = LogStats()
        for row in rows:
            setattr(stats, row["status"], row["n"])
            stats.total += row["n"]
        return stats

    async def due_logs(self, now: datetime, limit: int | None = None) -> list[ExecutionLogEntry]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT body::text AS body FROM workflow_logs
                WHERE status = 'scheduled' AND scheduled_for <= $1
                ORDER BY scheduled_for, step_order
                LIMIT $2
                """,
                as_utc(now),
                limit,
            )
        finally:
            await conn.close()
        return [self._entry(r) for r in rows]

    async def logs_for_booking(self, booking_id: str) -> list[ExecutionLogEntry]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT body::text AS body FROM workflow_logs WHERE booking_id = $1
                ORDER BY workflow_id, step_order, attempt
                """,
                booking_id,
            )
        finally:
            await conn.close()
        return [self._entry(r) for r in rows]

    async def count_logs_by_booking(
        self, booking_ids: Iterable[str], trigger_action: str
    ) -> dict[str, int]:
        ids = list(booking_ids)
        if not ids:
            return {}
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT booking_id, COUNT(*) AS n FROM workflow_logs
                WHERE trigger_action = $1 AND attempt = 1 AND booking_id = ANY($2::text[])
                GROUP BY booking_id
                """,
                trigger_action,
                ids,
            )
        finally:
            await conn.close()
        return {r["booking_id"]: r["n"] for r in rows}

    async def transition_log(
        self, log_id: str, expected: str, status: str, **fields: Any
    ) -> ExecutionLogEntry | None:
        current = await self.get_log(log_id)
        if current is None or current.status != expected:
            return None
        updated = current.model_copy(update={"status": status, **fields})
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE workflow_logs SET status = $1, body = $2::jsonb
                WHERE log_id = $3 AND status = $4
                """,
                status,
                updated.model_dump_json(),
                log_id,
                expected,
            )
        finally:
            await conn.close()
        return updated if result == "UPDATE 1" else None

    async def max_attempt(self, booking_id: str, workflow_id: str, step_order: int) -> int:
        conn = await self._connect()
        try:
            value = await conn.fetchval(
                """
                SELECT COALESCE(MAX(attempt), 0) FROM workflow_logs
                WHERE booking_id = $1 AND workflow_id = $2 AND step_order = $3
                """,
                booking_id,
                workflow_id,
                step_order,
            )
        finally:
            await conn.close()
        return int(value)
