"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from ..contracts import ExecutionLogEntry, LogStats, WorkflowDefinition
from ..utils.clock import to_storage
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist definitions and the execution log using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                workflow_id TEXT PRIMARY KEY,
                trigger_action TEXT NOT NULL,
                is_active INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_logs (
                log_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                booking_id TEXT NOT NULL,
                trigger_action TEXT NOT NULL,
                step_order INTEGER NOT NULL,
                attempt INTEGER NOT NULL,
                status TEXT NOT NULL,
                scheduled_for TEXT NOT NULL,
                created_at TEXT NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS ux_workflow_logs_dedup
            ON workflow_logs (booking_id, workflow_id, step_order, attempt)
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS ix_workflow_logs_due
            ON workflow_logs (status, scheduled_for)
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _entry(row: sqlite3.Row) -> ExecutionLogEntry:
        return ExecutionLogEntry.model_validate_json(row["body"])

    # ------------------------------------------------------------------
    # Workflow definitions
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_definitions (workflow_id, trigger_action, is_active, created_at, body)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(workflow_id) DO UPDATE SET
                trigger_action = excluded.trigger_action,
                is_active = excluded.is_active,
                body = excluded.body
            """,
            definition.workflow_id,
            definition.trigger_action,
            int(definition.is_active),
            to_storage(definition.created_at),
            definition.model_dump_json(),
        )

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT body FROM workflow_definitions WHERE workflow_id = ?",
            workflow_id,
        )
        return WorkflowDefinition.model_validate_json(row["body"]) if row else None

    async def delete_definition(self, workflow_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute,
            "DELETE FROM workflow_definitions WHERE workflow_id = ?",
            workflow_id,
        )
        return deleted > 0

    async def list_definitions(
        self, trigger_action: str | None = None, active_only: bool = False
    ) -> list[WorkflowDefinition]:
        query = "SELECT body FROM workflow_definitions WHERE 1 = 1"
        params: list[Any] = []
        if trigger_action is not None:
            query += " AND trigger_action = ?"
            params.append(trigger_action)
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY created_at"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [WorkflowDefinition.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # Execution log
    async def insert_log(self, entry: ExecutionLogEntry) -> bool:
        inserted = await asyncio.to_thread(
            self._execute,
            """
            INSERT OR IGNORE INTO workflow_logs
                (log_id, workflow_id, booking_id, trigger_action, step_order, attempt,
                 status, scheduled_for, created_at, body)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            entry.log_id,
            entry.workflow_id,
            entry.booking_id,
            entry.trigger_action,
            entry.step.order,
            entry.attempt,
            entry.status,
            to_storage(entry.scheduled_for),
            to_storage(entry.created_at),
            entry.model_dump_json(),
        )
        return inserted > 0

    async def log_exists(self, booking_id: str, workflow_id: str, step_order: int) -> bool:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT 1 FROM workflow_logs
            WHERE booking_id = ? AND workflow_id = ? AND step_order = ? LIMIT 1
            """,
            booking_id,
            workflow_id,
            step_order,
        )
        return row is not None

    async def get_log(self, log_id: str) -> ExecutionLogEntry | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM workflow_logs WHERE log_id = ?", log_id
        )
        return self._entry(row) if row else None

    async def list_logs(
        self, status: str | None = None, offset: int = 0, limit: int = 20
    ) -> tuple[list[ExecutionLogEntry], int]:
        where = " WHERE status = ?" if status else ""
        params: list[Any] = [status] if status else []
        total_row = await asyncio.to_thread(
            self._fetchone, f"SELECT COUNT(*) AS n FROM workflow_logs{where}", *params
        )
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT body FROM workflow_logs{where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            *params,
            limit,
            offset,
        )
        return [self._entry(r) for r in rows], total_row["n"]

    async def log_stats(self) -> LogStats:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT status, COUNT(*) AS n FROM workflow_logs GROUP BY status",
        )
        stats = LogStats()
        for row in rows:
            setattr(stats, row["status"], row["n"])
            stats.total += row["n"]
        return stats

    async def due_logs(self, now: datetime, limit: int | None = None) -> list[ExecutionLogEntry]:
        query = """
            SELECT body FROM workflow_logs
            WHERE status = 'scheduled' AND scheduled_for <= ?
            ORDER BY scheduled_for, step_order
        """
        params: list[Any] = [to_storage(now)]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._entry(r) for r in rows]

    async def logs_for_booking(self, booking_id: str) -> list[ExecutionLogEntry]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT body FROM workflow_logs WHERE booking_id = ?
            ORDER BY workflow_id, step_order, attempt
            """,
            booking_id,
        )
        return [self._entry(r) for r in rows]

    async def count_logs_by_booking(
        self, booking_ids: Iterable[str], trigger_action: str
    ) -> dict[str, int]:
        ids = list(booking_ids)
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = await asyncio.to_thread(
            self._fetchall,
            f"""
            SELECT booking_id, COUNT(*) AS n FROM workflow_logs
            WHERE trigger_action = ? AND attempt = 1 AND booking_id IN ({placeholders})
            GROUP BY booking_id
            """,
            trigger_action,
            *ids,
        )
        return {r["booking_id"]: r["n"] for r in rows}

    async def transition_log(
        self, log_id: str, expected: str, status: str, **fields: Any
    ) -> ExecutionLogEntry | None:
        current = await self.get_log(log_id)
        if current is None or current.status != expected:
            return None
        updated = current.model_copy(update={"status": status, **fields})
        changed = await asyncio.to_thread(
            self._execute,
            "UPDATE workflow_logs SET status = ?, body = ? WHERE log_id = ? AND status = ?",
            status,
            updated.model_dump_json(),
            log_id,
            expected,
        )
        return updated if changed else None

    async def max_attempt(self, booking_id: str, workflow_id: str, step_order: int) -> int:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT MAX(attempt) AS n FROM workflow_logs
            WHERE booking_id = ? AND workflow_id = ? AND step_order = ?
            """,
            booking_id,
            workflow_id,
            step_order,
        )
        return row["n"] or 0

    def close(self) -> None:
        self._conn.close()

