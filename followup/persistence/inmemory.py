"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, Tuple

from ..contracts import ExecutionLogEntry, LogStats, WorkflowDefinition
from ..utils.clock import as_utc
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store definitions and log entries in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._logs: Dict[str, ExecutionLogEntry] = {}
        self._keys: Dict[Tuple[str, str, int, int], str] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.workflow_id] = definition.model_copy(deep=True)

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        wf = self._definitions.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def delete_definition(self, workflow_id: str) -> bool:
        return self._definitions.pop(workflow_id, None) is not None

    async def list_definitions(
        self, trigger_action: str | None = None, active_only: bool = False
    ) -> list[WorkflowDefinition]:
        result = [
            wf.model_copy(deep=True)
            for wf in self._definitions.values()
            if (trigger_action is None or wf.trigger_action == trigger_action)
            and (not active_only or wf.is_active)
        ]
        return sorted(result, key=lambda wf: wf.created_at)

    # ------------------------------------------------------------------
    async def insert_log(self, entry: ExecutionLogEntry) -> bool:
        key = (*entry.dedup_key, entry.attempt)
        async with self._lock:
            if key in self._keys:
                return False
            self._keys[key] = entry.log_id
            self._logs[entry.log_id] = entry.model_copy(deep=True)
        return True

    async def log_exists(self, booking_id: str, workflow_id: str, step_order: int) -> bool:
        return any(k[:3] == (booking_id, workflow_id, step_order) for k in self._keys)

    async def get_log(self, log_id: str) -> ExecutionLogEntry | None:
        entry = self._logs.get(log_id)
        return entry.model_copy(deep=True) if entry else None

    async def list_logs(
        self, status: str | None = None, offset: int = 0, limit: int = 20
    ) -> tuple[list[ExecutionLogEntry], int]:
        matching = [e for e in self._logs.values() if status is None or e.status == status]
        matching.sort(key=lambda e: e.created_at, reverse=True)
        page = matching[offset : offset + limit]
        return [e.model_copy(deep=True) for e in page], len(matching)

    async def log_stats(self) -> LogStats:
        stats = LogStats(total=len(self._logs))
        for entry in self._logs.values():
            setattr(stats, entry.status, getattr(stats, entry.status) + 1)
        return stats

    async def due_logs(self, now: datetime, limit: int | None = None) -> list[ExecutionLogEntry]:
        now = as_utc(now)
        due = [e for e in self._logs.values() if e.is_due(now)]
        due.sort(key=lambda e: (e.scheduled_for, e.step.order))
        if limit is not None:
            due = due[:limit]
        return [e.model_copy(deep=True) for e in due]

    async def logs_for_booking(self, booking_id: str) -> list[ExecutionLogEntry]:
        entries = [e for e in self._logs.values() if e.booking_id == booking_id]
        entries.sort(key=lambda e: (e.workflow_id, e.step.order, e.attempt))
        return [e.model_copy(deep=True) for e in entries]

    async def count_logs_by_booking(
        self, booking_ids: Iterable[str], trigger_action: str
    ) -> dict[str, int]:
        wanted = set(booking_ids)
        counts: dict[str, int] = {}
        for entry in self._logs.values():
            if (
                entry.booking_id in wanted
                and entry.trigger_action == trigger_action
                and entry.attempt == 1
            ):
                counts[entry.booking_id] = counts.get(entry.booking_id, 0) + 1
        return counts

    async def transition_log(
        self, log_id: str, expected: str, status: str, **fields: Any
    ) -> ExecutionLogEntry | None:
        async with self._lock:
            entry = self._logs.get(log_id)
            if entry is None or entry.status != expected:
                return None
            updated = entry.model_copy(update={"status": status, **fields}, deep=True)
            self._logs[log_id] = updated
        return updated.model_copy(deep=True)

    async def max_attempt(self, booking_id: str, workflow_id: str, step_order: int) -> int:
        attempts = [
            k[3] for k in self._keys if k[:3] == (booking_id, workflow_id, step_order)
        ]
        return max(attempts, default=0)
