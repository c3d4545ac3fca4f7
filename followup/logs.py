"""Execution log journal and its state machine.

``scheduled`` is the only non-terminal state. An entry leaves it exactly
once, to ``executed`` or ``failed``. Re-attempting a failed send never
rewrites the failed entry; it creates a new attempt record instead.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .constants import DEFAULT_PAGE_SIZE, LOG_STATUSES, MAX_PAGE_SIZE
from .contracts import ExecutionLogEntry, LogStats, Page
from .errors import InvalidTransition, LogNotFound, ValidationError
from .persistence import WorkflowRepository
from .utils.clock import utcnow

logger = logging.getLogger(__name__)


class ExecutionLogStore:
    """Reads and state transitions over the execution log."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def insert(self, entry: ExecutionLogEntry) -> bool:
        """Conditionally insert ``entry``; ``False`` means the key already existed."""
        return await self._repository.insert_log(entry)

    async def exists(self, booking_id: str, workflow_id: str, step_order: int) -> bool:
        return await self._repository.log_exists(booking_id, workflow_id, step_order)

    async def get(self, log_id: str) -> ExecutionLogEntry:
        entry = await self._repository.get_log(log_id)
        if entry is None:
            raise LogNotFound(log_id)
        return entry

    async def list(
        self,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page:
        if status is not None and status not in LOG_STATUSES:
            raise ValidationError(f"Unknown log status: {status}")
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        items, total = await self._repository.list_logs(
            status=status, offset=(page - 1) * limit, limit=limit
        )
        return Page(items=items, total=total, page=page, limit=limit)

    async def stats(self) -> LogStats:
        return await self._repository.log_stats()

    async def due(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[ExecutionLogEntry]:
        return await self._repository.due_logs(now or utcnow(), limit)

    async def for_booking(self, booking_id: str) -> List[ExecutionLogEntry]:
        return await self._repository.logs_for_booking(booking_id)

    async def count_by_booking(
        self, booking_ids: Iterable[str], trigger_action: str
    ) -> Dict[str, int]:
        return await self._repository.count_logs_by_booking(booking_ids, trigger_action)

    # ------------------------------------------------------------------
    # State transitions
    async def mark_executed(
        self, log_id: str, response_data: Any = None, executed_at: Optional[datetime] = None
    ) -> ExecutionLogEntry:
        return await self._transition(
            log_id,
            "executed",
            executed_at=executed_at or utcnow(),
            response_data=response_data,
        )

    async def mark_failed(
        self, log_id: str, error: str, error_details: Any = None
    ) -> ExecutionLogEntry:
        return await self._transition(
            log_id, "failed", error=error, error_details=error_details
        )

    async def _transition(self, log_id: str, target: str, **fields: Any) -> ExecutionLogEntry:
        updated = await self._repository.transition_log(log_id, "scheduled", target, **fields)
        if updated is None:
            current = await self.get(log_id)
            raise InvalidTransition(log_id, current.status, target)
        logger.info(f"Workflow log {log_id} -> {target}")
        return updated

    async def create_retry(self, log_id: str) -> ExecutionLogEntry:
        """Create a fresh ``scheduled`` attempt for a failed entry, due now."""
        failed = await self.get(log_id)
        if failed.status != "failed":
            raise InvalidTransition(log_id, failed.status, "retry")

        booking_id, workflow_id, order = failed.dedup_key
        attempt = await self._repository.max_attempt(booking_id, workflow_id, order) + 1
        now = utcnow()
        retry = failed.model_copy(
            update={
                "log_id": str(uuid.uuid4()),
                "status": "scheduled",
                "scheduled_for": now,
                "created_at": now,
                "executed_at": None,
                "error": None,
                "error_details": None,
                "response_data": None,
                "attempt": attempt,
                "retry_of": failed.log_id,
            }
        )
        if not await self._repository.insert_log(retry):
            # another operator retried concurrently
            raise InvalidTransition(log_id, failed.status, "retry")
        logger.info(f"Created retry attempt {attempt} ({retry.log_id}) for workflow log {log_id}")
        return retry
