"""Repository abstraction for workflow definitions and the execution log."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Protocol

from ..contracts import ExecutionLogEntry, LogStats, WorkflowDefinition


class WorkflowRepository(Protocol):
    """Protocol for persistence backends.

    ``insert_log`` and ``transition_log`` must be atomic: the first is a
    conditional insert on ``(booking_id, workflow_id, step_order, attempt)``,
    the second a conditional update on the current status.
    """

    # Workflow definitions ---------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        """Insert or replace a definition."""

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        """Retrieve a definition by id."""

    async def delete_definition(self, workflow_id: str) -> bool:
        """Delete a definition; return ``False`` when it did not exist."""

    async def list_definitions(
        self, trigger_action: str | None = None, active_only: bool = False
    ) -> list[WorkflowDefinition]:
        """Return definitions, oldest first."""

    # Execution log ----------------------------------------------------
    async def insert_log(self, entry: ExecutionLogEntry) -> bool:
        """Insert ``entry`` unless its key exists. Return ``True`` if written."""

    async def log_exists(self, booking_id: str, workflow_id: str, step_order: int) -> bool:
        """Return ``True`` if any attempt exists for the dedup key."""

    async def get_log(self, log_id: str) -> ExecutionLogEntry | None:
        """Retrieve a log entry by id."""

    async def list_logs(
        self, status: str | None = None, offset: int = 0, limit: int = 20
    ) -> tuple[list[ExecutionLogEntry], int]:
        """Return a page of entries (newest first) and the total count."""

    async def log_stats(self) -> LogStats:
        """Return entry counts per status."""

    async def due_logs(self, now: datetime, limit: int | None = None) -> list[ExecutionLogEntry]:
        """Return scheduled entries with ``scheduled_for <= now``, oldest first."""

    async def logs_for_booking(self, booking_id: str) -> list[ExecutionLogEntry]:
        """Return every entry of a booking ordered by step order and attempt."""

    async def count_logs_by_booking(
        self, booking_ids: Iterable[str], trigger_action: str
    ) -> dict[str, int]:
        """Return the number of scheduled steps per booking for ``trigger_action``.

        Retry attempts are not counted.
        """

    async def transition_log(
        self, log_id: str, expected: str, status: str, **fields: Any
    ) -> ExecutionLogEntry | None:
        """Move an entry from ``expected`` to ``status`` setting ``fields``.

        Returns the updated entry, or ``None`` if it was not in ``expected``.
        """

    async def max_attempt(self, booking_id: str, workflow_id: str, step_order: int) -> int:
        """Return the highest attempt number recorded for the key (0 if none)."""
