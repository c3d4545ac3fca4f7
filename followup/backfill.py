"""Bulk backfill of workflows for bookings that missed live triggering."""

from __future__ import annotations

import asyncio
import logging
from typing import Literal, Optional, Tuple

from .bookings import BookingSource
from .constants import STATUS_TO_TRIGGER
from .contracts import (
    Booking,
    BookingPartition,
    BookingSummary,
    BulkTriggerError,
    BulkTriggerResult,
    PartitionSummary,
)
from .errors import ValidationError
from .logs import ExecutionLogStore
from .scheduler import StepScheduler

logger = logging.getLogger(__name__)

Outcome = Literal["processed", "skipped", "noop", "error"]


def trigger_for_status(status: str) -> str:
    trigger_action = STATUS_TO_TRIGGER.get(status)
    if trigger_action is None:
        raise ValidationError(
            f"Booking status '{status}' has no workflow trigger; "
            f"expected one of {sorted(STATUS_TO_TRIGGER)}"
        )
    return trigger_action


class BulkBackfillEngine:
    """Schedules workflows for every booking in a status that has none yet.

    Bookings are independent and run concurrently. A booking that fails is
    reported in ``errors`` and never aborts the batch. Correctness against
    a concurrent live trigger rests entirely on the scheduler's dedup key,
    so a second run over the same bookings processes nothing.
    """

    def __init__(
        self,
        bookings: BookingSource,
        logs: ExecutionLogStore,
        scheduler: StepScheduler,
        concurrency: int = 10,
    ) -> None:
        self._bookings = bookings
        self._logs = logs
        self._scheduler = scheduler
        self._concurrency = max(1, concurrency)

    async def preview(self, status: str) -> BookingPartition:
        """Dry run: partition bookings by whether workflows are already scheduled."""
        trigger_action = trigger_for_status(status)
        bookings = await self._bookings.list_by_status(status)
        counts = await self._logs.count_by_booking(
            [b.booking_id for b in bookings], trigger_action
        )

        summaries = [
            BookingSummary(
                booking_id=b.booking_id,
                client_name=b.client_name,
                client_email=b.client_email,
                client_phone=b.client_phone,
                booking_status=b.booking_status,
                has_scheduled_workflows=counts.get(b.booking_id, 0) > 0,
                scheduled_workflows_count=counts.get(b.booking_id, 0),
            )
            for b in bookings
        ]
        with_count = sum(1 for s in summaries if s.has_scheduled_workflows)
        return BookingPartition(
            status=status,
            trigger_action=trigger_action,
            summary=PartitionSummary(
                total=len(summaries),
                with_scheduled_workflows=with_count,
                without_scheduled_workflows=len(summaries) - with_count,
            ),
            bookings=summaries,
        )

    async def trigger(self, status: str, skip_existing: bool = True) -> BulkTriggerResult:
        trigger_action = trigger_for_status(status)
        bookings = await self._bookings.list_by_status(status)
        result = BulkTriggerResult(total=len(bookings))
        if not bookings:
            return result

        if skip_existing:
            counts = await self._logs.count_by_booking(
                [b.booking_id for b in bookings], trigger_action
            )
            targets = [b for b in bookings if counts.get(b.booking_id, 0) == 0]
        else:
            targets = bookings

        logger.info(
            f"Bulk trigger for '{status}': {len(targets)} of {len(bookings)} booking(s) to schedule"
        )
        semaphore = asyncio.Semaphore(self._concurrency)
        outcomes = await asyncio.gather(
            *(self._run_one(booking, status, semaphore) for booking in targets)
        )

        for booking, (outcome, error) in zip(targets, outcomes):
            if outcome == "processed":
                result.processed += 1
            elif outcome == "skipped":
                result.skipped += 1
            elif outcome == "error":
                result.errors.append(
                    BulkTriggerError(
                        booking_id=booking.booking_id,
                        client_email=booking.client_email,
                        error=error or "Unknown error",
                    )
                )

        logger.info(
            f"Bulk trigger for '{status}' done: processed={result.processed} "
            f"skipped={result.skipped} errors={len(result.errors)}"
        )
        return result

    async def _run_one(
        self, booking: Booking, status: str, semaphore: asyncio.Semaphore
    ) -> Tuple[Outcome, Optional[str]]:
        async with semaphore:
            try:
                scheduled = await self._scheduler.schedule_booking(
                    booking, new_status=status, transition_timestamp=booking.status_changed_at
                )
            except Exception as e:
                logger.error(f"Bulk trigger failed for booking {booking.booking_id}: {e}")
                return "error", str(e)

        if scheduled is None:
            return "noop", None
        if scheduled.scheduled:
            return "processed", None
        if scheduled.skipped:
            return "skipped", None
        return "noop", None
