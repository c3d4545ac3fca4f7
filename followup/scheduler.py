"""Turn booking lifecycle events into scheduled execution log entries."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .constants import STATUS_TO_TRIGGER
from .contracts import (
    Booking,
    ExecutionLogEntry,
    LifecycleEvent,
    ScheduleResult,
    StepSnapshot,
    WorkflowDefinition,
    WorkflowStep,
)
from .definitions import WorkflowDefinitionStore
from .errors import ValidationError
from .logs import ExecutionLogStore
from .templates import TemplateContext, TemplateRegistry, default_registry
from .utils.clock import utcnow

logger = logging.getLogger(__name__)


def due_time(event_timestamp: datetime, days_after: int) -> datetime:
    """Return the step's due time. ``days_after=0`` is due at the event itself."""
    return event_timestamp + timedelta(days=days_after)


class StepScheduler:
    """Schedules every step of the active workflows matching an event.

    Scheduling only writes log entries; it never waits on a message provider.
    Each step is guarded by the ``(booking_id, workflow_id, step.order)``
    key, so re-triggering the same event is a no-op. Due times count from
    the event timestamp; computed template dates count from ``clock()``.
    """

    def __init__(
        self,
        definitions: WorkflowDefinitionStore,
        logs: ExecutionLogStore,
        templates: Optional[TemplateRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._definitions = definitions
        self._logs = logs
        self._templates = templates or default_registry()
        self._clock = clock

    async def schedule(self, event: LifecycleEvent) -> ScheduleResult:
        self._validate(event)
        result = ScheduleResult(booking_id=event.booking_id, trigger_action=event.trigger_action)

        workflows = await self._definitions.active_for(event.trigger_action)
        result.matched_workflows = len(workflows)
        if not workflows:
            logger.debug(
                f"No active workflows for '{event.trigger_action}' (booking {event.booking_id})"
            )
            return result

        context = TemplateContext.from_event(event, reference_time=self._clock())
        for workflow in workflows:
            for step in workflow.ordered_steps():
                entry = await self._schedule_step(event, workflow, step, context)
                if entry is None:
                    result.skipped += 1
                else:
                    result.scheduled.append(entry)

        logger.info(
            f"Booking {event.booking_id} '{event.trigger_action}': "
            f"{len(result.scheduled)} step(s) scheduled, {result.skipped} already present"
        )
        return result

    async def schedule_booking(
        self,
        booking: Booking,
        new_status: Optional[str] = None,
        transition_timestamp: Optional[datetime] = None,
    ) -> Optional[ScheduleResult]:
        """Schedule from a booking record; ``None`` if its status triggers nothing."""
        status = new_status or booking.booking_status
        trigger_action = STATUS_TO_TRIGGER.get(status)
        if trigger_action is None:
            logger.debug(f"Booking status '{status}' has no workflow trigger")
            return None
        event = LifecycleEvent.from_booking(booking, trigger_action, transition_timestamp)
        return await self.schedule(event)

    # ------------------------------------------------------------------
    async def _schedule_step(
        self,
        event: LifecycleEvent,
        workflow: WorkflowDefinition,
        step: WorkflowStep,
        context: TemplateContext,
    ) -> Optional[ExecutionLogEntry]:
        order = step.order or 0
        if await self._logs.exists(event.booking_id, workflow.workflow_id, order):
            return None

        resolved = self._templates.resolve(step.template_id, context, step.template_config)
        entry = ExecutionLogEntry(
            workflow_id=workflow.workflow_id,
            workflow_name=workflow.name,
            trigger_action=workflow.trigger_action,
            booking_id=event.booking_id,
            client_email=event.contact.email,
            client_name=event.contact.name,
            client_phone=event.contact.phone,
            step=StepSnapshot.from_step(step, resolved.as_parameters()),
            scheduled_for=due_time(event.event_timestamp, step.days_after),
        )
        # the pre-check above can race; the conditional insert decides
        if not await self._logs.insert(entry):
            logger.debug(
                f"Lost scheduling race for booking {event.booking_id} "
                f"workflow {workflow.workflow_id} step {order}"
            )
            return None
        return entry

    @staticmethod
    def _validate(event: LifecycleEvent) -> None:
        if not event.booking_id or not event.booking_id.strip():
            raise ValidationError("Lifecycle event is missing a booking id")
        if not event.contact.email or not event.contact.email.strip():
            raise ValidationError(f"Booking {event.booking_id} has no client email")
