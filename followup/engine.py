"""Wiring of the workflow components into one engine object."""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import Callable, Mapping, Optional

from .backfill import BulkBackfillEngine
from .bookings import BookingSource, get_booking_source
from .config import FollowupConfig, load_config
from .contracts import ScheduleResult
from .definitions import WorkflowDefinitionStore
from .dispatch import Dispatcher
from .logs import ExecutionLogStore
from .persistence import WorkflowRepository, get_repository
from .scheduler import StepScheduler
from .templates import TemplateRegistry, default_registry
from .transports import BaseTransport, get_transports
from .utils.clock import utcnow

logger = logging.getLogger(__name__)

_engine_instance: "WorkflowEngine | None" = None


class WorkflowEngine:
    """Definitions, scheduling, the execution log, dispatch and backfill."""

    def __init__(
        self,
        repository: WorkflowRepository,
        bookings: BookingSource,
        transports: Mapping[str, BaseTransport],
        templates: Optional[TemplateRegistry] = None,
        batch_size: int = 100,
        concurrency: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.bookings = bookings
        self.templates = templates or default_registry()
        self.definitions = WorkflowDefinitionStore(repository)
        self.logs = ExecutionLogStore(repository)
        self.scheduler = StepScheduler(
            self.definitions, self.logs, self.templates, clock=clock
        )
        self.dispatcher = Dispatcher(
            self.logs, transports, batch_size=batch_size, clock=clock
        )
        self.backfill = BulkBackfillEngine(
            bookings, self.logs, self.scheduler, concurrency=concurrency
        )

    @classmethod
    def from_config(cls, config: FollowupConfig) -> "WorkflowEngine":
        return cls(
            repository=get_repository(config=config),
            bookings=get_booking_source(config.bookings),
            transports=get_transports(config),
            batch_size=config.dispatch.batch_size,
            concurrency=config.backfill.concurrency,
        )

    async def handle_lifecycle_event(
        self,
        booking_id: str,
        new_status: str,
        transition_timestamp: Optional[datetime] = None,
    ) -> Optional[ScheduleResult]:
        """Schedule workflows for a booking that just entered ``new_status``.

        The transition is stamped with ``transition_timestamp``, or the
        current time when the caller does not know it. Returns ``None`` when
        the status does not map to a trigger action.
        """
        booking = await self.bookings.get(booking_id)
        transition_timestamp = transition_timestamp or self.clock()
        logger.info(f"Lifecycle event: booking {booking_id} -> '{new_status}'")
        return await self.scheduler.schedule_booking(
            booking, new_status=new_status, transition_timestamp=transition_timestamp
        )

    async def close(self) -> None:
        await self.dispatcher.close()
        for resource in (self.bookings, self.repository):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            result = close()
            if inspect.isawaitable(result):
                await result


def get_engine(config: Optional[FollowupConfig] = None) -> WorkflowEngine:
    """Return the process-wide engine, building it from configuration once."""

    global _engine_instance
    if _engine_instance is not None and config is None:
        return _engine_instance
    _engine_instance = WorkflowEngine.from_config(config or load_config())
    return _engine_instance


def set_engine(engine: Optional[WorkflowEngine]) -> None:
    """Replace the process-wide engine (``None`` forces a rebuild)."""

    global _engine_instance
    _engine_instance = engine
