"""Dispatcher sending due execution log entries through channel transports."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional, Set

from .contracts import DispatchSummary, ExecutionLogEntry
from .errors import DispatchError, InvalidTransition
from .logs import ExecutionLogStore
from .transports import BaseTransport
from .utils.clock import utcnow

logger = logging.getLogger(__name__)


class Dispatcher:
    """Sends scheduled entries and records their outcome.

    Every send ends with the entry in ``executed`` or ``failed``; a failed
    send never raises out of ``run_due`` so sibling entries still go out.
    """

    def __init__(
        self,
        logs: ExecutionLogStore,
        transports: Mapping[str, BaseTransport],
        batch_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._logs = logs
        self._clock = clock
        self._transports: Dict[str, BaseTransport] = dict(transports)
        self._batch_size = batch_size
        self._in_flight: Set[str] = set()

    async def run_due(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> DispatchSummary:
        """Send every entry whose due time is at or before ``now``."""
        now = now or self._clock()
        summary = DispatchSummary()
        for entry in await self._logs.due(now, limit or self._batch_size):
            outcome = await self._dispatch(entry)
            if outcome is None:
                continue
            if outcome.status == "executed":
                summary.executed += 1
            else:
                summary.failed += 1
        if summary.executed or summary.failed:
            logger.info(
                f"Dispatch run: {summary.executed} executed, {summary.failed} failed"
            )
        return summary

    async def send_now(self, log_id: str) -> ExecutionLogEntry:
        """Send a ``scheduled`` entry immediately, ignoring its due time."""
        entry = await self._logs.get(log_id)
        if entry.status != "scheduled":
            raise InvalidTransition(log_id, entry.status, "send-now")
        outcome = await self._dispatch(entry)
        if outcome is None:
            current = await self._logs.get(log_id)
            raise InvalidTransition(log_id, current.status, "send-now")
        return outcome

    async def retry(self, log_id: str) -> ExecutionLogEntry:
        """Re-attempt a failed entry as a new attempt record and send it."""
        attempt = await self._logs.create_retry(log_id)
        return await self.send_now(attempt.log_id)

    # ------------------------------------------------------------------
    async def _dispatch(self, entry: ExecutionLogEntry) -> Optional[ExecutionLogEntry]:
        if entry.log_id in self._in_flight:
            return None
        self._in_flight.add(entry.log_id)
        try:
            try:
                response = await self._send(entry)
            except DispatchError as e:
                logger.error(f"Sending workflow log {entry.log_id} failed: {e.message}")
                return await self._record(
                    self._logs.mark_failed(entry.log_id, e.message, e.details), entry
                )
            return await self._record(
                self._logs.mark_executed(entry.log_id, response_data=response), entry
            )
        finally:
            self._in_flight.discard(entry.log_id)

    async def _send(self, entry: ExecutionLogEntry) -> dict:
        transport = self._transports.get(entry.step.channel)
        if transport is None:
            raise DispatchError(f"No transport configured for channel '{entry.step.channel}'")
        try:
            return await transport.send(entry)
        except DispatchError:
            raise
        except Exception as e:
            raise DispatchError(
                f"Unexpected {entry.step.channel} transport error: {e}",
                details={"type": type(e).__name__, "message": str(e)},
            ) from e

    @staticmethod
    async def _record(transition, entry: ExecutionLogEntry) -> Optional[ExecutionLogEntry]:
        try:
            return await transition
        except InvalidTransition as e:
            # another dispatcher finished this entry first
            logger.warning(f"Outcome for workflow log {entry.log_id} not recorded: {e}")
            return None

    async def close(self) -> None:
        for transport in self._transports.values():
            await transport.disconnect()
