"""Exception hierarchy for the follow-up workflow engine."""

from __future__ import annotations

from typing import Any


class FollowupError(Exception):
    """Base class for all engine errors."""


class ValidationError(FollowupError):
    """A workflow definition, step or lifecycle event is malformed.

    Raised synchronously before anything is persisted.
    """


class NotFoundError(FollowupError):
    """Base class for lookups of unknown records."""


class WorkflowNotFound(NotFoundError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class LogNotFound(NotFoundError):
    def __init__(self, log_id: str) -> None:
        super().__init__(f"Workflow log {log_id} not found")
        self.log_id = log_id


class BookingNotFound(NotFoundError):
    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class InvalidTransition(FollowupError):
    """An execution log entry cannot move from its current state."""

    def __init__(self, log_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Workflow log {log_id} cannot move from '{current}' to '{target}'"
        )
        self.log_id = log_id
        self.current = current
        self.target = target


class DispatchError(FollowupError):
    """The message provider rejected or failed a send.

    ``details`` carries the raw provider error untouched.
    """

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
