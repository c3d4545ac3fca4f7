"""Core data contracts for the follow-up workflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .constants import DEFAULT_PLAN_DAYS, DEFAULT_PLAN_NAME, PLAN_PRICES, STATUS_TO_TRIGGER
from .utils.clock import as_utc, utcnow

TriggerAction = Literal["no-show", "complete", "cancel", "re-schedule"]
Channel = Literal["email", "whatsapp"]
LogStatus = Literal["scheduled", "executed", "failed"]


def _new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the JSON shape used by the HTTP API."""
        return self.model_dump(mode="json", by_alias=True)


# ----------------------------------------------------------------------
# Workflow definitions


class TemplateConfig(CamelModel):
    """Plan payload for templates whose variables are computed."""

    plan_name: str = DEFAULT_PLAN_NAME
    plan_amount: Optional[int | float] = None
    days: int = Field(default=DEFAULT_PLAN_DAYS, ge=0)

    @model_validator(mode="after")
    def _default_amount(self) -> "TemplateConfig":
        if self.plan_amount is None:
            self.plan_amount = PLAN_PRICES.get(self.plan_name, PLAN_PRICES[DEFAULT_PLAN_NAME])
        return self


class WorkflowStep(CamelModel):
    """Defines one message step of a workflow."""

    channel: Channel
    days_after: int = 0
    template_id: str = ""
    template_name: Optional[str] = None
    order: Optional[int] = None
    domain_name: Optional[str] = None
    sender_email: Optional[str] = None
    sender_name: Optional[str] = None
    template_config: Optional[TemplateConfig] = None


class WorkflowDefinition(CamelModel):
    """A trigger action mapped to an ordered list of steps."""

    workflow_id: str = Field(default_factory=_new_id)
    trigger_action: TriggerAction
    steps: List[WorkflowStep] = Field(default_factory=list)
    is_active: bool = True
    name: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def ordered_steps(self) -> List[WorkflowStep]:
        return sorted(self.steps, key=lambda s: s.order or 0)


class WorkflowUpdate(CamelModel):
    """Fields accepted by an update; omitted fields keep their value."""

    trigger_action: Optional[TriggerAction] = None
    steps: Optional[List[WorkflowStep]] = None
    is_active: Optional[bool] = None
    name: Optional[str] = None
    description: Optional[str] = None

    def is_activation_only(self) -> bool:
        return self.model_fields_set == {"is_active"}


# ----------------------------------------------------------------------
# Bookings and lifecycle events


class PaymentPlan(CamelModel):
    name: str
    price: Optional[int | float] = None
    currency: Optional[str] = "USD"
    display_price: Optional[str] = None

    def cost_label(self) -> Optional[str]:
        if self.display_price:
            return self.display_price
        if self.price is not None:
            return f"${self.price}"
        return None


class Booking(CamelModel):
    """Booking record as exposed by the booking store."""

    booking_id: str
    client_name: Optional[str] = None
    client_email: str = ""
    client_phone: Optional[str] = None
    booking_status: str
    status_changed_at: Optional[datetime] = None
    scheduled_event_start_time: Optional[datetime] = None
    meeting_link: Optional[str] = None
    reschedule_link: Optional[str] = None
    payment_plan: Optional[PaymentPlan] = None

    @property
    def trigger_action(self) -> Optional[str]:
        return STATUS_TO_TRIGGER.get(self.booking_status)


class ClientContact(CamelModel):
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None


class LifecycleEvent(CamelModel):
    """A booking entering a lifecycle state that may trigger workflows."""

    booking_id: str
    trigger_action: TriggerAction
    event_timestamp: datetime
    contact: ClientContact
    plan_name: Optional[str] = None
    plan_cost: Optional[str] = None
    meeting_start: Optional[datetime] = None
    meeting_link: Optional[str] = None
    reschedule_link: Optional[str] = None

    @field_validator("event_timestamp", "meeting_start")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @classmethod
    def from_booking(
        cls,
        booking: Booking,
        trigger_action: str,
        event_timestamp: Optional[datetime] = None,
    ) -> "LifecycleEvent":
        plan = booking.payment_plan
        return cls(
            booking_id=booking.booking_id,
            trigger_action=trigger_action,
            event_timestamp=event_timestamp or booking.status_changed_at or utcnow(),
            contact=ClientContact(
                email=booking.client_email,
                name=booking.client_name,
                phone=booking.client_phone,
            ),
            plan_name=plan.name if plan else None,
            plan_cost=plan.cost_label() if plan else None,
            meeting_start=booking.scheduled_event_start_time,
            meeting_link=booking.meeting_link,
            reschedule_link=booking.reschedule_link,
        )


# ----------------------------------------------------------------------
# Execution log


class StepSnapshot(CamelModel):
    """Frozen copy of a step taken when its send was scheduled."""

    model_config = ConfigDict(frozen=True)

    channel: Channel
    days_after: int
    template_id: str
    order: int
    template_name: Optional[str] = None
    domain_name: Optional[str] = None
    sender_email: Optional[str] = None
    sender_name: Optional[str] = None
    template_config: Optional[TemplateConfig] = None
    variables: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_step(
        cls, step: WorkflowStep, variables: Optional[Dict[str, str]] = None
    ) -> "StepSnapshot":
        return cls(
            channel=step.channel,
            days_after=step.days_after,
            template_id=step.template_id,
            order=step.order or 0,
            template_name=step.template_name,
            domain_name=step.domain_name,
            sender_email=step.sender_email,
            sender_name=step.sender_name,
            template_config=(
                step.template_config.model_copy() if step.template_config else None
            ),
            variables=dict(variables or {}),
        )


class ExecutionLogEntry(CamelModel):
    """Journal record of one scheduled send attempt."""

    log_id: str = Field(default_factory=_new_id)
    workflow_id: str
    workflow_name: Optional[str] = None
    trigger_action: TriggerAction
    booking_id: str
    client_email: str
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    step: StepSnapshot
    status: LogStatus = "scheduled"
    scheduled_for: datetime
    executed_at: Optional[datetime] = None
    error: Optional[str] = None
    error_details: Any = None
    response_data: Any = None
    attempt: int = 1
    retry_of: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("scheduled_for", "executed_at", "created_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @property
    def dedup_key(self) -> tuple[str, str, int]:
        return (self.booking_id, self.workflow_id, self.step.order)

    def is_terminal(self) -> bool:
        return self.status != "scheduled"

    def is_due(self, now: datetime) -> bool:
        return self.status == "scheduled" and self.scheduled_for <= as_utc(now)


class LogStats(CamelModel):
    total: int = 0
    scheduled: int = 0
    executed: int = 0
    failed: int = 0


class Page(CamelModel):
    items: List[ExecutionLogEntry] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.limit)) if self.limit else 1


# ----------------------------------------------------------------------
# Operation results


class ScheduleResult(CamelModel):
    booking_id: str
    trigger_action: TriggerAction
    matched_workflows: int = 0
    scheduled: List[ExecutionLogEntry] = Field(default_factory=list)
    skipped: int = 0


class DispatchSummary(CamelModel):
    executed: int = 0
    failed: int = 0


class BookingSummary(CamelModel):
    booking_id: str
    client_name: Optional[str] = None
    client_email: str = ""
    client_phone: Optional[str] = None
    booking_status: str
    has_scheduled_workflows: bool = False
    scheduled_workflows_count: int = 0


class PartitionSummary(CamelModel):
    total: int = 0
    with_scheduled_workflows: int = 0
    without_scheduled_workflows: int = 0


class BookingPartition(CamelModel):
    status: str
    trigger_action: TriggerAction
    summary: PartitionSummary = Field(default_factory=PartitionSummary)
    bookings: List[BookingSummary] = Field(default_factory=list)


class BulkTriggerError(CamelModel):
    booking_id: str
    client_email: str = ""
    error: str


class BulkTriggerResult(CamelModel):
    total: int = 0
    processed: int = 0
    skipped: int = 0
    errors: List[BulkTriggerError] = Field(default_factory=list)
