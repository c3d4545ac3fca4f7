"""Template variable binding for follow-up messages.

Every known template is registered with exactly one *shape*:

``DirectMapping``
    Positional variables ``{{1}}``, ``{{2}}``, ... each bound to a named
    semantic field of the booking (client name, plan cost, meeting link...).

``ComputedPlanConfig``
    Payment reminder templates whose variables are computed from a plan
    configuration: ``{{1}}`` client name, ``{{2}}`` plan name and ``{{3}}`` a
    due date ``days`` after the reference time.

Unknown template ids resolve to an empty variable list; the provider then
sends the body with its literal placeholders.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .constants import DEFAULT_PLAN_DAYS, DEFAULT_PLAN_NAME, PLAN_PRICES
from .contracts import Channel, LifecycleEvent, TemplateConfig
from .utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)

SemanticField = Literal[
    "client_name",
    "plan_cost",
    "plan_name",
    "meeting_date",
    "meeting_time",
    "reschedule_link",
    "meeting_link",
]

# Operator-facing meaning of each positional slot in the shared lookup table.
FIELD_LABELS: Dict[str, str] = {
    "client_name": "Client Name",
    "plan_cost": "Plan Cost / Payment Amount",
    "plan_name": "Plan Name",
    "meeting_date": "Meeting Date",
    "meeting_time": "Meeting Time",
    "reschedule_link": "Reschedule Link",
    "meeting_link": "Meeting Link",
    "due_date": "Due Date",
}

PLAN_CONFIG_FIELDS = ("client_name", "plan_name", "due_date")

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"

_PLACEHOLDER = re.compile(r"\{\{(\d+)\}\}")


def placeholder(position: int) -> str:
    return "{{" + str(position) + "}}"


class DirectMapping(BaseModel):
    kind: Literal["direct"] = "direct"
    fields: List[SemanticField]


class ComputedPlanConfig(BaseModel):
    kind: Literal["plan_config"] = "plan_config"
    plan_name: str = DEFAULT_PLAN_NAME
    plan_amount: Optional[int | float] = None
    days: int = DEFAULT_PLAN_DAYS

    @classmethod
    def from_config(cls, config: TemplateConfig) -> "ComputedPlanConfig":
        return cls(
            plan_name=config.plan_name, plan_amount=config.plan_amount, days=config.days
        )

    def with_overrides(self, config: Optional[TemplateConfig]) -> "ComputedPlanConfig":
        return self.from_config(config) if config is not None else self


TemplateShape = Union[DirectMapping, ComputedPlanConfig]


class RegisteredTemplate(BaseModel):
    shape: TemplateShape = Field(discriminator="kind")
    channel: Channel = "whatsapp"
    example_content: Optional[str] = None


class TemplateContext(BaseModel):
    """Values available for binding, taken from the triggering event."""

    client_name: Optional[str] = None
    plan_name: Optional[str] = None
    plan_cost: Optional[str] = None
    meeting_start: Optional[datetime] = None
    meeting_link: Optional[str] = None
    reschedule_link: Optional[str] = None
    reference_time: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_event(
        cls, event: LifecycleEvent, reference_time: Optional[datetime] = None
    ) -> "TemplateContext":
        """Context for ``event``; computed dates count from ``reference_time`` (now)."""
        return cls(
            client_name=event.contact.name,
            plan_name=event.plan_name,
            plan_cost=event.plan_cost,
            meeting_start=event.meeting_start,
            meeting_link=event.meeting_link,
            reschedule_link=event.reschedule_link,
            reference_time=reference_time or utcnow(),
        )

    def field_value(self, field: str) -> Optional[str]:
        if field == "meeting_date":
            return self.meeting_start.strftime(DATE_FORMAT) if self.meeting_start else None
        if field == "meeting_time":
            return self.meeting_start.strftime(TIME_FORMAT) if self.meeting_start else None
        value = getattr(self, field)
        return value or None


class BoundVariable(BaseModel):
    position: int
    placeholder: str
    field: str
    value: str
    bound: bool = True


class ResolvedTemplate(BaseModel):
    template_id: str
    variables: List[BoundVariable] = Field(default_factory=list)

    def as_parameters(self) -> Dict[str, str]:
        """Return ``{"1": value, ...}`` in positional order."""
        return {str(v.position): v.value for v in self.variables}

    def unbound(self) -> List[str]:
        return [v.placeholder for v in self.variables if not v.bound]

    def render(self, text: str) -> str:
        values = self.as_parameters()
        return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), text)


class TemplateRegistry:
    """Closed registry mapping template ids to their variable shape."""

    def __init__(self, templates: Optional[Dict[str, RegisteredTemplate]] = None) -> None:
        self._templates: Dict[str, RegisteredTemplate] = dict(templates or {})

    def register(
        self,
        template_id: str,
        shape: TemplateShape,
        example_content: Optional[str] = None,
        channel: Channel = "whatsapp",
    ) -> None:
        self._templates[template_id] = RegisteredTemplate(
            shape=shape, channel=channel, example_content=example_content
        )

    def get(self, template_id: str) -> Optional[RegisteredTemplate]:
        return self._templates.get(template_id)

    def template_ids(self, channel: Optional[str] = None) -> List[str]:
        return sorted(
            template_id
            for template_id, registered in self._templates.items()
            if channel is None or registered.channel == channel
        )

    # ------------------------------------------------------------------
    def resolve(
        self,
        template_id: str,
        context: TemplateContext,
        template_config: Optional[TemplateConfig] = None,
    ) -> ResolvedTemplate:
        registered = self._templates.get(template_id)
        if registered is None:
            if template_config is None:
                logger.debug(f"No variable set registered for template {template_id}")
                return ResolvedTemplate(template_id=template_id)
            # configured payment reminder on a template we do not know yet
            shape: TemplateShape = ComputedPlanConfig.from_config(template_config)
        else:
            shape = registered.shape

        if isinstance(shape, DirectMapping):
            variables = _bind_direct(shape, context)
        elif isinstance(shape, ComputedPlanConfig):
            variables = _bind_plan_config(shape.with_overrides(template_config), context)
        else:
            raise TypeError(f"Unhandled template shape {type(shape).__name__}")
        return ResolvedTemplate(template_id=template_id, variables=variables)

    def describe(self, template_id: str) -> List[Dict[str, object]]:
        """Positional slots of a registered template and what fills each one."""
        registered = self._templates.get(template_id)
        if registered is None:
            return []
        shape = registered.shape
        if isinstance(shape, DirectMapping):
            fields = list(shape.fields)
        elif isinstance(shape, ComputedPlanConfig):
            fields = list(PLAN_CONFIG_FIELDS)
        else:
            raise TypeError(f"Unhandled template shape {type(shape).__name__}")
        return [
            {
                "position": position,
                "placeholder": placeholder(position),
                "field": field,
                "label": FIELD_LABELS.get(field, field),
            }
            for position, field in enumerate(fields, start=1)
        ]

    def preview(self, template_id: str, context: Optional[TemplateContext] = None) -> Optional[str]:
        """Render the example body, leaving unbound placeholders visible."""
        registered = self._templates.get(template_id)
        if registered is None or registered.example_content is None:
            return None
        if context is None:
            return registered.example_content
        return self.resolve(template_id, context).render(registered.example_content)


def _bind_direct(shape: DirectMapping, context: TemplateContext) -> List[BoundVariable]:
    variables = []
    for position, field in enumerate(shape.fields, start=1):
        value = context.field_value(field)
        variables.append(
            BoundVariable(
                position=position,
                placeholder=placeholder(position),
                field=field,
                value=value if value is not None else placeholder(position),
                bound=value is not None,
            )
        )
    return variables


def _bind_plan_config(
    shape: ComputedPlanConfig, context: TemplateContext
) -> List[BoundVariable]:
    due_date = as_utc(context.reference_time).date() + timedelta(days=shape.days)
    values = zip(
        PLAN_CONFIG_FIELDS,
        (context.client_name, shape.plan_name, due_date.strftime(DATE_FORMAT)),
    )
    return [
        BoundVariable(
            position=position,
            placeholder=placeholder(position),
            field=field,
            value=value if value else placeholder(position),
            bound=bool(value),
        )
        for position, (field, value) in enumerate(values, start=1)
    ]


def default_registry() -> TemplateRegistry:
    registry = TemplateRegistry()
    registry.register(
        "plan_followup_utility_01dd",
        DirectMapping(fields=["client_name", "plan_cost"]),
        example_content=(
            "Hi {{1}},\n\nThis is a reminder regarding your recent plan with "
            "Flashfire. The payment of {{2}} is still pending.\n\nPlease let us "
            "know if you'd like us to resend the payment link or if you need "
            "assistance.\n\nNeed help ?"
        ),
    )
    registry.register(
        "finalkk",
        ComputedPlanConfig(
            plan_name=DEFAULT_PLAN_NAME,
            plan_amount=PLAN_PRICES[DEFAULT_PLAN_NAME],
            days=DEFAULT_PLAN_DAYS,
        ),
        example_content=(
            "Hi {{1}},\n\nThis is a payment reminder for your Flashfire {{2}} "
            "plan dated {{3}}.\n\nOur records show that the payment is still "
            "pending in the system.\n\nIf the payment has already been made, "
            "please disregard this message."
        ),
    )
    return registry


def resolve(
    template_id: str,
    context: TemplateContext,
    template_config: Optional[TemplateConfig] = None,
    registry: Optional[TemplateRegistry] = None,
) -> ResolvedTemplate:
    """Resolve variables against ``registry`` (the built-in set by default)."""
    return (registry or default_registry()).resolve(template_id, context, template_config)
