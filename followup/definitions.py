"""Operator-managed workflow definitions."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pydantic

from .constants import TRIGGER_ACTIONS
from .contracts import WorkflowDefinition, WorkflowStep, WorkflowUpdate
from .errors import ValidationError, WorkflowNotFound
from .persistence import WorkflowRepository
from .utils.clock import utcnow

logger = logging.getLogger(__name__)


def normalize_steps(steps: List[WorkflowStep]) -> List[WorkflowStep]:
    """Fill missing ``order`` values from list position and validate each step.

    Raises:
        ValidationError: empty step list, blank template id, negative delay,
            or orders that are not unique and contiguous from 0.
    """
    if not steps:
        raise ValidationError("A workflow must have at least one step")

    normalized = []
    for index, step in enumerate(steps):
        if not step.template_id or not step.template_id.strip():
            raise ValidationError("All steps must have a template ID")
        if step.days_after < 0:
            raise ValidationError(
                f"Step {index}: daysAfter must be a non-negative number of days"
            )
        order = index if step.order is None else step.order
        normalized.append(
            step.model_copy(update={"order": order, "template_id": step.template_id.strip()})
        )

    orders = sorted(s.order for s in normalized)
    if orders != list(range(len(normalized))):
        raise ValidationError(
            f"Step orders must be unique and contiguous from 0, got {orders}"
        )
    return sorted(normalized, key=lambda s: s.order)


def validate_definition(definition: WorkflowDefinition) -> WorkflowDefinition:
    if definition.trigger_action not in TRIGGER_ACTIONS:
        raise ValidationError(f"Unknown trigger action: {definition.trigger_action}")
    return definition.model_copy(update={"steps": normalize_steps(definition.steps)})


def parse_definition(data: Dict[str, Any]) -> WorkflowDefinition:
    """Build a definition from raw (camelCase or snake_case) input."""
    if not data.get("triggerAction") and not data.get("trigger_action"):
        raise ValidationError("triggerAction is required")
    # ids are assigned by the store
    data = {k: v for k, v in data.items() if k not in ("workflowId", "workflow_id")}
    try:
        definition = WorkflowDefinition.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(_describe(e)) from e
    return validate_definition(definition)


def parse_update(data: Dict[str, Any]) -> WorkflowUpdate:
    try:
        return WorkflowUpdate.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(_describe(e)) from e


def _describe(error: pydantic.ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"])
        parts.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(parts)


class WorkflowDefinitionStore:
    """Create, edit, list and (de)activate workflow definitions."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def create(self, definition: WorkflowDefinition | Dict[str, Any]) -> WorkflowDefinition:
        if isinstance(definition, dict):
            definition = parse_definition(definition)
        else:
            definition = validate_definition(definition)
        now = utcnow()
        definition = definition.model_copy(update={"created_at": now, "updated_at": now})
        await self._repository.save_definition(definition)
        logger.info(
            f"Created workflow {definition.workflow_id} for '{definition.trigger_action}' "
            f"with {len(definition.steps)} step(s)"
        )
        return definition

    async def get(self, workflow_id: str) -> WorkflowDefinition:
        definition = await self._repository.get_definition(workflow_id)
        if definition is None:
            raise WorkflowNotFound(workflow_id)
        return definition

    async def list(
        self, trigger_action: Optional[str] = None, active_only: bool = False
    ) -> List[WorkflowDefinition]:
        return await self._repository.list_definitions(
            trigger_action=trigger_action, active_only=active_only
        )

    async def update(
        self, workflow_id: str, changes: WorkflowUpdate | Dict[str, Any]
    ) -> WorkflowDefinition:
        """Apply ``changes``; an ``{isActive}``-only update is an activation toggle."""
        if isinstance(changes, dict):
            changes = parse_update(changes)
        if changes.is_activation_only():
            return await self.set_active(workflow_id, bool(changes.is_active))

        current = await self.get(workflow_id)
        merged = current.model_copy(
            update={
                field: getattr(changes, field)
                for field in changes.model_fields_set
                if getattr(changes, field) is not None or field in ("name", "description")
            }
        )
        merged = validate_definition(merged)
        merged = merged.model_copy(update={"updated_at": utcnow()})
        await self._repository.save_definition(merged)
        logger.info(f"Updated workflow {workflow_id}")
        return merged

    async def set_active(self, workflow_id: str, active: bool) -> WorkflowDefinition:
        """Toggle a definition. Already scheduled log entries are left alone."""
        current = await self.get(workflow_id)
        updated = current.model_copy(update={"is_active": active, "updated_at": utcnow()})
        await self._repository.save_definition(updated)
        logger.info(f"Workflow {workflow_id} {'activated' if active else 'deactivated'}")
        return updated

    async def delete(self, workflow_id: str) -> None:
        if not await self._repository.delete_definition(workflow_id):
            raise WorkflowNotFound(workflow_id)
        logger.info(f"Deleted workflow {workflow_id}")

    async def active_for(self, trigger_action: str) -> List[WorkflowDefinition]:
        return await self._repository.list_definitions(
            trigger_action=trigger_action, active_only=True
        )
