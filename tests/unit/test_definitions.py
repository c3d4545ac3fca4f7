"""Tests for workflow definition validation and storage."""

import pytest

from followup.definitions import WorkflowDefinitionStore
from followup.errors import ValidationError, WorkflowNotFound


@pytest.mark.asyncio
async def test_create_assigns_id_and_orders_steps(repo, workflow_payload):
    store = WorkflowDefinitionStore(repo)
    steps = [
        {"channel": "whatsapp", "daysAfter": 7, "templateId": "finalkk", "order": 1},
        {"channel": "email", "daysAfter": 0, "templateId": "plan_followup_utility_01dd", "order": 0},
    ]
    wf = await store.create(workflow_payload(steps=steps, workflowId="client-chosen"))

    assert wf.workflow_id != "client-chosen"
    assert [s.order for s in wf.steps] == [0, 1]
    assert wf.steps[0].channel == "email"
    assert (await store.get(wf.workflow_id)).trigger_action == "no-show"


@pytest.mark.asyncio
async def test_missing_orders_are_filled_from_position(repo, workflow_payload):
    store = WorkflowDefinitionStore(repo)
    steps = [
        {"channel": "email", "templateId": "a"},
        {"channel": "email", "templateId": "b", "daysAfter": 2},
    ]
    wf = await store.create(workflow_payload(steps=steps))
    assert [(s.order, s.template_id) for s in wf.steps] == [(0, "a"), (1, "b")]


@pytest.mark.parametrize(
    "payload_changes, message",
    [
        ({"triggerAction": None}, "triggerAction"),
        ({"triggerAction": "no-response"}, "triggerAction"),
        ({"steps": []}, "at least one step"),
        ({"steps": [{"channel": "email", "templateId": "  "}]}, "template ID"),
        ({"steps": [{"channel": "email", "templateId": "a", "daysAfter": -1}]}, "daysAfter"),
        ({"steps": [{"channel": "sms", "templateId": "a"}]}, "channel"),
        (
            {
                "steps": [
                    {"channel": "email", "templateId": "a", "order": 0},
                    {"channel": "email", "templateId": "b", "order": 2},
                ]
            },
            "contiguous",
        ),
        (
            {
                "steps": [
                    {"channel": "email", "templateId": "a", "order": 0},
                    {"channel": "email", "templateId": "b", "order": 0},
                ]
            },
            "contiguous",
        ),
    ],
)
@pytest.mark.asyncio
async def test_invalid_definitions_are_rejected_and_not_stored(
    repo, workflow_payload, payload_changes, message
):
    store = WorkflowDefinitionStore(repo)
    payload = workflow_payload()
    payload.update(payload_changes)

    with pytest.raises(ValidationError, match=message):
        await store.create(payload)
    assert await store.list() == []


@pytest.mark.asyncio
async def test_activation_only_update_toggles_flag(repo, workflow_payload):
    store = WorkflowDefinitionStore(repo)
    wf = await store.create(workflow_payload())

    updated = await store.update(wf.workflow_id, {"isActive": False})
    assert updated.is_active is False
    assert updated.steps == wf.steps
    assert await store.active_for("no-show") == []
    assert len(await store.list(trigger_action="no-show")) == 1


@pytest.mark.asyncio
async def test_full_update_revalidates_steps(repo, workflow_payload):
    store = WorkflowDefinitionStore(repo)
    wf = await store.create(workflow_payload())

    updated = await store.update(
        wf.workflow_id,
        {"name": "renamed", "steps": [{"channel": "email", "templateId": "x", "daysAfter": 3}]},
    )
    assert updated.name == "renamed"
    assert [(s.template_id, s.order) for s in updated.steps] == [("x", 0)]

    with pytest.raises(ValidationError):
        await store.update(wf.workflow_id, {"steps": []})
    assert (await store.get(wf.workflow_id)).name == "renamed"


@pytest.mark.asyncio
async def test_unknown_workflow_raises_not_found(repo):
    store = WorkflowDefinitionStore(repo)
    with pytest.raises(WorkflowNotFound):
        await store.get("missing")
    with pytest.raises(WorkflowNotFound):
        await store.set_active("missing", True)
    with pytest.raises(WorkflowNotFound):
        await store.delete("missing")


@pytest.mark.asyncio
async def test_delete_removes_definition(repo, workflow_payload):
    store = WorkflowDefinitionStore(repo)
    wf = await store.create(workflow_payload())
    await store.delete(wf.workflow_id)
    assert await store.list() == []
