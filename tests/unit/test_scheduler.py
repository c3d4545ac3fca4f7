"""Tests for turning lifecycle events into scheduled log entries."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from followup.contracts import ClientContact, LifecycleEvent
from followup.definitions import WorkflowDefinitionStore
from followup.errors import ValidationError
from followup.logs import ExecutionLogStore
from followup.scheduler import StepScheduler, due_time

EVENT_TIME = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def _components(repo):
    definitions = WorkflowDefinitionStore(repo)
    logs = ExecutionLogStore(repo)
    return definitions, logs, StepScheduler(definitions, logs, clock=lambda: EVENT_TIME)


def _event(booking_id="booking-1", email="ada@example.com", trigger="no-show"):
    return LifecycleEvent(
        booking_id=booking_id,
        trigger_action=trigger,
        event_timestamp=EVENT_TIME,
        contact=ClientContact(email=email, name="Ada", phone="+15550001"),
        plan_name="PRIME",
        plan_cost="$119",
    )


def test_due_time_adds_whole_days():
    assert due_time(EVENT_TIME, 0) == EVENT_TIME
    assert due_time(EVENT_TIME, 7) == EVENT_TIME + timedelta(days=7)


@pytest.mark.asyncio
async def test_schedule_creates_one_entry_per_step(repo, workflow_payload):
    definitions, logs, scheduler = _components(repo)
    wf = await definitions.create(workflow_payload())

    result = await scheduler.schedule(_event())

    assert result.matched_workflows == 1
    assert result.skipped == 0
    assert [e.step.order for e in result.scheduled] == [0, 1]
    first, second = result.scheduled
    assert first.scheduled_for == EVENT_TIME
    assert second.scheduled_for == EVENT_TIME + timedelta(days=7)
    assert first.workflow_id == wf.workflow_id
    assert first.status == "scheduled"
    assert first.step.variables == {"1": "Ada", "2": "$119"}
    assert second.step.variables == {"1": "Ada", "2": "PRIME", "3": "2024-03-08"}
    assert second.step.template_config.plan_amount == 119


@pytest.mark.asyncio
async def test_computed_dates_count_from_scheduling_time(repo, workflow_payload):
    definitions = WorkflowDefinitionStore(repo)
    logs = ExecutionLogStore(repo)
    scheduled_at = datetime(2024, 6, 10, 8, 0, tzinfo=timezone.utc)
    scheduler = StepScheduler(definitions, logs, clock=lambda: scheduled_at)
    await definitions.create(workflow_payload())

    result = await scheduler.schedule(_event())

    reminder = result.scheduled[1]
    assert reminder.scheduled_for == EVENT_TIME + timedelta(days=7)
    assert reminder.step.variables["3"] == "2024-06-17"


@pytest.mark.asyncio
async def test_zero_day_step_is_immediately_due(repo, workflow_payload):
    definitions, logs, scheduler = _components(repo)
    await definitions.create(workflow_payload())
    await scheduler.schedule(_event())

    due = await logs.due(EVENT_TIME)
    assert [e.step.order for e in due] == [0]
    later = await logs.due(EVENT_TIME + timedelta(days=7))
    assert [e.step.order for e in later] == [0, 1]


@pytest.mark.asyncio
async def test_retriggering_same_event_is_idempotent(repo, workflow_payload):
    definitions, logs, scheduler = _components(repo)
    await definitions.create(workflow_payload())

    await scheduler.schedule(_event())
    again = await scheduler.schedule(_event())

    assert again.scheduled == []
    assert again.skipped == 2
    assert len(await logs.for_booking("booking-1")) == 2


@pytest.mark.asyncio
async def test_concurrent_triggers_create_each_step_once(repo, workflow_payload):
    definitions, logs, scheduler = _components(repo)
    await definitions.create(workflow_payload())

    results = await asyncio.gather(*(scheduler.schedule(_event()) for _ in range(5)))

    assert sum(len(r.scheduled) for r in results) == 2
    assert sum(r.skipped for r in results) == 8
    assert len(await logs.for_booking("booking-1")) == 2


@pytest.mark.asyncio
async def test_only_active_matching_workflows_are_used(repo, workflow_payload):
    definitions, logs, scheduler = _components(repo)
    inactive = await definitions.create(workflow_payload())
    await definitions.set_active(inactive.workflow_id, False)
    await definitions.create(workflow_payload(trigger="cancel"))

    result = await scheduler.schedule(_event())

    assert result.matched_workflows == 0
    assert result.scheduled == []


@pytest.mark.asyncio
async def test_deactivation_keeps_already_scheduled_entries(repo, workflow_payload):
    definitions, logs, scheduler = _components(repo)
    wf = await definitions.create(workflow_payload())
    await scheduler.schedule(_event())

    await definitions.set_active(wf.workflow_id, False)

    entries = await logs.for_booking("booking-1")
    assert [e.status for e in entries] == ["scheduled", "scheduled"]
    assert (await scheduler.schedule(_event("booking-2"))).scheduled == []


@pytest.mark.asyncio
async def test_definition_edits_do_not_change_scheduled_snapshots(repo, workflow_payload):
    definitions, logs, scheduler = _components(repo)
    wf = await definitions.create(workflow_payload())
    await scheduler.schedule(_event())

    await definitions.update(
        wf.workflow_id, {"steps": [{"channel": "email", "templateId": "other", "daysAfter": 1}]}
    )

    entries = await logs.for_booking("booking-1")
    assert [e.step.template_id for e in entries] == ["plan_followup_utility_01dd", "finalkk"]


@pytest.mark.asyncio
async def test_missing_email_is_rejected_before_writing(repo, workflow_payload):
    definitions, logs, scheduler = _components(repo)
    await definitions.create(workflow_payload())

    with pytest.raises(ValidationError):
        await scheduler.schedule(_event(email=""))
    assert await logs.for_booking("booking-1") == []


@pytest.mark.asyncio
async def test_schedule_booking_maps_status_to_trigger(repo, workflow_payload, make_booking):
    definitions, logs, scheduler = _components(repo)
    await definitions.create(workflow_payload(trigger="complete"))

    result = await scheduler.schedule_booking(make_booking(status="completed"))
    assert result.trigger_action == "complete"
    assert len(result.scheduled) == 2

    assert await scheduler.schedule_booking(make_booking(status="scheduled")) is None
