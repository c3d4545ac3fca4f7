"""Tests for bulk backfill by booking status."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from followup.engine import WorkflowEngine
from followup.errors import ValidationError
from followup.utils.clock import utcnow

EVENT_TIME = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def _add_bookings(bookings, make_booking, count=10, missing_email_index=None, status="no-show"):
    for i in range(count):
        email = "" if i == missing_email_index else f"client{i}@example.com"
        bookings.add(make_booking(f"b-{i}", status=status, email=email, name=f"Client {i}"))


@pytest.mark.asyncio
async def test_trigger_isolates_bad_bookings(engine, bookings, make_booking, workflow_payload):
    await engine.definitions.create(workflow_payload())
    _add_bookings(bookings, make_booking, missing_email_index=4)

    result = await engine.backfill.trigger("no-show")

    assert result.total == 10
    assert result.processed == 9
    assert result.skipped == 0
    assert [e.booking_id for e in result.errors] == ["b-4"]
    assert "email" in result.errors[0].error
    assert (await engine.logs.stats()).total == 18


@pytest.mark.asyncio
async def test_second_run_converges(engine, bookings, make_booking, workflow_payload):
    await engine.definitions.create(workflow_payload())
    _add_bookings(bookings, make_booking, count=5)

    first = await engine.backfill.trigger("no-show")
    second = await engine.backfill.trigger("no-show")
    forced = await engine.backfill.trigger("no-show", skip_existing=False)

    assert first.processed == 5
    assert (second.processed, second.skipped, second.errors) == (0, 0, [])
    assert (forced.processed, forced.skipped) == (0, 5)
    assert (await engine.logs.stats()).total == 10


@pytest.mark.asyncio
async def test_preview_partitions_bookings(engine, bookings, make_booking, workflow_payload):
    await engine.definitions.create(workflow_payload())
    _add_bookings(bookings, make_booking, count=3)
    await engine.handle_lifecycle_event("b-1", "no-show")

    partition = await engine.backfill.preview("no-show")

    assert partition.trigger_action == "no-show"
    assert partition.summary.total == 3
    assert partition.summary.with_scheduled_workflows == 1
    assert partition.summary.without_scheduled_workflows == 2
    by_id = {b.booking_id: b for b in partition.bookings}
    assert by_id["b-1"].has_scheduled_workflows is True
    assert by_id["b-1"].scheduled_workflows_count == 2
    assert by_id["b-0"].scheduled_workflows_count == 0
    assert (await engine.logs.stats()).total == 2


@pytest.mark.asyncio
async def test_backfill_racing_live_trigger_schedules_once(engine, bookings, make_booking, workflow_payload):
    await engine.definitions.create(workflow_payload())
    _add_bookings(bookings, make_booking, count=3)

    result, _, _ = await asyncio.gather(
        engine.backfill.trigger("no-show", skip_existing=False),
        engine.handle_lifecycle_event("b-0", "no-show"),
        engine.handle_lifecycle_event("b-2", "no-show"),
    )

    assert result.total == 3
    assert result.errors == []
    assert result.processed + result.skipped == 3
    assert result.skipped == 2
    for i in range(3):
        assert len(await engine.logs.for_booking(f"b-{i}")) == 2


@pytest.mark.asyncio
async def test_backfilled_reminder_dates_count_from_today(repo, bookings, transports, make_booking, workflow_payload):
    engine = WorkflowEngine(repo, bookings, transports)
    await engine.definitions.create(workflow_payload())
    bookings.add(make_booking("b-old", changed_at=EVENT_TIME))
    earliest = (utcnow().date() + timedelta(days=7)).isoformat()

    result = await engine.backfill.trigger("no-show")

    assert result.processed == 1
    email, reminder = await engine.logs.for_booking("b-old")
    assert email.scheduled_for == EVENT_TIME
    assert reminder.scheduled_for == EVENT_TIME + timedelta(days=7)
    assert reminder.step.variables["3"] >= earliest


@pytest.mark.asyncio
async def test_trigger_without_workflows_does_nothing(engine, bookings, make_booking):
    _add_bookings(bookings, make_booking, count=2, status="canceled")

    result = await engine.backfill.trigger("canceled")

    assert (result.total, result.processed, result.skipped, result.errors) == (2, 0, 0, [])


@pytest.mark.asyncio
async def test_status_without_trigger_is_rejected(engine):
    with pytest.raises(ValidationError):
        await engine.backfill.preview("scheduled")
    with pytest.raises(ValidationError):
        await engine.backfill.trigger("paid")
