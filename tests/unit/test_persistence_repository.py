from datetime import datetime, timedelta, timezone

import pytest

from followup.contracts import ExecutionLogEntry, StepSnapshot, WorkflowDefinition, WorkflowStep
from followup.persistence import (
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
    get_repository,
)

EVENT_TIME = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def _definition(trigger="no-show", active=True) -> WorkflowDefinition:
    return WorkflowDefinition(
        trigger_action=trigger,
        is_active=active,
        steps=[WorkflowStep(channel="email", template_id="t", order=0)],
    )


def _entry(booking_id="booking-1", order=0, attempt=1, days=0, trigger="no-show"):
    return ExecutionLogEntry(
        workflow_id="wf-1",
        trigger_action=trigger,
        booking_id=booking_id,
        client_email="ada@example.com",
        step=StepSnapshot(
            channel="email",
            days_after=days,
            template_id="t",
            order=order,
            variables={"1": "Ada"},
        ),
        scheduled_for=EVENT_TIME + timedelta(days=days),
        attempt=attempt,
    )


@pytest.fixture(params=["memory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "memory":
        yield InMemoryWorkflowRepository()
    else:
        repo = SQLiteWorkflowRepository(tmp_path / "followup.db")
        yield repo
        repo.close()


@pytest.mark.asyncio
async def test_definition_crud(repository):
    wf = _definition()
    await repository.save_definition(wf)
    await repository.save_definition(_definition(trigger="cancel", active=False))

    loaded = await repository.get_definition(wf.workflow_id)
    assert loaded == wf

    assert len(await repository.list_definitions()) == 2
    assert len(await repository.list_definitions(trigger_action="cancel")) == 1
    assert await repository.list_definitions(trigger_action="cancel", active_only=True) == []

    assert await repository.delete_definition(wf.workflow_id) is True
    assert await repository.delete_definition(wf.workflow_id) is False
    assert await repository.get_definition(wf.workflow_id) is None


@pytest.mark.asyncio
async def test_insert_log_is_conditional_on_dedup_key(repository):
    first = _entry()
    assert await repository.insert_log(first) is True
    assert await repository.insert_log(_entry()) is False
    assert await repository.insert_log(_entry(attempt=2)) is True

    assert await repository.log_exists("booking-1", "wf-1", 0) is True
    assert await repository.log_exists("booking-1", "wf-1", 1) is False
    assert await repository.max_attempt("booking-1", "wf-1", 0) == 2
    assert await repository.max_attempt("booking-1", "wf-1", 5) == 0

    loaded = await repository.get_log(first.log_id)
    assert loaded.step.variables == {"1": "Ada"}
    assert loaded.scheduled_for == EVENT_TIME


@pytest.mark.asyncio
async def test_transition_only_from_expected_status(repository):
    entry = _entry()
    await repository.insert_log(entry)

    updated = await repository.transition_log(
        entry.log_id, "scheduled", "executed", response_data={"ok": True}
    )
    assert updated.status == "executed"
    assert updated.response_data == {"ok": True}

    assert await repository.transition_log(entry.log_id, "scheduled", "failed") is None
    assert await repository.transition_log("missing", "scheduled", "failed") is None
    assert (await repository.get_log(entry.log_id)).status == "executed"


@pytest.mark.asyncio
async def test_due_logs_ordering_and_limit(repository):
    entries = [_entry(order=2, days=2), _entry(order=0), _entry(order=1, days=1)]
    for entry in entries:
        await repository.insert_log(entry)

    due = await repository.due_logs(EVENT_TIME + timedelta(days=5))
    assert [e.step.order for e in due] == [0, 1, 2]
    limited = await repository.due_logs(EVENT_TIME + timedelta(days=5), limit=1)
    assert [e.step.order for e in limited] == [0]
    assert await repository.due_logs(EVENT_TIME - timedelta(seconds=1)) == []


@pytest.mark.asyncio
async def test_counts_and_stats(repository):
    await repository.insert_log(_entry("b-1", order=0))
    await repository.insert_log(_entry("b-1", order=1))
    await repository.insert_log(_entry("b-2", order=0, trigger="cancel"))

    counts = await repository.count_logs_by_booking(["b-1", "b-2", "b-3"], "no-show")
    assert counts == {"b-1": 2}
    assert await repository.count_logs_by_booking([], "no-show") == {}

    stats = await repository.log_stats()
    assert (stats.total, stats.scheduled) == (3, 3)

    items, total = await repository.list_logs(status="scheduled", offset=0, limit=2)
    assert total == 3
    assert len(items) == 2


@pytest.mark.asyncio
async def test_counts_ignore_retry_attempts(repository):
    await repository.insert_log(_entry("b-1", order=0))
    await repository.insert_log(_entry("b-1", order=0, attempt=2))
    await repository.insert_log(_entry("b-1", order=0, attempt=3))

    assert await repository.count_logs_by_booking(["b-1"], "no-show") == {"b-1": 1}
    assert (await repository.log_stats()).total == 3


@pytest.mark.asyncio
async def test_sqlite_data_survives_reopen(tmp_path):
    path = tmp_path / "followup.db"
    repo = SQLiteWorkflowRepository(path)
    entry = _entry()
    await repo.insert_log(entry)
    repo.close()

    reopened = SQLiteWorkflowRepository(path)
    assert (await reopened.get_log(entry.log_id)).booking_id == "booking-1"
    assert await reopened.insert_log(_entry()) is False
    reopened.close()


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("FOLLOWUP_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("FOLLOWUP_CONFIG", str(tmp_path / "absent.yaml"))

    assert isinstance(get_repository(), InMemoryWorkflowRepository)
    sqlite_repo = get_repository(f"sqlite://{tmp_path / 'wf.db'}")
    assert isinstance(sqlite_repo, SQLiteWorkflowRepository)
    assert get_repository() is sqlite_repo
    sqlite_repo.close()

    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")
