"""Shared fixtures for follow-up workflow tests."""

from datetime import datetime, timezone

import pytest

import followup.engine as engine_module
import followup.persistence as persistence
from followup.bookings import InMemoryBookingSource
from followup.contracts import Booking, PaymentPlan
from followup.engine import WorkflowEngine
from followup.persistence import InMemoryWorkflowRepository
from followup.transports import InMemoryTransport

EVENT_TIME = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def _make_booking(
    booking_id: str = "booking-1",
    status: str = "no-show",
    email: str = "ada@example.com",
    name: str = "Ada Lovelace",
    phone: str | None = "+15550001",
    changed_at: datetime = EVENT_TIME,
    plan: str | None = "PRIME",
) -> Booking:
    return Booking(
        booking_id=booking_id,
        client_name=name,
        client_email=email,
        client_phone=phone,
        booking_status=status,
        status_changed_at=changed_at,
        payment_plan=PaymentPlan(name=plan, price=119) if plan else None,
    )


def _workflow_payload(trigger: str = "no-show", steps: list | None = None, **extra) -> dict:
    payload = {
        "triggerAction": trigger,
        "name": f"{trigger} follow-up",
        "steps": steps
        if steps is not None
        else [
            {
                "channel": "email",
                "daysAfter": 0,
                "templateId": "plan_followup_utility_01dd",
                "order": 0,
            },
            {
                "channel": "whatsapp",
                "daysAfter": 7,
                "templateId": "finalkk",
                "order": 1,
                "templateConfig": {"planName": "PRIME", "days": 7},
            },
        ],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def make_booking():
    return _make_booking


@pytest.fixture
def workflow_payload():
    return _workflow_payload


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def bookings():
    return InMemoryBookingSource()


@pytest.fixture
def transports():
    return {"email": InMemoryTransport("email"), "whatsapp": InMemoryTransport("whatsapp")}


@pytest.fixture
def engine(repo, bookings, transports):
    return WorkflowEngine(repo, bookings, transports, clock=lambda: EVENT_TIME)


@pytest.fixture(autouse=True)
def _reset_singletons():
    yield
    persistence._repository_instance = None
    engine_module.set_engine(None)
