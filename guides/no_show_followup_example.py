"""Example: schedule and send a two-step no-show follow-up."""

import asyncio
from datetime import datetime, timedelta, timezone

from followup import Booking, WorkflowEngine
from followup.bookings import InMemoryBookingSource
from followup.contracts import PaymentPlan
from followup.persistence import InMemoryWorkflowRepository
from followup.transports import InMemoryTransport


async def main():
    """Create a workflow, report a no-show and dispatch what is due."""
    no_show_at = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    bookings = InMemoryBookingSource(
        [
            Booking(
                booking_id="booking-42",
                client_name="Ada Lovelace",
                client_email="ada@example.com",
                client_phone="+15550001",
                booking_status="no-show",
                status_changed_at=no_show_at,
                payment_plan=PaymentPlan(name="PRIME", price=119),
            )
        ]
    )
    transports = {"email": InMemoryTransport("email"), "whatsapp": InMemoryTransport("whatsapp")}
    engine = WorkflowEngine(InMemoryWorkflowRepository(), bookings, transports)

    workflow = await engine.definitions.create(
        {
            "triggerAction": "no-show",
            "name": "No-show payment nudge",
            "steps": [
                {"channel": "email", "daysAfter": 0, "templateId": "plan_followup_utility_01dd"},
                {
                    "channel": "whatsapp",
                    "daysAfter": 7,
                    "templateId": "finalkk",
                    "templateConfig": {"planName": "PRIME", "days": 7},
                },
            ],
        }
    )
    print(f"Workflow {workflow.workflow_id} created")

    result = await engine.handle_lifecycle_event("booking-42", "no-show", no_show_at)
    for entry in result.scheduled:
        print(f"  step {entry.step.order} due {entry.scheduled_for:%Y-%m-%d} vars={entry.step.variables}")

    for day in (0, 7):
        summary = await engine.dispatcher.run_due(now=no_show_at + timedelta(days=day))
        print(f"Day {day}: executed={summary.executed} failed={summary.failed}")

    print(f"Email sends: {transports['email'].sent}")
    print(f"WhatsApp sends: {transports['whatsapp'].sent}")


if __name__ == "__main__":
    asyncio.run(main())
