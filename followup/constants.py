"""Shared constants for the follow-up workflow engine."""

from __future__ import annotations

TRIGGER_ACTIONS = ("no-show", "complete", "cancel", "re-schedule")
CHANNELS = ("email", "whatsapp")
LOG_STATUSES = ("scheduled", "executed", "failed")

# Booking status -> trigger action. Statuses not listed never trigger workflows.
STATUS_TO_TRIGGER = {
    "no-show": "no-show",
    "completed": "complete",
    "canceled": "cancel",
    "rescheduled": "re-schedule",
}
TRIGGER_TO_STATUS = {action: status for status, action in STATUS_TO_TRIGGER.items()}

DEFAULT_EMAIL_DOMAIN = "flashfiremails.com"

# Plan catalogue used by payment reminder templates (USD).
PLAN_PRICES = {
    "PRIME": 119,
    "IGNITE": 199,
    "PROFESSIONAL": 349,
    "EXECUTIVE": 599,
}
DEFAULT_PLAN_NAME = "PRIME"
DEFAULT_PLAN_DAYS = 7

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
