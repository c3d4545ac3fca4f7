"""Followup: lifecycle-triggered follow-up messaging workflows for bookings."""

from .contracts import Booking, ExecutionLogEntry, LifecycleEvent, WorkflowDefinition, WorkflowStep
from .engine import WorkflowEngine, get_engine
from .persistence import get_repository
from .templates import TemplateRegistry, default_registry
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "Booking",
    "ExecutionLogEntry",
    "LifecycleEvent",
    "WorkflowDefinition",
    "WorkflowStep",
    "WorkflowEngine",
    "get_engine",
    "get_repository",
    "get_transport",
    "TemplateRegistry",
    "default_registry",
]
