"""
Pure domain layer.

Value objects and time abstraction with NO dependencies on the ORM,
the database or any I/O (except SystemClock).
"""

from fulfillment_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
)
from fulfillment_kernel.domain.dtos import (
    ActivityEntry,
    Actor,
    ActorRole,
    NotificationEntry,
)
from fulfillment_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Actor",
    "ActorRole",
    "ActivityEntry",
    "NotificationEntry",
    "Guard",
    "Transition",
    "Workflow",
]
