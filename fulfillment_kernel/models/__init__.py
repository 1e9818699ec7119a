"""Kernel-owned persistence models: activity trail, notifications, outbox."""

from fulfillment_kernel.models.activity import (
    ActivityAction,
    ActivityCategory,
    ActivityRecord,
    Notification,
)
from fulfillment_kernel.models.outbox import DispatchOutboxEntry, OutboxStatus

__all__ = [
    "ActivityAction",
    "ActivityCategory",
    "ActivityRecord",
    "Notification",
    "DispatchOutboxEntry",
    "OutboxStatus",
]
