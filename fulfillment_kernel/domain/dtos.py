"""
DTOs -- Pure domain data transfer objects shared across modules.

Responsibility:
    The acting party of every request (``Actor``) and the read-side
    projections of the activity trail and notification stream.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Selectors and
    services convert ORM rows to these at the boundary via ``to_dto()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class ActorRole(str, Enum):
    """Who is acting on an order."""

    PARTNER = "partner"
    EDITOR = "editor"
    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an operation.

    Authentication happens upstream; the kernel trusts ``id`` and ``role``.
    """
    id: str
    role: ActorRole

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Actor id must be non-empty")
        if not isinstance(self.role, ActorRole):
            object.__setattr__(self, "role", ActorRole(self.role))

    @classmethod
    def system(cls) -> Actor:
        return cls(id="system", role=ActorRole.SYSTEM)


@dataclass(frozen=True)
class ActivityEntry:
    """Read-side view of one ActivityRecord."""
    id: UUID
    order_id: UUID
    sequence: int
    partner_id: str
    actor_id: str | None
    actor_role: str
    event_type: str
    action: str
    category: str
    title: str
    description: str
    details: dict[str, Any] = field(default_factory=dict)
    visibility_only: bool = False
    created_at: datetime | None = None


@dataclass(frozen=True)
class NotificationEntry:
    """Read-side view of one Notification."""
    id: UUID
    recipient_id: str
    partner_id: str
    order_id: UUID
    sequence: int
    activity_id: UUID
    type: str
    title: str
    body: str
    read: bool = False
    read_at: datetime | None = None
    created_at: datetime | None = None
