"""
Order Domain Models (``fulfillment_modules.orders.models``).

Responsibility
--------------
Frozen dataclass value objects for the order aggregate, its deliverables,
and the closed set of transition requests accepted by
``OrderStateMachine.submit``.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* Every transition request carries the acting ``Actor`` and an optional
  ``expected_version``; a stale version is rejected, never merged.
* ``RequestRevision.notes`` must be non-empty.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar
from uuid import UUID

from fulfillment_kernel.domain.dtos import Actor
from fulfillment_services.collaborators import UploadFile

if TYPE_CHECKING:
    from fulfillment_kernel.exceptions import FulfillmentError
    from fulfillment_modules.billing.models import InvoiceRaiseResult
    from fulfillment_modules.orders.uploads import UploadBatch


class OrderStatus(str, Enum):
    """Order lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    HUMAN_CHECK = "human_check"
    IN_REVISION = "in_revision"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderAction(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    UPLOAD_DELIVERABLE = "upload_deliverable"
    MARK_COMPLETE = "mark_complete"
    RESUME_WORK = "resume_work"
    REQUEST_REVISION = "request_revision"
    APPROVE = "approve"


@dataclass(frozen=True)
class ServiceSelection:
    """One service line chosen when the order was placed."""
    service_id: str
    quantity: int = 1
    instructions: str | None = None

    def __post_init__(self) -> None:
        if not self.service_id:
            raise ValueError("service_id cannot be empty")
        if self.quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {self.quantity}")


@dataclass(frozen=True)
class Order:
    """Snapshot of one order."""
    id: UUID
    order_number: str
    job_id: str
    customer_id: str
    partner_id: str
    status: OrderStatus
    version: int
    editor_id: str | None = None
    revision_count: int = 0
    due_date: date | None = None
    decline_reason: str | None = None
    revision_notes: str | None = None
    date_accepted: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    services: tuple[ServiceSelection, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


@dataclass(frozen=True)
class OrderFile:
    """A stored deliverable."""
    id: UUID
    order_id: UUID
    file_name: str
    original_name: str
    file_size: int
    mime_type: str
    url: str
    path: str
    folder: str | None
    is_visible: bool
    uploaded_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RevisionStatus:
    """Revision rounds for an order: ``limit``/``remaining`` None when unlimited."""
    order_id: UUID
    limit: int | None
    used: int
    remaining: int | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "order_id": str(self.order_id),
            "limit": "unlimited" if self.limit is None else self.limit,
            "used": self.used,
            "remaining": self.remaining,
        }


# -----------------------------------------------------------------------------
# Transition requests (closed set)
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Accept:
    """Editor takes a pending order.  ``editor_id`` defaults to the actor."""
    action: ClassVar[OrderAction] = OrderAction.ACCEPT
    order_id: UUID
    actor: Actor
    editor_id: str | None = None
    expected_version: int | None = None

    @property
    def assignee(self) -> str:
        return self.editor_id or self.actor.id


@dataclass(frozen=True)
class Decline:
    action: ClassVar[OrderAction] = OrderAction.DECLINE
    order_id: UUID
    actor: Actor
    reason: str | None = None
    expected_version: int | None = None


@dataclass(frozen=True)
class UploadDeliverable:
    action: ClassVar[OrderAction] = OrderAction.UPLOAD_DELIVERABLE
    order_id: UUID
    actor: Actor
    files: tuple[UploadFile, ...]
    folder: str | None = None
    expected_version: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.files, tuple):
            object.__setattr__(self, "files", tuple(self.files))
        if not self.files:
            raise ValueError("UploadDeliverable requires at least one file")


@dataclass(frozen=True)
class MarkComplete:
    action: ClassVar[OrderAction] = OrderAction.MARK_COMPLETE
    order_id: UUID
    actor: Actor
    expected_version: int | None = None


@dataclass(frozen=True)
class ResumeWork:
    action: ClassVar[OrderAction] = OrderAction.RESUME_WORK
    order_id: UUID
    actor: Actor
    expected_version: int | None = None


@dataclass(frozen=True)
class RequestRevision:
    action: ClassVar[OrderAction] = OrderAction.REQUEST_REVISION
    order_id: UUID
    actor: Actor
    notes: str
    expected_version: int | None = None

    def __post_init__(self) -> None:
        if not self.notes or not self.notes.strip():
            raise ValueError("Revision notes cannot be empty")


@dataclass(frozen=True)
class Approve:
    action: ClassVar[OrderAction] = OrderAction.APPROVE
    order_id: UUID
    actor: Actor
    expected_version: int | None = None


TransitionRequest = (
    Accept
    | Decline
    | UploadDeliverable
    | MarkComplete
    | ResumeWork
    | RequestRevision
    | Approve
)


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of a committed transition.

    ``dispatch`` is the inline DispatchReport, a Future when dispatch runs
    on an executor, or None when no dispatcher is wired.  ``invoice_error``
    is set when an automatic invoice raise after approval failed; the
    approval itself stands.
    """
    order: Order
    action: str
    from_status: OrderStatus
    to_status: OrderStatus
    sequences: tuple[int, ...] = ()
    dispatch: Any = None
    invoice: InvoiceRaiseResult | None = None
    invoice_error: FulfillmentError | None = None
    upload_batch: UploadBatch | None = None
    details: dict[str, Any] = field(default_factory=dict)
