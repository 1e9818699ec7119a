"""
Module: fulfillment_kernel.models.activity
Responsibility: ORM persistence for the per-order activity trail and the
    notification stream derived from it.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ActivityRecord rows are append-only; no UPDATE or DELETE
      (see db/immutability.py).
    - (order_id, sequence) is unique: exactly one record per outbox event.
    - The first record of every order (sequence 1) is its creation event.
    - Notification rows are unique per (order_id, sequence, recipient_id).
      Reading or deleting a notification never touches its ActivityRecord.

Audit relevance:
    ActivityRecord IS the order history.  A timeline is reconstructed by
    ordering on ``sequence``; ``created_at`` is informational.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UTCDateTime


class ActivityAction(str, Enum):
    """Kind of thing that happened to an order."""

    ASSIGNMENT = "assignment"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    STATUS_CHANGE = "status_change"
    COMMENT = "comment"
    CREATION = "creation"
    UPDATE = "update"
    DELETE = "delete"
    APPOINTMENT = "appointment"
    NOTIFICATION = "notification"
    FILE_MANAGEMENT = "file_management"
    SYSTEM = "system"


class ActivityCategory(str, Enum):
    """Area of the system an activity belongs to."""

    JOB = "job"
    ORDER = "order"
    CUSTOMER = "customer"
    ASSIGNMENT = "assignment"
    FILE = "file"
    SYSTEM = "system"
    APPOINTMENT = "appointment"
    NOTIFICATION = "notification"
    USER = "user"


class ActivityRecord(Base):
    """
    One immutable entry of an order's activity trail.

    Guarantees:
        - sequence is the per-order event number allocated by SequenceService.
        - event_type names the domain event (``order_accepted``,
          ``deliverable_uploaded``, ...).
        - visibility_only marks metadata-only changes hidden from the
          default timeline.
    """

    __tablename__ = "activity_records"

    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_activity_order_sequence"),
        Index("idx_activity_partner", "partner_id"),
        Index("idx_activity_event_type", "event_type"),
    )

    order_id: Mapped[UUID] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    actor_role: Mapped[str] = mapped_column(String(30), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    visibility_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from fulfillment_kernel.domain.dtos import ActivityEntry

        return ActivityEntry(
            id=self.id,
            order_id=self.order_id,
            sequence=self.sequence,
            partner_id=self.partner_id,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            event_type=self.event_type,
            action=self.action,
            category=self.category,
            title=self.title,
            description=self.description,
            details=dict(self.details or {}),
            visibility_only=self.visibility_only,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<ActivityRecord {self.order_id}#{self.sequence} {self.event_type}>"


class Notification(Base):
    """
    A per-recipient notice derived from one ActivityRecord.

    Mutable only in its read flag; deleting it leaves the activity intact.
    """

    __tablename__ = "notifications"

    __table_args__ = (
        UniqueConstraint(
            "order_id",
            "sequence",
            "recipient_id",
            name="uq_notification_order_sequence_recipient",
        ),
        Index("idx_notification_recipient_read", "recipient_id", "read"),
    )

    recipient_id: Mapped[str] = mapped_column(String(100), nullable=False)
    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    order_id: Mapped[UUID] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    activity_id: Mapped[UUID] = mapped_column(nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from fulfillment_kernel.domain.dtos import NotificationEntry

        return NotificationEntry(
            id=self.id,
            recipient_id=self.recipient_id,
            partner_id=self.partner_id,
            order_id=self.order_id,
            sequence=self.sequence,
            activity_id=self.activity_id,
            type=self.type,
            title=self.title,
            body=self.body,
            read=self.read,
            read_at=self.read_at,
            created_at=self.created_at,
        )
