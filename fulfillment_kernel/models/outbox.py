"""
Module: fulfillment_kernel.models.outbox
Responsibility: At-least-once queue of order events awaiting dispatch.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (order_id, sequence) is unique; the same key is carried into the
      ActivityRecord and the pub/sub publish so consumers can de-duplicate.
    - Entries are written in the same transaction as the order transition
      that produced them.  A committed transition always has its entry.
    - status moves pending -> delivered, or pending -> dead_letter once
      attempts reach the configured ceiling.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UTCDateTime


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    DEAD_LETTER = "dead_letter"


class DispatchOutboxEntry(Base):
    """
    One order event waiting for activity/notification/pub-sub dispatch.

    ``payload`` holds everything the dispatcher needs to build the activity
    record without reading the order again: event type, actor, partner,
    title, description, metadata and the audience hints (editor/customer).
    """

    __tablename__ = "dispatch_outbox"

    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_outbox_order_sequence"),
        Index("idx_outbox_status_next_attempt", "status", "next_attempt_at"),
    )

    order_id: Mapped[UUID] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OutboxStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    next_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<DispatchOutboxEntry {self.order_id}#{self.sequence} "
            f"{self.event_type} {self.status}>"
        )
