"""
Module: fulfillment_kernel.selectors.activity_selector
Responsibility: Read-only access to an order's activity timeline and to a
    recipient's notification inbox.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Timelines are ordered by the per-order ``sequence``, never by
      ``created_at``.
    - Visibility-only records (folder show/hide) are kept in storage and
      filtered out of the default timeline at read time.
"""

from uuid import UUID

from sqlalchemy import func, select

from fulfillment_kernel.domain.dtos import ActivityEntry, NotificationEntry
from fulfillment_kernel.models.activity import ActivityRecord, Notification
from fulfillment_kernel.selectors.base import BaseSelector


class ActivitySelector(BaseSelector[ActivityRecord]):
    """Timeline and inbox queries."""

    def timeline(
        self,
        order_id: UUID,
        include_internal: bool = False,
    ) -> list[ActivityEntry]:
        """
        The order's activity trail in sequence order.

        Args:
            order_id: Order whose history to read.
            include_internal: Also return visibility-only records.
        """
        stmt = select(ActivityRecord).where(ActivityRecord.order_id == order_id)
        if not include_internal:
            stmt = stmt.where(ActivityRecord.visibility_only.is_(False))
        stmt = stmt.order_by(ActivityRecord.sequence)
        return [r.to_dto() for r in self.session.scalars(stmt)]

    def get_by_sequence(self, order_id: UUID, sequence: int) -> ActivityEntry | None:
        record = self.session.scalars(
            select(ActivityRecord).where(
                ActivityRecord.order_id == order_id,
                ActivityRecord.sequence == sequence,
            )
        ).one_or_none()
        return record.to_dto() if record else None

    def notifications_for(
        self,
        recipient_id: str,
        unread_only: bool = False,
    ) -> list[NotificationEntry]:
        """A recipient's notifications, newest first."""
        stmt = select(Notification).where(Notification.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(Notification.read.is_(False))
        stmt = stmt.order_by(
            Notification.created_at.desc(),
            Notification.order_id,
            Notification.sequence.desc(),
        )
        return [n.to_dto() for n in self.session.scalars(stmt)]

    def notifications_for_order(self, order_id: UUID) -> list[NotificationEntry]:
        stmt = (
            select(Notification)
            .where(Notification.order_id == order_id)
            .order_by(Notification.sequence, Notification.recipient_id)
        )
        return [n.to_dto() for n in self.session.scalars(stmt)]

    def unread_count(self, recipient_id: str) -> int:
        return self.session.execute(
            select(func.count(Notification.id)).where(
                Notification.recipient_id == recipient_id,
                Notification.read.is_(False),
            )
        ).scalar_one()
