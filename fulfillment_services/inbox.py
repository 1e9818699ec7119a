"""
fulfillment_services.inbox -- Recipient-side notification actions.

Responsibility:
    Marks notifications read and deletes them.  Notifications are an
    independent stream: nothing here reads or writes ActivityRecord.

Architecture position:
    Services.  The read side lives in ``ActivitySelector``; this is the
    only writer of notification rows after the dispatcher created them.

Failure modes:
    - Unknown notification or a recipient that does not own it: returns
      False, nothing written.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.activity import Notification

logger = get_logger("services.inbox")


class NotificationInbox:
    """Write actions on one recipient's notifications (commits per call)."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def mark_read(self, notification_id: UUID, recipient_id: str) -> bool:
        try:
            row = self._owned(notification_id, recipient_id)
            if row is None:
                self._session.rollback()
                return False
            if not row.read:
                row.read = True
                row.read_at = self._clock.now()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.debug(
            "notification_marked_read",
            extra={"notification_id": str(notification_id), "recipient_id": recipient_id},
        )
        return True

    def mark_all_read(self, recipient_id: str) -> int:
        now = self._clock.now()
        try:
            rows = self._session.scalars(
                select(Notification).where(
                    Notification.recipient_id == recipient_id,
                    Notification.read.is_(False),
                )
            ).all()
            for row in rows:
                row.read = True
                row.read_at = now
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "notifications_marked_read",
            extra={"recipient_id": recipient_id, "count": len(rows)},
        )
        return len(rows)

    def delete_notification(self, notification_id: UUID, recipient_id: str) -> bool:
        """Delete one notification; the activity record it points at stays."""
        try:
            row = self._owned(notification_id, recipient_id)
            if row is None:
                self._session.rollback()
                return False
            self._session.delete(row)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "notification_deleted",
            extra={"notification_id": str(notification_id), "recipient_id": recipient_id},
        )
        return True

    def _owned(self, notification_id: UUID, recipient_id: str) -> Notification | None:
        row = self._session.get(Notification, notification_id)
        if row is None or row.recipient_id != recipient_id:
            return None
        return row
