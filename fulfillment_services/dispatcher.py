"""
fulfillment_services.dispatcher -- Drain the order event outbox.

Responsibility:
    Turns each pending DispatchOutboxEntry into exactly one immutable
    ActivityRecord, one unread Notification per recipient and one pub/sub
    publish on topic ``orders.<order_id>`` keyed ``<order_id>:<sequence>``.

Architecture position:
    Services -- runs after the order transaction committed, in its own
    session.  Composes the pure ``notification_audience`` and
    ``retry_policy`` engines with the PubSubPublisher and PartnerDirectory
    collaborators.

Invariants enforced:
    - Entries of one order are delivered in sequence order; delivery stops
      at the first failing entry so later events never overtake it.
    - One ActivityRecord per (order_id, sequence).  An existing record means
      another dispatcher already delivered it; the entry is marked delivered
      without writing again.
    - The actor is never notified of their own action; visibility-only
      events notify nobody.

Failure modes:
    - Publisher, directory or database failure for an entry: the entry's
      transaction is rolled back, ``attempts`` incremented and
      ``next_attempt_at`` scheduled with exponential backoff.  The caller
      gets a DispatchReport carrying DispatchDegraded; nothing is raised.
    - After ``dispatch_max_attempts`` failures the entry is dead-lettered
      and an error is logged.
    - Database unreachable for the whole pass: entries are left untouched
      and the report carries DispatchDegraded with no sequence.
"""

from __future__ import annotations

from concurrent.futures import Executor, Future
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from fulfillment_config.schema import PartnerSettings
from fulfillment_engines.notification_audience import Recipient, compute_audience
from fulfillment_engines.retry_policy import RetryPolicy
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.exceptions import DispatchDegraded
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.activity import ActivityRecord, Notification
from fulfillment_kernel.models.outbox import DispatchOutboxEntry, OutboxStatus
from fulfillment_services.collaborators import PartnerDirectory, PubSubPublisher

logger = get_logger("services.dispatcher")


def order_topic(order_id: UUID | str) -> str:
    return f"orders.{order_id}"


def event_key(order_id: UUID | str, sequence: int) -> str:
    return f"{order_id}:{sequence}"


@dataclass(frozen=True)
class DispatchReport:
    """Outcome of one dispatch pass over an order's outbox."""

    order_id: UUID
    delivered: tuple[int, ...] = ()
    duplicates: tuple[int, ...] = ()
    waiting: tuple[int, ...] = ()
    degraded: DispatchDegraded | None = None
    dead_lettered: bool = False

    @property
    def is_degraded(self) -> bool:
        return self.degraded is not None


class ActivityDispatcher:
    """Outbox consumer for order events.

    Contract:
        ``dispatch_order`` processes every due pending entry of one order;
        ``retry_due`` does so for every order with due entries;
        ``after_commit`` is the hook the state machine calls once a
        transition committed.

    Guarantees:
        - Each entry is delivered in its own transaction on a fresh session
          from ``session_factory``.
        - At-least-once publish: a crash between publish and commit
          re-publishes the same key on retry.

    Non-goals:
        - Does not deliver email or push; notifications are rows.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: PartnerSettings,
        *,
        publisher: PubSubPublisher,
        directory: PartnerDirectory,
        clock: Clock | None = None,
        executor: Executor | None = None,
    ):
        self._session_factory = session_factory
        self._publisher = publisher
        self._directory = directory
        self._clock = clock or SystemClock()
        self._executor = executor
        self._retry_policy = RetryPolicy(
            max_attempts=settings.dispatch_max_attempts,
            base_delay_seconds=settings.dispatch_backoff_base_seconds,
            max_delay_seconds=settings.dispatch_backoff_max_seconds,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def after_commit(self, order_id: UUID) -> DispatchReport | Future:
        """Dispatch inline, or on the executor when one was supplied."""
        if self._executor is not None:
            return self._executor.submit(self.dispatch_order, order_id)
        return self.dispatch_order(order_id)

    def dispatch_order(self, order_id: UUID) -> DispatchReport:
        """One pass over the order's outbox; failures come back in the report."""
        with LogContext.bind(order_id=str(order_id)):
            try:
                session = self._session_factory()
                try:
                    return self._dispatch(session, order_id)
                finally:
                    session.close()
            except Exception as exc:
                # Entries stay pending for retry_due
                reason = f"{type(exc).__name__}: {exc}"
                logger.warning("dispatch_failed", extra={"reason": reason}, exc_info=exc)
                return DispatchReport(
                    order_id=order_id,
                    degraded=DispatchDegraded(str(order_id), None, 0, reason),
                )

    def retry_due(self) -> list[DispatchReport]:
        """Redeliver every order whose oldest pending entry is due."""
        now = self._clock.now()
        session = self._session_factory()
        try:
            rows = session.execute(
                select(DispatchOutboxEntry.order_id, DispatchOutboxEntry.next_attempt_at)
                .where(DispatchOutboxEntry.status == OutboxStatus.PENDING.value)
                .order_by(DispatchOutboxEntry.order_id, DispatchOutboxEntry.sequence)
            ).all()
        finally:
            session.close()

        due: list[UUID] = []
        seen: set[UUID] = set()
        for order_id, next_attempt_at in rows:
            if order_id in seen:
                continue
            seen.add(order_id)
            if next_attempt_at is None or next_attempt_at <= now:
                due.append(order_id)

        reports = [self.dispatch_order(order_id) for order_id in due]
        logger.info(
            "dispatch_retry_completed",
            extra={
                "due_orders": len(due),
                "degraded": sum(1 for r in reports if r.is_degraded),
            },
        )
        return reports

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _dispatch(self, session: Session, order_id: UUID) -> DispatchReport:
        now = self._clock.now()
        entries = session.scalars(
            select(DispatchOutboxEntry)
            .where(
                DispatchOutboxEntry.order_id == order_id,
                DispatchOutboxEntry.status == OutboxStatus.PENDING.value,
            )
            .order_by(DispatchOutboxEntry.sequence)
        ).all()

        delivered: list[int] = []
        duplicates: list[int] = []
        for index, entry in enumerate(entries):
            if entry.next_attempt_at is not None and entry.next_attempt_at > now:
                return DispatchReport(
                    order_id=order_id,
                    delivered=tuple(delivered),
                    duplicates=tuple(duplicates),
                    waiting=tuple(e.sequence for e in entries[index:]),
                )
            try:
                if self._deliver(session, entry, now):
                    delivered.append(entry.sequence)
                else:
                    duplicates.append(entry.sequence)
            except Exception as exc:
                session.rollback()
                degraded, dead = self._record_failure(session, entry.id, exc)
                return DispatchReport(
                    order_id=order_id,
                    delivered=tuple(delivered),
                    duplicates=tuple(duplicates),
                    waiting=tuple(e.sequence for e in entries[index + 1:]),
                    degraded=degraded,
                    dead_lettered=dead,
                )

        if delivered:
            logger.info(
                "order_events_dispatched",
                extra={"sequences": delivered, "duplicates": duplicates},
            )
        return DispatchReport(
            order_id=order_id,
            delivered=tuple(delivered),
            duplicates=tuple(duplicates),
        )

    def _deliver(self, session: Session, entry: DispatchOutboxEntry, now: datetime) -> bool:
        """Deliver one entry; False when its activity record already existed."""
        entry = session.get(DispatchOutboxEntry, entry.id, populate_existing=True)
        if entry is None or entry.status != OutboxStatus.PENDING.value:
            session.rollback()
            return False

        existing = session.scalars(
            select(ActivityRecord.id).where(
                ActivityRecord.order_id == entry.order_id,
                ActivityRecord.sequence == entry.sequence,
            )
        ).first()
        if existing is not None:
            self._mark_delivered(entry, now)
            session.commit()
            logger.info(
                "order_event_duplicate_skipped",
                extra={"sequence": entry.sequence},
            )
            return False

        payload: dict[str, Any] = entry.payload
        record = ActivityRecord(
            order_id=entry.order_id,
            sequence=entry.sequence,
            partner_id=payload["partner_id"],
            actor_id=payload.get("actor_id"),
            actor_role=payload["actor_role"],
            event_type=entry.event_type,
            action=payload["action"],
            category=payload["category"],
            title=payload["title"],
            description=payload.get("description") or "",
            details=payload.get("details") or {},
            visibility_only=bool(payload.get("visibility_only")),
            created_at=entry.occurred_at,
        )
        session.add(record)
        try:
            session.flush()
        except IntegrityError:
            # Another dispatcher inserted the same (order_id, sequence) first
            session.rollback()
            logger.info(
                "order_event_duplicate_skipped",
                extra={"sequence": entry.sequence},
            )
            return False

        recipients = self._audience(payload, entry.event_type)
        for recipient in recipients:
            session.add(
                Notification(
                    recipient_id=recipient.recipient_id,
                    partner_id=record.partner_id,
                    order_id=record.order_id,
                    sequence=record.sequence,
                    activity_id=record.id,
                    type=recipient.notification_type,
                    title=record.title,
                    body=record.description or record.title,
                    read=False,
                    created_at=now,
                )
            )

        self._publisher.publish(
            order_topic(entry.order_id),
            {
                "key": event_key(entry.order_id, entry.sequence),
                "order_id": str(entry.order_id),
                "sequence": entry.sequence,
                "event_type": entry.event_type,
                "actor_id": record.actor_id,
                "actor_role": record.actor_role,
                "action": record.action,
                "category": record.category,
                "title": record.title,
                "description": record.description,
                "metadata": record.details,
                "visibility_only": record.visibility_only,
                "occurred_at": entry.occurred_at.isoformat(),
                "recipients": [r.recipient_id for r in recipients],
            },
        )
        self._mark_delivered(entry, now)
        session.commit()

        logger.debug(
            "order_event_delivered",
            extra={
                "sequence": entry.sequence,
                "event_type": entry.event_type,
                "recipient_count": len(recipients),
            },
        )
        return True

    def _audience(self, payload: dict[str, Any], event_type: str) -> tuple[Recipient, ...]:
        visibility_only = bool(payload.get("visibility_only"))
        admin_ids = () if visibility_only else tuple(
            self._directory.partner_admin_ids(payload["partner_id"])
        )
        return compute_audience(
            event_type=event_type,
            actor_id=payload.get("actor_id"),
            partner_admin_ids=admin_ids,
            editor_id=payload.get("editor_id"),
            customer_id=payload.get("customer_id"),
            visibility_only=visibility_only,
        )

    def _mark_delivered(self, entry: DispatchOutboxEntry, now: datetime) -> None:
        entry.status = OutboxStatus.DELIVERED.value
        entry.delivered_at = now
        entry.last_error = None
        entry.next_attempt_at = None

    def _record_failure(
        self, session: Session, entry_id: UUID, exc: Exception,
    ) -> tuple[DispatchDegraded, bool]:
        reason = f"{type(exc).__name__}: {exc}"
        now = self._clock.now()
        try:
            entry = session.get(DispatchOutboxEntry, entry_id, populate_existing=True)
            entry.attempts += 1
            entry.last_error = reason
            dead = self._retry_policy.is_exhausted(entry.attempts)
            if dead:
                entry.status = OutboxStatus.DEAD_LETTER.value
                entry.next_attempt_at = None
            else:
                entry.next_attempt_at = self._retry_policy.next_attempt_at(now, entry.attempts)
            order_id, sequence, attempts = entry.order_id, entry.sequence, entry.attempts
            next_attempt_at = entry.next_attempt_at
            session.commit()
        except Exception:
            session.rollback()
            raise

        degraded = DispatchDegraded(str(order_id), sequence, attempts, reason)
        if dead:
            logger.error(
                "order_event_dead_lettered",
                extra={"sequence": sequence, "attempts": attempts, "reason": reason},
                exc_info=exc,
            )
        else:
            logger.warning(
                "dispatch_degraded",
                extra={
                    "sequence": sequence,
                    "attempts": attempts,
                    "reason": reason,
                    "next_attempt_at": next_attempt_at.isoformat(),
                },
                exc_info=exc,
            )
        return degraded, dead
