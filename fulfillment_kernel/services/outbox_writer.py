"""
OutboxWriter -- append an order event to the dispatch outbox.

Responsibility:
    Allocates the next per-order event sequence and writes the outbox
    entry in the caller's transaction.  The dispatcher later turns each
    entry into exactly one ActivityRecord, its notifications and one
    pub/sub publish.

Architecture position:
    Kernel > Services.  Called by OrderStateMachine and BillingLedger.

Invariants enforced:
    - An event exists iff the state change that produced it committed:
      both are written in one transaction.
    - Sequences come from SequenceService, never max-plus-one.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.dtos import Actor
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.activity import ActivityAction, ActivityCategory
from fulfillment_kernel.models.outbox import DispatchOutboxEntry, OutboxStatus
from fulfillment_kernel.services.sequence_service import SequenceService
from fulfillment_kernel.utils.hashing import to_json_safe

logger = get_logger("services.outbox_writer")


@dataclass(frozen=True)
class OrderEvent:
    """Everything the dispatcher needs to record and announce one event."""

    event_type: str
    partner_id: str
    title: str
    action: ActivityAction = ActivityAction.STATUS_CHANGE
    category: ActivityCategory = ActivityCategory.ORDER
    description: str = ""
    editor_id: str | None = None
    customer_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    visibility_only: bool = False


class OutboxWriter:
    """Writes order events into the outbox (flush only)."""

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock
        self._sequences = SequenceService(session)

    def append(self, order_id: UUID, actor: Actor, event: OrderEvent) -> int:
        """
        Append one event for ``order_id`` and return its sequence.

        Postconditions:
            - A pending DispatchOutboxEntry keyed (order_id, sequence)
              is flushed into the current transaction.
        """
        sequence = self._sequences.next_value(SequenceService.order_events(order_id))
        occurred_at = self._clock.now()

        payload = {
            "event_type": event.event_type,
            "partner_id": event.partner_id,
            "actor_id": actor.id,
            "actor_role": actor.role.value,
            "action": ActivityAction(event.action).value,
            "category": ActivityCategory(event.category).value,
            "title": event.title,
            "description": event.description,
            "editor_id": event.editor_id,
            "customer_id": event.customer_id,
            "details": to_json_safe(event.details),
            "visibility_only": event.visibility_only,
        }

        self._session.add(
            DispatchOutboxEntry(
                order_id=order_id,
                sequence=sequence,
                event_type=event.event_type,
                payload=payload,
                status=OutboxStatus.PENDING.value,
                attempts=0,
                next_attempt_at=None,
                occurred_at=occurred_at,
            )
        )
        self._session.flush()

        logger.debug(
            "order_event_appended",
            extra={
                "order_id": str(order_id),
                "sequence": sequence,
                "event_type": event.event_type,
            },
        )
        return sequence
