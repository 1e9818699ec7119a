"""
Notification Audience Engine - who hears about an order event.

Pure function with no I/O.  The dispatcher loads partner admin ids from
the partner directory and passes them in with the order's editor and
customer.  The actor is never notified of their own action, and each
recipient is notified at most once per event.

Audience by event:

    Event                       | Partner admins | Editor | Customer
    ----------------------------|----------------|--------|---------
    order_created               |       x        |   x    |
    order_accepted              |       x        |        |
    order_declined              |       x        |        |
    deliverable_uploaded        |       x        |        |
    order_marked_complete       |       x        |        |
    work_resumed                |       x        |        |
    revision_requested          |                |   x    |
    order_approved              |       x        |   x    |    x
    invoice_raised              |       x        |        |
    line_item_added             |       x        |        |
    line_item_updated           |       x        |        |
    line_item_removed           |       x        |        |
    folder_visibility_changed   |   (none - visibility-only record)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from fulfillment_engines.tracer import traced_engine


class OrderEventType(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_ACCEPTED = "order_accepted"
    ORDER_DECLINED = "order_declined"
    DELIVERABLE_UPLOADED = "deliverable_uploaded"
    ORDER_MARKED_COMPLETE = "order_marked_complete"
    WORK_RESUMED = "work_resumed"
    REVISION_REQUESTED = "revision_requested"
    ORDER_APPROVED = "order_approved"
    INVOICE_RAISED = "invoice_raised"
    FOLDER_VISIBILITY_CHANGED = "folder_visibility_changed"
    LINE_ITEM_ADDED = "line_item_added"
    LINE_ITEM_UPDATED = "line_item_updated"
    LINE_ITEM_REMOVED = "line_item_removed"


class NotificationType(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_ASSIGNED = "order_assigned"
    ORDER_DELIVERED = "order_delivered"
    ORDER_IN_REVIEW = "order_in_review"
    REVISION_REQUESTED = "revision_requested"
    ORDER_COMPLETED = "order_completed"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_UPDATED = "order_updated"


@dataclass(frozen=True)
class AudienceRule:
    partner_admins: bool
    editor: bool
    customer: bool
    notification_type: NotificationType | None


_RULES: dict[OrderEventType, AudienceRule] = {
    OrderEventType.ORDER_CREATED: AudienceRule(True, True, False, NotificationType.ORDER_CREATED),
    OrderEventType.ORDER_ACCEPTED: AudienceRule(True, False, False, NotificationType.ORDER_ASSIGNED),
    OrderEventType.ORDER_DECLINED: AudienceRule(True, False, False, NotificationType.ORDER_CANCELLED),
    OrderEventType.DELIVERABLE_UPLOADED: AudienceRule(True, False, False, NotificationType.ORDER_DELIVERED),
    OrderEventType.ORDER_MARKED_COMPLETE: AudienceRule(True, False, False, NotificationType.ORDER_IN_REVIEW),
    OrderEventType.WORK_RESUMED: AudienceRule(True, False, False, NotificationType.ORDER_ASSIGNED),
    OrderEventType.REVISION_REQUESTED: AudienceRule(False, True, False, NotificationType.REVISION_REQUESTED),
    OrderEventType.ORDER_APPROVED: AudienceRule(True, True, True, NotificationType.ORDER_COMPLETED),
    OrderEventType.INVOICE_RAISED: AudienceRule(True, False, False, NotificationType.ORDER_COMPLETED),
    OrderEventType.LINE_ITEM_ADDED: AudienceRule(True, False, False, NotificationType.ORDER_UPDATED),
    OrderEventType.LINE_ITEM_UPDATED: AudienceRule(True, False, False, NotificationType.ORDER_UPDATED),
    OrderEventType.LINE_ITEM_REMOVED: AudienceRule(True, False, False, NotificationType.ORDER_UPDATED),
    OrderEventType.FOLDER_VISIBILITY_CHANGED: AudienceRule(False, False, False, None),
}


@dataclass(frozen=True)
class Recipient:
    recipient_id: str
    notification_type: str


@traced_engine(
    "notification_audience",
    "1.0",
    fingerprint_fields=("event_type", "actor_id", "editor_id", "customer_id"),
)
def compute_audience(
    *,
    event_type: OrderEventType | str,
    actor_id: str | None,
    partner_admin_ids: Sequence[str],
    editor_id: str | None,
    customer_id: str | None,
    visibility_only: bool = False,
) -> tuple[Recipient, ...]:
    """
    Recipients for one order event, in a stable order.

    Raises:
        ValueError: If event_type is not a known order event.
    """
    rule = _RULES[OrderEventType(event_type)]
    if visibility_only or rule.notification_type is None:
        return ()

    candidates: list[str] = []
    if rule.partner_admins:
        candidates.extend(partner_admin_ids)
    if rule.editor and editor_id:
        candidates.append(editor_id)
    if rule.customer and customer_id:
        candidates.append(customer_id)

    seen: set[str] = set()
    recipients: list[Recipient] = []
    for rid in candidates:
        if not rid or rid == actor_id or rid in seen:
            continue
        seen.add(rid)
        recipients.append(Recipient(rid, rule.notification_type.value))
    return tuple(recipients)
