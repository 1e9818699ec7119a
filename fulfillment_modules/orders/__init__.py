"""
Orders Module (``fulfillment_modules.orders``).

Responsibility
--------------
Order lifecycle: the guarded state machine, deliverable uploads, revision
limits and read-side selectors.

Invariants enforced
-------------------
* Status changes go through ``OrderStateMachine``; every committed
  transition bumps the order version and appends its events to the
  outbox in the same transaction.
"""

from fulfillment_modules.orders.models import (
    Accept,
    Approve,
    Decline,
    MarkComplete,
    Order,
    OrderAction,
    OrderFile,
    OrderStatus,
    RequestRevision,
    ResumeWork,
    RevisionStatus,
    ServiceSelection,
    TransitionRequest,
    TransitionResult,
    UploadDeliverable,
)
from fulfillment_modules.orders.revisions import RevisionPolicyResolver, RevisionPolicyStore
from fulfillment_modules.orders.selector import OrderSelector
from fulfillment_modules.orders.service import OrderStateMachine
from fulfillment_modules.orders.uploads import (
    DeliverableUploader,
    UploadBatch,
    UploadItem,
    UploadItemState,
)
from fulfillment_modules.orders.workflows import ORDER_WORKFLOW

__all__ = [
    "Accept",
    "Approve",
    "Decline",
    "DeliverableUploader",
    "MarkComplete",
    "ORDER_WORKFLOW",
    "Order",
    "OrderAction",
    "OrderFile",
    "OrderSelector",
    "OrderStateMachine",
    "OrderStatus",
    "RequestRevision",
    "ResumeWork",
    "RevisionPolicyResolver",
    "RevisionPolicyStore",
    "RevisionStatus",
    "ServiceSelection",
    "TransitionRequest",
    "TransitionResult",
    "UploadBatch",
    "UploadDeliverable",
    "UploadItem",
    "UploadItemState",
]
