"""
Typed Exception Hierarchy for the Fulfillment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejection produced by the order workflow is returned to a UI that
must render an actionable message ("this order was already accepted",
"map product X to an account code"). Callers catch by TYPE, read a
machine-readable CODE, and use structured ATTRIBUTES -- never parse the
message string.

Example:
    try:
        machine.submit(RequestRevision(order_id, actor, notes="brighten sky"))
    except RevisionLimitExceeded as e:
        return {"error": e.code, "limit": e.limit, "used": e.revision_count}
    except ConflictingTransition as e:
        # refetch the order and retry with the new version
        ...

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FulfillmentError (base)
    |
    +-- WorkflowError
    |   +-- OrderNotFound
    |   +-- InvalidTransition
    |   +-- RevisionLimitExceeded
    |
    +-- ConcurrencyError
    |   +-- ConflictingTransition
    |
    +-- BillingError
    |   +-- LineItemNotFound
    |   +-- ProductNotFound
    |   +-- LedgerLocked
    |   +-- EmptyLedger
    |   +-- DuplicateInvoice
    |   +-- InvoiceRaiseFailed
    |   +-- InvalidInvoiceStatusChange
    |
    +-- AccountingError
    |   +-- IncompleteMapping
    |
    +-- DispatchError
    |   +-- DispatchDegraded
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|---------------------------------------
Workflow     | ORDER_NOT_FOUND               | Order id doesn't exist
             | INVALID_TRANSITION            | Action illegal from current state,
             |                               | or a transition guard failed
             | REVISION_LIMIT_EXCEEDED       | Customer used every revision round
-------------|-------------------------------|---------------------------------------
Concurrency  | CONFLICTING_TRANSITION        | Lost a compare-and-swap race
-------------|-------------------------------|---------------------------------------
Billing      | LINE_ITEM_NOT_FOUND           | Line item id doesn't exist
             | PRODUCT_NOT_FOUND             | Catalog has no such product/variation
             | LEDGER_LOCKED                 | Line items edited after invoice raise
             | EMPTY_LEDGER                  | Raise requested with no line items
             | DUPLICATE_INVOICE             | Invoice already raised / in flight
             | INVOICE_RAISE_FAILED          | External ledger call failed
             | INVALID_INVOICE_STATUS_CHANGE | Invoice status sync out of order
-------------|-------------------------------|---------------------------------------
Accounting   | INCOMPLETE_MAPPING            | Customer or product not mapped
-------------|-------------------------------|---------------------------------------
Dispatch     | DISPATCH_DEGRADED             | Activity/notification write failed
             |                               | after the transition committed
-------------|-------------------------------|---------------------------------------
Immutability | IMMUTABILITY_VIOLATION        | UPDATE/DELETE of an activity record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConflictingTransition is retryable: refetch, re-evaluate, resubmit.
2. InvalidTransition and RevisionLimitExceeded are final for the request;
   surface them verbatim.
3. IncompleteMapping lists what to fix (``missing_customer_ids``,
   ``missing_products``); drive remediation from it.
4. DispatchDegraded is never raised into a transition caller. It is
   returned on the result and the outbox retries it.
"""

from typing import Any


class FulfillmentError(Exception):
    """
    Base exception for all fulfillment kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "FULFILLMENT_ERROR"

    def as_dict(self) -> dict[str, Any]:
        """Structured rendering for API responses: code, message, attributes."""
        data: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, val in vars(self).items():
            if not key.startswith("_"):
                data[key] = val
        return data


# Workflow-related exceptions


class WorkflowError(FulfillmentError):
    """Base exception for order workflow errors."""

    code: str = "WORKFLOW_ERROR"


class OrderNotFound(WorkflowError):
    """Order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidTransition(WorkflowError):
    """
    The requested action is not legal from the order's current state.

    Also raised when the edge exists but its guard fails (``reason``
    names the guard). The order is never modified.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        order_id: str,
        current_state: str,
        action: str,
        reason: str | None = None,
    ):
        self.order_id = order_id
        self.current_state = current_state
        self.action = action
        self.reason = reason
        message = f"Cannot {action} order {order_id} in state '{current_state}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RevisionLimitExceeded(WorkflowError):
    """The customer has used every revision round the policy allows."""

    code: str = "REVISION_LIMIT_EXCEEDED"

    def __init__(
        self,
        order_id: str,
        customer_id: str,
        revision_count: int,
        limit: int,
    ):
        self.order_id = order_id
        self.customer_id = customer_id
        self.revision_count = revision_count
        self.limit = limit
        super().__init__(
            f"Revision limit reached for order {order_id}: "
            f"{revision_count} of {limit} revision rounds used"
        )


# Concurrency-related exceptions


class ConcurrencyError(FulfillmentError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictingTransition(ConcurrencyError):
    """
    A concurrent writer committed first.

    The caller's view of the aggregate is stale; refetch and retry.
    """

    code: str = "CONFLICTING_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Conflicting transition on {entity_type} {entity_id}: "
            "entity was modified by another caller"
        )


# Billing-related exceptions


class BillingError(FulfillmentError):
    """Base exception for billing ledger errors."""

    code: str = "BILLING_ERROR"


class LineItemNotFound(BillingError):
    """Line item with given ID was not found."""

    code: str = "LINE_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Line item not found: {item_id}")


class ProductNotFound(BillingError):
    """Catalog selection could not be resolved."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, selection: str):
        self.selection = selection
        super().__init__(f"Product selection not found in catalog: {selection}")


class LedgerLocked(BillingError):
    """Line items are read-only once an invoice has been raised."""

    code: str = "LEDGER_LOCKED"

    def __init__(self, order_id: str, invoice_id: str | None):
        self.order_id = order_id
        self.invoice_id = invoice_id
        super().__init__(
            f"Ledger for order {order_id} is locked by invoice {invoice_id}"
        )


class EmptyLedger(BillingError):
    """An invoice cannot be raised for a ledger with no line items."""

    code: str = "EMPTY_LEDGER"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Ledger for order {order_id} has no line items")


class DuplicateInvoice(BillingError):
    """An invoice already exists (or is being raised) for this order."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, order_id: str, invoice_id: str | None):
        self.order_id = order_id
        self.invoice_id = invoice_id
        super().__init__(
            f"Invoice already raised for order {order_id}: {invoice_id or 'in flight'}"
        )


class InvoiceRaiseFailed(BillingError):
    """The external ledger rejected or failed the invoice request."""

    code: str = "INVOICE_RAISE_FAILED"

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Invoice raise failed for order {order_id}: {reason}")


class InvalidInvoiceStatusChange(BillingError):
    """Invoice status sync does not follow the invoice lifecycle."""

    code: str = "INVALID_INVOICE_STATUS_CHANGE"

    def __init__(self, order_id: str, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invoice for order {order_id} cannot move from "
            f"'{from_status}' to '{to_status}'"
        )


# Accounting-related exceptions


class AccountingError(FulfillmentError):
    """Base exception for accounting mapping errors."""

    code: str = "ACCOUNTING_ERROR"


class IncompleteMapping(AccountingError):
    """
    The order cannot be invoiced until its mappings are completed.

    ``missing_products`` maps each product id to the missing fields
    (``account_code`` and/or ``tax_type``).
    """

    code: str = "INCOMPLETE_MAPPING"

    def __init__(
        self,
        order_id: str,
        missing_customer_ids: list[str],
        missing_products: dict[str, list[str]],
    ):
        self.order_id = order_id
        self.missing_customer_ids = missing_customer_ids
        self.missing_products = missing_products
        parts = []
        if missing_customer_ids:
            parts.append(f"customers {', '.join(missing_customer_ids)}")
        if missing_products:
            parts.append(f"products {', '.join(sorted(missing_products))}")
        super().__init__(
            f"Accounting mapping incomplete for order {order_id}: "
            f"unmapped {' and '.join(parts)}"
        )


# Dispatch-related exceptions


class DispatchError(FulfillmentError):
    """Base exception for activity/notification dispatch errors."""

    code: str = "DISPATCH_ERROR"


class DispatchDegraded(DispatchError):
    """
    Dispatch failed after the transition committed.

    Reported, not raised into transition callers. The outbox entry keeps
    its place and is retried with backoff.  ``sequence`` is None when the
    pass failed before any entry was read.
    """

    code: str = "DISPATCH_DEGRADED"

    def __init__(self, order_id: str, sequence: int | None, attempts: int, reason: str):
        self.order_id = order_id
        self.sequence = sequence
        self.attempts = attempts
        self.reason = reason
        if sequence is None:
            super().__init__(f"Dispatch degraded for order {order_id}: {reason}")
        else:
            super().__init__(
                f"Dispatch degraded for order {order_id} event {sequence} "
                f"after {attempts} attempt(s): {reason}"
            )


# Immutability-related exceptions


class ImmutabilityError(FulfillmentError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
