"""
Billing Domain Models (``fulfillment_modules.billing.models``).

Responsibility
--------------
Frozen dataclass value objects for an order's billing ledger: line items,
the ledger projection with its invoice status, invoice raise results and
automatic-raise retry records.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* ``LineItem.amount`` is derived (``unit_price * quantity``), never stored.
* Once ``invoice_id`` is set on a ledger it never changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from fulfillment_engines.billing import LedgerTotals, LineSnapshot


class InvoiceStatus(str, Enum):
    """
    Invoice status held on the ledger.

    ``pending`` is the claim held while the external ledger call is in
    flight; it is never a final status.
    """
    NONE = "none"
    PENDING = "pending"
    DRAFT = "draft"
    AUTHORISED = "authorised"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"


class AutoInvoiceStatus(str, Enum):
    PENDING = "pending"
    RAISED = "raised"
    DEAD_LETTER = "dead_letter"


@dataclass(frozen=True)
class LineItem:
    id: UUID
    order_id: UUID
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    variation_index: int | None = None

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_snapshot(self) -> LineSnapshot:
        return LineSnapshot(
            product_id=self.product_id,
            name=self.name,
            quantity=self.quantity,
            unit_price=self.unit_price,
            tax_rate=self.tax_rate,
            variation_index=self.variation_index,
            item_id=str(self.id),
        )


@dataclass(frozen=True)
class Ledger:
    """Billing ledger of one order."""
    order_id: UUID
    partner_id: str
    customer_id: str
    reference: str
    invoice_status: InvoiceStatus
    version: int
    items: tuple[LineItem, ...] = ()
    invoice_id: str | None = None
    invoice_number: str | None = None
    raised_at: datetime | None = None

    @property
    def is_locked(self) -> bool:
        return self.invoice_id is not None or self.invoice_status != InvoiceStatus.NONE

    @property
    def product_ids(self) -> tuple[str, ...]:
        """Distinct products on the ledger, in first-seen order."""
        return tuple(dict.fromkeys(item.product_id for item in self.items))


@dataclass(frozen=True)
class InvoiceRaiseResult:
    order_id: UUID
    invoice_id: str
    invoice_number: str | None
    status: InvoiceStatus
    totals: LedgerTotals
    raised_at: datetime
    sequence: int | None = None


@dataclass(frozen=True)
class AutoInvoiceAttempt:
    """State of an automatic raise that failed after approval."""
    order_id: UUID
    partner_id: str
    status: AutoInvoiceStatus
    attempts: int
    next_attempt_at: datetime | None
    last_error: str | None = None
