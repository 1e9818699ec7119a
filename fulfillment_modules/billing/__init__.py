"""
Billing Module (``fulfillment_modules.billing``).

Responsibility
--------------
Per-order billing ledger: catalog line items with frozen prices, totals
from ``fulfillment_engines.billing``, invoice raising through the
external ledger client and post-raise status sync.

Invariants enforced
-------------------
* Ledger writes compare-and-swap on the ledger version.
* An invoice is raised at most once per order.
"""

from fulfillment_modules.billing.models import (
    AutoInvoiceAttempt,
    AutoInvoiceStatus,
    InvoiceRaiseResult,
    InvoiceStatus,
    Ledger,
    LineItem,
)
from fulfillment_modules.billing.service import BillingLedger
from fulfillment_modules.billing.workflows import INVOICE_STATUS_WORKFLOW

__all__ = [
    "AutoInvoiceAttempt",
    "AutoInvoiceStatus",
    "BillingLedger",
    "INVOICE_STATUS_WORKFLOW",
    "InvoiceRaiseResult",
    "InvoiceStatus",
    "Ledger",
    "LineItem",
]
