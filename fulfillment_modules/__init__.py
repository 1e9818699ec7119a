"""
Fulfillment Modules.

Orchestration over the fulfillment kernel and engines.  Each module
contains:
- Domain models (the nouns)
- ORM models (persistence)
- Workflows (state machines)
- A service facade that owns its transaction boundary

Modules:
- Orders: order lifecycle state machine, deliverable uploads, revision policies
- Billing: line items, totals, invoice raising and status sync
- Accounting: customer/product mappings to the external accounting ledger
"""

# Orders first: its service pulls in billing, which pulls in accounting.
from fulfillment_modules import orders, billing, accounting  # noqa: I001

__all__ = ["accounting", "billing", "orders"]
