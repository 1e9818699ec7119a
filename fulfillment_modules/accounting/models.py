"""
Accounting Mapping Models (``fulfillment_modules.accounting.models``).

Responsibility
--------------
Frozen value objects mapping internal customers and products to the
identifiers of the external accounting ledger.

Invariants enforced
-------------------
* Partial mappings are legal values; completeness is checked only when an
  invoice is about to be raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID


class MappingKind(str, Enum):
    CUSTOMER = "customer"
    PRODUCT = "product"


@dataclass(frozen=True)
class CustomerMapping:
    partner_id: str
    customer_id: str
    contact_id: str


@dataclass(frozen=True)
class ProductMapping:
    partner_id: str
    product_id: str
    account_code: str | None = None
    tax_type: str | None = None

    @property
    def missing_fields(self) -> list[str]:
        missing = []
        if not self.account_code:
            missing.append("account_code")
        if not self.tax_type:
            missing.append("tax_type")
        return missing

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields


@dataclass(frozen=True)
class ResolvedMapping:
    """External identifiers for one order's invoice payload."""
    order_id: UUID
    contact_id: str
    products: dict[str, ProductMapping] = field(default_factory=dict)

    def account_code(self, product_id: str) -> str:
        return self.products[product_id].account_code

    def tax_type(self, product_id: str) -> str:
        return self.products[product_id].tax_type


@dataclass(frozen=True)
class StaleMapping:
    """A stored mapping that points at something the external ledger no longer has."""
    kind: MappingKind
    internal_id: str
    field: str
    external_ref: str
