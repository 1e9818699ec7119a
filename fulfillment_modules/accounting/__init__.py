"""
Accounting Mapping Module (``fulfillment_modules.accounting``).

Maps internal customers and products to the external accounting ledger's
contacts, account codes and tax types, and checks stored mappings against
what the ledger still has.
"""

from fulfillment_modules.accounting.models import (
    CustomerMapping,
    MappingKind,
    ProductMapping,
    ResolvedMapping,
    StaleMapping,
)
from fulfillment_modules.accounting.service import AccountingMappingTranslator

__all__ = [
    "AccountingMappingTranslator",
    "CustomerMapping",
    "MappingKind",
    "ProductMapping",
    "ResolvedMapping",
    "StaleMapping",
]
