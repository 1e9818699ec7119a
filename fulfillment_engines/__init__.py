"""
Module: fulfillment_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines: revision entitlement, billing arithmetic,
    notification audience and retry backoff.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    MUST NOT import fulfillment_services or fulfillment_modules.

Invariants enforced:
    - Purity: engines never read the clock; times are passed in.
    - Decimal-only arithmetic for money; floats are never used for prices.
    - Determinism: identical inputs always produce identical outputs.
"""

from fulfillment_engines.billing import (
    DEFAULT_TAX_RATE,
    CatalogProduct,
    CatalogVariation,
    LedgerTotals,
    LineSnapshot,
    ResolvedLine,
    Selection,
    clamp_price,
    clamp_quantity,
    compute_totals,
    parse_price_input,
    parse_selection,
    resolve_catalog_line,
    sanitize_price_input,
)
from fulfillment_engines.notification_audience import (
    NotificationType,
    OrderEventType,
    Recipient,
    compute_audience,
)
from fulfillment_engines.retry_policy import RetryPolicy
from fulfillment_engines.revision_policy import (
    RevisionAllowance,
    RevisionPolicy,
    RevisionPolicyKind,
    resolve_revision_allowance,
)

__all__ = [
    "DEFAULT_TAX_RATE",
    "CatalogProduct",
    "CatalogVariation",
    "LedgerTotals",
    "LineSnapshot",
    "ResolvedLine",
    "Selection",
    "clamp_price",
    "clamp_quantity",
    "compute_totals",
    "parse_price_input",
    "parse_selection",
    "resolve_catalog_line",
    "sanitize_price_input",
    "NotificationType",
    "OrderEventType",
    "Recipient",
    "compute_audience",
    "RetryPolicy",
    "RevisionAllowance",
    "RevisionPolicy",
    "RevisionPolicyKind",
    "resolve_revision_allowance",
]
