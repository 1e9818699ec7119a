"""
Billing Engine - line item arithmetic for an order's billing ledger.

Pure functions with no I/O.  Catalog data, quantities and prices are
provided as parameters; nothing here reads the database.

Rules:
    - amount = unit_price * quantity (derived, never stored)
    - subtotal = sum(amount)
    - tax = sum(amount * tax_rate / 100)
    - total = subtotal + tax
    - results are quantized to cents with ROUND_HALF_UP
    - quantity is clamped to >= 1, unit price to >= 0
    - a catalog product without a tax rate is taxed at DEFAULT_TAX_RATE

Usage:
    from decimal import Decimal
    from fulfillment_engines.billing import LineSnapshot, compute_totals

    totals = compute_totals(lines=[
        LineSnapshot(product_id="p1", name="Photo edit", quantity=1,
                     unit_price=Decimal("100"), tax_rate=Decimal("10")),
    ])
    totals.total  # Decimal("110.00")
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Sequence

from fulfillment_engines.tracer import traced_engine

CENT = Decimal("0.01")
DEFAULT_TAX_RATE = Decimal("10")

_NON_PRICE_CHARS = re.compile(r"[^0-9.]")


@dataclass(frozen=True)
class CatalogVariation:
    """A priced variation of a catalog product."""

    name: str
    price: Decimal


@dataclass(frozen=True)
class CatalogProduct:
    """
    Catalog entry as returned by the product catalog.

    ``tax_rate`` is a percentage; None means the catalog has no rate.
    """

    product_id: str
    title: str
    price: Decimal
    tax_rate: Decimal | None = None
    variations: tuple[CatalogVariation, ...] = ()


@dataclass(frozen=True)
class ResolvedLine:
    """Name, price and tax rate frozen onto a new line item."""

    product_id: str
    variation_index: int | None
    name: str
    unit_price: Decimal
    tax_rate: Decimal


@dataclass(frozen=True)
class LineSnapshot:
    """Point-in-time view of one line item."""

    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    variation_index: int | None = None
    item_id: str | None = None

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def tax_amount(self) -> Decimal:
        return self.amount * self.tax_rate / Decimal("100")


@dataclass(frozen=True)
class LedgerTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    line_count: int = 0

    @classmethod
    def zero(cls) -> LedgerTotals:
        return cls(
            subtotal=Decimal("0.00"),
            tax=Decimal("0.00"),
            total=Decimal("0.00"),
        )


@dataclass(frozen=True)
class Selection:
    """Parsed catalog selection: ``product_id`` or ``product_id:variation_index``."""

    product_id: str
    variation_index: int | None = None
    raw: str = field(default="", compare=False)


def parse_selection(selection: str) -> Selection:
    """
    Parse a catalog selection string.

    Raises:
        ValueError: On an empty product id or a non-integer variation index.
    """
    raw = selection.strip()
    product_id, sep, index = raw.partition(":")
    if not product_id:
        raise ValueError(f"Invalid product selection: {selection!r}")
    if not sep:
        return Selection(product_id=product_id, raw=raw)
    try:
        variation_index = int(index)
    except ValueError:
        raise ValueError(f"Invalid variation index in selection: {selection!r}") from None
    if variation_index < 0:
        raise ValueError(f"Invalid variation index in selection: {selection!r}")
    return Selection(product_id=product_id, variation_index=variation_index, raw=raw)


def resolve_catalog_line(
    product: CatalogProduct,
    variation_index: int | None,
) -> ResolvedLine | None:
    """
    Freeze catalog data for a new line item.

    Returns None when the variation index does not exist on the product.
    """
    tax_rate = product.tax_rate if product.tax_rate is not None else DEFAULT_TAX_RATE

    if variation_index is None:
        return ResolvedLine(
            product_id=product.product_id,
            variation_index=None,
            name=product.title,
            unit_price=clamp_price(product.price),
            tax_rate=tax_rate,
        )

    if variation_index >= len(product.variations):
        return None

    variation = product.variations[variation_index]
    return ResolvedLine(
        product_id=product.product_id,
        variation_index=variation_index,
        name=f"{product.title} - {variation.name}",
        unit_price=clamp_price(variation.price),
        tax_rate=tax_rate,
    )


def clamp_quantity(quantity: int) -> int:
    return max(1, int(quantity))


def clamp_price(price: Decimal) -> Decimal:
    price = Decimal(price)
    return price if price > 0 else Decimal("0")


def sanitize_price_input(text: str) -> str:
    """
    Filter in-progress price text.

    Keeps digits and the first decimal point only.  Partial input such as
    ``"12."`` is preserved so editing can continue.
    """
    cleaned = _NON_PRICE_CHARS.sub("", text)
    head, dot, tail = cleaned.partition(".")
    if not dot:
        return head
    return f"{head}.{tail.replace('.', '')}"


def parse_price_input(text: str) -> Decimal:
    """
    Normalize committed price text to a non-negative Decimal.

    Empty, ``"."`` and otherwise unparseable input become 0.
    """
    cleaned = sanitize_price_input(text)
    if cleaned in ("", "."):
        return Decimal("0")
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")
    return clamp_price(value)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@traced_engine("billing_totals", "1.0", fingerprint_fields=("lines",))
def compute_totals(*, lines: Sequence[LineSnapshot]) -> LedgerTotals:
    """
    Subtotal, tax and total for a set of line items.

    Recomputed from the lines on every call; identical input always gives
    identical output.
    """
    if not lines:
        return LedgerTotals.zero()

    subtotal = sum((line.amount for line in lines), Decimal("0"))
    tax = sum((line.tax_amount for line in lines), Decimal("0"))
    subtotal = quantize_money(subtotal)
    tax = quantize_money(tax)
    return LedgerTotals(
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
        line_count=len(lines),
    )
