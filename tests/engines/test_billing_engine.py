"""
Tests for the billing engine: selection parsing, catalog resolution,
clamping, price input handling and totals.
"""

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from fulfillment_engines.billing import (
    DEFAULT_TAX_RATE,
    CatalogProduct,
    CatalogVariation,
    LedgerTotals,
    LineSnapshot,
    clamp_price,
    clamp_quantity,
    compute_totals,
    parse_price_input,
    parse_selection,
    resolve_catalog_line,
    sanitize_price_input,
)


@pytest.fixture
def staging():
    return CatalogProduct(
        "virtual-staging",
        "Virtual staging",
        Decimal("50"),
        None,
        (CatalogVariation("Basic", Decimal("40")), CatalogVariation("Premium", Decimal("80"))),
    )


def line(price, quantity=1, tax="10"):
    return LineSnapshot(
        product_id="p",
        name="Item",
        quantity=quantity,
        unit_price=Decimal(price),
        tax_rate=Decimal(tax),
    )


# ============================================================================
# Selections and catalog resolution
# ============================================================================


class TestParseSelection:
    def test_product_only(self):
        sel = parse_selection("photo-edit")
        assert sel.product_id == "photo-edit"
        assert sel.variation_index is None

    def test_product_with_variation(self):
        sel = parse_selection("virtual-staging:1")
        assert sel.product_id == "virtual-staging"
        assert sel.variation_index == 1

    @pytest.mark.parametrize("raw", ["", ":1", "p:x", "p:-1"])
    def test_invalid_selections(self, raw):
        with pytest.raises(ValueError):
            parse_selection(raw)


class TestResolveCatalogLine:
    def test_base_product_uses_title_and_price(self, staging):
        resolved = resolve_catalog_line(staging, None)
        assert resolved.name == "Virtual staging"
        assert resolved.unit_price == Decimal("50")

    def test_variation_name_and_price(self, staging):
        resolved = resolve_catalog_line(staging, 1)
        assert resolved.name == "Virtual staging - Premium"
        assert resolved.unit_price == Decimal("80")
        assert resolved.variation_index == 1

    def test_missing_tax_rate_defaults(self, staging):
        assert resolve_catalog_line(staging, 0).tax_rate == DEFAULT_TAX_RATE

    def test_unknown_variation(self, staging):
        assert resolve_catalog_line(staging, 2) is None


# ============================================================================
# Clamping and price input
# ============================================================================


class TestClamping:
    @pytest.mark.parametrize("given_qty,expected", [(0, 1), (-3, 1), (1, 1), (7, 7)])
    def test_quantity(self, given_qty, expected):
        assert clamp_quantity(given_qty) == expected

    def test_price_never_negative(self):
        assert clamp_price(Decimal("-5")) == Decimal("0")
        assert clamp_price(Decimal("12.30")) == Decimal("12.30")


class TestPriceInput:
    @pytest.mark.parametrize(
        "typed,expected",
        [
            ("12.5", "12.5"),
            ("12.", "12."),
            ("$1,234.56", "1234.56"),
            ("1.2.3", "1.23"),
            ("abc", ""),
        ],
    )
    def test_sanitize_keeps_digits_and_first_point(self, typed, expected):
        assert sanitize_price_input(typed) == expected

    @pytest.mark.parametrize(
        "typed,expected",
        [("", "0"), (".", "0"), ("abc", "0"), ("12.", "12"), ("-4", "4"), ("0.50", "0.50")],
    )
    def test_parse_committed_input(self, typed, expected):
        assert parse_price_input(typed) == Decimal(expected)


# ============================================================================
# Totals
# ============================================================================


class TestComputeTotals:
    def test_empty_ledger_is_zero(self):
        assert compute_totals(lines=[]) == LedgerTotals.zero()

    def test_subtotal_tax_total(self):
        totals = compute_totals(lines=[line("100"), line("40", quantity=2, tax="15")])
        assert totals.subtotal == Decimal("180.00")
        assert totals.tax == Decimal("22.00")
        assert totals.total == Decimal("202.00")
        assert totals.line_count == 2

    def test_rounds_half_up_to_cents(self):
        totals = compute_totals(lines=[line("0.05", tax="10")])
        assert totals.tax == Decimal("0.01")

    @given(
        st.lists(
            st.tuples(
                st.decimals(min_value=0, max_value=10000, places=2),
                st.integers(min_value=1, max_value=50),
                st.sampled_from(["0", "10", "15", "20"]),
            ),
            max_size=10,
        )
    )
    def test_total_is_subtotal_plus_tax(self, rows):
        totals = compute_totals(lines=[line(p, q, t) for p, q, t in rows])
        assert totals.total == totals.subtotal + totals.tax
        assert totals.subtotal >= 0
        assert compute_totals(lines=[line(p, q, t) for p, q, t in rows]) == totals
