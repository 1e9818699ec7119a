"""
Tests for BillingLedger.

Line items freeze catalog data, totals are recomputed from stored items,
an invoice is raised at most once and locks the ledger, and automatic
raises that failed after approval are retried with backoff.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment_config.schema import InvoiceStatusPreference, InvoiceTrigger, PartnerSettings
from fulfillment_engines.billing import CatalogProduct
from fulfillment_kernel.exceptions import (
    DuplicateInvoice,
    EmptyLedger,
    IncompleteMapping,
    InvalidInvoiceStatusChange,
    InvoiceRaiseFailed,
    LedgerLocked,
    LineItemNotFound,
    OrderNotFound,
    ProductNotFound,
)
from fulfillment_kernel.selectors.activity_selector import ActivitySelector
from fulfillment_modules.billing.models import AutoInvoiceStatus, InvoiceStatus
from fulfillment_modules.billing.service import BillingLedger
from fulfillment_modules.orders.models import OrderStatus


@pytest.fixture
def order_id(create_order):
    return create_order()


@pytest.fixture
def invoiceable(order_id, billing, map_accounts):
    """Order with one mapped line item, ready to invoice."""
    billing.add_line_item(order_id, "photo-edit")
    map_accounts()
    return order_id


# ============================================================================
# Line items
# ============================================================================


class TestLineItems:
    def test_add_freezes_catalog_data(self, billing, order_id):
        item = billing.add_line_item(order_id, "photo-edit")
        assert item.name == "Photo edit"
        assert item.unit_price == Decimal("100")
        assert item.tax_rate == Decimal("10")
        assert item.quantity == 1

    def test_variation_selection(self, billing, order_id):
        item = billing.add_line_item(order_id, "virtual-staging:1")
        assert item.name == "Virtual staging - Premium"
        assert item.unit_price == Decimal("80")
        assert item.variation_index == 1
        assert item.tax_rate == Decimal("10")

    @pytest.mark.parametrize("selection", ["nope", "virtual-staging:9", "", "photo-edit:x"])
    def test_unknown_selection(self, billing, order_id, selection):
        with pytest.raises(ProductNotFound):
            billing.add_line_item(order_id, selection)
        assert billing.line_items(order_id) == []

    def test_catalog_change_does_not_reprice(self, billing, order_id, catalog):
        billing.add_line_item(order_id, "photo-edit")
        catalog.products["photo-edit"] = CatalogProduct(
            "photo-edit", "Photo edit v2", Decimal("999"), Decimal("20"),
        )
        [item] = billing.line_items(order_id)
        assert item.unit_price == Decimal("100")
        assert item.name == "Photo edit"

    def test_edits_clamp(self, billing, order_id):
        item = billing.add_line_item(order_id, "photo-edit")
        assert billing.update_quantity(item.id, 0).quantity == 1
        assert billing.update_quantity(item.id, 4).quantity == 4
        assert billing.update_price(item.id, Decimal("-3")).unit_price == Decimal("0")

    @pytest.mark.parametrize("typed,expected", [("abc", "0"), (".", "0"), ("12.50", "12.50")])
    def test_commit_price_input(self, billing, order_id, typed, expected):
        item = billing.add_line_item(order_id, "photo-edit")
        assert billing.commit_price_input(item.id, typed).unit_price == Decimal(expected)

    def test_sanitize_price_input(self):
        assert BillingLedger.sanitize_price_input("1a2.3.4") == "12.34"

    def test_remove(self, billing, order_id):
        keep = billing.add_line_item(order_id, "photo-edit")
        drop = billing.add_line_item(order_id, "floor-plan")
        billing.remove_line_item(drop.id)
        assert [i.id for i in billing.line_items(order_id)] == [keep.id]

    def test_unknown_item(self, billing):
        with pytest.raises(LineItemNotFound):
            billing.update_quantity(uuid4(), 2)

    def test_unknown_order(self, billing):
        with pytest.raises(OrderNotFound):
            billing.add_line_item(uuid4(), "photo-edit")

    def test_every_edit_bumps_version(self, billing, order_id):
        start = billing.get_ledger(order_id).version
        item = billing.add_line_item(order_id, "photo-edit")
        billing.update_quantity(item.id, 2)
        billing.remove_line_item(item.id)
        assert billing.get_ledger(order_id).version == start + 3


class TestLineItemEvents:
    def test_each_edit_joins_timeline(self, session, billing, order_id, dispatcher, admin):
        item = billing.add_line_item(order_id, "photo-edit", admin)
        billing.update_quantity(item.id, 3, admin)
        billing.commit_price_input(item.id, "85.5", admin)
        billing.remove_line_item(item.id, admin)

        report = dispatcher.dispatch_order(order_id)

        assert report.delivered == (2, 3, 4, 5)
        timeline = ActivitySelector(session).timeline(order_id)
        assert [(e.sequence, e.event_type, e.action) for e in timeline] == [
            (1, "order_created", "creation"),
            (2, "line_item_added", "creation"),
            (3, "line_item_updated", "update"),
            (4, "line_item_updated", "update"),
            (5, "line_item_removed", "delete"),
        ]
        added, quantity, price, removed = timeline[1:]
        assert added.details["item_id"] == str(item.id)
        assert added.details["product_id"] == "photo-edit"
        assert (quantity.details["field"], quantity.details["value"]) == ("quantity", "3")
        assert price.details["field"] == "unit_price"
        assert removed.details["item_id"] == str(item.id)
        assert all(e.actor_id == admin.id for e in timeline[1:])

    def test_other_admins_notified(self, session, billing, order_id, dispatcher, admin):
        billing.add_line_item(order_id, "photo-edit", admin)
        dispatcher.dispatch_order(order_id)
        notes = ActivitySelector(session).notifications_for("admin-2")
        assert [(n.sequence, n.type) for n in notes if n.sequence == 2] == [(2, "order_updated")]
        assert all(n.sequence != 2 for n in ActivitySelector(session).notifications_for(admin.id))

    def test_system_actor_by_default(self, session, billing, order_id, dispatcher):
        billing.add_line_item(order_id, "floor-plan")
        dispatcher.dispatch_order(order_id)
        entry = ActivitySelector(session).get_by_sequence(order_id, 2)
        assert entry.actor_role == "system"

    def test_rejected_edit_writes_no_event(self, session, billing, invoiceable, dispatcher):
        item = billing.line_items(invoiceable)[0]
        billing.raise_invoice(invoiceable)
        dispatcher.dispatch_order(invoiceable)
        before = len(ActivitySelector(session).timeline(invoiceable))

        with pytest.raises(LedgerLocked):
            billing.update_quantity(item.id, 5)

        assert dispatcher.dispatch_order(invoiceable).delivered == ()
        assert len(ActivitySelector(session).timeline(invoiceable)) == before


class TestTotals:
    def test_empty_ledger(self, billing, order_id):
        totals = billing.compute_totals(order_id)
        assert totals.total == Decimal("0.00")

    def test_recomputed_after_each_edit(self, billing, order_id):
        billing.add_line_item(order_id, "photo-edit")
        staging = billing.add_line_item(order_id, "virtual-staging:1")
        billing.update_quantity(staging.id, 2)

        totals = billing.compute_totals(order_id)
        assert totals.subtotal == Decimal("260.00")
        assert totals.tax == Decimal("26.00")
        assert totals.total == Decimal("286.00")

        billing.update_price(staging.id, Decimal("10"))
        assert billing.compute_totals(order_id).total == Decimal("132.00")

    def test_zero_rated_product(self, billing, order_id):
        billing.add_line_item(order_id, "floor-plan")
        totals = billing.compute_totals(order_id)
        assert totals.tax == Decimal("0.00")
        assert totals.total == Decimal("25.50")


# ============================================================================
# Raising invoices
# ============================================================================


class TestRaiseInvoice:
    def test_raise_stores_invoice(self, billing, invoiceable, ledger_client, clock, admin):
        result = billing.raise_invoice(invoiceable, admin)

        assert result.invoice_id == "inv-1"
        assert result.invoice_number == "INV-0001"
        assert result.status == InvoiceStatus.DRAFT
        assert result.totals.total == Decimal("110.00")
        assert result.raised_at == clock.now()

        ledger = billing.get_ledger(invoiceable)
        assert ledger.invoice_id == "inv-1"
        assert ledger.invoice_status == InvoiceStatus.DRAFT
        assert ledger.is_locked

    def test_request_payload(self, billing, invoiceable, ledger_client, clock):
        billing.raise_invoice(invoiceable)
        [request] = ledger_client.requests
        assert request.contact_id == "contact-1"
        assert request.status == "DRAFT"
        assert request.reference == "00001"
        assert request.line_amount_types == "Exclusive"
        assert request.date == clock.now().date()
        assert request.due_date == clock.now().date() + timedelta(days=7)
        [line] = request.lines
        assert (line.description, line.quantity, line.unit_amount) == ("Photo edit", 1, Decimal("100"))
        assert (line.account_code, line.tax_type) == ("200", "OUTPUT")

    def test_authorised_preference(
        self, session, invoiceable, catalog, ledger_client, clock, translator,
    ):
        settings = PartnerSettings(
            partner_id="studio-1", invoice_status=InvoiceStatusPreference.AUTHORISED,
        )
        ledger = BillingLedger(
            session, settings,
            catalog=catalog, ledger_client=ledger_client, clock=clock, translator=translator,
        )
        result = ledger.raise_invoice(invoiceable)
        assert result.status == InvoiceStatus.AUTHORISED
        assert ledger_client.requests[0].status == "AUTHORISED"

    def test_second_raise_is_duplicate(self, billing, invoiceable, ledger_client):
        billing.raise_invoice(invoiceable)
        with pytest.raises(DuplicateInvoice) as exc_info:
            billing.raise_invoice(invoiceable)
        assert exc_info.value.invoice_id == "inv-1"
        assert len(ledger_client.requests) == 1

    def test_ledger_locked_after_raise(self, billing, invoiceable):
        billing.raise_invoice(invoiceable)
        [item] = billing.line_items(invoiceable)
        with pytest.raises(LedgerLocked):
            billing.add_line_item(invoiceable, "floor-plan")
        with pytest.raises(LedgerLocked):
            billing.update_quantity(item.id, 3)
        with pytest.raises(LedgerLocked):
            billing.remove_line_item(item.id)
        assert billing.line_items(invoiceable) == [item]

    def test_empty_ledger(self, billing, order_id, map_accounts, ledger_client):
        map_accounts()
        with pytest.raises(EmptyLedger):
            billing.raise_invoice(order_id)
        assert ledger_client.requests == []

    def test_unmapped_products_listed(self, billing, order_id, translator, ledger_client):
        billing.add_line_item(order_id, "photo-edit")
        billing.add_line_item(order_id, "floor-plan")
        translator.set_customer_mapping("studio-1", "customer-1", "contact-1")
        translator.set_product_mapping("studio-1", "photo-edit", account_code="200")

        with pytest.raises(IncompleteMapping) as exc_info:
            billing.raise_invoice(order_id)

        assert exc_info.value.missing_customer_ids == []
        assert exc_info.value.missing_products == {
            "floor-plan": ["account_code", "tax_type"],
            "photo-edit": ["tax_type"],
        }
        assert ledger_client.requests == []
        assert not billing.get_ledger(order_id).is_locked

    def test_external_failure_releases_claim(self, billing, invoiceable, ledger_client):
        ledger_client.fail_with = TimeoutError("ledger timed out")
        with pytest.raises(InvoiceRaiseFailed) as exc_info:
            billing.raise_invoice(invoiceable)
        assert "TimeoutError" in exc_info.value.reason

        ledger = billing.get_ledger(invoiceable)
        assert ledger.invoice_status == InvoiceStatus.NONE
        assert ledger.invoice_id is None
        billing.add_line_item(invoiceable, "floor-plan")

        ledger_client.fail_with = None
        assert billing.raise_invoice(invoiceable).invoice_id == "inv-2"

    def test_raise_appends_event(self, session, billing, invoiceable, dispatcher, admin):
        result = billing.raise_invoice(invoiceable, admin)
        dispatcher.dispatch_order(invoiceable)
        entry = ActivitySelector(session).get_by_sequence(invoiceable, result.sequence)
        assert entry.event_type == "invoice_raised"
        assert entry.details["invoice_number"] == "INV-0001"
        assert entry.details["total"] == "110.00"


class TestInvoiceStatusSync:
    def test_follow_lifecycle(self, billing, invoiceable):
        billing.raise_invoice(invoiceable)
        assert billing.record_invoice_status(invoiceable, "sent").invoice_status == InvoiceStatus.SENT
        assert billing.record_invoice_status(invoiceable, InvoiceStatus.PAID).invoice_status == InvoiceStatus.PAID

    def test_paid_is_final(self, billing, invoiceable):
        billing.raise_invoice(invoiceable)
        billing.record_invoice_status(invoiceable, "authorised")
        billing.record_invoice_status(invoiceable, "paid")
        with pytest.raises(InvalidInvoiceStatusChange):
            billing.record_invoice_status(invoiceable, "sent")

    def test_requires_raised_invoice(self, billing, invoiceable):
        with pytest.raises(InvalidInvoiceStatusChange):
            billing.record_invoice_status(invoiceable, "sent")


# ============================================================================
# Automatic raise retry
# ============================================================================


@pytest.fixture
def approved_unmapped(build_machine, drive_to, billing, customer):
    """Order approved under on_delivered whose raise failed on mapping."""
    machine = build_machine(
        PartnerSettings(partner_id="studio-1", invoice_trigger=InvoiceTrigger.ON_DELIVERED)
    )
    order_id = drive_to(OrderStatus.HUMAN_CHECK)
    billing.add_line_item(order_id, "photo-edit")
    result = machine.approve(order_id, customer)
    assert result.invoice_error is not None
    return order_id


class TestAutoInvoiceRetry:
    def test_not_retried_before_backoff(self, billing, approved_unmapped, map_accounts, ledger_client):
        map_accounts()
        assert billing.retry_pending_auto_invoices() == []
        assert ledger_client.requests == []

    def test_retry_after_mapping_fixed(self, billing, approved_unmapped, map_accounts, clock):
        map_accounts()
        clock.advance(60)
        [outcome] = billing.retry_pending_auto_invoices()
        assert outcome.status == AutoInvoiceStatus.RAISED
        assert billing.get_ledger(approved_unmapped).invoice_id == "inv-1"
        assert billing.pending_auto_invoices() == []

    def test_already_raised_counts_as_done(self, billing, approved_unmapped, map_accounts, clock):
        map_accounts()
        billing.raise_invoice(approved_unmapped)
        clock.advance(60)
        [outcome] = billing.retry_pending_auto_invoices()
        assert outcome.status == AutoInvoiceStatus.RAISED

    def test_dead_letter_after_max_attempts(
        self, billing, approved_unmapped, clock, captured_logs,
    ):
        clock.advance(3600)
        [second] = billing.retry_pending_auto_invoices()
        assert (second.status, second.attempts) == (AutoInvoiceStatus.PENDING, 2)

        clock.advance(3600)
        [third] = billing.retry_pending_auto_invoices()
        assert (third.status, third.attempts) == (AutoInvoiceStatus.DEAD_LETTER, 3)
        assert "INCOMPLETE_MAPPING" in third.last_error

        assert billing.pending_auto_invoices() == []
        errors = [r for r in captured_logs() if r["message"] == "auto_invoice_dead_lettered"]
        assert errors and errors[0]["level"] == "ERROR"
