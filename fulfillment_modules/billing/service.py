"""
Billing Ledger Service (``fulfillment_modules.billing.service``).

Responsibility
--------------
Owns every write to an order's billing ledger: line items, price and
quantity edits, invoice raising, external invoice status sync and the
bounded retry of automatic raises that failed after approval.  Totals
come from the pure ``fulfillment_engines.billing`` engine; catalog data
from the ``ProductCatalog`` collaborator; external identifiers from
``AccountingMappingTranslator``.

Architecture position
---------------------
**Modules layer**.  ``BillingLedger`` is the sole public entry point for
ledger writes.  ``OrderStateMachine`` calls ``open_ledger`` inside the
order creation transaction and ``raise_invoice`` after an approval
committed.

Invariants enforced
-------------------
* Every ledger mutation is a compare-and-swap on ``billing_ledgers.version``
  that also requires ``invoice_status = 'none'``.  ``raise_invoice`` claims
  the ledger the same way (``none -> pending``), so edits and a raise
  cannot interleave.
* Once ``invoice_id`` is stored it never changes; any further raise is
  ``DuplicateInvoice`` and any line item edit is ``LedgerLocked``.
* Totals are recomputed from stored items on every call; nothing is
  cached across mutations.
* Each line item add, edit or removal appends one ``line_item_*`` outbox
  event in the same transaction as the ledger write.
* The external ledger call runs outside any database transaction.  A
  failed call releases the claim (``pending -> none``).

Failure modes
-------------
* ``OrderNotFound`` / ``LineItemNotFound`` / ``ProductNotFound``.
* ``LedgerLocked`` on edits after a raise (or while one is in flight).
* ``DuplicateInvoice`` / ``EmptyLedger`` / ``IncompleteMapping`` /
  ``InvoiceRaiseFailed`` from ``raise_invoice``.
* ``ConflictingTransition`` when a concurrent writer bumped the version.

Usage::

    ledger = BillingLedger(
        session, settings,
        catalog=catalog, ledger_client=xero_client, clock=clock,
    )
    ledger.add_line_item(order_id, "photo-edit:1")
    ledger.compute_totals(order_id)
    ledger.raise_invoice(order_id, actor)
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from fulfillment_config.schema import PartnerSettings
from fulfillment_engines.billing import (
    LedgerTotals,
    clamp_price,
    clamp_quantity,
    compute_totals,
    parse_price_input,
    parse_selection,
    resolve_catalog_line,
    sanitize_price_input,
)
from fulfillment_engines.notification_audience import OrderEventType
from fulfillment_engines.retry_policy import RetryPolicy
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import Actor
from fulfillment_kernel.exceptions import (
    ConflictingTransition,
    DuplicateInvoice,
    EmptyLedger,
    FulfillmentError,
    InvalidInvoiceStatusChange,
    InvoiceRaiseFailed,
    LedgerLocked,
    LineItemNotFound,
    OrderNotFound,
    ProductNotFound,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.activity import ActivityAction, ActivityCategory
from fulfillment_kernel.services.outbox_writer import OrderEvent, OutboxWriter
from fulfillment_modules.accounting.service import AccountingMappingTranslator
from fulfillment_modules.billing.models import (
    AutoInvoiceAttempt,
    AutoInvoiceStatus,
    InvoiceRaiseResult,
    InvoiceStatus,
    Ledger,
    LineItem,
)
from fulfillment_modules.billing.orm import (
    AutoInvoiceAttemptModel,
    BillingLedgerModel,
    LineItemModel,
)
from fulfillment_modules.billing.workflows import status_change_allowed
from fulfillment_services.collaborators import (
    InvoiceLine,
    InvoiceRequest,
    LedgerClient,
    ProductCatalog,
)

logger = get_logger("modules.billing.service")


class BillingLedger:
    """
    Line items, totals and invoices for orders of one partner.

    Contract
    --------
    * Line item methods return the item's ``LineItem`` snapshot.
    * ``raise_invoice`` returns ``InvoiceRaiseResult`` or raises.

    Guarantees
    ----------
    * Transaction boundary: each public write commits on success and rolls
      back on failure, except ``open_ledger`` which only flushes into the
      caller's transaction.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT edit an invoice after it was raised; the external ledger
      owns it from then on.
    """

    def __init__(
        self,
        session: Session,
        settings: PartnerSettings,
        *,
        catalog: ProductCatalog,
        ledger_client: LedgerClient,
        clock: Clock | None = None,
        translator: AccountingMappingTranslator | None = None,
    ):
        self._session = session
        self._settings = settings
        self._catalog = catalog
        self._ledger_client = ledger_client
        self._clock = clock or SystemClock()
        self._translator = translator or AccountingMappingTranslator(session)
        self._outbox = OutboxWriter(session, self._clock)
        self._retry_policy = RetryPolicy(
            max_attempts=settings.invoice_retry_max_attempts,
            base_delay_seconds=settings.invoice_retry_base_delay_seconds,
            max_delay_seconds=settings.invoice_retry_max_delay_seconds,
        )

    # =========================================================================
    # Ledger
    # =========================================================================

    def open_ledger(self, order_id: UUID, customer_id: str, reference: str) -> Ledger:
        """Create the empty ledger of a new order (flush only)."""
        row = BillingLedgerModel(
            order_id=order_id,
            partner_id=self._settings.partner_id,
            customer_id=customer_id,
            reference=reference,
            invoice_status=InvoiceStatus.NONE.value,
            version=1,
        )
        self._session.add(row)
        self._session.flush()
        logger.debug("billing_ledger_opened", extra={"order_id": str(order_id)})
        return row.to_dto()

    def get_ledger(self, order_id: UUID) -> Ledger:
        return self._ledger_row(order_id).to_dto()

    def line_items(self, order_id: UUID) -> list[LineItem]:
        return list(self.get_ledger(order_id).items)

    def compute_totals(self, order_id: UUID) -> LedgerTotals:
        """Subtotal, tax and total recomputed from the stored items."""
        ledger = self._ledger_row(order_id)
        return compute_totals(lines=[item.to_dto().to_snapshot() for item in ledger.items])

    # =========================================================================
    # Line items
    # =========================================================================

    def add_line_item(
        self, order_id: UUID, selection: str, actor: Actor | None = None,
    ) -> LineItem:
        """
        Add a catalog product (``product_id`` or ``product_id:variation_index``).

        Name, unit price and tax rate are frozen from the catalog now and
        never re-read.  A ``line_item_added`` event joins the outbox in the
        same transaction.
        """
        try:
            try:
                parsed = parse_selection(selection)
            except ValueError:
                raise ProductNotFound(selection) from None
            product = self._catalog.get_product(parsed.product_id)
            if product is None:
                raise ProductNotFound(selection)
            resolved = resolve_catalog_line(product, parsed.variation_index)
            if resolved is None:
                raise ProductNotFound(selection)

            ledger = self._ledger_row(order_id)
            self._ensure_unlocked(ledger)
            position = max((i.position for i in ledger.items), default=-1) + 1
            self._bump_version(ledger)

            item = LineItemModel(
                ledger_id=ledger.id,
                order_id=order_id,
                position=position,
                product_id=resolved.product_id,
                variation_index=resolved.variation_index,
                name=resolved.name,
                quantity=1,
                unit_price=resolved.unit_price,
                tax_rate=resolved.tax_rate,
            )
            ledger.items.append(item)
            self._session.flush()
            self._record_item_event(
                ledger,
                actor,
                OrderEventType.LINE_ITEM_ADDED,
                ActivityAction.CREATION,
                title=f"{item.name} added to {ledger.reference}",
                details={
                    "item_id": str(item.id),
                    "product_id": item.product_id,
                    "variation_index": item.variation_index,
                    "unit_price": str(item.unit_price),
                },
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "line_item_added",
            extra={
                "order_id": str(order_id),
                "item_id": str(item.id),
                "product_id": resolved.product_id,
                "unit_price": str(resolved.unit_price),
                "tax_rate": str(resolved.tax_rate),
            },
        )
        return item.to_dto()

    def update_quantity(
        self, item_id: UUID, quantity: int, actor: Actor | None = None,
    ) -> LineItem:
        """Set the quantity, clamped to >= 1."""
        return self._edit_item(item_id, "quantity", clamp_quantity(quantity), actor)

    def update_price(
        self, item_id: UUID, price: Decimal, actor: Actor | None = None,
    ) -> LineItem:
        """Set the unit price, clamped to >= 0."""
        return self._edit_item(item_id, "unit_price", clamp_price(price), actor)

    @staticmethod
    def sanitize_price_input(text: str) -> str:
        """Filter in-progress price text to digits and one decimal point."""
        return sanitize_price_input(text)

    def commit_price_input(
        self, item_id: UUID, text: str, actor: Actor | None = None,
    ) -> LineItem:
        """Normalize committed price text (empty, ``"."``, junk -> 0) and store it."""
        return self.update_price(item_id, parse_price_input(text), actor)

    def remove_line_item(self, item_id: UUID, actor: Actor | None = None) -> None:
        try:
            item = self._item_row(item_id)
            ledger = self._ledger_row(item.order_id)
            self._ensure_unlocked(ledger)
            self._bump_version(ledger)
            ledger.items.remove(item)
            self._record_item_event(
                ledger,
                actor,
                OrderEventType.LINE_ITEM_REMOVED,
                ActivityAction.DELETE,
                title=f"{item.name} removed from {ledger.reference}",
                details={"item_id": str(item_id), "product_id": item.product_id},
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "line_item_removed",
            extra={"order_id": str(ledger.order_id), "item_id": str(item_id)},
        )

    def _edit_item(
        self, item_id: UUID, field_name: str, value, actor: Actor | None,
    ) -> LineItem:
        try:
            item = self._item_row(item_id)
            ledger = self._ledger_row(item.order_id)
            self._ensure_unlocked(ledger)
            self._bump_version(ledger)
            setattr(item, field_name, value)
            self._record_item_event(
                ledger,
                actor,
                OrderEventType.LINE_ITEM_UPDATED,
                ActivityAction.UPDATE,
                title=f"{item.name} updated on {ledger.reference}",
                details={"item_id": str(item_id), "field": field_name, "value": str(value)},
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "line_item_updated",
            extra={
                "order_id": str(item.order_id),
                "item_id": str(item_id),
                "field": field_name,
                "value": str(value),
            },
        )
        return item.to_dto()

    # =========================================================================
    # Invoices
    # =========================================================================

    def raise_invoice(self, order_id: UUID, actor: Actor | None = None) -> InvoiceRaiseResult:
        """
        Raise the order's invoice in the external ledger.

        Preconditions:
            - No invoice raised and no raise in flight.
            - At least one line item.
            - Customer and every ledger product fully mapped.
        Postconditions:
            - ``invoice_id``/``invoice_number`` stored, status ``draft`` or
              ``authorised`` per the partner preference, an
              ``invoice_raised`` event in the outbox.
        Raises:
            DuplicateInvoice, EmptyLedger, IncompleteMapping,
            InvoiceRaiseFailed, ConflictingTransition, OrderNotFound.
        """
        actor = actor or Actor.system()
        logger.info("invoice_raise_started", extra={"order_id": str(order_id)})

        # Validate and claim (none -> pending)
        try:
            ledger = self._ledger_row(order_id)
            if ledger.invoice_id is not None or ledger.invoice_status != InvoiceStatus.NONE.value:
                raise DuplicateInvoice(str(order_id), ledger.invoice_id)
            if not ledger.items:
                raise EmptyLedger(str(order_id))
            mapping = self._translator.resolve(order_id)

            items = [item.to_dto() for item in ledger.items]
            totals = compute_totals(lines=[item.to_snapshot() for item in items])
            reference = ledger.reference
            partner_id = ledger.partner_id
            customer_id = ledger.customer_id
            claimed_version = ledger.version + 1

            result = self._session.execute(
                update(BillingLedgerModel)
                .where(
                    BillingLedgerModel.id == ledger.id,
                    BillingLedgerModel.version == ledger.version,
                    BillingLedgerModel.invoice_status == InvoiceStatus.NONE.value,
                    BillingLedgerModel.invoice_id.is_(None),
                )
                .values(invoice_status=InvoiceStatus.PENDING.value, version=claimed_version)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = self._current_state(ledger.id)
                if current.invoice_id is not None or current.invoice_status != InvoiceStatus.NONE.value:
                    raise DuplicateInvoice(str(order_id), current.invoice_id)
                raise ConflictingTransition(
                    "billing_ledger", str(order_id), ledger.version, current.version
                )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        today = self._clock.now().date()
        request = InvoiceRequest(
            contact_id=mapping.contact_id,
            lines=tuple(
                InvoiceLine(
                    description=item.name,
                    quantity=item.quantity,
                    unit_amount=item.unit_price,
                    account_code=mapping.account_code(item.product_id),
                    tax_type=mapping.tax_type(item.product_id),
                )
                for item in items
            ),
            status=self._settings.invoice_status.value.upper(),
            reference=reference,
            date=today,
            due_date=today + timedelta(days=self._settings.invoice_due_days),
        )

        try:
            external = self._ledger_client.create_invoice(request)
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            self._release_claim(order_id, claimed_version)
            logger.error(
                "invoice_raise_failed",
                extra={"order_id": str(order_id), "reason": reason},
            )
            raise InvoiceRaiseFailed(str(order_id), reason) from exc

        status = InvoiceStatus(self._settings.invoice_status.value)
        raised_at = self._clock.now()
        try:
            result = self._session.execute(
                update(BillingLedgerModel)
                .where(
                    BillingLedgerModel.order_id == order_id,
                    BillingLedgerModel.version == claimed_version,
                    BillingLedgerModel.invoice_status == InvoiceStatus.PENDING.value,
                )
                .values(
                    invoice_id=external.invoice_id,
                    invoice_number=external.invoice_number,
                    invoice_status=status.value,
                    raised_at=raised_at,
                    version=claimed_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictingTransition("billing_ledger", str(order_id), claimed_version)
            sequence = self._outbox.append(
                order_id,
                actor,
                OrderEvent(
                    event_type=OrderEventType.INVOICE_RAISED.value,
                    partner_id=partner_id,
                    title=f"Invoice raised for {reference}",
                    action=ActivityAction.UPDATE,
                    category=ActivityCategory.ORDER,
                    description=f"Invoice {external.invoice_number or external.invoice_id} "
                                f"raised for {totals.total}",
                    customer_id=customer_id,
                    details={
                        "invoice_id": external.invoice_id,
                        "invoice_number": external.invoice_number,
                        "invoice_status": status.value,
                        "subtotal": str(totals.subtotal),
                        "tax": str(totals.tax),
                        "total": str(totals.total),
                    },
                ),
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        self._session.expire_all()

        logger.info(
            "invoice_raised",
            extra={
                "order_id": str(order_id),
                "invoice_id": external.invoice_id,
                "invoice_number": external.invoice_number,
                "invoice_status": status.value,
                "total": str(totals.total),
            },
        )
        return InvoiceRaiseResult(
            order_id=order_id,
            invoice_id=external.invoice_id,
            invoice_number=external.invoice_number,
            status=status,
            totals=totals,
            raised_at=raised_at,
            sequence=sequence,
        )

    def record_invoice_status(self, order_id: UUID, status: InvoiceStatus | str) -> Ledger:
        """
        Store a status reported by the external ledger.

        Raises:
            InvalidInvoiceStatusChange: No invoice yet, or the change is
                not an edge of the invoice status workflow.
        """
        status = InvoiceStatus(status)
        try:
            ledger = self._ledger_row(order_id)
            current = ledger.invoice_status
            if ledger.invoice_id is None or not status_change_allowed(current, status.value):
                raise InvalidInvoiceStatusChange(str(order_id), current, status.value)
            result = self._session.execute(
                update(BillingLedgerModel)
                .where(
                    BillingLedgerModel.id == ledger.id,
                    BillingLedgerModel.version == ledger.version,
                    BillingLedgerModel.invoice_status == current,
                )
                .values(invoice_status=status.value, version=ledger.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictingTransition("billing_ledger", str(order_id), ledger.version)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        self._session.expire_all()
        logger.info(
            "invoice_status_recorded",
            extra={
                "order_id": str(order_id),
                "from_status": current,
                "to_status": status.value,
            },
        )
        return self.get_ledger(order_id)

    # =========================================================================
    # Automatic raise retry
    # =========================================================================

    def mark_auto_raise_pending(self, order_id: UUID, error: FulfillmentError) -> AutoInvoiceAttempt:
        """Queue an automatic raise that failed right after approval."""
        now = self._clock.now()
        try:
            row = self._auto_row(order_id)
            if row is None:
                row = AutoInvoiceAttemptModel(
                    order_id=order_id,
                    partner_id=self._settings.partner_id,
                    status=AutoInvoiceStatus.PENDING.value,
                    attempts=1,
                )
                self._session.add(row)
            else:
                row.status = AutoInvoiceStatus.PENDING.value
                row.attempts = 1
            row.last_error = f"{error.code}: {error}"
            row.next_attempt_at = self._retry_policy.next_attempt_at(now, 1)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.warning(
            "auto_invoice_raise_queued",
            extra={
                "order_id": str(order_id),
                "error_code": error.code,
                "next_attempt_at": row.next_attempt_at.isoformat(),
            },
        )
        return row.to_dto()

    def pending_auto_invoices(self) -> list[AutoInvoiceAttempt]:
        rows = self._session.scalars(
            select(AutoInvoiceAttemptModel)
            .where(
                AutoInvoiceAttemptModel.partner_id == self._settings.partner_id,
                AutoInvoiceAttemptModel.status == AutoInvoiceStatus.PENDING.value,
            )
            .order_by(AutoInvoiceAttemptModel.next_attempt_at)
        )
        return [r.to_dto() for r in rows]

    def retry_pending_auto_invoices(self) -> list[AutoInvoiceAttempt]:
        """
        Retry queued automatic raises whose backoff elapsed.

        A raise that finds the invoice already raised counts as done.
        After ``invoice_retry_max_attempts`` failures the entry becomes
        ``dead_letter``.
        """
        now = self._clock.now()
        due = [
            attempt.order_id
            for attempt in self.pending_auto_invoices()
            if attempt.next_attempt_at is None or attempt.next_attempt_at <= now
        ]
        outcomes: list[AutoInvoiceAttempt] = []
        for order_id in due:
            error: FulfillmentError | None = None
            try:
                self.raise_invoice(order_id, Actor.system())
            except DuplicateInvoice:
                pass
            except FulfillmentError as exc:
                error = exc
            outcomes.append(self._record_auto_outcome(order_id, error))
        logger.info(
            "auto_invoice_retry_completed",
            extra={"partner_id": self._settings.partner_id, "due_count": len(due)},
        )
        return outcomes

    def _record_auto_outcome(self, order_id: UUID, error: FulfillmentError | None) -> AutoInvoiceAttempt:
        try:
            row = self._auto_row(order_id)
            if error is None:
                row.status = AutoInvoiceStatus.RAISED.value
                row.next_attempt_at = None
            else:
                row.attempts += 1
                row.last_error = f"{error.code}: {error}"
                if self._retry_policy.is_exhausted(row.attempts):
                    row.status = AutoInvoiceStatus.DEAD_LETTER.value
                    row.next_attempt_at = None
                else:
                    row.next_attempt_at = self._retry_policy.next_attempt_at(
                        self._clock.now(), row.attempts
                    )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        if row.status == AutoInvoiceStatus.DEAD_LETTER.value:
            logger.error(
                "auto_invoice_dead_lettered",
                extra={
                    "order_id": str(order_id),
                    "attempts": row.attempts,
                    "last_error": row.last_error,
                },
            )
        elif error is not None:
            logger.warning(
                "auto_invoice_retry_failed",
                extra={"order_id": str(order_id), "attempts": row.attempts},
            )
        return row.to_dto()

    # =========================================================================
    # Internal
    # =========================================================================

    def _ledger_row(self, order_id: UUID) -> BillingLedgerModel:
        row = self._session.scalars(
            select(BillingLedgerModel)
            .where(BillingLedgerModel.order_id == order_id)
            .execution_options(populate_existing=True)
        ).one_or_none()
        if row is None:
            raise OrderNotFound(str(order_id))
        return row

    def _item_row(self, item_id: UUID) -> LineItemModel:
        item = self._session.get(LineItemModel, item_id, populate_existing=True)
        if item is None:
            raise LineItemNotFound(str(item_id))
        return item

    def _auto_row(self, order_id: UUID) -> AutoInvoiceAttemptModel | None:
        return self._session.scalars(
            select(AutoInvoiceAttemptModel).where(AutoInvoiceAttemptModel.order_id == order_id)
        ).one_or_none()

    def _current_state(self, ledger_id: UUID):
        return self._session.execute(
            select(
                BillingLedgerModel.invoice_status,
                BillingLedgerModel.invoice_id,
                BillingLedgerModel.version,
            ).where(BillingLedgerModel.id == ledger_id)
        ).one()

    @staticmethod
    def _ensure_unlocked(ledger: BillingLedgerModel) -> None:
        if ledger.invoice_id is not None or ledger.invoice_status != InvoiceStatus.NONE.value:
            raise LedgerLocked(str(ledger.order_id), ledger.invoice_id)

    def _record_item_event(
        self,
        ledger: BillingLedgerModel,
        actor: Actor | None,
        event_type: OrderEventType,
        action: ActivityAction,
        *,
        title: str,
        details: dict,
    ) -> int:
        return self._outbox.append(
            ledger.order_id,
            actor or Actor.system(),
            OrderEvent(
                event_type=event_type.value,
                partner_id=ledger.partner_id,
                title=title,
                action=action,
                category=ActivityCategory.ORDER,
                customer_id=ledger.customer_id,
                details=details,
            ),
        )

    def _bump_version(self, ledger: BillingLedgerModel) -> None:
        """Compare-and-swap the ledger version; the ledger must still be open."""
        expected = ledger.version
        result = self._session.execute(
            update(BillingLedgerModel)
            .where(
                BillingLedgerModel.id == ledger.id,
                BillingLedgerModel.version == expected,
                BillingLedgerModel.invoice_status == InvoiceStatus.NONE.value,
                BillingLedgerModel.invoice_id.is_(None),
            )
            .values(version=expected + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self._current_state(ledger.id)
            if current.invoice_id is not None or current.invoice_status != InvoiceStatus.NONE.value:
                raise LedgerLocked(str(ledger.order_id), current.invoice_id)
            raise ConflictingTransition(
                "billing_ledger", str(ledger.order_id), expected, current.version
            )
        set_committed_value(ledger, "version", expected + 1)

    def _release_claim(self, order_id: UUID, claimed_version: int) -> None:
        try:
            self._session.execute(
                update(BillingLedgerModel)
                .where(
                    BillingLedgerModel.order_id == order_id,
                    BillingLedgerModel.version == claimed_version,
                    BillingLedgerModel.invoice_status == InvoiceStatus.PENDING.value,
                )
                .values(invoice_status=InvoiceStatus.NONE.value, version=claimed_version + 1)
                .execution_options(synchronize_session=False)
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        self._session.expire_all()
        logger.info("invoice_claim_released", extra={"order_id": str(order_id)})
