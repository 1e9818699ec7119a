"""
Billing ORM Models (``fulfillment_modules.billing.orm``).

Responsibility
--------------
SQLAlchemy persistence for billing ledgers, their line items and the
automatic invoice retry queue.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``fulfillment_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``fulfillment_kernel``.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import TrackedBase, UTCDateTime


class BillingLedgerModel(TrackedBase):
    """
    One row per order, created with the order and never deleted.

    Guarantees:
        - ``version`` is bumped by every line item mutation and every
          invoice status write; writers compare-and-swap on it.
        - ``invoice_id`` is written once.
    """

    __tablename__ = "billing_ledgers"

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_billing_ledgers_order"),
        Index("idx_billing_ledgers_partner_status", "partner_id", "invoice_status"),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), nullable=False)
    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    invoice_status: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    invoice_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    raised_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    items: Mapped[list["LineItemModel"]] = relationship(
        back_populates="ledger",
        cascade="all, delete-orphan",
        order_by="LineItemModel.position",
        lazy="selectin",
    )

    def to_dto(self):
        from fulfillment_modules.billing.models import InvoiceStatus, Ledger

        return Ledger(
            order_id=self.order_id,
            partner_id=self.partner_id,
            customer_id=self.customer_id,
            reference=self.reference,
            invoice_status=InvoiceStatus(self.invoice_status),
            version=self.version,
            items=tuple(item.to_dto() for item in self.items),
            invoice_id=self.invoice_id,
            invoice_number=self.invoice_number,
            raised_at=self.raised_at,
        )


class LineItemModel(TrackedBase):
    """Line item; name, unit price and tax rate are frozen at add time."""

    __tablename__ = "billing_line_items"

    __table_args__ = (
        Index("idx_billing_line_items_ledger", "ledger_id"),
    )

    ledger_id: Mapped[UUID] = mapped_column(ForeignKey("billing_ledgers.id"), nullable=False)
    order_id: Mapped[UUID] = mapped_column(nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    variation_index: Mapped[int | None] = mapped_column(nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False)

    ledger: Mapped[BillingLedgerModel] = relationship(back_populates="items")

    def to_dto(self):
        from fulfillment_modules.billing.models import LineItem

        return LineItem(
            id=self.id,
            order_id=self.order_id,
            product_id=self.product_id,
            name=self.name,
            quantity=self.quantity,
            unit_price=self.unit_price,
            tax_rate=self.tax_rate,
            variation_index=self.variation_index,
        )


class AutoInvoiceAttemptModel(TrackedBase):
    """Automatic raise that failed after approval and waits for retry."""

    __tablename__ = "auto_invoice_attempts"

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_auto_invoice_attempts_order"),
        Index("idx_auto_invoice_attempts_due", "partner_id", "status", "next_attempt_at"),
    )

    order_id: Mapped[UUID] = mapped_column(nullable=False)
    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    next_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        from fulfillment_modules.billing.models import AutoInvoiceAttempt, AutoInvoiceStatus

        return AutoInvoiceAttempt(
            order_id=self.order_id,
            partner_id=self.partner_id,
            status=AutoInvoiceStatus(self.status),
            attempts=self.attempts,
            next_attempt_at=self.next_attempt_at,
            last_error=self.last_error,
        )
