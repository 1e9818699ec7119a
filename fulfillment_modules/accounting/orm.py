"""
Accounting Mapping ORM Models (``fulfillment_modules.accounting.orm``).

Per-partner customer -> contact and product -> (account code, tax type)
mappings for the external accounting ledger.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase


class CustomerMappingModel(TrackedBase):
    __tablename__ = "accounting_customer_mappings"

    __table_args__ = (
        UniqueConstraint(
            "partner_id", "customer_id", name="uq_customer_mapping_partner_customer"
        ),
    )

    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_id: Mapped[str] = mapped_column(String(100), nullable=False)

    def to_dto(self):
        from fulfillment_modules.accounting.models import CustomerMapping

        return CustomerMapping(
            partner_id=self.partner_id,
            customer_id=self.customer_id,
            contact_id=self.contact_id,
        )


class ProductMappingModel(TrackedBase):
    """Product mapping; either field may be unset while the partner configures it."""

    __tablename__ = "accounting_product_mappings"

    __table_args__ = (
        UniqueConstraint(
            "partner_id", "product_id", name="uq_product_mapping_partner_product"
        ),
    )

    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    account_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tax_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def to_dto(self):
        from fulfillment_modules.accounting.models import ProductMapping

        return ProductMapping(
            partner_id=self.partner_id,
            product_id=self.product_id,
            account_code=self.account_code,
            tax_type=self.tax_type,
        )
