"""
Accounting Mapping Translator (``fulfillment_modules.accounting.service``).

Responsibility
--------------
Maintains the per-partner mapping store and translates an order's
customer and ledger products into the external ledger's contact id,
account codes and tax types.

Architecture position
---------------------
**Modules layer**.  Read by ``BillingLedger.raise_invoice``; the mapping
store is written only through the ``set_*`` / ``clear_*`` methods here.

Invariants enforced
-------------------
* An order is fully mapped iff its customer has a contact mapping and
  every distinct product on its ledger has both an account code and a
  tax type.
* ``find_stale_mappings`` only reports; it never changes orders, ledgers
  or mappings.

Failure modes
-------------
* ``IncompleteMapping`` from ``resolve`` listing the missing customer,
  the missing products and the missing field per product.
* ``OrderNotFound`` when the order has no billing ledger.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.exceptions import IncompleteMapping, OrderNotFound
from fulfillment_kernel.logging_config import get_logger
from fulfillment_modules.accounting.models import (
    CustomerMapping,
    MappingKind,
    ProductMapping,
    ResolvedMapping,
    StaleMapping,
)
from fulfillment_modules.accounting.orm import CustomerMappingModel, ProductMappingModel
from fulfillment_modules.billing.orm import BillingLedgerModel
from fulfillment_services.collaborators import LedgerClient

logger = get_logger("modules.accounting.service")


class AccountingMappingTranslator:
    """
    Mapping store plus order -> external identifier translation.

    Transaction boundary: mapping writes commit on success and roll back
    on failure.  Reads never write.
    """

    def __init__(self, session: Session):
        self._session = session

    # =========================================================================
    # Mapping store
    # =========================================================================

    def set_customer_mapping(
        self, partner_id: str, customer_id: str, contact_id: str,
    ) -> CustomerMapping:
        if not contact_id:
            raise ValueError("contact_id cannot be empty")
        try:
            row = self._customer_row(partner_id, customer_id)
            if row is None:
                row = CustomerMappingModel(
                    partner_id=partner_id,
                    customer_id=customer_id,
                    contact_id=contact_id,
                )
                self._session.add(row)
            else:
                row.contact_id = contact_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "customer_mapping_set",
            extra={"partner_id": partner_id, "customer_id": customer_id},
        )
        return row.to_dto()

    def set_product_mapping(
        self,
        partner_id: str,
        product_id: str,
        account_code: str | None = None,
        tax_type: str | None = None,
    ) -> ProductMapping:
        """Store the product mapping as given; None leaves a field unmapped."""
        try:
            row = self._product_row(partner_id, product_id)
            if row is None:
                row = ProductMappingModel(
                    partner_id=partner_id,
                    product_id=product_id,
                    account_code=account_code,
                    tax_type=tax_type,
                )
                self._session.add(row)
            else:
                row.account_code = account_code
                row.tax_type = tax_type
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        mapping = row.to_dto()
        logger.info(
            "product_mapping_set",
            extra={
                "partner_id": partner_id,
                "product_id": product_id,
                "complete": mapping.is_complete,
            },
        )
        return mapping

    def clear_customer_mapping(self, partner_id: str, customer_id: str) -> None:
        try:
            row = self._customer_row(partner_id, customer_id)
            if row is not None:
                self._session.delete(row)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "customer_mapping_cleared",
            extra={"partner_id": partner_id, "customer_id": customer_id},
        )

    def clear_product_mapping(self, partner_id: str, product_id: str) -> None:
        try:
            row = self._product_row(partner_id, product_id)
            if row is not None:
                self._session.delete(row)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "product_mapping_cleared",
            extra={"partner_id": partner_id, "product_id": product_id},
        )

    def customer_mappings(self, partner_id: str) -> list[CustomerMapping]:
        rows = self._session.scalars(
            select(CustomerMappingModel)
            .where(CustomerMappingModel.partner_id == partner_id)
            .order_by(CustomerMappingModel.customer_id)
        )
        return [r.to_dto() for r in rows]

    def product_mappings(self, partner_id: str) -> list[ProductMapping]:
        rows = self._session.scalars(
            select(ProductMappingModel)
            .where(ProductMappingModel.partner_id == partner_id)
            .order_by(ProductMappingModel.product_id)
        )
        return [r.to_dto() for r in rows]

    # =========================================================================
    # Translation
    # =========================================================================

    def is_fully_mapped(self, order_id) -> bool:
        try:
            self.resolve(order_id)
        except IncompleteMapping:
            return False
        return True

    def resolve(self, order_id) -> ResolvedMapping:
        """
        External identifiers for the order's customer and ledger products.

        Raises:
            IncompleteMapping: listing every missing customer/product mapping.
            OrderNotFound: the order has no billing ledger.
        """
        ledger = self._session.scalars(
            select(BillingLedgerModel).where(BillingLedgerModel.order_id == order_id)
        ).one_or_none()
        if ledger is None:
            raise OrderNotFound(str(order_id))

        partner_id = ledger.partner_id
        product_ids = list(dict.fromkeys(item.product_id for item in ledger.items))

        customer = self._customer_row(partner_id, ledger.customer_id)
        missing_customers = [] if customer is not None else [ledger.customer_id]

        mapped: dict[str, ProductMapping] = {}
        if product_ids:
            rows = self._session.scalars(
                select(ProductMappingModel).where(
                    ProductMappingModel.partner_id == partner_id,
                    ProductMappingModel.product_id.in_(product_ids),
                )
            )
            mapped = {r.product_id: r.to_dto() for r in rows}

        missing_products: dict[str, list[str]] = {}
        for product_id in sorted(product_ids):
            mapping = mapped.get(product_id)
            if mapping is None:
                missing_products[product_id] = ["account_code", "tax_type"]
            elif not mapping.is_complete:
                missing_products[product_id] = mapping.missing_fields

        if missing_customers or missing_products:
            logger.info(
                "accounting_mapping_incomplete",
                extra={
                    "order_id": str(order_id),
                    "missing_customer_ids": missing_customers,
                    "missing_products": missing_products,
                },
            )
            raise IncompleteMapping(str(order_id), missing_customers, missing_products)

        return ResolvedMapping(
            order_id=ledger.order_id,
            contact_id=customer.contact_id,
            products=mapped,
        )

    # =========================================================================
    # External validation
    # =========================================================================

    def find_stale_mappings(
        self, partner_id: str, ledger_client: LedgerClient,
    ) -> list[StaleMapping]:
        """Mappings that reference contacts, accounts or tax rates the ledger no longer has."""
        contacts = {c.contact_id for c in ledger_client.list_contacts()}
        accounts = {a.code for a in ledger_client.list_accounts()}
        tax_types = {t.tax_type for t in ledger_client.list_tax_rates()}

        stale: list[StaleMapping] = []
        for customer in self.customer_mappings(partner_id):
            if customer.contact_id not in contacts:
                stale.append(
                    StaleMapping(MappingKind.CUSTOMER, customer.customer_id, "contact_id", customer.contact_id)
                )
        for product in self.product_mappings(partner_id):
            if product.account_code and product.account_code not in accounts:
                stale.append(
                    StaleMapping(MappingKind.PRODUCT, product.product_id, "account_code", product.account_code)
                )
            if product.tax_type and product.tax_type not in tax_types:
                stale.append(
                    StaleMapping(MappingKind.PRODUCT, product.product_id, "tax_type", product.tax_type)
                )

        log = logger.warning if stale else logger.info
        log(
            "stale_mapping_check_completed",
            extra={"partner_id": partner_id, "stale_count": len(stale)},
        )
        return stale

    # =========================================================================
    # Internal
    # =========================================================================

    def _customer_row(self, partner_id: str, customer_id: str) -> CustomerMappingModel | None:
        return self._session.scalars(
            select(CustomerMappingModel).where(
                CustomerMappingModel.partner_id == partner_id,
                CustomerMappingModel.customer_id == customer_id,
            )
        ).one_or_none()

    def _product_row(self, partner_id: str, product_id: str) -> ProductMappingModel | None:
        return self._session.scalars(
            select(ProductMappingModel).where(
                ProductMappingModel.partner_id == partner_id,
                ProductMappingModel.product_id == product_id,
            )
        ).one_or_none()
