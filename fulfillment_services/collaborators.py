"""
External collaborator protocols and their DTOs.

Contract:
    The fulfillment core never talks to a concrete blob store, message bus,
    accounting ledger, product catalog or user directory.  It is handed
    objects satisfying these protocols.  Implementations live with the
    application that wires the core together.

Architecture: fulfillment_services.  No DB or ORM imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, BinaryIO, Callable, Protocol, Sequence, runtime_checkable

from fulfillment_engines.billing import CatalogProduct, CatalogVariation

__all__ = [
    "BlobStore",
    "CatalogProduct",
    "CatalogVariation",
    "ExternalAccount",
    "ExternalContact",
    "ExternalInvoice",
    "ExternalTaxRate",
    "InvoiceLine",
    "InvoiceRequest",
    "LedgerClient",
    "PartnerDirectory",
    "ProductCatalog",
    "ProgressCallback",
    "PubSubPublisher",
    "StoredBlob",
    "UploadFile",
]


# ---------------------------------------------------------------------------
# Blob store
# ---------------------------------------------------------------------------

ProgressCallback = Callable[[int], None]


@dataclass(frozen=True)
class UploadFile:
    """A deliverable handed to the blob store."""

    file_name: str
    content: bytes
    mime_type: str = "application/octet-stream"
    folder: str | None = None
    original_name: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class StoredBlob:
    url: str
    path: str


@runtime_checkable
class BlobStore(Protocol):
    """Upload and download of order deliverables."""

    def upload(
        self,
        order_id: str,
        file: UploadFile,
        on_progress: ProgressCallback,
    ) -> StoredBlob:
        """Store one file; call on_progress with 0-100 as bytes are sent."""
        ...

    def download(self, order_id: str) -> BinaryIO:
        """Zip stream of every deliverable of an order."""
        ...


# ---------------------------------------------------------------------------
# Pub/sub
# ---------------------------------------------------------------------------


@runtime_checkable
class PubSubPublisher(Protocol):
    def publish(self, topic: str, record: dict[str, Any]) -> None:
        """Publish one record.  Raises on transport failure."""
        ...


# ---------------------------------------------------------------------------
# External accounting ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvoiceLine:
    description: str
    quantity: int
    unit_amount: Decimal
    account_code: str
    tax_type: str


@dataclass(frozen=True)
class InvoiceRequest:
    """Point-in-time invoice payload; line amounts are tax exclusive."""

    contact_id: str
    lines: tuple[InvoiceLine, ...]
    status: str
    reference: str
    date: date
    due_date: date
    line_amount_types: str = "Exclusive"


@dataclass(frozen=True)
class ExternalInvoice:
    invoice_id: str
    invoice_number: str | None = None


@dataclass(frozen=True)
class ExternalContact:
    contact_id: str
    name: str = ""


@dataclass(frozen=True)
class ExternalAccount:
    code: str
    name: str = ""


@dataclass(frozen=True)
class ExternalTaxRate:
    tax_type: str
    name: str = ""
    rate: Decimal | None = None


@runtime_checkable
class LedgerClient(Protocol):
    """External accounting ledger API."""

    def create_invoice(self, request: InvoiceRequest) -> ExternalInvoice:
        ...

    def list_contacts(self) -> Sequence[ExternalContact]:
        ...

    def list_accounts(self) -> Sequence[ExternalAccount]:
        ...

    def list_tax_rates(self) -> Sequence[ExternalTaxRate]:
        ...


# ---------------------------------------------------------------------------
# Catalog and directory
# ---------------------------------------------------------------------------


@runtime_checkable
class ProductCatalog(Protocol):
    def get_product(self, product_id: str) -> CatalogProduct | None:
        ...


@runtime_checkable
class PartnerDirectory(Protocol):
    def partner_admin_ids(self, partner_id: str) -> Sequence[str]:
        ...
