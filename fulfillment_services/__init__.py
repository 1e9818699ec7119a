"""
fulfillment_services -- Stateful services and collaborator contracts.

Responsibility:
    The outbox dispatcher, the notification inbox and the protocols for
    every external collaborator (blob store, pub/sub, accounting ledger,
    product catalog, partner directory).

Architecture position:
    Services -- may import fulfillment_kernel, fulfillment_engines and
    fulfillment_config.  MUST NOT import fulfillment_modules.
"""

from fulfillment_services.collaborators import (
    BlobStore,
    LedgerClient,
    PartnerDirectory,
    ProductCatalog,
    PubSubPublisher,
    StoredBlob,
    UploadFile,
)
from fulfillment_services.dispatcher import ActivityDispatcher, DispatchReport
from fulfillment_services.inbox import NotificationInbox

__all__ = [
    "ActivityDispatcher",
    "BlobStore",
    "DispatchReport",
    "LedgerClient",
    "NotificationInbox",
    "PartnerDirectory",
    "ProductCatalog",
    "PubSubPublisher",
    "StoredBlob",
    "UploadFile",
]
