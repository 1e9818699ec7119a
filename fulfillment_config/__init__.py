"""
fulfillment_config -- partner settings.

``PartnerSettings`` is passed explicitly into the state machine, the
revision resolver, the billing ledger and the dispatcher.  YAML documents
are parsed by ``fulfillment_config.loader``.
"""

from fulfillment_config.loader import (
    SettingsDocument,
    compute_checksum,
    load_partner_settings,
    load_settings_document,
    parse_settings_document,
)
from fulfillment_config.schema import (
    InvoiceStatusPreference,
    InvoiceTrigger,
    PartnerSettings,
)

__all__ = [
    "InvoiceStatusPreference",
    "InvoiceTrigger",
    "PartnerSettings",
    "SettingsDocument",
    "compute_checksum",
    "load_partner_settings",
    "load_settings_document",
    "parse_settings_document",
]
