"""
Partner settings schema.

Defines the per-partner configuration consumed by the order state
machine, the revision resolver, the billing ledger and the dispatcher.
Settings are an explicit value passed into each service; there is no
process-wide singleton.  YAML documents are parsed into this type by
``fulfillment_config.loader``.

Field defaults represent what a new partner gets before touching any
setting:

    settings = PartnerSettings(
        partner_id="studio-7",
        default_revision_limit=3,
        invoice_trigger=InvoiceTrigger.ON_DELIVERED,
    )
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Self

from fulfillment_kernel.logging_config import get_logger

logger = get_logger("config.schema")


class InvoiceTrigger(str, Enum):
    """When an invoice is raised for an order."""

    NEVER = "never"
    ON_DELIVERED = "on_delivered"
    MANUAL_ONLY = "manual_only"


class InvoiceStatusPreference(str, Enum):
    """Status a freshly raised invoice is created with in the external ledger."""

    DRAFT = "draft"
    AUTHORISED = "authorised"


@dataclass(frozen=True)
class PartnerSettings:
    """
    Configuration for one partner's fulfillment workflow.

    Revision rounds:
        default_revision_limit applies to customers without an override.
        enforce_revision_limit=False makes that default unlimited.

    Invoicing:
        invoice_trigger, invoice_status, invoice_due_days, and the bounded
        retry of automatic raises that failed after approval.

    Dispatch:
        Outbox retry ceiling and exponential backoff bounds.
    """

    partner_id: str = "default"

    # Revision rounds
    default_revision_limit: int = 2
    enforce_revision_limit: bool = True

    # Invoicing
    invoice_trigger: InvoiceTrigger = InvoiceTrigger.MANUAL_ONLY
    invoice_status: InvoiceStatusPreference = InvoiceStatusPreference.DRAFT
    invoice_due_days: int = 7
    invoice_retry_max_attempts: int = 3
    invoice_retry_base_delay_seconds: float = 60.0
    invoice_retry_max_delay_seconds: float = 3600.0

    # Deliverables
    deliverable_expiry_days: int = 30
    upload_max_workers: int = 4

    # Dispatch outbox
    dispatch_max_attempts: int = 5
    dispatch_backoff_base_seconds: float = 2.0
    dispatch_backoff_max_seconds: float = 300.0

    def __post_init__(self) -> None:
        # Coerce plain strings (from dicts / YAML) into enums
        if not isinstance(self.invoice_trigger, InvoiceTrigger):
            object.__setattr__(
                self, "invoice_trigger", _enum_value(InvoiceTrigger, self.invoice_trigger, "invoice_trigger")
            )
        if not isinstance(self.invoice_status, InvoiceStatusPreference):
            object.__setattr__(
                self,
                "invoice_status",
                _enum_value(InvoiceStatusPreference, self.invoice_status, "invoice_status"),
            )

        if not self.partner_id or not str(self.partner_id).strip():
            raise ValueError("partner_id cannot be empty")
        if self.default_revision_limit < 0:
            raise ValueError(
                f"default_revision_limit must be >= 0, got {self.default_revision_limit}"
            )
        if self.invoice_due_days < 0:
            raise ValueError("invoice_due_days cannot be negative")
        if self.deliverable_expiry_days <= 0:
            raise ValueError("deliverable_expiry_days must be positive")
        if self.upload_max_workers < 1:
            raise ValueError("upload_max_workers must be >= 1")
        if self.dispatch_max_attempts < 1:
            raise ValueError("dispatch_max_attempts must be >= 1")
        if self.invoice_retry_max_attempts < 1:
            raise ValueError("invoice_retry_max_attempts must be >= 1")
        if self.dispatch_backoff_base_seconds < 0:
            raise ValueError("dispatch_backoff_base_seconds cannot be negative")
        if self.dispatch_backoff_max_seconds < self.dispatch_backoff_base_seconds:
            raise ValueError(
                "dispatch_backoff_max_seconds must be >= dispatch_backoff_base_seconds"
            )
        if self.invoice_retry_base_delay_seconds < 0:
            raise ValueError("invoice_retry_base_delay_seconds cannot be negative")
        if self.invoice_retry_max_delay_seconds < self.invoice_retry_base_delay_seconds:
            raise ValueError(
                "invoice_retry_max_delay_seconds must be >= invoice_retry_base_delay_seconds"
            )

        logger.info(
            "partner_settings_initialized",
            extra={
                "partner_id": self.partner_id,
                "default_revision_limit": self.default_revision_limit,
                "enforce_revision_limit": self.enforce_revision_limit,
                "invoice_trigger": self.invoice_trigger.value,
                "invoice_status": self.invoice_status.value,
                "dispatch_max_attempts": self.dispatch_max_attempts,
            },
        )

    @classmethod
    def with_defaults(cls, partner_id: str = "default") -> Self:
        """Create settings a new partner starts with."""
        logger.info("partner_settings_created_with_defaults")
        return cls(partner_id=partner_id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Create settings from a dictionary (e.g. loaded from YAML).

        Raises:
            ValueError: On keys that are not settings fields.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown partner settings keys: {unknown}")
        logger.info(
            "partner_settings_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["invoice_trigger"] = self.invoice_trigger.value
        data["invoice_status"] = self.invoice_status.value
        return data


def _enum_value(enum_cls: type[Enum], value: Any, field_name: str):
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        valid = sorted(m.value for m in enum_cls)
        raise ValueError(
            f"{field_name} must be one of {valid}, got '{value}'"
        ) from None
