"""
Revision policy store and resolver (``fulfillment_modules.orders.revisions``).

Responsibility
--------------
Persists per-customer revision overrides and resolves a customer's
revision entitlement by handing the stored override and the partner
settings to the pure ``fulfillment_engines.revision_policy`` engine.

Invariants enforced
-------------------
* The resolver only reads.  Overrides change only through
  ``RevisionPolicyStore.set_policy`` / ``clear_policy``.
* ``custom(0)`` is stored as a row and means zero revisions; it is
  distinct from having no row.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_config.schema import PartnerSettings
from fulfillment_engines.revision_policy import (
    RevisionAllowance,
    RevisionPolicy,
    RevisionPolicyKind,
    resolve_revision_allowance,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_modules.orders.orm import CustomerRevisionPolicyModel

logger = get_logger("modules.orders.revisions")


class RevisionPolicyStore:
    """
    Read/write access to customer revision overrides.

    Transaction boundary: ``set_policy`` and ``clear_policy`` commit on
    success and roll back on failure.  ``get_policy`` only reads.
    """

    def __init__(self, session: Session, partner_id: str):
        self._session = session
        self._partner_id = partner_id

    def _row(self, customer_id: str) -> CustomerRevisionPolicyModel | None:
        return self._session.scalars(
            select(CustomerRevisionPolicyModel).where(
                CustomerRevisionPolicyModel.partner_id == self._partner_id,
                CustomerRevisionPolicyModel.customer_id == customer_id,
            )
        ).one_or_none()

    def get_policy(self, customer_id: str) -> RevisionPolicy | None:
        row = self._row(customer_id)
        return row.to_policy() if row else None

    def set_policy(self, customer_id: str, policy: RevisionPolicy) -> RevisionPolicy:
        """
        Store ``policy`` for the customer.

        Setting ``RevisionPolicy.default()`` removes the override.
        """
        try:
            if policy.kind == RevisionPolicyKind.DEFAULT:
                self._delete(customer_id)
            else:
                row = self._row(customer_id)
                if row is None:
                    row = CustomerRevisionPolicyModel(
                        partner_id=self._partner_id,
                        customer_id=customer_id,
                        kind=policy.kind.value,
                        revision_limit=policy.limit,
                    )
                    self._session.add(row)
                else:
                    row.kind = policy.kind.value
                    row.revision_limit = policy.limit
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "revision_policy_set",
            extra={
                "partner_id": self._partner_id,
                "customer_id": customer_id,
                "kind": policy.kind.value,
                "limit": policy.limit,
            },
        )
        return policy

    def clear_policy(self, customer_id: str) -> None:
        """Remove the customer's override so the partner default applies."""
        try:
            self._delete(customer_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "revision_policy_cleared",
            extra={"partner_id": self._partner_id, "customer_id": customer_id},
        )

    def _delete(self, customer_id: str) -> None:
        row = self._row(customer_id)
        if row is not None:
            self._session.delete(row)
            self._session.flush()


class RevisionPolicyResolver:
    """Effective revision entitlement for a customer."""

    def __init__(self, session: Session, settings: PartnerSettings):
        self._settings = settings
        self._store = RevisionPolicyStore(session, settings.partner_id)

    def resolve(self, customer_id: str, revision_count: int) -> RevisionAllowance:
        policy = self._store.get_policy(customer_id)
        allowance = resolve_revision_allowance(
            policy=policy,
            revision_count=revision_count,
            default_limit=self._settings.default_revision_limit,
            enforce_limit=self._settings.enforce_revision_limit,
        )
        logger.debug(
            "revision_allowance_resolved",
            extra={
                "customer_id": customer_id,
                "revision_count": revision_count,
                "source": allowance.source.value,
                "limit": allowance.limit,
                "allowed": allowance.allowed,
            },
        )
        return allowance
