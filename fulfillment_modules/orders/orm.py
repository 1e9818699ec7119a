"""
Order ORM Models (``fulfillment_modules.orders.orm``).

Responsibility
--------------
SQLAlchemy persistence models for the orders module.  Maps frozen domain
dataclasses from ``models.py`` to database tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``fulfillment_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``fulfillment_kernel``.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import TrackedBase, UTCDateTime


# ---------------------------------------------------------------------------
# 1. OrderModel
# ---------------------------------------------------------------------------


class OrderModel(TrackedBase):
    """
    ORM model for orders.

    Guarantees:
        - order_number is unique (uq_orders_order_number).
        - version starts at 1 and is bumped by every committed transition;
          transitions are conditional UPDATEs on (id, version, status).
        - Rows are never deleted; terminal states are retained.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_orders_order_number"),
        Index("idx_orders_partner_status", "partner_id", "status"),
        Index("idx_orders_editor", "editor_id"),
        Index("idx_orders_customer", "customer_id"),
    )

    order_number: Mapped[str] = mapped_column(String(20), nullable=False)
    job_id: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    editor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    revision_count: Mapped[int] = mapped_column(nullable=False, default=0)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    revision_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)
    date_accepted: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    services: Mapped[list["OrderServiceModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderServiceModel.position",
        lazy="selectin",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from fulfillment_modules.orders.models import Order, OrderStatus

        return Order(
            id=self.id,
            order_number=self.order_number,
            job_id=self.job_id,
            customer_id=self.customer_id,
            partner_id=self.partner_id,
            status=OrderStatus(self.status),
            version=self.version,
            editor_id=self.editor_id,
            revision_count=self.revision_count,
            due_date=self.due_date,
            decline_reason=self.decline_reason,
            revision_notes=self.revision_notes,
            date_accepted=self.date_accepted,
            completed_at=self.completed_at,
            created_at=self.created_at,
            services=tuple(s.to_dto() for s in self.services),
        )

    def __repr__(self) -> str:
        return f"<OrderModel {self.order_number} {self.status} v{self.version}>"


# ---------------------------------------------------------------------------
# 2. OrderServiceModel
# ---------------------------------------------------------------------------


class OrderServiceModel(TrackedBase):
    """Service selection placed with an order."""

    __tablename__ = "order_services"

    __table_args__ = (
        Index("idx_order_services_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    service_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False, default=1)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    order: Mapped[OrderModel] = relationship(back_populates="services")

    def to_dto(self):
        from fulfillment_modules.orders.models import ServiceSelection

        return ServiceSelection(
            service_id=self.service_id,
            quantity=self.quantity,
            instructions=self.instructions,
        )


# ---------------------------------------------------------------------------
# 3. OrderFileModel
# ---------------------------------------------------------------------------


class OrderFileModel(TrackedBase):
    """
    ORM model for stored deliverables.

    Guarantees:
        - expires_at = uploaded_at + deliverable_expiry_days.
        - is_visible is the only field changed after insert (folder
          visibility toggles).
    """

    __tablename__ = "order_files"

    __table_args__ = (
        Index("idx_order_files_order_folder", "order_id", "folder"),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    folder: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    uploaded_by: Mapped[str] = mapped_column(String(100), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self):
        from fulfillment_modules.orders.models import OrderFile

        return OrderFile(
            id=self.id,
            order_id=self.order_id,
            file_name=self.file_name,
            original_name=self.original_name,
            file_size=self.file_size,
            mime_type=self.mime_type,
            url=self.url,
            path=self.path,
            folder=self.folder,
            is_visible=self.is_visible,
            uploaded_at=self.uploaded_at,
            expires_at=self.expires_at,
        )


# ---------------------------------------------------------------------------
# 4. CustomerRevisionPolicyModel
# ---------------------------------------------------------------------------


class CustomerRevisionPolicyModel(TrackedBase):
    """
    Per-customer revision override.

    Absence of a row means the partner default applies.  ``revision_limit``
    is set only for the ``custom`` kind.
    """

    __tablename__ = "customer_revision_policies"

    __table_args__ = (
        UniqueConstraint(
            "partner_id", "customer_id", name="uq_revision_policy_partner_customer"
        ),
    )

    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    revision_limit: Mapped[int | None] = mapped_column(nullable=True)

    def to_policy(self):
        from fulfillment_engines.revision_policy import RevisionPolicy, RevisionPolicyKind

        return RevisionPolicy(RevisionPolicyKind(self.kind), self.revision_limit)
