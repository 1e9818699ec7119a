"""
Order Selector (``fulfillment_modules.orders.selector``).

Read-only order queries for dashboards and order views.  Returns frozen
``Order`` / ``OrderFile`` DTOs; never writes.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from fulfillment_kernel.selectors.base import BaseSelector
from fulfillment_modules.orders.models import (
    Order,
    OrderFile,
    OrderStatus,
    ServiceSelection,
)
from fulfillment_modules.orders.orm import OrderFileModel, OrderModel


class OrderSelector(BaseSelector[OrderModel]):
    """Order, deliverable and status-count queries."""

    def get(self, order_id: UUID) -> Order | None:
        row = self.session.get(OrderModel, order_id)
        return row.to_dto() if row else None

    def get_by_number(self, order_number: str) -> Order | None:
        row = self.session.scalars(
            select(OrderModel).where(OrderModel.order_number == order_number)
        ).one_or_none()
        return row.to_dto() if row else None

    def list_by_status(
        self,
        partner_id: str,
        status: OrderStatus | None = None,
        editor_id: str | None = None,
    ) -> list[Order]:
        """
        A partner's orders, newest order number first.

        Args:
            partner_id: Owning partner.
            status: Only orders in this state.
            editor_id: Only orders assigned to this editor.
        """
        stmt = select(OrderModel).where(OrderModel.partner_id == partner_id)
        if status is not None:
            stmt = stmt.where(OrderModel.status == OrderStatus(status).value)
        if editor_id is not None:
            stmt = stmt.where(OrderModel.editor_id == editor_id)
        stmt = stmt.order_by(OrderModel.order_number.desc())
        return [r.to_dto() for r in self.session.scalars(stmt)]

    def status_counts(self, partner_id: str) -> dict[OrderStatus, int]:
        """Order count per status; every status present, zero when empty."""
        counts = {status: 0 for status in OrderStatus}
        rows = self.session.execute(
            select(OrderModel.status, func.count(OrderModel.id))
            .where(OrderModel.partner_id == partner_id)
            .group_by(OrderModel.status)
        ).all()
        for status, count in rows:
            counts[OrderStatus(status)] = count
        return counts

    def files(
        self,
        order_id: UUID,
        folder: str | None = None,
        visible_only: bool = False,
    ) -> list[OrderFile]:
        stmt = select(OrderFileModel).where(OrderFileModel.order_id == order_id)
        if folder is not None:
            stmt = stmt.where(OrderFileModel.folder == folder)
        if visible_only:
            stmt = stmt.where(OrderFileModel.is_visible.is_(True))
        stmt = stmt.order_by(OrderFileModel.uploaded_at, OrderFileModel.file_name)
        return [r.to_dto() for r in self.session.scalars(stmt)]

    def services(self, order_id: UUID) -> tuple[ServiceSelection, ...]:
        row = self.session.get(OrderModel, order_id)
        return row.to_dto().services if row else ()
