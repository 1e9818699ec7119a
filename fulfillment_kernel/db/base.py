"""
Module: fulfillment_kernel.db.base
Responsibility: the declarative base every ORM model inherits, its column
    type conventions, and the TrackedBase row-timestamp mixin.
Architecture position: Kernel > DB.  Lowest import target in the kernel;
    imports nothing from models/, services/, selectors/ or outer layers.

Conventions:
    - Primary keys are uuid4 values stored as 36-character strings, so the
      same schema runs on PostgreSQL and SQLite.
    - Decimal columns are Numeric(38, 9).  Prices, tax rates and totals are
      never floats.
    - Datetimes are timezone-aware UTC in both directions.  SQLite drops the
      offset on write; it is restored on read so stored values compare with
      clock output.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class UUIDString(TypeDecorator):
    """UUID <-> String(36)."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime; naive values are taken to be UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return _as_utc(value)

    def process_result_value(self, value, dialect):
        return _as_utc(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        # Integer rather than BigInteger so SQLite autoincrement semantics hold
        int: Integer,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds server-set created_at/updated_at row metadata.

    Domain timestamps (date_accepted, raised_at, ...) come from the injected
    Clock, not from these columns.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False,
    )


UUID = PyUUID
