"""
Declarative base and shared column mixins.

Mutable rows (orders, vouchers, loyalty accounts, shipments) derive from
BaseModel. Append-only ledgers (status history, point transactions,
tracking events) derive from LedgerModel and carry no updated_at.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    __abstract__ = True

    def __repr__(self) -> str:
        keys = ", ".join(
            f"{column.name}={getattr(self, column.key, None)!r}"
            for column in self.__table__.primary_key.columns
        )
        return f"<{type(self).__name__}({keys})>"


class UUIDMixin:
    """Client-generated uuid4 primary key, known before flush."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class CreatedAtMixin:
    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        # clock_timestamp() keeps rows inserted in one transaction ordered
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.clock_timestamp(),
        )


class TimestampMixin(CreatedAtMixin):
    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    __abstract__ = True
    __mapper_args__ = {"eager_defaults": True}


class LedgerModel(Base, UUIDMixin, CreatedAtMixin):
    """Rows that are inserted once and never updated or deleted."""

    __abstract__ = True
    __mapper_args__ = {"eager_defaults": True}
