"""
Module: fee_ledger.db.base
Responsibility: Declarative bases shared by every ledger table: uuid4
    primary keys, the column type map and the audit stamp columns.
Architecture position: Kernel > DB.  Imports nothing from the rest of the
    kernel.

Invariants enforced:
    - Ids are uuid4 values held in String(36), portable across PostgreSQL
      and SQLite.
    - A Decimal annotation always means Numeric(18, 2).
    - Rows derived from TrackedBase carry their creator and last editor.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, 36-character text in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    """
    Root of the ORM model tree.

    Annotated columns pick their SQL type from ``type_annotation_map``:
    money is Numeric(18, 2), timestamps are timezone-aware and plain ints
    are BigInteger so counters never overflow.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 2),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds created/updated stamps.

    created_by_id is mandatory.  updated_by_id stays NULL until a service
    first modifies the row.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString())
