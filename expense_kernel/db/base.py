"""
Module: expense_kernel.db.base
Responsibility: declarative base shared by every ORM model in the kernel.
Architecture position: Kernel > DB.  Imports nothing from models/,
    services/, selectors/ or domain/.

Column conventions set here:
    - ``id`` is a uuid4 primary key stored as 36-character text, so the same
      schema runs on PostgreSQL and SQLite.
    - ``Decimal`` columns are Numeric(38, 9); money and rates never pass
      through float.
    - ``datetime`` columns are timezone-aware.
    - ``int`` columns are BigInteger (audit sequence numbers).
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, ``VARCHAR(36)`` in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
