"""
Module: expense_kernel.models.sequence_counter
Responsibility: Named counter rows backing SequenceService.  The locked row
    is the only source of the next audit sequence number.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
