"""
Module: expense_kernel.models.company
Responsibility: ORM persistence for tenants.  Every expense, user and
    workflow is scoped to exactly one company.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base


class Company(Base):
    """A tenant.  ``currency`` is the reporting currency expenses convert into."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Company {self.name} ({self.currency})>"
