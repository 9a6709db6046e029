"""
Module: expense_kernel.models.user
Responsibility: ORM persistence for the user directory the workflow engine
    reads: role, reporting line and active flag.  Account management belongs
    to an outer layer; the engine never writes users.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString
from expense_kernel.domain.workflow import DirectoryUser


class User(Base):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'manager', 'employee')",
            name="ck_users_valid_role",
        ),
        UniqueConstraint("company_id", "email", name="uq_users_company_email"),
        # Role-based approver lookup: active users by role, oldest first
        Index("ix_users_company_role_active", "company_id", "role", "is_active", "created_at"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="employee")
    manager_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role}>"

    def to_directory_user(self) -> DirectoryUser:
        return DirectoryUser(
            user_id=self.id,
            company_id=self.company_id,
            role=self.role,
            is_active=self.is_active,
            manager_id=self.manager_id,
            created_at=self.created_at,
        )
