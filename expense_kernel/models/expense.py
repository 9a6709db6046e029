"""
Module: expense_kernel.models.expense
Responsibility: ORM persistence for expense claims.

Architecture position: Kernel > Models.

Invariants enforced:
    - Status values limited by a check constraint; transitions are enforced
      by ApprovalWorkflowService against ``EXPENSE_TRANSITIONS``.
    - amount, currency, amount_in_company_currency and exchange_rate are
      frozen once the expense leaves draft (ORM listener in
      db/immutability.py).
    - Approved and paid expenses are never deleted (same listener module).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString
from expense_kernel.domain.dtos import ExpenseRecord
from expense_kernel.domain.workflow import ExpenseSnapshot, ExpenseStatus


class Expense(Base):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'submitted', 'approved', 'rejected', 'paid')",
            name="ck_expenses_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_expenses_positive_amount"),
        Index("ix_expenses_company_status", "company_id", "status"),
        Index("ix_expenses_submitter", "submitter_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    submitter_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount_in_company_currency: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )
    exchange_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExpenseStatus.DRAFT.value,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Expense {self.id} {self.amount} {self.currency} [{self.status}]>"

    def to_snapshot(self) -> ExpenseSnapshot:
        """Resolution input.  Only valid once the conversion is frozen."""
        if self.amount_in_company_currency is None:
            raise ValueError(f"Expense {self.id} has no company-currency amount")
        return ExpenseSnapshot(
            expense_id=self.id,
            company_id=self.company_id,
            submitter_id=self.submitter_id,
            amount_in_company_currency=self.amount_in_company_currency,
            category=self.category,
        )

    def to_dto(self) -> ExpenseRecord:
        return ExpenseRecord(
            id=self.id,
            company_id=self.company_id,
            submitter_id=self.submitter_id,
            amount=self.amount,
            currency=self.currency,
            status=ExpenseStatus(self.status),
            amount_in_company_currency=self.amount_in_company_currency,
            exchange_rate=self.exchange_rate,
            category=self.category,
            description=self.description,
            submitted_at=self.submitted_at,
            approved_at=self.approved_at,
            rejected_at=self.rejected_at,
            paid_at=self.paid_at,
            created_at=self.created_at,
        )
