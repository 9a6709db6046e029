"""
Module: expense_kernel.models.approval
Responsibility: ORM persistence for per-level approval records.

Architecture position: Kernel > Models.

Invariants enforced:
    - At most one approval per (expense_id, step_number): unique constraint.
    - Status values limited by a check constraint.
    - Once decided (approved, rejected, cancelled) an approval is immutable;
      approvals are never deleted (ORM listener in db/immutability.py).
    - Decisions are written with ``UPDATE ... WHERE status = 'pending'`` by
      ApprovalWorkflowService, so two concurrent decisions cannot both land.

Failure modes:
    - IntegrityError on a duplicate (expense_id, step_number).
    - ImmutabilityViolationError on ORM update/delete of a decided approval.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString
from expense_kernel.domain.dtos import ApprovalRecord
from expense_kernel.domain.workflow import ApprovalStatus


class Approval(Base):
    """One approver's decision at one level of one expense's chain.

    ``delegated_from_id`` keeps the approver originally resolved for the
    level, even across repeated delegations.
    """

    __tablename__ = "approvals"

    __table_args__ = (
        UniqueConstraint("expense_id", "step_number", name="uq_approvals_expense_step"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="ck_approvals_valid_status",
        ),
        CheckConstraint("step_number >= 1", name="ck_approvals_step_positive"),
        # Approver inbox: pending approvals for a user
        Index("ix_approvals_approver_status", "approver_id", "status", "created_at"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expenses.id"), nullable=False,
    )
    workflow_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=True,
    )
    approver_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    step_number: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ApprovalStatus.PENDING.value,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    delegated_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    delegated_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    delegation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    delegated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Approval {self.id} expense={self.expense_id} "
            f"step={self.step_number} [{self.status}]>"
        )

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING.value

    def to_dto(self) -> ApprovalRecord:
        return ApprovalRecord(
            id=self.id,
            expense_id=self.expense_id,
            approver_id=self.approver_id,
            step_number=self.step_number,
            status=ApprovalStatus(self.status),
            workflow_id=self.workflow_id,
            comments=self.comments,
            rejection_reason=self.rejection_reason,
            decided_at=self.decided_at,
            delegated_from_id=self.delegated_from_id,
            delegated_by_id=self.delegated_by_id,
            delegation_reason=self.delegation_reason,
            delegated_at=self.delegated_at,
            created_at=self.created_at,
        )
