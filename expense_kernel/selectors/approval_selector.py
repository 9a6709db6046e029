"""
ApprovalSelector -- read-only approval queries.

Backs the approver inbox (pending approvals), the per-expense approval
history and the approver statistics panel.  Company scoping goes through
the parent expense.
"""

from uuid import UUID

from sqlalchemy import func, select

from expense_kernel.domain.dtos import ApprovalRecord, ApprovalStats, ExpenseRecord
from expense_kernel.domain.workflow import ApprovalStatus
from expense_kernel.models.approval import Approval
from expense_kernel.models.expense import Expense
from expense_kernel.selectors.base import BaseSelector


class ApprovalSelector(BaseSelector[Approval]):
    def pending_for_approver(self, approver_id: UUID, company_id: UUID) -> list[ApprovalRecord]:
        """Pending approvals assigned to ``approver_id``, oldest first."""
        rows = self.session.execute(
            select(Approval)
            .join(Expense, Expense.id == Approval.expense_id)
            .where(
                Approval.approver_id == approver_id,
                Approval.status == ApprovalStatus.PENDING.value,
                Expense.company_id == company_id,
            )
            .order_by(Approval.created_at, Approval.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def history_for_expense(self, expense_id: UUID, company_id: UUID) -> list[ApprovalRecord]:
        """Every approval of the expense in step order; empty for another company's expense."""
        rows = self.session.execute(
            select(Approval)
            .join(Expense, Expense.id == Approval.expense_id)
            .where(
                Approval.expense_id == expense_id,
                Expense.company_id == company_id,
            )
            .order_by(Approval.step_number)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def stats_for_approver(self, approver_id: UUID, company_id: UUID) -> ApprovalStats:
        counts = dict(
            self.session.execute(
                select(Approval.status, func.count(Approval.id))
                .join(Expense, Expense.id == Approval.expense_id)
                .where(
                    Approval.approver_id == approver_id,
                    Expense.company_id == company_id,
                )
                .group_by(Approval.status)
            ).all()
        )
        return ApprovalStats(
            approver_id=approver_id,
            pending=counts.get(ApprovalStatus.PENDING.value, 0),
            approved=counts.get(ApprovalStatus.APPROVED.value, 0),
            rejected=counts.get(ApprovalStatus.REJECTED.value, 0),
            cancelled=counts.get(ApprovalStatus.CANCELLED.value, 0),
        )

    def get_expense(self, expense_id: UUID, company_id: UUID) -> ExpenseRecord | None:
        expense = self.session.get(Expense, expense_id)
        if expense is None or expense.company_id != company_id:
            return None
        return expense.to_dto()
