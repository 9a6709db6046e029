"""
Data transfer objects for the expense workflow.

Commands are the explicit input structs of the workflow operations; records
are immutable snapshots of persisted rows; outcomes are what a successful
operation hands back.  Nothing here touches the ORM.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from expense_kernel.domain.workflow import (
    ApprovalStatus,
    ApproverResolution,
    ExpenseStatus,
    WorkflowConfig,
)


# =========================================================================
# Commands
# =========================================================================


@dataclass(frozen=True)
class SubmitExpense:
    expense_id: UUID
    actor_id: UUID


@dataclass(frozen=True)
class ApproveApproval:
    approval_id: UUID
    actor_id: UUID
    comments: str | None = None


@dataclass(frozen=True)
class RejectApproval:
    approval_id: UUID
    actor_id: UUID
    comments: str
    reason: str | None = None


@dataclass(frozen=True)
class BulkDecision:
    """Same decision applied to several approvals, each in its own transaction.

    ``comments`` is mandatory (and length-checked) when used for bulk reject.
    """

    approval_ids: tuple[UUID, ...]
    actor_id: UUID
    comments: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class DelegateApproval:
    approval_id: UUID
    actor_id: UUID
    delegate_id: UUID
    reason: str | None = None


@dataclass(frozen=True)
class MarkExpensePaid:
    expense_id: UUID
    actor_id: UUID


# =========================================================================
# Records
# =========================================================================


@dataclass(frozen=True)
class ExpenseRecord:
    id: UUID
    company_id: UUID
    submitter_id: UUID
    amount: Decimal
    currency: str
    status: ExpenseStatus
    amount_in_company_currency: Decimal | None = None
    exchange_rate: Decimal | None = None
    category: str | None = None
    description: str | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    paid_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ApprovalRecord:
    id: UUID
    expense_id: UUID
    approver_id: UUID
    step_number: int
    status: ApprovalStatus
    workflow_id: UUID | None = None
    comments: str | None = None
    rejection_reason: str | None = None
    decided_at: datetime | None = None
    delegated_from_id: UUID | None = None
    delegated_by_id: UUID | None = None
    delegation_reason: str | None = None
    delegated_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_delegated(self) -> bool:
        return self.delegated_from_id is not None


@dataclass(frozen=True)
class WorkflowRecord:
    id: UUID
    company_id: UUID
    name: str
    config: WorkflowConfig
    priority: int
    is_active: bool
    created_at: datetime | None = None


# =========================================================================
# Outcomes
# =========================================================================


@dataclass(frozen=True)
class SubmissionOutcome:
    """``approval`` is None when the expense auto-approved."""

    expense: ExpenseRecord
    resolution: ApproverResolution
    approval: ApprovalRecord | None = None


@dataclass(frozen=True)
class DecisionOutcome:
    """Result of an approve or reject.

    ``next_approval`` is set when approving activated another level;
    ``cancelled`` lists sibling approvals cancelled by a rejection.
    """

    approval: ApprovalRecord
    expense: ExpenseRecord
    next_approval: ApprovalRecord | None = None
    cancelled: tuple[ApprovalRecord, ...] = ()


@dataclass(frozen=True)
class BulkItemFailure:
    """One approval a bulk decision could not process.

    ``category`` is the failure class (``not_found``,
    ``invalid_state_transition``, ``validation_failed``, ...).
    """

    approval_id: UUID
    error_code: str
    message: str
    category: str = ""


@dataclass(frozen=True)
class BulkDecisionReport:
    succeeded: tuple[UUID, ...] = ()
    failed: tuple[BulkItemFailure, ...] = ()
    outcomes: tuple[DecisionOutcome, ...] = field(default=(), repr=False)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def failure_for(self, approval_id: UUID) -> BulkItemFailure | None:
        for failure in self.failed:
            if failure.approval_id == approval_id:
                return failure
        return None


@dataclass(frozen=True)
class ApprovalStats:
    approver_id: UUID
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.approved + self.rejected + self.cancelled
