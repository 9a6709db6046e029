"""
expense_kernel.services.approval_workflow_service -- Expense approval state machine.

Responsibility:
    Drives an expense through submission, per-level approval, rejection and
    payment, and reassigns pending approvals by delegation.  Approver choice
    is delegated to the pure resolution engine; every transition is audited.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, selectors/ and
    the pure engines.  Flushes, never commits: the orchestrator owns the
    transaction.

Invariants enforced:
    - Expense and approval transitions follow ``EXPENSE_TRANSITIONS`` and
      ``APPROVAL_TRANSITIONS``; guard failures raise before any mutation.
    - At most one terminal decision per approval: decisions are written with
      ``UPDATE ... WHERE status = 'pending'`` and a zero rowcount raises
      ApprovalAlreadyProcessedError.
    - Step numbers are dense from 1; the next level is always ``step + 1``.
    - A chain is resolved under the workflow it started with
      (``Approval.workflow_id``), even if the company's active workflow
      changes mid-flight.
    - Every successful transition writes audit entries in the same
      transaction.

Lock order:
    expense row, then approval rows.  Every operation on one expense
    therefore serializes on the expense row.

Failure modes:
    - UserNotFoundError: actor unknown or inactive.
    - ExpenseNotFoundError / ApprovalNotFoundError: missing or in another
      company (also used when a non-submitter submits).
    - UnauthorizedApproverError / PermissionDeniedError: wrong actor.
    - InvalidStateTransitionError / ApprovalAlreadyProcessedError.
    - RejectionCommentTooShortError, InvalidDelegateError,
      ConversionMissingError.
    - WorkflowConfigurationError from a malformed stored workflow.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from expense_engines.approver_resolution import resolve_next_approver
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.dtos import (
    ApproveApproval,
    ApprovalRecord,
    DecisionOutcome,
    DelegateApproval,
    ExpenseRecord,
    MarkExpensePaid,
    RejectApproval,
    SubmissionOutcome,
    SubmitExpense,
    WorkflowRecord,
)
from expense_kernel.domain.workflow import (
    MIN_REJECTION_COMMENT_LENGTH,
    ApprovalStatus,
    ApproverResolution,
    ConditionalWorkflow,
    DisabledWorkflow,
    ExpenseSnapshot,
    ExpenseStatus,
    ResolutionOutcome,
    SequentialWorkflow,
    UserDirectory,
    UserRole,
    WorkflowConfig,
    can_transition_expense,
    parse_workflow_config,
    workflow_config_to_dict,
)
from expense_kernel.exceptions import (
    ApprovalAlreadyProcessedError,
    ApprovalNotFoundError,
    ConversionMissingError,
    ExpenseNotFoundError,
    InvalidDelegateError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    RejectionCommentTooShortError,
    UnauthorizedApproverError,
    UserNotFoundError,
)
from expense_kernel.logging_config import get_logger
from expense_kernel.models.approval import Approval
from expense_kernel.models.approval_workflow import ApprovalWorkflow
from expense_kernel.models.audit_log import AuditAction, AuditEntity
from expense_kernel.models.company import Company
from expense_kernel.models.expense import Expense
from expense_kernel.models.user import User
from expense_kernel.selectors.user_directory import SqlUserDirectory
from expense_kernel.services.auditor_service import AuditorService

logger = get_logger("services.approval_workflow")

_EXPENSE_AUDIT_FIELDS = (
    "status",
    "amount_in_company_currency",
    "exchange_rate",
    "submitted_at",
    "approved_at",
    "rejected_at",
    "paid_at",
)

_APPROVAL_AUDIT_FIELDS = (
    "status",
    "approver_id",
    "step_number",
    "comments",
    "rejection_reason",
    "decided_at",
    "delegated_from_id",
    "delegated_by_id",
    "delegation_reason",
    "delegated_at",
)


def _values(obj: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    return {name: getattr(obj, name) for name in fields}


def _changed(before: dict[str, Any], after: dict[str, Any]) -> tuple[dict, dict]:
    """Restrict a before/after pair to the keys whose value changed."""
    keys = [k for k in after if before.get(k) != after[k]]
    return {k: before.get(k) for k in keys}, {k: after[k] for k in keys}


class ApprovalWorkflowService:
    """
    Expense approval state machine and delegation.

    Contract:
        Each public method performs one complete transition inside the
        caller's transaction and returns immutable DTOs.  On any raised
        error the caller must roll back.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
        directory: UserDirectory | None = None,
        min_rejection_comment_length: int = MIN_REJECTION_COMMENT_LENGTH,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._directory = directory or SqlUserDirectory(session)
        self._min_comment_length = min_rejection_comment_length

    # =====================================================================
    # Loading and guards
    # =====================================================================

    def _load_actor(self, actor_id: UUID) -> User:
        actor = self._session.get(User, actor_id)
        if actor is None or not actor.is_active:
            raise UserNotFoundError(str(actor_id))
        return actor

    def _lock_expense(self, expense_id: UUID, company_id: UUID) -> Expense:
        expense = self._session.execute(
            select(Expense)
            .where(Expense.id == expense_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if expense is None or expense.company_id != company_id:
            raise ExpenseNotFoundError(str(expense_id))
        return expense

    def _lock_approval(self, approval_id: UUID, company_id: UUID) -> tuple[Approval, Expense]:
        located = self._session.execute(
            select(Approval.expense_id).where(Approval.id == approval_id)
        ).scalar_one_or_none()
        if located is None:
            raise ApprovalNotFoundError(str(approval_id))
        try:
            expense = self._lock_expense(located, company_id)
        except ExpenseNotFoundError:
            raise ApprovalNotFoundError(str(approval_id)) from None

        approval = self._session.execute(
            select(Approval)
            .where(Approval.id == approval_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        return approval, expense

    @staticmethod
    def _require_expense_transition(expense: Expense, target: ExpenseStatus) -> None:
        if not can_transition_expense(expense.status, target):
            raise InvalidStateTransitionError(
                "expense", str(expense.id), expense.status, target.value,
            )

    @staticmethod
    def _require_pending(approval: Approval, target: ApprovalStatus) -> None:
        if not approval.is_pending:
            raise ApprovalAlreadyProcessedError(str(approval.id), approval.status, target.value)

    def _require_admin(self, actor: User, action: str) -> None:
        if actor.role != UserRole.ADMIN.value:
            raise PermissionDeniedError(str(actor.id), action)

    # =====================================================================
    # Workflow configuration
    # =====================================================================

    def active_workflow(self, company_id: UUID) -> ApprovalWorkflow | None:
        """Highest priority active workflow; ties by earliest created_at, then lowest id."""
        return self._session.execute(
            select(ApprovalWorkflow)
            .where(
                ApprovalWorkflow.company_id == company_id,
                ApprovalWorkflow.is_active.is_(True),
            )
            .order_by(
                ApprovalWorkflow.priority.desc(),
                ApprovalWorkflow.created_at.asc(),
                ApprovalWorkflow.id.asc(),
            )
            .limit(1)
        ).scalar_one_or_none()

    def _chain_config(self, approval: Approval) -> WorkflowConfig:
        if approval.workflow_id is None:
            return DisabledWorkflow()
        workflow = self._session.get(ApprovalWorkflow, approval.workflow_id)
        return workflow.parsed_config() if workflow is not None else DisabledWorkflow()

    def configure_workflow(
        self,
        actor_id: UUID,
        name: str,
        config: WorkflowConfig | Mapping[str, Any],
        priority: int = 0,
        is_active: bool = True,
    ) -> WorkflowRecord:
        """Register a workflow for the actor's company (admins only).

        Raw mappings are validated with ``parse_workflow_config`` and stored
        in normalized form.
        """
        actor = self._load_actor(actor_id)
        self._require_admin(actor, "configure approval workflows")

        if isinstance(config, (SequentialWorkflow, ConditionalWorkflow, DisabledWorkflow)):
            parsed = config
        else:
            parsed = parse_workflow_config(config)
        stored = workflow_config_to_dict(parsed)

        workflow = ApprovalWorkflow(
            company_id=actor.company_id,
            name=name,
            workflow_type=stored.get("workflow_type"),
            configuration=stored,
            priority=priority,
            is_active=is_active,
            created_at=self._clock.now(),
        )
        self._session.add(workflow)
        self._session.flush()

        self._auditor.record(
            entity_type=AuditEntity.WORKFLOW,
            entity_id=workflow.id,
            action=AuditAction.CREATE,
            actor_id=actor.id,
            company_id=actor.company_id,
            new_values={
                "name": name,
                "priority": priority,
                "is_active": is_active,
                "configuration": stored,
            },
        )
        logger.info(
            "workflow_configured",
            extra={
                "workflow_id": str(workflow.id),
                "workflow_type": stored.get("workflow_type"),
                "priority": priority,
            },
        )
        return workflow.to_dto()

    # =====================================================================
    # Submit
    # =====================================================================

    def _conversion(self, expense: Expense) -> tuple[Decimal, Decimal | None]:
        """Company-currency amount and rate to freeze at submission."""
        if expense.amount_in_company_currency is not None:
            return expense.amount_in_company_currency, expense.exchange_rate

        company_currency = self._session.get(Company, expense.company_id).currency
        if expense.currency != company_currency:
            raise ConversionMissingError(str(expense.id), expense.currency, company_currency)
        return expense.amount, Decimal("1")

    def submit_expense(self, command: SubmitExpense) -> SubmissionOutcome:
        """``draft -> submitted`` with a level 1 approval, or ``draft -> approved``."""
        actor = self._load_actor(command.actor_id)
        expense = self._lock_expense(command.expense_id, actor.company_id)
        if expense.submitter_id != actor.id:
            raise ExpenseNotFoundError(str(expense.id))
        self._require_expense_transition(expense, ExpenseStatus.SUBMITTED)

        amount_cc, rate = self._conversion(expense)
        workflow = self.active_workflow(expense.company_id)
        config = workflow.parsed_config() if workflow is not None else DisabledWorkflow()
        snapshot = ExpenseSnapshot(
            expense_id=expense.id,
            company_id=expense.company_id,
            submitter_id=expense.submitter_id,
            amount_in_company_currency=amount_cc,
            category=expense.category,
        )
        resolution = resolve_next_approver(snapshot, config, 0, self._directory)

        # Guards passed; mutate.
        now = self._clock.now()
        before = _values(expense, _EXPENSE_AUDIT_FIELDS)
        expense.amount_in_company_currency = amount_cc
        expense.exchange_rate = rate
        expense.submitted_at = now

        approval = None
        if resolution.has_approver:
            expense.status = ExpenseStatus.SUBMITTED.value
            approval = self._open_level(
                expense, workflow.id if workflow is not None else None, resolution, actor.id, now,
            )
        else:
            self._warn_if_unavailable(resolution, expense)
            expense.status = ExpenseStatus.APPROVED.value
            expense.approved_at = now
        self._session.flush()

        old_values, new_values = _changed(before, _values(expense, _EXPENSE_AUDIT_FIELDS))
        new_values.update(self._resolution_values(resolution))
        self._auditor.record(
            entity_type=AuditEntity.EXPENSE,
            entity_id=expense.id,
            action=AuditAction.SUBMIT,
            actor_id=actor.id,
            company_id=expense.company_id,
            old_values=old_values,
            new_values=new_values,
        )

        logger.info(
            "expense_submitted",
            extra={
                "expense_id": str(expense.id),
                "status": expense.status,
                "resolution": resolution.outcome.value,
                "approval_id": str(approval.id) if approval is not None else None,
            },
        )
        return SubmissionOutcome(
            expense=expense.to_dto(),
            resolution=resolution,
            approval=approval.to_dto() if approval is not None else None,
        )

    def _open_level(
        self,
        expense: Expense,
        workflow_id: UUID | None,
        resolution: ApproverResolution,
        actor_id: UUID,
        now: datetime,
    ) -> Approval:
        approval = Approval(
            expense_id=expense.id,
            workflow_id=workflow_id,
            approver_id=resolution.approver.user_id,
            step_number=resolution.level,
            status=ApprovalStatus.PENDING.value,
            created_at=now,
        )
        self._session.add(approval)
        self._session.flush()

        self._auditor.record(
            entity_type=AuditEntity.APPROVAL,
            entity_id=approval.id,
            action=AuditAction.CREATE,
            actor_id=actor_id,
            company_id=expense.company_id,
            new_values={
                "expense_id": expense.id,
                "approver_id": approval.approver_id,
                "step_number": approval.step_number,
                "status": approval.status,
            },
        )
        logger.info(
            "approval_level_opened",
            extra={
                "approval_id": str(approval.id),
                "expense_id": str(expense.id),
                "step_number": approval.step_number,
                "approver_id": str(approval.approver_id),
            },
        )
        return approval

    @staticmethod
    def _resolution_values(resolution: ApproverResolution) -> dict[str, Any]:
        if resolution.has_approver:
            return {}
        return {
            "resolution_outcome": resolution.outcome.value,
            "resolution_reason": resolution.reason,
        }

    @staticmethod
    def _warn_if_unavailable(resolution: ApproverResolution, expense: Expense) -> None:
        if resolution.outcome is ResolutionOutcome.NO_APPROVER_AVAILABLE:
            logger.warning(
                "approver_unavailable_level_skipped",
                extra={
                    "expense_id": str(expense.id),
                    "approval_level": resolution.level,
                    "reason": resolution.reason,
                },
            )

    # =====================================================================
    # Decisions
    # =====================================================================

    def _guarded_update(self, approval: Approval, target: ApprovalStatus, **values: Any) -> None:
        """Compare-and-set on a pending approval.

        The WHERE clause is the serialization point between concurrent
        decisions; a zero rowcount means another transaction won.
        """
        result = self._session.execute(
            update(Approval)
            .where(
                Approval.id == approval.id,
                Approval.status == ApprovalStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self._session.refresh(approval)
        if result.rowcount != 1:
            logger.warning(
                "approval_decision_conflict",
                extra={"approval_id": str(approval.id), "status": approval.status},
            )
            raise ApprovalAlreadyProcessedError(str(approval.id), approval.status, target.value)

    def _decide(
        self,
        approval: Approval,
        target: ApprovalStatus,
        actor_id: UUID,
        company_id: UUID,
        action: AuditAction,
        **values: Any,
    ) -> None:
        before = _values(approval, _APPROVAL_AUDIT_FIELDS)
        self._guarded_update(
            approval,
            target,
            status=target.value,
            decided_at=self._clock.now(),
            **values,
        )
        old_values, new_values = _changed(before, _values(approval, _APPROVAL_AUDIT_FIELDS))
        self._auditor.record(
            entity_type=AuditEntity.APPROVAL,
            entity_id=approval.id,
            action=action,
            actor_id=actor_id,
            company_id=company_id,
            old_values=old_values,
            new_values=new_values,
        )

    def _decision_guards(
        self,
        approval_id: UUID,
        actor_id: UUID,
        target: ApprovalStatus,
    ) -> tuple[User, Approval, Expense]:
        actor = self._load_actor(actor_id)
        approval, expense = self._lock_approval(approval_id, actor.company_id)
        if approval.approver_id != actor.id:
            raise UnauthorizedApproverError(str(approval.id), str(actor.id))
        self._require_pending(approval, target)
        if expense.status != ExpenseStatus.SUBMITTED.value:
            raise InvalidStateTransitionError(
                "expense", str(expense.id), expense.status, target.value,
            )
        return actor, approval, expense

    def _finish_expense(
        self,
        expense: Expense,
        target: ExpenseStatus,
        actor_id: UUID,
        action: AuditAction,
        extra_values: dict[str, Any] | None = None,
    ) -> None:
        self._require_expense_transition(expense, target)
        now = self._clock.now()
        before = _values(expense, _EXPENSE_AUDIT_FIELDS)
        expense.status = target.value
        if target is ExpenseStatus.APPROVED:
            expense.approved_at = now
        elif target is ExpenseStatus.REJECTED:
            expense.rejected_at = now
        elif target is ExpenseStatus.PAID:
            expense.paid_at = now
        self._session.flush()

        old_values, new_values = _changed(before, _values(expense, _EXPENSE_AUDIT_FIELDS))
        new_values.update(extra_values or {})
        self._auditor.record(
            entity_type=AuditEntity.EXPENSE,
            entity_id=expense.id,
            action=action,
            actor_id=actor_id,
            company_id=expense.company_id,
            old_values=old_values,
            new_values=new_values,
        )

    def approve(self, command: ApproveApproval) -> DecisionOutcome:
        """Approve the current level, then open the next one or approve the expense."""
        actor, approval, expense = self._decision_guards(
            command.approval_id, command.actor_id, ApprovalStatus.APPROVED,
        )
        config = self._chain_config(approval)
        resolution = resolve_next_approver(
            expense.to_snapshot(), config, approval.step_number, self._directory,
        )

        self._decide(
            approval,
            ApprovalStatus.APPROVED,
            actor.id,
            expense.company_id,
            AuditAction.APPROVE,
            comments=command.comments,
        )

        next_approval = None
        if resolution.has_approver:
            next_approval = self._open_level(
                expense, approval.workflow_id, resolution, actor.id, self._clock.now(),
            )
        else:
            self._warn_if_unavailable(resolution, expense)
            self._finish_expense(
                expense,
                ExpenseStatus.APPROVED,
                actor.id,
                AuditAction.APPROVE,
                self._resolution_values(resolution),
            )

        logger.info(
            "approval_recorded",
            extra={
                "approval_id": str(approval.id),
                "expense_id": str(expense.id),
                "step_number": approval.step_number,
                "expense_status": expense.status,
            },
        )
        return DecisionOutcome(
            approval=approval.to_dto(),
            expense=expense.to_dto(),
            next_approval=next_approval.to_dto() if next_approval is not None else None,
        )

    def reject(self, command: RejectApproval) -> DecisionOutcome:
        """Reject the expense and cancel every other pending approval of it."""
        comments = (command.comments or "").strip()
        if len(comments) < self._min_comment_length:
            raise RejectionCommentTooShortError(len(comments), self._min_comment_length)

        actor, approval, expense = self._decision_guards(
            command.approval_id, command.actor_id, ApprovalStatus.REJECTED,
        )

        self._decide(
            approval,
            ApprovalStatus.REJECTED,
            actor.id,
            expense.company_id,
            AuditAction.REJECT,
            comments=comments,
            rejection_reason=command.reason,
        )
        cancelled = self._cancel_pending_siblings(expense, approval, actor.id)
        self._finish_expense(expense, ExpenseStatus.REJECTED, actor.id, AuditAction.REJECT)

        logger.info(
            "approval_rejected",
            extra={
                "approval_id": str(approval.id),
                "expense_id": str(expense.id),
                "cancelled_count": len(cancelled),
            },
        )
        return DecisionOutcome(
            approval=approval.to_dto(),
            expense=expense.to_dto(),
            cancelled=cancelled,
        )

    def _cancel_pending_siblings(
        self,
        expense: Expense,
        rejected: Approval,
        actor_id: UUID,
    ) -> tuple[ApprovalRecord, ...]:
        siblings = self._session.execute(
            select(Approval)
            .where(
                Approval.expense_id == expense.id,
                Approval.id != rejected.id,
                Approval.status == ApprovalStatus.PENDING.value,
            )
            .order_by(Approval.step_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        for sibling in siblings:
            self._decide(
                sibling,
                ApprovalStatus.CANCELLED,
                actor_id,
                expense.company_id,
                AuditAction.CANCEL,
            )

        if siblings:
            logger.info(
                "approval_chain_cancelled",
                extra={
                    "expense_id": str(expense.id),
                    "cancelled_ids": [str(s.id) for s in siblings],
                },
            )
        return tuple(sibling.to_dto() for sibling in siblings)

    # =====================================================================
    # Delegation
    # =====================================================================

    def delegate(self, command: DelegateApproval) -> ApprovalRecord:
        """Reassign a pending approval in place; level and status are unchanged.

        The current approver may delegate; a company admin may escalate any
        pending approval of the company.
        """
        actor = self._load_actor(command.actor_id)
        approval, expense = self._lock_approval(command.approval_id, actor.company_id)
        if approval.approver_id != actor.id and actor.role != UserRole.ADMIN.value:
            raise UnauthorizedApproverError(str(approval.id), str(actor.id))
        self._require_pending(approval, ApprovalStatus.PENDING)

        delegate = self._session.get(User, command.delegate_id)
        delegate_id = str(command.delegate_id)
        if delegate is None:
            raise InvalidDelegateError(delegate_id, "user not found")
        if delegate.company_id != expense.company_id:
            raise InvalidDelegateError(delegate_id, "user belongs to another company")
        if not delegate.is_active:
            raise InvalidDelegateError(delegate_id, "user is inactive")
        if delegate.id == approval.approver_id:
            raise InvalidDelegateError(delegate_id, "user is already the approver")
        if delegate.id == expense.submitter_id:
            raise InvalidDelegateError(delegate_id, "user submitted this expense")

        before = _values(approval, _APPROVAL_AUDIT_FIELDS)
        self._guarded_update(
            approval,
            ApprovalStatus.PENDING,
            approver_id=delegate.id,
            delegated_from_id=approval.delegated_from_id or approval.approver_id,
            delegated_by_id=actor.id,
            delegation_reason=command.reason,
            delegated_at=self._clock.now(),
        )
        old_values, new_values = _changed(before, _values(approval, _APPROVAL_AUDIT_FIELDS))
        self._auditor.record(
            entity_type=AuditEntity.APPROVAL,
            entity_id=approval.id,
            action=AuditAction.DELEGATE,
            actor_id=actor.id,
            company_id=expense.company_id,
            old_values=old_values,
            new_values=new_values,
        )

        logger.info(
            "approval_delegated",
            extra={
                "approval_id": str(approval.id),
                "from_approver_id": str(before["approver_id"]),
                "to_approver_id": str(delegate.id),
                "escalated_by_admin": before["approver_id"] != actor.id,
            },
        )
        return approval.to_dto()

    # =====================================================================
    # Payment
    # =====================================================================

    def mark_paid(self, command: MarkExpensePaid) -> ExpenseRecord:
        """``approved -> paid``, recorded for the external payment process."""
        actor = self._load_actor(command.actor_id)
        self._require_admin(actor, "mark expenses paid")
        expense = self._lock_expense(command.expense_id, actor.company_id)
        self._finish_expense(expense, ExpenseStatus.PAID, actor.id, AuditAction.PAY)

        logger.info("expense_paid", extra={"expense_id": str(expense.id)})
        return expense.to_dto()
