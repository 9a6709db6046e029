"""
expense_services.workflow_orchestrator -- Transaction boundary for the approval workflow.

Responsibility:
    Runs every workflow operation in its own session and transaction,
    binds log context, converts typed kernel errors into explicit failure
    results and fans bulk decisions out into one transaction per approval.

Architecture position:
    Services -- above ``expense_kernel``.  The only layer that commits.

Invariants enforced:
    - One operation, one transaction: commit on success, rollback on any
      error.  A failed bulk item never affects the other items.
    - Kernel errors never escape as exceptions; unexpected errors are
      rolled back, logged with traceback and re-raised.

Failure modes:
    - ``WorkflowOperationResult`` with a non-success status for every
      ``ExpenseWorkflowError``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from expense_config.settings import EngineSettings
from expense_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.dtos import (
    ApprovalRecord,
    ApprovalStats,
    ApproveApproval,
    BulkDecision,
    BulkDecisionReport,
    BulkItemFailure,
    DecisionOutcome,
    DelegateApproval,
    ExpenseRecord,
    MarkExpensePaid,
    RejectApproval,
    SubmitExpense,
)
from expense_kernel.domain.workflow import WorkflowConfig
from expense_kernel.exceptions import (
    ConfigurationError,
    EmptyBulkRequestError,
    ExpenseWorkflowError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from expense_kernel.logging_config import LogContext, configure_logging, get_logger
from expense_kernel.selectors.approval_selector import ApprovalSelector
from expense_kernel.services.approval_workflow_service import ApprovalWorkflowService

logger = get_logger("services.orchestrator")

T = TypeVar("T")


class WorkflowOperationStatus(str, Enum):
    """Outcome category of one workflow operation."""

    SUCCEEDED = "succeeded"
    NOT_FOUND = "not_found"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    VALIDATION_FAILED = "validation_failed"
    CONFIGURATION_ERROR = "configuration_error"
    INTEGRITY_VIOLATION = "integrity_violation"


@dataclass(frozen=True)
class WorkflowOperationResult:
    """Result of one orchestrated operation."""

    status: WorkflowOperationStatus
    value: Any = None
    error_code: str | None = None
    message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status is WorkflowOperationStatus.SUCCEEDED


def classify_error(exc: ExpenseWorkflowError) -> WorkflowOperationStatus:
    if isinstance(exc, NotFoundError):
        return WorkflowOperationStatus.NOT_FOUND
    if isinstance(exc, InvalidStateTransitionError):
        return WorkflowOperationStatus.INVALID_STATE_TRANSITION
    if isinstance(exc, ValidationError):
        return WorkflowOperationStatus.VALIDATION_FAILED
    if isinstance(exc, ConfigurationError):
        return WorkflowOperationStatus.CONFIGURATION_ERROR
    return WorkflowOperationStatus.INTEGRITY_VIOLATION


def _failure(exc: ExpenseWorkflowError) -> WorkflowOperationResult:
    return WorkflowOperationResult(
        status=classify_error(exc),
        error_code=exc.code,
        message=str(exc),
    )


class ExpenseWorkflowOrchestrator:
    """
    Public entry point of the approval workflow.

    Contract:
        Every method takes explicit ids, opens a fresh session from
        ``session_factory`` and returns a ``WorkflowOperationResult``.
        Read-only queries return plain DTOs.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        clock: Clock | None = None,
        create_schema: bool = False,
    ) -> ExpenseWorkflowOrchestrator:
        """Initialize the engine from settings and build an orchestrator on it."""
        configure_logging(level=settings.log_level)
        init_engine_from_url(settings.database_url, echo=settings.sql_echo)
        if create_schema:
            create_tables()
        return cls(get_session_factory(), clock=clock, settings=settings)

    def _service(self, session: Session) -> ApprovalWorkflowService:
        return ApprovalWorkflowService(
            session,
            clock=self._clock,
            min_rejection_comment_length=self._settings.min_rejection_comment_length,
        )

    def _run(
        self,
        operation: str,
        actor_id: UUID,
        work: Callable[[ApprovalWorkflowService], T],
        **context: str | None,
    ) -> WorkflowOperationResult:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor_id),
            **context,
        ):
            logger.info(f"{operation}_started")
            t0 = time.monotonic()
            session = self._session_factory()
            try:
                value = work(self._service(session))
                session.commit()
            except ExpenseWorkflowError as exc:
                session.rollback()
                result = _failure(exc)
                logger.warning(
                    f"{operation}_failed",
                    extra={
                        "status": result.status.value,
                        "error_code": exc.code,
                        "error": str(exc),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return result
            except Exception:
                session.rollback()
                logger.error(
                    f"{operation}_errored",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise
            finally:
                session.close()

            logger.info(
                f"{operation}_completed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )
            return WorkflowOperationResult(status=WorkflowOperationStatus.SUCCEEDED, value=value)

    # =====================================================================
    # Single operations
    # =====================================================================

    def submit_expense(self, command: SubmitExpense) -> WorkflowOperationResult:
        """Result value: ``SubmissionOutcome``."""
        return self._run(
            "submit_expense",
            command.actor_id,
            lambda service: service.submit_expense(command),
            expense_id=str(command.expense_id),
        )

    def approve(self, command: ApproveApproval) -> WorkflowOperationResult:
        """Result value: ``DecisionOutcome``."""
        return self._run(
            "approve",
            command.actor_id,
            lambda service: service.approve(command),
            approval_id=str(command.approval_id),
        )

    def reject(self, command: RejectApproval) -> WorkflowOperationResult:
        """Result value: ``DecisionOutcome``."""
        return self._run(
            "reject",
            command.actor_id,
            lambda service: service.reject(command),
            approval_id=str(command.approval_id),
        )

    def delegate(self, command: DelegateApproval) -> WorkflowOperationResult:
        """Result value: the reassigned ``ApprovalRecord``."""
        return self._run(
            "delegate",
            command.actor_id,
            lambda service: service.delegate(command),
            approval_id=str(command.approval_id),
        )

    def mark_paid(self, command: MarkExpensePaid) -> WorkflowOperationResult:
        """Result value: ``ExpenseRecord``."""
        return self._run(
            "mark_paid",
            command.actor_id,
            lambda service: service.mark_paid(command),
            expense_id=str(command.expense_id),
        )

    def configure_workflow(
        self,
        actor_id: UUID,
        name: str,
        config: WorkflowConfig | Mapping[str, Any],
        priority: int = 0,
        is_active: bool = True,
    ) -> WorkflowOperationResult:
        """Result value: ``WorkflowRecord``."""
        return self._run(
            "configure_workflow",
            actor_id,
            lambda service: service.configure_workflow(
                actor_id, name, config, priority=priority, is_active=is_active,
            ),
        )

    # =====================================================================
    # Bulk decisions
    # =====================================================================

    def bulk_approve(self, command: BulkDecision) -> WorkflowOperationResult:
        """Approve each id independently.  Result value: ``BulkDecisionReport``."""
        return self._bulk(
            "bulk_approve",
            command,
            lambda approval_id: self.approve(
                ApproveApproval(
                    approval_id=approval_id,
                    actor_id=command.actor_id,
                    comments=command.comments,
                )
            ),
        )

    def bulk_reject(self, command: BulkDecision) -> WorkflowOperationResult:
        """Reject each id independently with the shared comment and reason."""
        return self._bulk(
            "bulk_reject",
            command,
            lambda approval_id: self.reject(
                RejectApproval(
                    approval_id=approval_id,
                    actor_id=command.actor_id,
                    comments=command.comments or "",
                    reason=command.reason,
                )
            ),
        )

    def _bulk(
        self,
        operation: str,
        command: BulkDecision,
        decide: Callable[[UUID], WorkflowOperationResult],
    ) -> WorkflowOperationResult:
        if not command.approval_ids:
            return _failure(EmptyBulkRequestError())

        succeeded: list[UUID] = []
        failed: list[BulkItemFailure] = []
        outcomes: list[DecisionOutcome] = []
        for approval_id in command.approval_ids:
            result = decide(approval_id)
            if result.is_success:
                succeeded.append(approval_id)
                outcomes.append(result.value)
            else:
                failed.append(
                    BulkItemFailure(
                        approval_id=approval_id,
                        error_code=result.error_code,
                        message=result.message,
                        category=result.status.value,
                    )
                )

        report = BulkDecisionReport(
            succeeded=tuple(succeeded),
            failed=tuple(failed),
            outcomes=tuple(outcomes),
        )
        logger.info(
            f"{operation}_finished",
            extra={
                "actor_id": str(command.actor_id),
                "requested": len(command.approval_ids),
                "succeeded": len(succeeded),
                "failed": len(failed),
            },
        )
        return WorkflowOperationResult(status=WorkflowOperationStatus.SUCCEEDED, value=report)

    # =====================================================================
    # Queries
    # =====================================================================

    def _read(self, query: Callable[[ApprovalSelector], T]) -> T:
        session = self._session_factory()
        try:
            return query(ApprovalSelector(session))
        finally:
            session.close()

    def pending_for_approver(self, approver_id: UUID, company_id: UUID) -> list[ApprovalRecord]:
        return self._read(lambda s: s.pending_for_approver(approver_id, company_id))

    def history_for_expense(self, expense_id: UUID, company_id: UUID) -> list[ApprovalRecord]:
        return self._read(lambda s: s.history_for_expense(expense_id, company_id))

    def stats_for_approver(self, approver_id: UUID, company_id: UUID) -> ApprovalStats:
        return self._read(lambda s: s.stats_for_approver(approver_id, company_id))

    def get_expense(self, expense_id: UUID, company_id: UUID) -> ExpenseRecord | None:
        return self._read(lambda s: s.get_expense(expense_id, company_id))


__all__ = [
    "ExpenseWorkflowOrchestrator",
    "WorkflowOperationResult",
    "WorkflowOperationStatus",
    "classify_error",
]
