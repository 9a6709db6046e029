"""Orchestration layer: transaction boundaries over the expense kernel."""

from expense_engines.approver_resolution import resolve_next_approver
from expense_services.workflow_orchestrator import (
    ExpenseWorkflowOrchestrator,
    WorkflowOperationResult,
    WorkflowOperationStatus,
    classify_error,
)

__all__ = [
    "ExpenseWorkflowOrchestrator",
    "WorkflowOperationResult",
    "WorkflowOperationStatus",
    "classify_error",
    "resolve_next_approver",
]
