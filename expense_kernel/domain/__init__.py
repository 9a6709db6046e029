"""
Pure domain layer.

Value objects, state machines and the typed workflow configuration, with
NO dependencies on the ORM, the database or I/O.  Time comes from an
injected ``Clock``.
"""

from expense_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from expense_kernel.domain.workflow import (
    APPROVAL_TRANSITIONS,
    EXPENSE_TRANSITIONS,
    MIN_REJECTION_COMMENT_LENGTH,
    AmountRule,
    ApprovalLevel,
    ApprovalStatus,
    ApproverResolution,
    ApproverType,
    ConditionalWorkflow,
    DirectoryUser,
    DisabledWorkflow,
    ExpenseSnapshot,
    ExpenseStatus,
    ResolutionOutcome,
    SequentialWorkflow,
    UserDirectory,
    UserRole,
    WorkflowConfig,
    WorkflowType,
    can_transition_expense,
    parse_workflow_config,
    workflow_config_to_dict,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "APPROVAL_TRANSITIONS",
    "EXPENSE_TRANSITIONS",
    "MIN_REJECTION_COMMENT_LENGTH",
    "AmountRule",
    "ApprovalLevel",
    "ApprovalStatus",
    "ApproverResolution",
    "ApproverType",
    "ConditionalWorkflow",
    "DirectoryUser",
    "DisabledWorkflow",
    "ExpenseSnapshot",
    "ExpenseStatus",
    "ResolutionOutcome",
    "SequentialWorkflow",
    "UserDirectory",
    "UserRole",
    "WorkflowConfig",
    "WorkflowType",
    "can_transition_expense",
    "parse_workflow_config",
    "workflow_config_to_dict",
]
