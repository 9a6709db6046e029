"""
expense_engines.approver_resolution -- Pure approver resolution engine.

Responsibility:
    Given an expense, the company's workflow configuration and the level
    that was last completed, determine who must approve next, or that no
    further approval is required.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May only import
    expense_kernel/domain/ types.  User lookups go through the
    ``UserDirectory`` protocol.

Rules:
    - Disabled configuration: no further approval.
    - ``auto_approve_below``: at level 0, an amount strictly below the
      threshold needs no approval.
    - Sequential: look up level ``current_level + 1``; beyond the last level
      means no further approval.
        * manager: the submitter's direct manager.
        * role: first active user with the role, oldest first (created_at,
          then id as a string).
        * specific_user: the configured user.
    - Conditional: a single level.  First rule in configuration order whose
      inclusive range contains the company-currency amount.
    - A resolved user must be active and in the expense's company, else the
      level has no approver available.

Determinism:
    No clock, no randomness, no dict-order dependence: identical inputs give
    identical results.

Failure modes:
    - ValueError for a negative ``current_level``.
"""

from __future__ import annotations

from expense_kernel.domain.workflow import (
    ApprovalLevel,
    ApproverResolution,
    ApproverType,
    ConditionalWorkflow,
    DirectoryUser,
    DisabledWorkflow,
    ExpenseSnapshot,
    ResolutionOutcome,
    SequentialWorkflow,
    UserDirectory,
    WorkflowConfig,
)


def resolve_next_approver(
    expense: ExpenseSnapshot,
    config: WorkflowConfig,
    current_level: int,
    directory: UserDirectory,
) -> ApproverResolution:
    """Resolve the approver for level ``current_level + 1``.

    Args:
        expense: The expense being routed (company-currency amount frozen).
        config: Parsed workflow configuration.
        current_level: Last completed level; 0 before the first approval.
        directory: User lookups.

    Returns:
        ApproverResolution with ``APPROVER_FOUND``, ``NO_FURTHER_APPROVAL``
        or ``NO_APPROVER_AVAILABLE``.
    """
    if current_level < 0:
        raise ValueError(f"current_level must be >= 0, got {current_level}")

    if isinstance(config, DisabledWorkflow):
        return _no_further("approval workflow disabled")

    if (
        current_level == 0
        and config.auto_approve_below is not None
        and expense.amount_in_company_currency < config.auto_approve_below
    ):
        return _no_further(
            f"amount {expense.amount_in_company_currency} below auto-approve "
            f"threshold {config.auto_approve_below}"
        )

    if isinstance(config, ConditionalWorkflow):
        return _resolve_conditional(expense, config, current_level, directory)
    if isinstance(config, SequentialWorkflow):
        return _resolve_sequential(expense, config, current_level, directory)
    raise TypeError(f"Unknown workflow config: {type(config).__name__}")


def _resolve_sequential(
    expense: ExpenseSnapshot,
    config: SequentialWorkflow,
    current_level: int,
    directory: UserDirectory,
) -> ApproverResolution:
    next_level = current_level + 1
    level = config.level_at(next_level)
    if level is None:
        return _no_further(f"all {len(config.levels)} levels completed")

    candidate, missing_reason = _candidate_for_level(expense, level, directory)
    if candidate is None:
        return _unavailable(next_level, missing_reason)
    return _checked(expense, candidate, next_level)


def _candidate_for_level(
    expense: ExpenseSnapshot,
    level: ApprovalLevel,
    directory: UserDirectory,
) -> tuple[DirectoryUser | None, str]:
    if level.approver_type is ApproverType.MANAGER:
        submitter = directory.get_user(expense.submitter_id)
        if submitter is None or submitter.manager_id is None:
            return None, "submitter has no manager"
        return directory.get_user(submitter.manager_id), "manager not found"

    if level.approver_type is ApproverType.ROLE:
        # Directory returns oldest first
        users = directory.find_active_by_role(expense.company_id, level.role)
        if not users:
            return None, f"no active user with role '{level.role}'"
        return users[0], ""

    return directory.get_user(level.approver_id), "configured approver not found"


def _resolve_conditional(
    expense: ExpenseSnapshot,
    config: ConditionalWorkflow,
    current_level: int,
    directory: UserDirectory,
) -> ApproverResolution:
    if current_level >= 1:
        return _no_further("conditional workflows have a single level")

    rule = config.match(expense.amount_in_company_currency)
    if rule is None:
        return _unavailable(1, f"no rule matches amount {expense.amount_in_company_currency}")
    if rule.approver_id is None:
        return _unavailable(1, "matching rule has no approver")

    candidate = directory.get_user(rule.approver_id)
    if candidate is None:
        return _unavailable(1, "configured approver not found")
    return _checked(expense, candidate, 1)


def _checked(expense: ExpenseSnapshot, user: DirectoryUser, level: int) -> ApproverResolution:
    if not user.is_active:
        return _unavailable(level, f"approver {user.user_id} is inactive")
    if user.company_id != expense.company_id:
        return _unavailable(level, f"approver {user.user_id} belongs to another company")
    return ApproverResolution(
        outcome=ResolutionOutcome.APPROVER_FOUND,
        approver=user,
        level=level,
    )


def _no_further(reason: str) -> ApproverResolution:
    return ApproverResolution(outcome=ResolutionOutcome.NO_FURTHER_APPROVAL, reason=reason)


def _unavailable(level: int, reason: str) -> ApproverResolution:
    return ApproverResolution(
        outcome=ResolutionOutcome.NO_APPROVER_AVAILABLE,
        level=level,
        reason=reason,
    )
