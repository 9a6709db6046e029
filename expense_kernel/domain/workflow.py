"""
Approval workflow domain types (``expense_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the expense approval workflow: the expense and
approval lifecycle state machines, the typed workflow configuration
(a tagged union parsed once at load time), the user directory protocol
used for approver lookups, and the approver resolution result.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or ``selectors/``.

Invariants enforced
-------------------
* ``EXPENSE_TRANSITIONS`` / ``APPROVAL_TRANSITIONS`` define the only valid
  status transitions.  Terminal states have no outgoing edges.
* Sequential level numbers are unique and dense from 1.  A configuration
  that breaks this never reaches the engine: ``parse_workflow_config``
  raises ``WorkflowConfigurationError``.
* Conditional rule bounds are inclusive at both ends; an absent
  ``max_amount`` is unbounded above.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Protocol, Union
from uuid import UUID

from expense_kernel.exceptions import WorkflowConfigurationError

MIN_REJECTION_COMMENT_LENGTH = 10


# =========================================================================
# Expense lifecycle
# =========================================================================


class ExpenseStatus(str, Enum):
    """Expense lifecycle states."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


EXPENSE_TRANSITIONS: dict[ExpenseStatus, frozenset[ExpenseStatus]] = {
    ExpenseStatus.DRAFT: frozenset({
        ExpenseStatus.SUBMITTED,
        ExpenseStatus.APPROVED,  # auto-approval at submission
    }),
    ExpenseStatus.SUBMITTED: frozenset({
        ExpenseStatus.APPROVED,
        ExpenseStatus.REJECTED,
    }),
    ExpenseStatus.APPROVED: frozenset({ExpenseStatus.PAID}),
    ExpenseStatus.REJECTED: frozenset(),
    ExpenseStatus.PAID: frozenset(),
}


def can_transition_expense(current: ExpenseStatus | str, target: ExpenseStatus | str) -> bool:
    """True if ``current -> target`` is an edge of the expense state machine."""
    return ExpenseStatus(target) in EXPENSE_TRANSITIONS[ExpenseStatus(current)]


# =========================================================================
# Approval lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval record lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
})


class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


# =========================================================================
# Workflow configuration (tagged union)
# =========================================================================


class WorkflowType(str, Enum):
    SEQUENTIAL = "sequential"
    CONDITIONAL = "conditional"


class ApproverType(str, Enum):
    """How a sequential level selects its approver."""

    MANAGER = "manager"
    ROLE = "role"
    SPECIFIC_USER = "specific_user"


@dataclass(frozen=True)
class ApprovalLevel:
    """One step of a sequential chain."""

    level: int
    approver_type: ApproverType
    role: str | None = None
    approver_id: UUID | None = None


@dataclass(frozen=True)
class AmountRule:
    """Conditional routing rule.  Bounds are inclusive; ``max_amount=None`` is unbounded."""

    min_amount: Decimal
    max_amount: Decimal | None = None
    approver_id: UUID | None = None

    def contains(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount


@dataclass(frozen=True)
class SequentialWorkflow:
    levels: tuple[ApprovalLevel, ...]
    auto_approve_below: Decimal | None = None

    def level_at(self, number: int) -> ApprovalLevel | None:
        for level in self.levels:
            if level.level == number:
                return level
        return None


@dataclass(frozen=True)
class ConditionalWorkflow:
    """Amount-range routing.  Always a single approval level."""

    rules: tuple[AmountRule, ...]
    auto_approve_below: Decimal | None = None

    def match(self, amount: Decimal) -> AmountRule | None:
        """First rule, in configuration order, whose range contains ``amount``."""
        for rule in self.rules:
            if rule.contains(amount):
                return rule
        return None


@dataclass(frozen=True)
class DisabledWorkflow:
    """Approval is switched off: every expense auto-approves."""


WorkflowConfig = Union[SequentialWorkflow, ConditionalWorkflow, DisabledWorkflow]


# =========================================================================
# Parsing
# =========================================================================


def _parse_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise WorkflowConfigurationError(field, f"expected a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise WorkflowConfigurationError(field, f"expected a number, got {value!r}")
    if not result.is_finite():
        raise WorkflowConfigurationError(field, "must be finite")
    return result


def _parse_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise WorkflowConfigurationError(field, f"expected a user id, got {value!r}")


def _parse_level(raw: Any, index: int) -> ApprovalLevel:
    field = f"approval_levels[{index}]"
    if not isinstance(raw, Mapping):
        raise WorkflowConfigurationError(field, "expected a mapping")

    number = raw.get("level")
    if isinstance(number, bool) or not isinstance(number, int):
        raise WorkflowConfigurationError(f"{field}.level", f"expected an integer, got {number!r}")

    raw_type = raw.get("approver_type")
    if raw_type is None:
        if raw.get("approver_id") is None:
            raise WorkflowConfigurationError(f"{field}.approver_type", "is required")
        raw_type = ApproverType.SPECIFIC_USER.value
    try:
        approver_type = ApproverType(raw_type)
    except ValueError:
        raise WorkflowConfigurationError(
            f"{field}.approver_type",
            f"must be one of {[t.value for t in ApproverType]}, got {raw_type!r}",
        )

    role = None
    approver_id = None
    if approver_type is ApproverType.ROLE:
        role = raw.get("role")
        if not isinstance(role, str) or not role.strip():
            raise WorkflowConfigurationError(f"{field}.role", "is required for role levels")
        role = role.strip()
    elif approver_type is ApproverType.SPECIFIC_USER:
        if raw.get("approver_id") is None:
            raise WorkflowConfigurationError(
                f"{field}.approver_id", "is required for specific_user levels"
            )
        approver_id = _parse_uuid(raw["approver_id"], f"{field}.approver_id")

    return ApprovalLevel(
        level=number,
        approver_type=approver_type,
        role=role,
        approver_id=approver_id,
    )


def _parse_rule(raw: Any, index: int) -> AmountRule:
    field = f"approval_rules[{index}]"
    if not isinstance(raw, Mapping):
        raise WorkflowConfigurationError(field, "expected a mapping")
    if "min_amount" not in raw:
        raise WorkflowConfigurationError(f"{field}.min_amount", "is required")

    min_amount = _parse_decimal(raw["min_amount"], f"{field}.min_amount")
    max_amount = None
    if raw.get("max_amount") is not None:
        max_amount = _parse_decimal(raw["max_amount"], f"{field}.max_amount")
        if max_amount < min_amount:
            raise WorkflowConfigurationError(
                f"{field}.max_amount", "must not be below min_amount"
            )

    approver_id = None
    if raw.get("approver_id") is not None:
        approver_id = _parse_uuid(raw["approver_id"], f"{field}.approver_id")

    return AmountRule(min_amount=min_amount, max_amount=max_amount, approver_id=approver_id)


def _parse_list(raw: Mapping, key: str) -> Sequence:
    if key not in raw:
        raise WorkflowConfigurationError(key, "is required for this workflow_type")
    items = raw[key]
    if items is None:
        return ()
    if isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
        raise WorkflowConfigurationError(key, "expected a list")
    return items


def parse_workflow_config(raw: Mapping[str, Any] | None) -> WorkflowConfig:
    """Parse the JSON-shaped company configuration into a ``WorkflowConfig``.

    ``None`` (no active workflow) and ``enabled: false`` both yield
    ``DisabledWorkflow``.  A missing ``approval_levels`` /
    ``approval_rules`` key is an error; an explicit empty list is a valid
    configuration under which every expense auto-approves.

    Raises:
        WorkflowConfigurationError: with the dotted path of the bad field.
    """
    if raw is None:
        return DisabledWorkflow()
    if not isinstance(raw, Mapping):
        raise WorkflowConfigurationError("$", "expected a mapping")

    enabled = raw.get("enabled", True)
    if not isinstance(enabled, bool):
        raise WorkflowConfigurationError("enabled", f"expected a boolean, got {enabled!r}")
    if not enabled:
        return DisabledWorkflow()

    raw_type = raw.get("workflow_type")
    if raw_type is None:
        raise WorkflowConfigurationError("workflow_type", "is required")
    try:
        workflow_type = WorkflowType(raw_type)
    except ValueError:
        raise WorkflowConfigurationError(
            "workflow_type",
            f"must be one of {[t.value for t in WorkflowType]}, got {raw_type!r}",
        )

    auto_approve_below = None
    if raw.get("auto_approve_below") is not None:
        auto_approve_below = _parse_decimal(raw["auto_approve_below"], "auto_approve_below")
        if auto_approve_below < 0:
            raise WorkflowConfigurationError("auto_approve_below", "must not be negative")

    if workflow_type is WorkflowType.CONDITIONAL:
        rules = tuple(
            _parse_rule(item, i) for i, item in enumerate(_parse_list(raw, "approval_rules"))
        )
        return ConditionalWorkflow(rules=rules, auto_approve_below=auto_approve_below)

    levels = [
        _parse_level(item, i) for i, item in enumerate(_parse_list(raw, "approval_levels"))
    ]
    numbers = sorted(level.level for level in levels)
    if numbers != list(range(1, len(numbers) + 1)):
        raise WorkflowConfigurationError(
            "approval_levels",
            f"level numbers must be unique and dense from 1, got {numbers}",
        )
    return SequentialWorkflow(
        levels=tuple(sorted(levels, key=lambda lv: lv.level)),
        auto_approve_below=auto_approve_below,
    )


def workflow_config_to_dict(config: WorkflowConfig) -> dict[str, Any]:
    """Inverse of ``parse_workflow_config``; JSON-safe (decimals and ids as strings)."""
    if isinstance(config, DisabledWorkflow):
        return {"enabled": False}

    data: dict[str, Any] = {"enabled": True}
    if isinstance(config, SequentialWorkflow):
        data["workflow_type"] = WorkflowType.SEQUENTIAL.value
        levels = []
        for level in config.levels:
            item: dict[str, Any] = {
                "level": level.level,
                "approver_type": level.approver_type.value,
            }
            if level.role is not None:
                item["role"] = level.role
            if level.approver_id is not None:
                item["approver_id"] = str(level.approver_id)
            levels.append(item)
        data["approval_levels"] = levels
    else:
        data["workflow_type"] = WorkflowType.CONDITIONAL.value
        data["approval_rules"] = [
            {
                "min_amount": str(rule.min_amount),
                "max_amount": None if rule.max_amount is None else str(rule.max_amount),
                "approver_id": None if rule.approver_id is None else str(rule.approver_id),
            }
            for rule in config.rules
        ]
    if config.auto_approve_below is not None:
        data["auto_approve_below"] = str(config.auto_approve_below)
    return data


# =========================================================================
# Resolution inputs and result
# =========================================================================


@dataclass(frozen=True)
class DirectoryUser:
    """What approver resolution needs to know about a user."""

    user_id: UUID
    company_id: UUID
    role: str
    is_active: bool
    manager_id: UUID | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ExpenseSnapshot:
    """The slice of an expense that approver resolution reads."""

    expense_id: UUID
    company_id: UUID
    submitter_id: UUID
    amount_in_company_currency: Decimal
    category: str | None = None


class UserDirectory(Protocol):
    """Pluggable user lookups for approver resolution."""

    def get_user(self, user_id: UUID) -> DirectoryUser | None:
        """Return the user, active or not, or None if unknown."""
        ...

    def find_active_by_role(self, company_id: UUID, role: str) -> Sequence[DirectoryUser]:
        """Active users of the company with ``role``, oldest first (created_at, then id)."""
        ...


class ResolutionOutcome(str, Enum):
    APPROVER_FOUND = "approver_found"
    NO_FURTHER_APPROVAL = "no_further_approval"
    NO_APPROVER_AVAILABLE = "no_approver_available"


@dataclass(frozen=True)
class ApproverResolution:
    """Result of resolving the approver for the next level.

    ``NO_APPROVER_AVAILABLE`` means a level exists but nobody eligible was
    found for it; callers treat it like ``NO_FURTHER_APPROVAL`` but should
    surface ``reason``.
    """

    outcome: ResolutionOutcome
    approver: DirectoryUser | None = None
    level: int | None = None
    reason: str = ""

    @property
    def has_approver(self) -> bool:
        return self.outcome is ResolutionOutcome.APPROVER_FOUND
