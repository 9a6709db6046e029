"""
Tests for the expense and approval status tables.
"""

import pytest

from expense_kernel.domain.workflow import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalStatus,
    ExpenseStatus,
    can_transition_expense,
)


class TestExpenseTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("draft", "submitted"),
            ("draft", "approved"),
            ("submitted", "approved"),
            ("submitted", "rejected"),
            ("approved", "paid"),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition_expense(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            ("draft", "paid"),
            ("draft", "rejected"),
            ("submitted", "draft"),
            ("submitted", "paid"),
            ("approved", "rejected"),
            ("rejected", "submitted"),
            ("rejected", "approved"),
            ("paid", "approved"),
        ],
    )
    def test_forbidden(self, current, target):
        assert not can_transition_expense(current, target)

    def test_enum_and_string_agree(self):
        assert can_transition_expense(ExpenseStatus.DRAFT, ExpenseStatus.SUBMITTED)
        assert can_transition_expense("draft", ExpenseStatus.SUBMITTED)


class TestApprovalTransitions:
    def test_only_pending_moves(self):
        for status in TERMINAL_APPROVAL_STATUSES:
            assert APPROVAL_TRANSITIONS[status] == frozenset()

    def test_pending_reaches_every_terminal_status(self):
        assert APPROVAL_TRANSITIONS[ApprovalStatus.PENDING] == frozenset({
            ApprovalStatus.APPROVED,
            ApprovalStatus.REJECTED,
            ApprovalStatus.CANCELLED,
        })
