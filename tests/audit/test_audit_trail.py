"""
Audit trail coverage: every transition of an expense or approval is traced
with the values it changed and the acting user.
"""

import pytest

from expense_kernel.domain.dtos import (
    ApproveApproval,
    DelegateApproval,
    MarkExpensePaid,
    RejectApproval,
    SubmitExpense,
)
from expense_kernel.exceptions import RejectionCommentTooShortError
from expense_kernel.models import AuditAction, AuditEntity


def submit(service, expense):
    return service.submit_expense(
        SubmitExpense(expense_id=expense.id, actor_id=expense.submitter_id)
    )


class TestExpenseTrace:
    def test_submit_approve_pay(
        self, workflow_service, auditor_service, org, create_workflow, create_expense,
        two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        expense = create_expense(org.employee, amount="80.00")
        first = submit(workflow_service, expense).approval
        second = workflow_service.approve(
            ApproveApproval(approval_id=first.id, actor_id=org.manager.id)
        ).next_approval
        workflow_service.approve(ApproveApproval(approval_id=second.id, actor_id=org.admin.id))
        workflow_service.mark_paid(MarkExpensePaid(expense_id=expense.id, actor_id=org.admin.id))

        trace = auditor_service.get_trace(AuditEntity.EXPENSE, expense.id)

        assert [t.action for t in trace] == [AuditAction.SUBMIT, AuditAction.APPROVE, AuditAction.PAY]
        submitted, approved, paid = trace
        assert submitted.actor_id == org.employee.id
        assert submitted.old_values["status"] == "draft"
        assert submitted.new_values["status"] == "submitted"
        assert submitted.new_values["amount_in_company_currency"] == "80"
        assert approved.actor_id == org.admin.id
        assert approved.new_values["status"] == "approved"
        assert paid.old_values["status"] == "approved"
        assert paid.new_values["status"] == "paid"
        assert [t.seq for t in trace] == sorted(t.seq for t in trace)

    def test_rejection_traced(
        self, workflow_service, auditor_service, org, create_workflow, create_expense,
        two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        expense = create_expense(org.employee)
        first = submit(workflow_service, expense).approval
        workflow_service.reject(
            RejectApproval(approval_id=first.id, actor_id=org.manager.id, comments="Receipt unreadable")
        )

        expense_trace = auditor_service.get_trace(AuditEntity.EXPENSE, expense.id)
        approval_trace = auditor_service.get_trace(AuditEntity.APPROVAL, first.id)

        assert expense_trace[-1].action is AuditAction.REJECT
        assert expense_trace[-1].new_values["status"] == "rejected"
        assert [t.action for t in approval_trace] == [AuditAction.CREATE, AuditAction.REJECT]
        assert approval_trace[-1].new_values["comments"] == "Receipt unreadable"


class TestApprovalTrace:
    def test_delegation_traced(
        self, workflow_service, auditor_service, org, create_workflow, create_expense,
        two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        first = submit(workflow_service, create_expense(org.employee)).approval
        workflow_service.delegate(
            DelegateApproval(
                approval_id=first.id,
                actor_id=org.manager.id,
                delegate_id=org.other_manager.id,
                reason="Travelling",
            )
        )

        trace = auditor_service.get_trace(AuditEntity.APPROVAL, first.id)

        delegated = trace[-1]
        assert delegated.action is AuditAction.DELEGATE
        assert delegated.actor_id == org.manager.id
        assert delegated.old_values["approver_id"] == str(org.manager.id)
        assert delegated.new_values["approver_id"] == str(org.other_manager.id)
        assert delegated.new_values["delegation_reason"] == "Travelling"

    def test_failed_operation_leaves_no_entry(
        self, workflow_service, auditor_service, org, create_workflow, create_expense,
        two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        first = submit(workflow_service, create_expense(org.employee)).approval
        before = auditor_service.get_trace(AuditEntity.APPROVAL, first.id)

        with pytest.raises(RejectionCommentTooShortError):
            workflow_service.reject(
                RejectApproval(approval_id=first.id, actor_id=org.manager.id, comments="short")
            )

        assert auditor_service.get_trace(AuditEntity.APPROVAL, first.id) == before

    def test_workflow_configuration_traced(self, workflow_service, auditor_service, org):
        record = workflow_service.configure_workflow(
            org.admin.id, "Disabled", {"enabled": False},
        )

        trace = auditor_service.get_trace(AuditEntity.WORKFLOW, record.id)

        assert [t.action for t in trace] == [AuditAction.CREATE]
        assert trace[0].actor_id == org.admin.id
