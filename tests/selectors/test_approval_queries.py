"""
Tests for ApprovalSelector and SqlUserDirectory.

Covers:
- Pending inbox: only pending, only the approver's, company scoped, oldest first
- Expense history in step order, company scoped
- Approver stats by status
- Role lookups: active users only, oldest first
"""

from decimal import Decimal

from sqlalchemy import update

from expense_kernel.domain.dtos import ApproveApproval, RejectApproval, SubmitExpense
from expense_kernel.domain.workflow import ApprovalStatus, ExpenseStatus
from expense_kernel.models import Approval, User
from expense_kernel.selectors.approval_selector import ApprovalSelector
from expense_kernel.selectors.user_directory import SqlUserDirectory


def submit(service, expense):
    return service.submit_expense(
        SubmitExpense(expense_id=expense.id, actor_id=expense.submitter_id)
    )


class TestPendingForApprover:
    def test_oldest_first(
        self, session, workflow_service, deterministic_clock, org, create_user,
        create_workflow, create_expense, two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        third = create_user(org.company, manager=org.manager)
        approvals = []
        for submitter in (org.colleague, org.employee, third):
            deterministic_clock.tick()
            approvals.append(submit(workflow_service, create_expense(submitter)).approval)

        pending = ApprovalSelector(session).pending_for_approver(org.manager.id, org.company.id)

        assert [p.id for p in pending] == [a.id for a in approvals]
        assert all(p.status is ApprovalStatus.PENDING for p in pending)

    def test_decided_and_foreign_approvals_excluded(
        self, session, workflow_service, org, create_workflow, create_expense,
        two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        decided = submit(workflow_service, create_expense(org.employee)).approval
        waiting = submit(workflow_service, create_expense(org.colleague)).approval
        workflow_service.approve(ApproveApproval(approval_id=decided.id, actor_id=org.manager.id))

        selector = ApprovalSelector(session)

        assert [p.id for p in selector.pending_for_approver(org.manager.id, org.company.id)] == [
            waiting.id
        ]
        assert selector.pending_for_approver(org.other_manager.id, org.company.id) == []

    def test_scoped_to_company(
        self, session, workflow_service, org, create_company, create_workflow,
        create_expense, two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        submit(workflow_service, create_expense(org.employee))
        other = create_company(name="Globex")

        assert ApprovalSelector(session).pending_for_approver(org.manager.id, other.id) == []


class TestHistoryAndStats:
    def test_history_in_step_order(
        self, session, workflow_service, org, create_workflow, create_expense,
        two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        expense = create_expense(org.employee)
        first = submit(workflow_service, expense).approval
        second = workflow_service.approve(
            ApproveApproval(approval_id=first.id, actor_id=org.manager.id)
        ).next_approval

        history = ApprovalSelector(session).history_for_expense(expense.id, org.company.id)

        assert [(h.id, h.step_number) for h in history] == [(first.id, 1), (second.id, 2)]
        assert [h.status for h in history] == [ApprovalStatus.APPROVED, ApprovalStatus.PENDING]

    def test_history_of_auto_approved_expense_is_empty(
        self, session, workflow_service, org, create_expense,
    ):
        expense = create_expense(org.employee)
        submit(workflow_service, expense)

        assert ApprovalSelector(session).history_for_expense(expense.id, org.company.id) == []

    def test_history_hidden_from_other_company(
        self, session, workflow_service, org, create_company, create_workflow,
        create_expense, two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        expense = create_expense(org.employee)
        submit(workflow_service, expense)
        other = create_company(name="Globex")

        selector = ApprovalSelector(session)

        assert len(selector.history_for_expense(expense.id, org.company.id)) == 1
        assert selector.history_for_expense(expense.id, other.id) == []

    def test_stats_count_each_status(
        self, session, workflow_service, org, create_user, create_workflow,
        create_expense, two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        third = create_user(org.company, manager=org.manager)
        approved, rejected, waiting = (
            submit(workflow_service, create_expense(submitter)).approval
            for submitter in (org.employee, org.colleague, third)
        )
        workflow_service.approve(ApproveApproval(approval_id=approved.id, actor_id=org.manager.id))
        workflow_service.reject(
            RejectApproval(
                approval_id=rejected.id,
                actor_id=org.manager.id,
                comments="Not a business expense",
            )
        )

        stats = ApprovalSelector(session).stats_for_approver(org.manager.id, org.company.id)

        assert stats.approver_id == org.manager.id
        assert (stats.pending, stats.approved, stats.rejected, stats.cancelled) == (1, 1, 1, 0)
        assert stats.total == 3

    def test_stats_include_cancelled(
        self, session, workflow_service, deterministic_clock, org, create_workflow,
        create_expense, two_level_config,
    ):
        create_workflow(org.company, two_level_config)
        expense = create_expense(org.employee)
        first = submit(workflow_service, expense).approval
        session.add(Approval(
            expense_id=expense.id,
            approver_id=org.other_manager.id,
            step_number=2,
            status="pending",
            created_at=deterministic_clock.now(),
        ))
        session.flush()
        workflow_service.reject(
            RejectApproval(approval_id=first.id, actor_id=org.manager.id, comments="Over the limit")
        )

        stats = ApprovalSelector(session).stats_for_approver(org.other_manager.id, org.company.id)

        assert stats.cancelled == 1
        assert stats.pending == 0

    def test_stats_for_idle_approver(self, session, org):
        stats = ApprovalSelector(session).stats_for_approver(org.admin.id, org.company.id)
        assert stats.total == 0

    def test_get_expense(self, session, workflow_service, org, create_expense):
        expense = create_expense(org.employee, amount="12.34")
        submit(workflow_service, expense)

        record = ApprovalSelector(session).get_expense(expense.id, org.company.id)

        assert record.status is ExpenseStatus.APPROVED
        assert record.amount == Decimal("12.34")


class TestUserDirectory:
    def test_role_lookup_oldest_first(self, session, org, create_user):
        second_admin = create_user(org.company, role="admin")

        admins = SqlUserDirectory(session).find_active_by_role(org.company.id, "admin")

        assert [a.user_id for a in admins] == [org.admin.id, second_admin.id]

    def test_inactive_users_skipped(self, session, org):
        session.execute(
            update(User)
            .where(User.id == org.admin.id)
            .values(is_active=False)
        )

        assert SqlUserDirectory(session).find_active_by_role(org.company.id, "admin") == ()

    def test_get_user(self, session, org):
        directory = SqlUserDirectory(session)

        user = directory.get_user(org.employee.id)

        assert user.manager_id == org.manager.id
        assert user.company_id == org.company.id
        assert directory.get_user(org.company.id) is None
