"""ORM models.  Importing this package registers every table on Base.metadata."""

from expense_kernel.models.approval import Approval
from expense_kernel.models.approval_workflow import ApprovalWorkflow
from expense_kernel.models.audit_log import AuditAction, AuditEntity, AuditLogEntry
from expense_kernel.models.company import Company
from expense_kernel.models.expense import Expense
from expense_kernel.models.sequence_counter import SequenceCounter
from expense_kernel.models.user import User

__all__ = [
    "Approval",
    "ApprovalWorkflow",
    "AuditAction",
    "AuditEntity",
    "AuditLogEntry",
    "Company",
    "Expense",
    "SequenceCounter",
    "User",
]
