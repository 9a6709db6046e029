"""Services for the expense kernel (write side)."""

from expense_kernel.services.approval_workflow_service import ApprovalWorkflowService
from expense_kernel.services.auditor_service import AuditorService, AuditTraceEntry
from expense_kernel.services.sequence_service import SequenceService

__all__ = [
    "ApprovalWorkflowService",
    "AuditTraceEntry",
    "AuditorService",
    "SequenceService",
]
