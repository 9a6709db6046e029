"""Read-only query selectors."""

from expense_kernel.selectors.approval_selector import ApprovalSelector
from expense_kernel.selectors.base import BaseSelector
from expense_kernel.selectors.user_directory import SqlUserDirectory

__all__ = ["BaseSelector", "ApprovalSelector", "SqlUserDirectory"]
