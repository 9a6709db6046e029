"""
Pure calculation engines for the expense workflow.

Engines perform no I/O and never touch the clock; everything they need
arrives as arguments.
"""

from expense_engines.approver_resolution import resolve_next_approver

__all__ = ["resolve_next_approver"]
