"""
Expense Kernel - approval workflow core

A multi-tenant expense approval engine with:
- Configurable sequential and amount-conditional approval chains
- Atomic, guarded state transitions (at most one decision per approval)
- Delegation of pending approvals
- Append-only, hash-chained audit log
"""

__version__ = "0.1.0"
