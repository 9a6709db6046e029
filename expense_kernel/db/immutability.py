"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable                         | What is frozen
----------------|----------------------------------------|--------------------------------
Expense         | After it leaves DRAFT                  | amount, currency,
                |                                        | amount_in_company_currency,
                |                                        | exchange_rate
Expense         | Status APPROVED or PAID                | cannot be deleted
Approval        | After status leaves PENDING            | every column, no delete
Approval        | Always                                 | cannot be deleted
AuditLogEntry   | Always (from creation)                 | every column, no delete

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements are emitted
during flush.  Each listener inspects the attribute history of the target:
the value in ``history.deleted`` is what the row held before this flush.
Checking the OLD status (not the new one) lets the submission and decision
workflows perform the transition itself while blocking any later change.

Approval decisions and sibling cancellation are written with guarded Core
UPDATE statements (``WHERE status = 'pending'``), which do not pass through
these listeners; the guard in the WHERE clause is what protects them.

===============================================================================
USAGE
===============================================================================

Registered automatically by ``init_engine_from_url``.  Registration is
idempotent.  To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from expense_kernel.exceptions import ImmutabilityViolationError
from expense_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

FROZEN_EXPENSE_FIELDS = (
    "amount",
    "currency",
    "amount_in_company_currency",
    "exchange_rate",
)


def _status_before_flush(target) -> str:
    """Status the row held before the pending changes were applied."""
    history = get_history(target, "status")
    if history.deleted:
        return str(getattr(history.deleted[0], "value", history.deleted[0]))
    return str(getattr(target.status, "value", target.status))


def _block(entity_type: str, entity_id: str, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_expense_frozen_fields(mapper, connection, target):
    """Block changes to the amount and conversion once an expense is submitted."""
    if _status_before_flush(target) == "draft":
        return

    for field in FROZEN_EXPENSE_FIELDS:
        if get_history(target, field).has_changes():
            _block(
                "Expense",
                str(target.id),
                "UPDATE",
                f"Cannot modify field '{field}' after submission",
                field=field,
            )


def _check_expense_delete(mapper, connection, target):
    """Approved and paid expenses can never be deleted."""
    status = _status_before_flush(target)
    if status in ("approved", "paid"):
        _block(
            "Expense",
            str(target.id),
            "DELETE",
            f"Cannot delete expense in status '{status}'",
        )


def _check_approval_immutability(mapper, connection, target):
    """Decided (approved, rejected, cancelled) approvals are read-only."""
    status = _status_before_flush(target)
    if status == "pending":
        return

    changed = [
        attr.key for attr in inspect(target).attrs if attr.history.has_changes()
    ]
    if changed:
        _block(
            "Approval",
            str(target.id),
            "UPDATE",
            f"Approval is {status} and cannot be modified",
            fields=changed,
        )


def _check_approval_delete(mapper, connection, target):
    _block(
        "Approval",
        str(target.id),
        "DELETE",
        "Approvals are never deleted",
    )


def _check_audit_entry_immutability(mapper, connection, target):
    _block(
        "AuditLogEntry",
        str(target.id),
        "UPDATE",
        "Audit log entries are immutable and cannot be modified",
    )


def _check_audit_entry_delete(mapper, connection, target):
    _block(
        "AuditLogEntry",
        str(target.id),
        "DELETE",
        "Audit log entries cannot be deleted",
    )


def _listeners():
    from expense_kernel.models.approval import Approval
    from expense_kernel.models.audit_log import AuditLogEntry
    from expense_kernel.models.expense import Expense

    return (
        (Expense, "before_update", _check_expense_frozen_fields),
        (Expense, "before_delete", _check_expense_delete),
        (Approval, "before_update", _check_approval_immutability),
        (Approval, "before_delete", _check_approval_delete),
        (AuditLogEntry, "before_update", _check_audit_entry_immutability),
        (AuditLogEntry, "before_delete", _check_audit_entry_delete),
    )


def register_immutability_listeners():
    """Register all immutability enforcement event listeners (idempotent)."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to violate immutability rules
    on purpose.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
