"""
Typed Exception Hierarchy for the Expense Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The HTTP layer that sits on top of this kernel has to turn every failure
into a user-facing message.  Parsing exception text for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.approve(approval_id=approval_id, actor_id=actor_id)
    except ApprovalAlreadyProcessedError as e:
        api_response(code=e.code, approval=e.approval_id, status=e.status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ExpenseWorkflowError:

    ExpenseWorkflowError (base)
    |
    +-- NotFoundError
    |   +-- ExpenseNotFoundError
    |   +-- ApprovalNotFoundError
    |   +-- UserNotFoundError
    |
    +-- InvalidStateTransitionError
    |   +-- ApprovalAlreadyProcessedError
    |
    +-- ValidationError
    |   +-- RejectionCommentTooShortError
    |   +-- UnauthorizedApproverError
    |   +-- InvalidDelegateError
    |   +-- ConversionMissingError
    |   +-- PermissionDeniedError
    |   +-- EmptyBulkRequestError
    |
    +-- ConfigurationError
    |   +-- WorkflowConfigurationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | When Raised
----------------|------------------------------|----------------------------------------
Not found       | EXPENSE_NOT_FOUND            | Expense missing or outside actor scope
                | APPROVAL_NOT_FOUND           | Approval missing or outside actor scope
                | USER_NOT_FOUND               | Acting user missing or inactive
----------------|------------------------------|----------------------------------------
State           | INVALID_STATE_TRANSITION     | Entity not in the required prior state
                | APPROVAL_ALREADY_PROCESSED   | Approval already decided or cancelled
----------------|------------------------------|----------------------------------------
Validation      | REJECTION_COMMENT_TOO_SHORT  | Rejection comment below minimum length
                | UNAUTHORIZED_APPROVER        | Actor may not act on this approval
                | INVALID_DELEGATE             | Delegate inactive/unknown/cross-company
                | CONVERSION_MISSING           | No company-currency amount at submit
                | PERMISSION_DENIED            | Actor role may not perform the action
                | EMPTY_BULK_REQUEST           | Bulk call with no approval ids
----------------|------------------------------|----------------------------------------
Configuration   | WORKFLOW_CONFIGURATION_ERROR | Malformed approval workflow config
----------------|------------------------------|----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION       | Write to a decided approval, frozen
                |                              | expense amount, or audit entry
----------------|------------------------------|----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN           | Audit hash chain fails validation
"""


class ExpenseWorkflowError(Exception):
    """
    Base exception for all expense kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "EXPENSE_WORKFLOW_ERROR"


# Not-found exceptions


class NotFoundError(ExpenseWorkflowError):
    """Referenced entity does not exist or is outside the actor's company."""

    code: str = "NOT_FOUND"


class ExpenseNotFoundError(NotFoundError):
    """Expense with given ID was not found in the actor's scope."""

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense not found: {expense_id}")


class ApprovalNotFoundError(NotFoundError):
    """Approval with given ID was not found in the actor's scope."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Approval not found: {approval_id}")


class UserNotFoundError(NotFoundError):
    """Acting user does not exist or is inactive."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found or inactive: {user_id}")


# State-transition exceptions


class InvalidStateTransitionError(ExpenseWorkflowError):
    """The entity is not in the state required for the requested operation."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        target_status: str,
        message: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            message
            or f"Invalid transition for {entity_type} {entity_id}: "
            f"{current_status} -> {target_status}"
        )


class ApprovalAlreadyProcessedError(InvalidStateTransitionError):
    """
    A decision was attempted on an approval that is no longer pending.

    This is the "already processed" condition: the approval was decided,
    cancelled by a sibling rejection, or won by a concurrent decision.
    """

    code: str = "APPROVAL_ALREADY_PROCESSED"

    def __init__(self, approval_id: str, status: str, target_status: str):
        self.approval_id = approval_id
        self.status = status
        super().__init__(
            "approval",
            approval_id,
            status,
            target_status,
            message=f"Approval {approval_id} already processed (status={status})",
        )


# Validation exceptions


class ValidationError(ExpenseWorkflowError):
    """Input fails a business rule."""

    code: str = "VALIDATION_ERROR"


class RejectionCommentTooShortError(ValidationError):
    """Rejection comments are required and must reach a minimum length."""

    code: str = "REJECTION_COMMENT_TOO_SHORT"

    def __init__(self, length: int, minimum: int):
        self.length = length
        self.minimum = minimum
        super().__init__(
            f"Rejection comments are required (minimum {minimum} characters, "
            f"got {length})"
        )


class UnauthorizedApproverError(ValidationError):
    """The actor is not allowed to act on this approval."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, approval_id: str, actor_id: str):
        self.approval_id = approval_id
        self.actor_id = actor_id
        super().__init__(
            f"User {actor_id} is not the approver of approval {approval_id}"
        )


class InvalidDelegateError(ValidationError):
    """Delegate user is unknown, inactive, cross-company or otherwise ineligible."""

    code: str = "INVALID_DELEGATE"

    def __init__(self, delegate_id: str, reason: str):
        self.delegate_id = delegate_id
        self.reason = reason
        super().__init__(f"Invalid delegate {delegate_id}: {reason}")


class ConversionMissingError(ValidationError):
    """Expense has no company-currency amount and needs a currency conversion."""

    code: str = "CONVERSION_MISSING"

    def __init__(self, expense_id: str, currency: str, company_currency: str):
        self.expense_id = expense_id
        self.currency = currency
        self.company_currency = company_currency
        super().__init__(
            f"Expense {expense_id} in {currency} has no amount in company "
            f"currency {company_currency}"
        )


class PermissionDeniedError(ValidationError):
    """The actor's role does not allow the requested action."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"User {actor_id} is not allowed to {action}")


class EmptyBulkRequestError(ValidationError):
    """A bulk decision was requested without any approval ids."""

    code: str = "EMPTY_BULK_REQUEST"

    def __init__(self):
        super().__init__("Approval IDs list is required")


# Configuration exceptions


class ConfigurationError(ExpenseWorkflowError):
    """Company workflow configuration is malformed or incomplete."""

    code: str = "CONFIGURATION_ERROR"


class WorkflowConfigurationError(ConfigurationError):
    """
    A workflow configuration failed validation.

    ``field`` is a dotted path into the raw configuration
    (e.g. ``approval_levels[1].role``).
    """

    code: str = "WORKFLOW_CONFIGURATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid workflow configuration at {field}: {reason}")


# Immutability exceptions


class ImmutabilityError(ExpenseWorkflowError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Decided approvals, frozen expense amounts and audit log entries
    are immutable.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit exceptions


class AuditChainBrokenError(ExpenseWorkflowError):
    """Recomputed audit hash does not match the stored chain."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, entry_id: str, expected_hash: str, actual_hash: str):
        self.entry_id = entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at entry {entry_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
