"""
Typed Exception Hierarchy for the Receivables Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the receivables core (dialogs, API handlers, batch jobs) must be
able to tell a typo in a form apart from an attempt to overdraw a note or a
lost race on a balance.  Parsing messages is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.apply(note_id, paid_value=Decimal("30.00"), ...)
    except OverpaymentError as e:
        api_response(code=e.code, open_value=e.open_value)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ReceivablesError (base)
    |
    +-- ValidationError                 (bad input shape/range, user-correctable)
    |   +-- InvalidAmountError
    |   +-- InvalidFieldError
    |   +-- EmptyOrderError
    |   +-- InvalidPaymentConditionError
    |   +-- CheckDataError
    |   +-- DuplicateNoteNumberError
    |
    +-- NotFoundError
    |   +-- CustomerNotFoundError
    |   +-- OrderNotFoundError
    |   +-- InstallmentNotFoundError
    |   +-- NoteNotFoundError
    |   +-- SettlementNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- CheckNotFoundError
    |
    +-- InvariantViolationError         (would break a monetary invariant)
    |   +-- OverpaymentError
    |   +-- ChequeSumMismatchError
    |   +-- InstallmentSplitMismatchError
    |
    +-- StateConflictError              (illegal in current lifecycle state)
    |   +-- TerminalNoteError
    |   +-- AlreadySettledError
    |   +-- AlreadyReversedError
    |   +-- OrderLockedError
    |   +-- OrderHasActivityError
    |   +-- InstallmentHasNotesError
    |   +-- CreditLimitExceededError
    |   +-- CheckStatusTransitionError
    |
    +-- ConcurrencyError                (lost race; re-fetch and retry once)
    |   +-- ConcurrentModificationError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_AMOUNT              | Non-positive value / negative adjustment
                | INVALID_FIELD               | Field out of range (e.g. discount > 100%)
                | EMPTY_ORDER                 | No valid line items remain
                | INVALID_PAYMENT_CONDITION   | Empty schedule / unparseable label
                | CHECK_DATA_INVALID          | Missing check, missing check field
                | DUPLICATE_NOTE_NUMBER       | Note number already used
----------------|-----------------------------|-----------------------------------------
Not found       | <ENTITY>_NOT_FOUND          | Id does not exist
----------------|-----------------------------|-----------------------------------------
Invariant       | OVERPAYMENT                 | net_value > open balance + EPSILON
                | CHEQUE_SUM_MISMATCH         | |sum(checks) - paid_value| > EPSILON
                | INSTALLMENT_SPLIT_MISMATCH  | Notes do not add up to installment
----------------|-----------------------------|-----------------------------------------
State           | TERMINAL_NOTE               | Note is SETTLED or CANCELLED
                | ALREADY_SETTLED             | Cancelling a SETTLED note
                | ALREADY_REVERSED            | Reversing twice
                | ORDER_LOCKED                | Editing a CANCELLED/COMPLETED order
                | ORDER_HAS_ACTIVITY          | Replanning an order with payments/notes
                | INSTALLMENT_HAS_NOTES       | Direct payment on a noted installment
                | CREDIT_LIMIT_EXCEEDED       | Sale blocked by credit policy
                | CHECK_STATUS_TRANSITION     | Check already CLEARED or RETURNED
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION     | Version check failed on flush
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Tampering with settlement history

All mutating operations validate fully before writing, so every exception
above (except ConcurrentModificationError, raised at flush) leaves the
session untouched.
"""


class ReceivablesError(Exception):
    """
    Base exception for all receivables kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "RECEIVABLES_ERROR"


# Validation


class ValidationError(ReceivablesError):
    """Bad input shape or range. User-correctable, never retried."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """A monetary field has an illegal value."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: str, reason: str = "must be positive"):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid amount for {field}: {value} ({reason})")


class InvalidFieldError(ValidationError):
    """A non-monetary field has an illegal value."""

    code: str = "INVALID_FIELD"

    def __init__(self, field: str, value: str, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid value for {field}: {value!r} ({reason})")


class EmptyOrderError(ValidationError):
    """No line item survived validation."""

    code: str = "EMPTY_ORDER"

    def __init__(self, rejected_count: int):
        self.rejected_count = rejected_count
        super().__init__(
            f"Order has no valid items ({rejected_count} item(s) rejected)"
        )


class InvalidPaymentConditionError(ValidationError):
    """Payment condition cannot produce an installment schedule."""

    code: str = "INVALID_PAYMENT_CONDITION"

    def __init__(self, condition: str, reason: str):
        self.condition = condition
        self.reason = reason
        super().__init__(f"Invalid payment condition {condition!r}: {reason}")


class CheckDataError(ValidationError):
    """Check sub-ledger data is missing or incomplete."""

    code: str = "CHECK_DATA_INVALID"

    def __init__(self, reason: str, check_index: int | None = None):
        self.reason = reason
        self.check_index = check_index
        where = f" (check #{check_index + 1})" if check_index is not None else ""
        super().__init__(f"Invalid check data{where}: {reason}")


class DuplicateNoteNumberError(ValidationError):
    """Note number is already taken."""

    code: str = "DUPLICATE_NOTE_NUMBER"

    def __init__(self, number: str):
        self.number = number
        super().__init__(f"Note number already exists: {number}")


# Not found


class NotFoundError(ReceivablesError):
    """Referenced record does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "Record"

    def __init__(self, entity_id: int):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class CustomerNotFoundError(NotFoundError):
    code: str = "CUSTOMER_NOT_FOUND"
    entity_type = "Customer"


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"
    entity_type = "Order"


class InstallmentNotFoundError(NotFoundError):
    code: str = "INSTALLMENT_NOT_FOUND"
    entity_type = "Installment"


class NoteNotFoundError(NotFoundError):
    code: str = "NOTE_NOT_FOUND"
    entity_type = "ReceivableNote"


class SettlementNotFoundError(NotFoundError):
    code: str = "SETTLEMENT_NOT_FOUND"
    entity_type = "Settlement"


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"
    entity_type = "InstallmentPayment"


class CheckNotFoundError(NotFoundError):
    code: str = "CHECK_NOT_FOUND"
    entity_type = "Check"


# Monetary invariants


class InvariantViolationError(ReceivablesError):
    """Operation would break a monetary invariant. Rejected before any write."""

    code: str = "INVARIANT_VIOLATION"


class OverpaymentError(InvariantViolationError):
    """Payment exceeds the open balance beyond tolerance."""

    code: str = "OVERPAYMENT"

    def __init__(
        self,
        entity_type: str,
        entity_id: int,
        net_value: str,
        open_value: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.net_value = net_value
        self.open_value = open_value
        super().__init__(
            f"Overpayment on {entity_type} {entity_id}: "
            f"net value {net_value} exceeds open balance {open_value}"
        )


class ChequeSumMismatchError(InvariantViolationError):
    """Sum of attached checks does not match the paid value."""

    code: str = "CHEQUE_SUM_MISMATCH"

    def __init__(self, checks_total: str, paid_value: str):
        self.checks_total = checks_total
        self.paid_value = paid_value
        super().__init__(
            f"Sum of checks ({checks_total}) must equal paid value ({paid_value})"
        )


class InstallmentSplitMismatchError(InvariantViolationError):
    """Notes issued against an installment do not add up to its open amount."""

    code: str = "INSTALLMENT_SPLIT_MISMATCH"

    def __init__(self, installment_id: int, notes_total: str, open_amount: str):
        self.installment_id = installment_id
        self.notes_total = notes_total
        self.open_amount = open_amount
        super().__init__(
            f"Notes for installment {installment_id} total {notes_total}, "
            f"but the installment has {open_amount} outstanding"
        )


# Lifecycle state


class StateConflictError(ReceivablesError):
    """Operation is not legal in the record's current lifecycle state."""

    code: str = "STATE_CONFLICT"


class TerminalNoteError(StateConflictError):
    """Note is SETTLED or CANCELLED and accepts no further settlements."""

    code: str = "TERMINAL_NOTE"

    def __init__(self, note_id: int, status: str):
        self.note_id = note_id
        self.status = status
        super().__init__(f"Note {note_id} is {status} and cannot be changed")


class AlreadySettledError(StateConflictError):
    """A SETTLED note cannot be cancelled."""

    code: str = "ALREADY_SETTLED"

    def __init__(self, note_id: int):
        self.note_id = note_id
        super().__init__(f"Note {note_id} is already settled")


class AlreadyReversedError(StateConflictError):
    """Settlement or payment was already reversed."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, entity_type: str, entity_id: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} was already reversed")


class OrderLockedError(StateConflictError):
    """Order is CANCELLED or COMPLETED and cannot be edited."""

    code: str = "ORDER_LOCKED"

    def __init__(self, order_id: int, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status} and cannot be changed")


class OrderHasActivityError(StateConflictError):
    """Order already has payments or notes that a replan would orphan."""

    code: str = "ORDER_HAS_ACTIVITY"

    def __init__(self, order_id: int, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Order {order_id} cannot be changed: {reason}")


class InstallmentHasNotesError(StateConflictError):
    """Installment is represented by notes; pay the notes instead."""

    code: str = "INSTALLMENT_HAS_NOTES"

    def __init__(self, installment_id: int, note_count: int):
        self.installment_id = installment_id
        self.note_count = note_count
        super().__init__(
            f"Installment {installment_id} has {note_count} active note(s); "
            "settle the notes instead of paying the installment directly"
        )


class CreditLimitExceededError(StateConflictError):
    """A sales order would push the customer past the credit limit."""

    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(self, customer_id: int, limit: str, used: str, candidate: str):
        self.customer_id = customer_id
        self.limit = limit
        self.used = used
        self.candidate = candidate
        super().__init__(
            f"Credit limit exceeded for customer {customer_id}: "
            f"limit={limit}, used={used}, candidate={candidate}"
        )


class CheckStatusTransitionError(StateConflictError):
    """Only a PENDING check can be cleared or returned."""

    code: str = "CHECK_STATUS_TRANSITION"

    def __init__(self, check_id: int, current: str, requested: str):
        self.check_id = check_id
        self.current = current
        self.requested = requested
        super().__init__(f"Check {check_id} is {current} and cannot become {requested}")


# Concurrency


class ConcurrencyError(ReceivablesError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Balance was changed by another transaction after it was read."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: int | None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability


class ImmutabilityError(ReceivablesError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete settlement history."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: int | None, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
