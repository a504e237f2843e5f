"""
Status -- derived lifecycle status for notes, installments and orders.

Responsibility:
    Maps current balances to a status.  Status is never stored; models
    expose it as a property that calls into this module, so stored balance
    and reported status cannot drift apart.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Re-deriving from the same balances always gives the same status.
    - CANCELLED is sticky: the flag wins over any balance.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Iterable


class NoteStatus(str, Enum):
    """Receivable note lifecycle.

    OPEN -> PARTIAL -> SETTLED through settlements, back through reversals;
    any non-SETTLED state -> CANCELLED explicitly; CANCELLED is terminal.
    """

    OPEN = "open"
    PARTIAL = "partial"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class InstallmentStatus(str, Enum):
    OPEN = "open"
    PARTIAL = "partial"
    PAID = "paid"


class OrderStatus(str, Enum):
    OPEN = "open"
    PARTIAL = "partial"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_NOTE_STATUSES = frozenset({NoteStatus.SETTLED, NoteStatus.CANCELLED})


def derive_note_status(
    original_value: Decimal,
    open_value: Decimal,
    cancelled: bool = False,
) -> NoteStatus:
    """Note status from its balances and cancellation flag."""
    if cancelled:
        return NoteStatus.CANCELLED
    if open_value <= 0:
        return NoteStatus.SETTLED
    if open_value >= original_value:
        return NoteStatus.OPEN
    return NoteStatus.PARTIAL


def derive_installment_status(amount: Decimal, amount_paid: Decimal) -> InstallmentStatus:
    """Installment status from amount vs amount_paid."""
    if amount_paid >= amount:
        return InstallmentStatus.PAID
    if amount_paid > 0:
        return InstallmentStatus.PARTIAL
    return InstallmentStatus.OPEN


def derive_order_status(
    cancelled: bool,
    installment_statuses: Iterable[InstallmentStatus],
) -> OrderStatus:
    """
    Order status from its live installments.

    COMPLETED when every installment is PAID, PARTIAL when any money has
    been received, OPEN otherwise (including an order with no schedule).
    """
    if cancelled:
        return OrderStatus.CANCELLED
    statuses = list(installment_statuses)
    if not statuses:
        return OrderStatus.OPEN
    if all(s == InstallmentStatus.PAID for s in statuses):
        return OrderStatus.COMPLETED
    if any(s != InstallmentStatus.OPEN for s in statuses):
        return OrderStatus.PARTIAL
    return OrderStatus.OPEN
