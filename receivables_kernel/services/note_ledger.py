"""
Module: receivables_kernel.services.note_ledger
Responsibility:
    Issue and cancel receivable notes (duplicatas), singly or as a split
    batch against one installment.
Architecture position:
    Kernel > Services.  Flush-only; the caller owns the transaction.

Invariants enforced:
    - original_value > 0; open_value starts equal to original_value.
    - Note numbers are unique.
    - A note issued on its own is never due before its issue date.
    - A linked note backs an installment of a live (non-cancelled) sales
      order's current schedule, and is issued to that order's customer.
    - A batch split must add up to the installment's outstanding amount.
    - Cancellation only from OPEN or PARTIAL; open_value is frozen, not
      zeroed.

Failure modes:
    - InvalidAmountError / InvalidFieldError / DuplicateNoteNumberError on
      bad input.
    - CustomerNotFoundError / InstallmentNotFoundError / NoteNotFoundError.
    - InstallmentSplitMismatchError for a batch that does not add up, or for
      over-issuance when strict_installment_split is on.
    - OrderLockedError when the installment's order is cancelled.
    - AlreadySettledError / TerminalNoteError on cancel.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select

from receivables_kernel.db.types import EPSILON, ZERO
from receivables_kernel.domain.clock import Clock
from receivables_kernel.domain.dtos import (
    LinkedToInstallment,
    NoteInput,
    NoteSplit,
    PaymentMethod,
    Standalone,
)
from receivables_kernel.domain.status import NoteStatus
from receivables_kernel.domain.values import exceeds, money_sum, to_money, within_tolerance
from receivables_kernel.exceptions import (
    AlreadySettledError,
    CustomerNotFoundError,
    DuplicateNoteNumberError,
    InstallmentNotFoundError,
    InstallmentSplitMismatchError,
    InvalidAmountError,
    InvalidFieldError,
    NoteNotFoundError,
    OrderLockedError,
    TerminalNoteError,
)
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.customer import Customer
from receivables_kernel.models.note import ReceivableNote
from receivables_kernel.models.order import Installment
from receivables_kernel.services.base import BaseService

logger = get_logger("services.note_ledger")


def outstanding_for_notes(installment: Installment) -> Decimal:
    """Installment open amount not yet covered by active notes."""
    covered = money_sum(n.open_value for n in installment.active_notes)
    return max(ZERO, installment.open_amount - covered)


class NoteLedger(BaseService[ReceivableNote]):
    """
    Write side of the receivable note ledger.

    Args:
        session: Caller-owned session.
        clock: Source of issue dates and cancellation timestamps.
        strict_installment_split: Reject single issues that exceed the
            installment's outstanding amount instead of only warning.
        epsilon: Money comparison tolerance.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        strict_installment_split: bool = False,
        epsilon: Decimal = EPSILON,
    ):
        super().__init__(session, clock)
        self.strict_installment_split = strict_installment_split
        self.epsilon = epsilon

    # =========================================================================
    # Issuance
    # =========================================================================

    def issue(self, note_input: NoteInput) -> ReceivableNote:
        """
        Issue one note, standalone or against an installment.

        A linked note whose value differs from the installment's outstanding
        amount is still issued; the mismatch is logged.  With
        strict_installment_split, issuing beyond the outstanding amount is
        rejected.
        """
        value = self._positive_value(note_input.original_value)
        if note_input.due_date is None:
            raise InvalidFieldError("due_date", "None", "is required")
        issue_date = note_input.issue_date or self.clock.today()
        if note_input.due_date < issue_date:
            raise InvalidFieldError(
                "due_date", note_input.due_date.isoformat(), f"before issue date {issue_date.isoformat()}"
            )

        match note_input.origin:
            case Standalone():
                self._require_customer(note_input.customer_id)
                number = self._standalone_number(note_input.number)
                note = self._create(
                    number=number,
                    customer_id=note_input.customer_id,
                    installment=None,
                    value=value,
                    due_date=note_input.due_date,
                    issue_date=issue_date,
                    payment_method=note_input.payment_method,
                    description=note_input.description,
                )
            case LinkedToInstallment(installment_id=installment_id):
                installment = self._installment_for_notes(installment_id)
                self._require_same_customer(installment, note_input.customer_id)
                self._check_against_outstanding(installment, value)
                number = self._linked_number(note_input.number, installment)
                note = self._create(
                    number=number,
                    customer_id=note_input.customer_id,
                    installment=installment,
                    value=value,
                    due_date=note_input.due_date,
                    issue_date=issue_date,
                    payment_method=note_input.payment_method,
                    description=note_input.description,
                )
            case _:
                raise InvalidFieldError("origin", repr(note_input.origin), "unknown note origin")

        self._flush("ReceivableNote", None)
        logger.info(
            "note_issued",
            extra={
                "note_id": note.id,
                "number": note.number,
                "customer_id": note.customer_id,
                "installment_id": note.installment_id,
                "original_value": str(note.original_value),
            },
        )
        return note

    def issue_for_installment(
        self,
        installment_id: int,
        splits: Sequence[NoteSplit],
        issue_date: date | None = None,
    ) -> list[ReceivableNote]:
        """
        Issue several notes that together cover an installment.

        The split values must sum to the installment's outstanding amount
        within epsilon.  Missing due dates default to the installment's;
        missing numbers are generated from the order number.
        """
        if not splits:
            raise InvalidFieldError("splits", "[]", "at least one note is required")

        installment = self._installment_for_notes(installment_id)
        values = [self._positive_value(s.original_value) for s in splits]

        outstanding = outstanding_for_notes(installment)
        total = money_sum(values)
        if not within_tolerance(total, outstanding, self.epsilon):
            raise InstallmentSplitMismatchError(
                installment_id=installment.id,
                notes_total=str(total),
                open_amount=str(outstanding),
            )

        customer_id = installment.order.counterparty_id
        self._require_customer(customer_id)

        notes = []
        for split, value in zip(splits, values):
            notes.append(
                self._create(
                    number=self._linked_number(split.number, installment),
                    customer_id=customer_id,
                    installment=installment,
                    value=value,
                    due_date=split.due_date or installment.due_date,
                    issue_date=issue_date,
                    payment_method=split.payment_method,
                    description=split.description,
                )
            )

        self._flush("Installment", installment.id)
        logger.info(
            "installment_notes_issued",
            extra={
                "installment_id": installment.id,
                "note_count": len(notes),
                "notes_total": str(total),
                "note_ids": [n.id for n in notes],
            },
        )
        return notes

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(self, note_id: int, reason: str | None = None) -> ReceivableNote:
        """
        Cancel an OPEN or PARTIAL note.  open_value is left as it was.
        """
        note = self._load_for_update(ReceivableNote, note_id, NoteNotFoundError)

        status = note.status
        if status == NoteStatus.SETTLED:
            raise AlreadySettledError(note.id)
        if status == NoteStatus.CANCELLED:
            raise TerminalNoteError(note.id, status.value)

        note.cancelled = True
        note.cancelled_at = self.clock.now()
        note.cancel_reason = reason

        self._flush("ReceivableNote", note.id)
        logger.info(
            "note_cancelled",
            extra={
                "note_id": note.id,
                "previous_status": status.value,
                "open_value": str(note.open_value),
                "reason": reason,
            },
        )
        return note

    # =========================================================================
    # Internal
    # =========================================================================

    def _positive_value(self, raw) -> Decimal:
        value = to_money(raw, field="original_value")
        if value <= 0:
            raise InvalidAmountError("original_value", str(value))
        return value

    def _require_customer(self, customer_id: int) -> Customer:
        customer = self.session.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    def _installment_for_notes(self, installment_id: int) -> Installment:
        installment = self._load_for_update(Installment, installment_id, InstallmentNotFoundError)
        order = installment.order
        if not order.is_sale:
            raise InvalidFieldError(
                "installment_id",
                str(installment_id),
                "notes can only be issued against sales orders",
            )
        if order.cancelled:
            raise OrderLockedError(order.id, "cancelled")
        if installment.superseded:
            raise InvalidFieldError(
                "installment_id",
                str(installment_id),
                "installment was replaced by a new payment schedule",
            )
        return installment

    def _require_same_customer(self, installment: Installment, customer_id: int) -> None:
        self._require_customer(customer_id)
        if installment.order.counterparty_id != customer_id:
            raise InvalidFieldError(
                "customer_id",
                str(customer_id),
                f"installment belongs to customer {installment.order.counterparty_id}",
            )

    def _check_against_outstanding(self, installment: Installment, value: Decimal) -> None:
        outstanding = outstanding_for_notes(installment)
        if within_tolerance(value, outstanding, self.epsilon):
            return
        if self.strict_installment_split and exceeds(value, outstanding, self.epsilon):
            raise InstallmentSplitMismatchError(
                installment_id=installment.id,
                notes_total=str(value),
                open_amount=str(outstanding),
            )
        logger.warning(
            "note_installment_amount_mismatch",
            extra={
                "installment_id": installment.id,
                "note_value": str(value),
                "outstanding": str(outstanding),
            },
        )

    def _number_taken(self, number: str) -> bool:
        count = self.session.execute(
            select(func.count(ReceivableNote.id)).where(ReceivableNote.number == number)
        ).scalar_one()
        return count > 0

    def _standalone_number(self, number: str | None) -> str:
        if number is None or not number.strip():
            raise InvalidFieldError("number", str(number), "is required for standalone notes")
        number = number.strip()
        if self._number_taken(number):
            raise DuplicateNoteNumberError(number)
        return number

    def _linked_number(self, number: str | None, installment: Installment) -> str:
        if number is not None and number.strip():
            number = number.strip()
            if self._number_taken(number):
                raise DuplicateNoteNumberError(number)
            return number

        # <order number>-<installment sequence>/<k>, k counting every note
        # ever issued for the installment (cancelled ones keep their number)
        k = len(installment.notes) + 1
        while True:
            candidate = f"{installment.order.number}-{installment.sequence}/{k}"
            if not self._number_taken(candidate):
                return candidate
            k += 1

    def _create(
        self,
        number: str,
        customer_id: int,
        installment: Installment | None,
        value: Decimal,
        due_date: date,
        issue_date: date | None,
        payment_method: PaymentMethod | None,
        description: str | None,
    ) -> ReceivableNote:
        note = ReceivableNote(
            number=number,
            customer_id=customer_id,
            installment=installment,
            issue_date=issue_date or self.clock.today(),
            due_date=due_date,
            original_value=value,
            open_value=value,
            payment_method=PaymentMethod(payment_method).value if payment_method else None,
            description=description,
            cancelled=False,
        )
        self.session.add(note)
        return note
