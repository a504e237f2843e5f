"""
Module: receivables_kernel.services.settlement_engine
Responsibility:
    Apply settlements (baixas) against receivable notes, reverse them
    (estornos), rebuild an installment's amount_paid from its history, and
    move received checks from PENDING to CLEARED or RETURNED.
Architecture position:
    Kernel > Services.  Flush-only; the caller owns the transaction.

Invariants enforced:
    - Everything is validated before anything is mutated.
    - No overdraw: net_value <= open_value + epsilon, and open_value never
      goes below zero.
    - Conservation: open_value + sum(net_value of live settlements)
      == original_value (up to the epsilon absorbed at apply time).
    - Reversal is the exact inverse of apply: the note gets back net_value
      (clamped at original_value) and the installment gets back exactly
      the installment_credit recorded at apply time.
    - A settlement is reversed at most once and never deleted.
    - Note origin is matched exhaustively in one place (_installment_for_credit).

Failure modes:
    - TerminalNoteError, OverpaymentError, InvalidAmountError,
      CheckDataError, ChequeSumMismatchError, InvalidFieldError on apply.
    - AlreadyReversedError, TerminalNoteError on reverse.
    - CheckStatusTransitionError when a check is no longer PENDING.
    - ConcurrentModificationError when another transaction changed the
      note or installment after it was read.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Sequence

from sqlalchemy import select

from receivables_kernel.db.types import EPSILON, ZERO
from receivables_kernel.domain.clock import Clock
from receivables_kernel.domain.dtos import (
    CheckInput,
    CheckStatus,
    LinkedToInstallment,
    PaymentMethod,
    Standalone,
)
from receivables_kernel.domain.status import NoteStatus
from receivables_kernel.domain.validation import compute_payment_amounts, validate_checks
from receivables_kernel.domain.values import exceeds, money_sum
from receivables_kernel.exceptions import (
    AlreadyReversedError,
    CheckNotFoundError,
    CheckStatusTransitionError,
    InstallmentNotFoundError,
    InvalidFieldError,
    NoteNotFoundError,
    OverpaymentError,
    SettlementNotFoundError,
    TerminalNoteError,
)
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.note import ReceivableNote
from receivables_kernel.models.order import Installment
from receivables_kernel.models.settlement import Check, InstallmentPayment, Settlement
from receivables_kernel.services.base import BaseService

logger = get_logger("services.settlement_engine")


def build_checks(checks: Sequence[CheckInput]) -> list[Check]:
    """ORM rows for validated check inputs (owner is set by the relationship)."""
    return [
        Check(
            holder_name=c.holder_name,
            holder_document=c.holder_document,
            bank=c.bank,
            agency=c.agency,
            account=c.account,
            check_number=c.check_number,
            value=c.value,
            due_date=c.due_date,
            status=CheckStatus.PENDING.value,
            note=c.note,
        )
        for c in checks
    ]


class SettlementEngine(BaseService[Settlement]):
    """
    Apply and reverse settlements against receivable notes.

    Contract:
        apply() and reverse() either complete every step or raise before
        touching any balance.
    """

    def __init__(self, session, clock: Clock | None = None, epsilon: Decimal = EPSILON):
        super().__init__(session, clock)
        self.epsilon = epsilon

    # =========================================================================
    # Apply
    # =========================================================================

    def apply(
        self,
        note_id: int,
        paid_value: Decimal,
        interest: Decimal = ZERO,
        penalty: Decimal = ZERO,
        discount: Decimal = ZERO,
        method: PaymentMethod = PaymentMethod.CASH,
        checks: Sequence[CheckInput] | None = None,
        payment_date: date | None = None,
        observation: str | None = None,
    ) -> Settlement:
        """
        Record money received against a note.

        Steps, in order, all before any mutation:
            1. The note must not be SETTLED or CANCELLED.
            2. net_value must be positive and within the open balance.
            3. Checks must be complete and add up to paid_value.
            4. The payment date must not precede the note's issue date.
        Then the note balance drops, the settlement row is written and a
        linked installment is credited.
        """
        note = self._load_for_update(ReceivableNote, note_id, NoteNotFoundError)

        status = note.status
        if note.is_terminal:
            raise TerminalNoteError(note.id, status.value)

        amounts = compute_payment_amounts(paid_value, interest, penalty, discount)
        if exceeds(amounts.net_value, note.open_value, self.epsilon):
            raise OverpaymentError(
                entity_type="ReceivableNote",
                entity_id=note.id,
                net_value=str(amounts.net_value),
                open_value=str(note.open_value),
            )

        method = PaymentMethod(method)
        valid_checks = validate_checks(method, checks, amounts.paid_value, self.epsilon)

        payment_date = payment_date or self.clock.today()
        if payment_date < note.issue_date:
            raise InvalidFieldError(
                "payment_date",
                payment_date.isoformat(),
                f"before note issue date {note.issue_date.isoformat()}",
            )

        installment = self._installment_for_credit(note)
        credit = ZERO
        if installment is not None:
            credit = min(amounts.net_value, max(ZERO, installment.open_amount))

        # Mutation starts here
        note.open_value = note.open_value - min(amounts.net_value, note.open_value)
        if installment is not None:
            installment.amount_paid = installment.amount_paid + credit

        settlement = Settlement(
            note=note,
            paid_value=amounts.paid_value,
            interest=amounts.interest,
            penalty=amounts.penalty,
            discount=amounts.discount,
            net_value=amounts.net_value,
            installment_credit=credit,
            payment_date=payment_date,
            payment_method=method.value,
            observation=observation,
            reversed=False,
        )
        settlement.checks = build_checks(valid_checks)
        self.session.add(settlement)

        self._flush("ReceivableNote", note.id)
        logger.info(
            "settlement_applied",
            extra={
                "settlement_id": settlement.id,
                "note_id": note.id,
                "net_value": str(amounts.net_value),
                "installment_credit": str(credit),
                "open_value": str(note.open_value),
                "previous_status": status.value,
                "status": note.status.value,
                "method": method.value,
                "check_count": len(valid_checks),
            },
        )
        return settlement

    # =========================================================================
    # Reverse
    # =========================================================================

    def reverse(self, settlement_id: int, reason: str | None = None) -> Settlement:
        """
        Undo a settlement.  The row stays on file with reversed = True.

        open_value is restored by net_value; if that would pass
        original_value it is clamped and ``reversal_overshoot_clamped`` is
        logged.
        """
        settlement = self._load_for_update(Settlement, settlement_id, SettlementNotFoundError)
        if settlement.reversed:
            raise AlreadyReversedError("Settlement", settlement.id)

        note = self._load_for_update(ReceivableNote, settlement.note_id, NoteNotFoundError)
        if note.status == NoteStatus.CANCELLED:
            raise TerminalNoteError(note.id, NoteStatus.CANCELLED.value)

        installment = self._installment_for_credit(note)

        restored = note.open_value + settlement.net_value
        if restored > note.original_value:
            logger.warning(
                "reversal_overshoot_clamped",
                extra={
                    "settlement_id": settlement.id,
                    "note_id": note.id,
                    "restored": str(restored),
                    "original_value": str(note.original_value),
                },
            )
            restored = note.original_value

        previous_status = note.status
        note.open_value = restored
        if installment is not None and settlement.installment_credit:
            installment.amount_paid = installment.amount_paid - settlement.installment_credit

        settlement.reversed = True
        settlement.reversed_at = self.clock.now()
        settlement.reversal_reason = reason

        self._flush("ReceivableNote", note.id)
        logger.info(
            "settlement_reversed",
            extra={
                "settlement_id": settlement.id,
                "note_id": note.id,
                "net_value": str(settlement.net_value),
                "installment_credit": str(settlement.installment_credit),
                "open_value": str(note.open_value),
                "previous_status": previous_status.value,
                "status": note.status.value,
                "reason": reason,
            },
        )
        return settlement

    # =========================================================================
    # Recalculation
    # =========================================================================

    def recalculate_installment(self, installment_id: int) -> Installment:
        """
        Rebuild amount_paid from live settlement credits and direct payments.

        Logs ``installment_recalculated`` when the stored value was wrong.
        """
        installment = self._load_for_update(Installment, installment_id, InstallmentNotFoundError)

        credits = self.session.execute(
            select(Settlement.installment_credit)
            .join(ReceivableNote, Settlement.note_id == ReceivableNote.id)
            .where(
                ReceivableNote.installment_id == installment.id,
                Settlement.reversed.is_(False),
            )
        ).scalars()
        payments = self.session.execute(
            select(InstallmentPayment.installment_credit).where(
                InstallmentPayment.installment_id == installment.id,
                InstallmentPayment.reversed.is_(False),
            )
        ).scalars()

        expected = min(installment.amount, money_sum(credits) + money_sum(payments))
        if expected != installment.amount_paid:
            previous = installment.amount_paid
            installment.amount_paid = expected
            self._flush("Installment", installment.id)
            logger.warning(
                "installment_recalculated",
                extra={
                    "installment_id": installment.id,
                    "previous_amount_paid": str(previous),
                    "amount_paid": str(expected),
                },
            )
        return installment

    # =========================================================================
    # Check sub-ledger
    # =========================================================================

    def set_check_status(
        self,
        check_id: int,
        status: CheckStatus,
        note: str | None = None,
    ) -> Check:
        """
        Record the bank outcome of a PENDING check.

        Balances are not touched: a RETURNED check is undone by reversing
        the settlement or payment it belongs to.
        """
        try:
            status = CheckStatus(status)
        except ValueError as exc:
            raise InvalidFieldError("status", str(status), "unknown check status") from exc
        check = self._load_for_update(Check, check_id, CheckNotFoundError)
        current = CheckStatus(check.status)
        if current != CheckStatus.PENDING or status == CheckStatus.PENDING:
            raise CheckStatusTransitionError(check.id, current.value, status.value)

        check.status = status.value
        if note is not None:
            check.note = note

        self._flush("Check", check.id)
        logger.info(
            "check_status_changed",
            extra={
                "check_id": check.id,
                "settlement_id": check.settlement_id,
                "payment_id": check.payment_id,
                "previous_status": current.value,
                "status": status.value,
            },
        )
        return check

    # =========================================================================
    # Internal
    # =========================================================================

    def _installment_for_credit(self, note: ReceivableNote) -> Installment | None:
        """Resolve the installment a note's settlements flow into, locked."""
        match note.origin:
            case Standalone():
                return None
            case LinkedToInstallment(installment_id=installment_id):
                return self._load_for_update(
                    Installment, installment_id, InstallmentNotFoundError
                )
            case _:
                raise TypeError(f"Unknown note origin: {note.origin!r}")
