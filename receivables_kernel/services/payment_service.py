"""
Module: receivables_kernel.services.payment_service
Responsibility:
    Record and reverse payments made directly against an installment that
    has no receivable notes behind it.
Architecture position:
    Kernel > Services.  Flush-only; the caller owns the transaction.

Invariants enforced:
    - Same money and check rules as note settlements.
    - An installment with active notes is paid through its notes only, so
      a direct payment cannot credit it twice.
    - amount_paid never exceeds amount; reversal subtracts exactly the
      installment_credit recorded at payment time.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Sequence

from receivables_kernel.db.types import EPSILON, ZERO
from receivables_kernel.domain.clock import Clock
from receivables_kernel.domain.dtos import CheckInput, PaymentMethod
from receivables_kernel.domain.validation import compute_payment_amounts, validate_checks
from receivables_kernel.domain.values import exceeds
from receivables_kernel.exceptions import (
    AlreadyReversedError,
    InstallmentHasNotesError,
    InstallmentNotFoundError,
    InvalidFieldError,
    OrderLockedError,
    OverpaymentError,
    PaymentNotFoundError,
)
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.order import Installment
from receivables_kernel.models.settlement import InstallmentPayment
from receivables_kernel.services.base import BaseService
from receivables_kernel.services.settlement_engine import build_checks

logger = get_logger("services.payment_service")


class PaymentService(BaseService[InstallmentPayment]):
    """Direct installment payments and their reversals."""

    def __init__(self, session, clock: Clock | None = None, epsilon: Decimal = EPSILON):
        super().__init__(session, clock)
        self.epsilon = epsilon

    def record_payment(
        self,
        installment_id: int,
        paid_value: Decimal,
        interest: Decimal = ZERO,
        penalty: Decimal = ZERO,
        discount: Decimal = ZERO,
        method: PaymentMethod = PaymentMethod.CASH,
        checks: Sequence[CheckInput] | None = None,
        payment_date: date | None = None,
        observation: str | None = None,
    ) -> InstallmentPayment:
        installment = self._load_for_update(Installment, installment_id, InstallmentNotFoundError)

        order = installment.order
        if order.cancelled:
            raise OrderLockedError(order.id, "cancelled")
        if installment.superseded:
            raise InvalidFieldError(
                "installment_id",
                str(installment_id),
                "installment was replaced by a new payment schedule",
            )
        active_notes = installment.active_notes
        if active_notes:
            raise InstallmentHasNotesError(installment.id, len(active_notes))

        amounts = compute_payment_amounts(paid_value, interest, penalty, discount)
        open_amount = installment.open_amount
        if exceeds(amounts.net_value, open_amount, self.epsilon):
            raise OverpaymentError(
                entity_type="Installment",
                entity_id=installment.id,
                net_value=str(amounts.net_value),
                open_value=str(open_amount),
            )

        method = PaymentMethod(method)
        valid_checks = validate_checks(method, checks, amounts.paid_value, self.epsilon)

        credit = min(amounts.net_value, max(ZERO, open_amount))
        previous_status = installment.status
        installment.amount_paid = installment.amount_paid + credit

        payment = InstallmentPayment(
            installment=installment,
            paid_value=amounts.paid_value,
            interest=amounts.interest,
            penalty=amounts.penalty,
            discount=amounts.discount,
            net_value=amounts.net_value,
            installment_credit=credit,
            payment_date=payment_date or self.clock.today(),
            payment_method=method.value,
            observation=observation,
            reversed=False,
        )
        payment.checks = build_checks(valid_checks)
        self.session.add(payment)

        self._flush("Installment", installment.id)
        logger.info(
            "installment_payment_recorded",
            extra={
                "payment_id": payment.id,
                "installment_id": installment.id,
                "order_id": order.id,
                "net_value": str(amounts.net_value),
                "installment_credit": str(credit),
                "amount_paid": str(installment.amount_paid),
                "previous_status": previous_status.value,
                "status": installment.status.value,
                "method": method.value,
            },
        )
        return payment

    def reverse_payment(self, payment_id: int, reason: str | None = None) -> InstallmentPayment:
        payment = self._load_for_update(InstallmentPayment, payment_id, PaymentNotFoundError)
        if payment.reversed:
            raise AlreadyReversedError("InstallmentPayment", payment.id)

        installment = self._load_for_update(
            Installment, payment.installment_id, InstallmentNotFoundError
        )
        installment.amount_paid = installment.amount_paid - payment.installment_credit

        payment.reversed = True
        payment.reversed_at = self.clock.now()
        payment.reversal_reason = reason

        self._flush("Installment", installment.id)
        logger.info(
            "installment_payment_reversed",
            extra={
                "payment_id": payment.id,
                "installment_id": installment.id,
                "installment_credit": str(payment.installment_credit),
                "amount_paid": str(installment.amount_paid),
                "status": installment.status.value,
                "reason": reason,
            },
        )
        return payment
