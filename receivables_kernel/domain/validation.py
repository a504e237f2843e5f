"""
Payment validation -- pure checks shared by settlements and direct payments.

Responsibility:
    Compute the net value of a payment and validate the check (cheque)
    instruments that back it, before anything is written.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - net_value = paid_value + interest + penalty - discount, computed once.
    - paid_value > 0, every adjustment >= 0, net_value > 0.
    - method CHECK requires at least one fully populated check and
      |sum(check.value) - paid_value| <= epsilon; checks with any other
      method are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from receivables_kernel.db.types import EPSILON, ZERO
from receivables_kernel.domain.dtos import CheckInput, PaymentMethod
from receivables_kernel.domain.values import money_sum, to_money, within_tolerance
from receivables_kernel.exceptions import (
    ChequeSumMismatchError,
    CheckDataError,
    InvalidAmountError,
)


@dataclass(frozen=True)
class PaymentAmounts:
    paid_value: Decimal
    interest: Decimal
    penalty: Decimal
    discount: Decimal
    net_value: Decimal


def _adjustment(field: str, value) -> Decimal:
    amount = to_money(value, default=ZERO, field=field)
    if amount < 0:
        raise InvalidAmountError(field, str(amount), "must not be negative")
    return amount


def compute_payment_amounts(
    paid_value,
    interest=ZERO,
    penalty=ZERO,
    discount=ZERO,
) -> PaymentAmounts:
    """
    Normalize the money fields of a payment and derive its net value.

    Raises:
        InvalidAmountError: paid_value <= 0, a negative adjustment, or a
            net value that is not positive.
    """
    paid = to_money(paid_value, field="paid_value")
    if paid <= 0:
        raise InvalidAmountError("paid_value", str(paid))

    interest = _adjustment("interest", interest)
    penalty = _adjustment("penalty", penalty)
    discount = _adjustment("discount", discount)

    net = paid + interest + penalty - discount
    if net <= 0:
        raise InvalidAmountError("net_value", str(net), "discount consumes the whole payment")

    return PaymentAmounts(
        paid_value=paid,
        interest=interest,
        penalty=penalty,
        discount=discount,
        net_value=net,
    )


def validate_checks(
    method: PaymentMethod,
    checks: Sequence[CheckInput] | None,
    paid_value: Decimal,
    epsilon: Decimal = EPSILON,
) -> tuple[CheckInput, ...]:
    """
    Validate the checks attached to a payment.

    Returns the checks with their values normalized to money.
    """
    checks = tuple(checks or ())

    if PaymentMethod(method) != PaymentMethod.CHECK:
        if checks:
            raise CheckDataError(f"checks are only accepted with method '{PaymentMethod.CHECK.value}'")
        return ()

    if not checks:
        raise CheckDataError("at least one check is required")

    normalized = []
    for index, check in enumerate(checks):
        for field_name in CheckInput.REQUIRED_FIELDS:
            value = getattr(check, field_name)
            if value is None or not str(value).strip():
                raise CheckDataError(f"'{field_name}' is required", check_index=index)
        if check.due_date is None:
            raise CheckDataError("'due_date' is required", check_index=index)
        value = to_money(check.value, field=f"checks[{index}].value")
        if value <= 0:
            raise CheckDataError("'value' must be positive", check_index=index)
        normalized.append(
            CheckInput(
                holder_name=check.holder_name.strip(),
                holder_document=check.holder_document.strip(),
                bank=check.bank.strip(),
                agency=check.agency.strip(),
                account=check.account.strip(),
                check_number=check.check_number.strip(),
                value=value,
                due_date=check.due_date,
                note=check.note,
            )
        )

    total = money_sum(c.value for c in normalized)
    if not within_tolerance(total, paid_value, epsilon):
        raise ChequeSumMismatchError(checks_total=str(total), paid_value=str(paid_value))

    return tuple(normalized)
