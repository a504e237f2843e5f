"""
Module: receivables_engines.planner
Responsibility:
    Split an order total into installments (parcelas) according to a payment
    condition, and parse the condition labels used on orders ("À vista",
    "3x", "30/60/90").

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Persistence of the planned
    installments is the caller's job.

Invariants enforced:
    - Output amounts sum to exactly ``total``: every share but the last is
      rounded half-up to two places, the last takes the remainder.
    - Percentages are not required to sum to 100; drift lands on the last
      installment.
    - due_date = base date + days_from_order for each share.

Failure modes:
    - InvalidAmountError when total <= 0.
    - InvalidPaymentConditionError for an empty schedule, negative days,
      negative percentages, a last share <= 0, or an unparseable label.
"""

from __future__ import annotations

import re
from datetime import date, timedelta
from decimal import Decimal

from receivables_engines.tracer import traced_engine
from receivables_kernel.db.types import ZERO, round_money
from receivables_kernel.domain.dtos import (
    ConditionKind,
    PaymentCondition,
    PlannedInstallment,
    ScheduleShare,
)
from receivables_kernel.domain.values import to_money
from receivables_kernel.exceptions import (
    InvalidAmountError,
    InvalidPaymentConditionError,
)
from receivables_kernel.logging_config import get_logger

logger = get_logger("engines.planner")

HUNDRED = Decimal("100")
PERCENT_TOLERANCE = Decimal("0.01")

MAX_INSTALLMENTS = 12
DAYS_PER_INSTALLMENT = 30

_CASH_LABEL = re.compile(r"^\s*(à|a)\s*vista\s*$", re.IGNORECASE)
_COUNT_LABEL = re.compile(r"^\s*(\d{1,2})\s*x\s*$", re.IGNORECASE)
_DAYS_LABEL = re.compile(r"^\s*\d+(\s*/\s*\d+)*\s*$")


class InstallmentPlanner:
    """
    Plan installment schedules.

    Contract:
        Pure; rounding remainder always assigned to the last installment.
    """

    @traced_engine("installment_planner", "1.0", fingerprint_fields=("total", "order_date"))
    def plan(
        self,
        total: Decimal,
        condition: PaymentCondition,
        order_date: date,
    ) -> tuple[PlannedInstallment, ...]:
        total = to_money(total, field="total")
        if total <= 0:
            raise InvalidAmountError("total", str(total))

        match condition.kind:
            case ConditionKind.FLAT:
                return self._plan_flat(total, condition, order_date)
            case ConditionKind.SCHEDULE:
                return self._plan_schedule(total, condition, order_date)
            case _:
                raise InvalidPaymentConditionError(
                    condition.label, f"unknown condition kind {condition.kind!r}"
                )

    def _plan_flat(
        self,
        total: Decimal,
        condition: PaymentCondition,
        order_date: date,
    ) -> tuple[PlannedInstallment, ...]:
        if condition.term_days < 0:
            raise InvalidPaymentConditionError(condition.label, "term days must not be negative")
        return (
            PlannedInstallment(
                sequence=1,
                total_count=1,
                amount=total,
                due_date=order_date + timedelta(days=condition.term_days),
                days_from_base=condition.term_days,
            ),
        )

    def _plan_schedule(
        self,
        total: Decimal,
        condition: PaymentCondition,
        order_date: date,
    ) -> tuple[PlannedInstallment, ...]:
        shares = condition.shares
        if not shares:
            raise InvalidPaymentConditionError(condition.label, "schedule has no installments")

        for share in shares:
            if share.percentage < 0:
                raise InvalidPaymentConditionError(
                    condition.label, f"negative percentage {share.percentage}"
                )
            if share.days_from_order < 0:
                raise InvalidPaymentConditionError(
                    condition.label, f"negative days {share.days_from_order}"
                )

        count = len(shares)
        amounts = [round_money(total * s.percentage / HUNDRED) for s in shares[:-1]]
        last = total - sum(amounts, ZERO)
        if last <= 0:
            raise InvalidPaymentConditionError(
                condition.label,
                f"last installment would be {last}; percentages exceed the total",
            )
        amounts.append(last)

        percentage_sum = sum((s.percentage for s in shares), ZERO)
        if abs(percentage_sum - HUNDRED) > PERCENT_TOLERANCE:
            logger.warning(
                "schedule_percentage_drift",
                extra={
                    "condition": condition.label,
                    "percentage_sum": str(percentage_sum),
                    "last_amount": str(last),
                },
            )

        return tuple(
            PlannedInstallment(
                sequence=index + 1,
                total_count=count,
                amount=amount,
                due_date=order_date + timedelta(days=share.days_from_order),
                days_from_base=share.days_from_order,
            )
            for index, (share, amount) in enumerate(zip(shares, amounts))
        )


def _equal_shares(days: list[int]) -> tuple[ScheduleShare, ...]:
    count = len(days)
    percentage = HUNDRED / Decimal(count)
    return tuple(ScheduleShare(percentage=percentage, days_from_order=d) for d in days)


def parse_condition_label(label: str, default_term_days: int = 0) -> PaymentCondition:
    """
    Build a PaymentCondition from an order's condition label.

    - "À vista" (any case, accent optional): flat, due after default_term_days
    - "Nx" with 2 <= N <= 12: N equal shares due every 30 days
    - "30/60/90": one equal share per listed day offset

    Raises:
        InvalidPaymentConditionError: For any other label.
    """
    if label is None or not label.strip():
        raise InvalidPaymentConditionError(str(label), "empty condition")

    if _CASH_LABEL.match(label):
        return PaymentCondition.flat(label.strip(), default_term_days)

    count_match = _COUNT_LABEL.match(label)
    if count_match:
        count = int(count_match.group(1))
        if count == 1:
            return PaymentCondition.flat(label.strip(), default_term_days)
        if not 2 <= count <= MAX_INSTALLMENTS:
            raise InvalidPaymentConditionError(
                label, f"installment count must be between 2 and {MAX_INSTALLMENTS}"
            )
        days = [DAYS_PER_INSTALLMENT * (i + 1) for i in range(count)]
        return PaymentCondition.schedule(label.strip(), _equal_shares(days))

    if _DAYS_LABEL.match(label):
        days = [int(part) for part in label.split("/")]
        if days != sorted(days):
            raise InvalidPaymentConditionError(label, "day offsets must be ascending")
        if len(days) == 1:
            return PaymentCondition.flat(label.strip(), days[0])
        return PaymentCondition.schedule(label.strip(), _equal_shares(days))

    raise InvalidPaymentConditionError(label, "unrecognized condition label")


_planner = InstallmentPlanner()


def plan_installments(
    total: Decimal,
    condition: PaymentCondition,
    order_date: date,
) -> tuple[PlannedInstallment, ...]:
    """Module-level convenience wrapper around InstallmentPlanner.plan."""
    return _planner.plan(total, condition, order_date)
