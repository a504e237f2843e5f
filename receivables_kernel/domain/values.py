"""
Values -- Decimal money helpers for the receivables core.

Responsibility:
    Converts caller input into exact two-place Decimal amounts and provides
    the tolerance comparisons used by every balance check.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Money is never a float.  to_money() rejects floats outright.
    - Rounding is half-up to two places, applied by round_money() only.

Failure modes:
    - TypeError on float or bool input (a programming error, not user input).
    - InvalidAmountError on missing, unparsable, non-finite or otherwise
      unsupported amounts.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Iterable

from receivables_kernel.db.types import EPSILON, ZERO, round_money
from receivables_kernel.exceptions import InvalidAmountError


def to_money(
    value: Decimal | int | str | None,
    *,
    default: Decimal | None = None,
    field: str = "amount",
) -> Decimal:
    """
    Coerce an input amount into a two-place Decimal.

    Args:
        value: Decimal, int, or decimal string.  None returns ``default``.
        default: Value used when ``value`` is None (must itself be set).
        field: Name reported in InvalidAmountError.

    Raises:
        TypeError: If value is a float or a bool.
        InvalidAmountError: If the amount is missing or not a finite decimal.
    """
    if value is None:
        if default is None:
            raise InvalidAmountError(field, "None", "is required")
        return round_money(default)
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Money must not be built from {type(value).__name__}: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(value)
        except InvalidOperation as exc:
            raise InvalidAmountError(field, repr(value), "not a decimal amount") from exc
    else:
        raise InvalidAmountError(field, repr(value), f"unsupported type {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidAmountError(field, repr(value), "must be finite")
    return round_money(amount)


def money_sum(values: Iterable[Decimal]) -> Decimal:
    """Sum amounts starting from 0.00 (keeps two places on empty input)."""
    return sum(values, ZERO)


def within_tolerance(a: Decimal, b: Decimal, epsilon: Decimal = EPSILON) -> bool:
    """True when |a - b| <= epsilon."""
    return abs(a - b) <= epsilon


def exceeds(value: Decimal, ceiling: Decimal, epsilon: Decimal = EPSILON) -> bool:
    """True when value is above ceiling by more than epsilon."""
    return value > ceiling + epsilon
