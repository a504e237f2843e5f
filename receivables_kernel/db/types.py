"""
Module: receivables_kernel.db.types
Responsibility: Money precision and rounding shared by every model, engine
    and service.  Column precision itself comes from the Decimal entry in
    Base.type_annotation_map.
Architecture position: Kernel > DB.  May be imported by every other layer.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function: half-up to
      MONEY_DECIMAL_PLACES, applied at computation boundaries.
    - EPSILON (one cent) is the single tolerance used for balance and
      check-sum comparisons.
"""

from decimal import ROUND_HALF_UP, Decimal

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")
EPSILON = Decimal("0.01")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given decimal places (half-up by default).

    This is the only rounding function used for money in the kernel.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)
