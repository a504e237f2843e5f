"""
Module: receivables_engines.totals
Responsibility:
    Derive an order's subtotal, discounts, freight and grand total from its
    line items.  Re-run after every edit; nothing is cached between edits.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - item_subtotal = max(0, quantity * unit_price - item_discount)
    - total = subtotal - discount_value - subtotal * discount_percent / 100
              + freight + other_fees
    - Items with quantity <= 0 or unit_price <= 0 are excluded, never totalled.
    - Half-up rounding to two places per item and on each order-level figure.

Failure modes:
    - EmptyOrderError when no item survives validation.
    - InvalidAmountError on negative freight, fees, discounts, or a negative total.
    - InvalidFieldError when discount_percent is outside [0, 100].
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Sequence

from receivables_engines.tracer import traced_engine
from receivables_kernel.db.types import ZERO, round_money
from receivables_kernel.domain.dtos import (
    ComputedItem,
    OrderItemInput,
    OrderTotals,
    RejectedItem,
)
from receivables_kernel.domain.values import money_sum, to_money
from receivables_kernel.exceptions import (
    EmptyOrderError,
    InvalidAmountError,
    InvalidFieldError,
)
from receivables_kernel.logging_config import get_logger

logger = get_logger("engines.totals")

HUNDRED = Decimal("100")


def _to_quantity(value) -> Decimal:
    if isinstance(value, (bool, float)):
        raise TypeError(f"Quantity must not be built from {type(value).__name__}")
    try:
        quantity = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidFieldError("quantity", str(value), "not a number") from exc
    if not quantity.is_finite():
        raise InvalidFieldError("quantity", str(value), "must be finite")
    return quantity


def _non_negative(field: str, value) -> Decimal:
    amount = to_money(value, default=ZERO, field=field)
    if amount < 0:
        raise InvalidAmountError(field, str(amount), "must not be negative")
    return amount


class OrderTotalsCalculator:
    """
    Compute order totals from line items.

    Contract:
        Pure; identical inputs give identical OrderTotals.
    """

    @traced_engine("order_totals", "1.0", fingerprint_fields=("freight", "other_fees"))
    def calculate(
        self,
        items: Sequence[OrderItemInput],
        freight: Decimal = ZERO,
        other_fees: Decimal = ZERO,
        discount_value: Decimal = ZERO,
        discount_percent: Decimal = ZERO,
    ) -> OrderTotals:
        freight = _non_negative("freight", freight)
        other_fees = _non_negative("other_fees", other_fees)
        discount_value = _non_negative("discount_value", discount_value)
        discount_percent = to_money(discount_percent, default=ZERO, field="discount_percent")
        if discount_percent < 0 or discount_percent > HUNDRED:
            raise InvalidFieldError(
                "discount_percent", str(discount_percent), "must be between 0 and 100"
            )

        computed: list[ComputedItem] = []
        rejected: list[RejectedItem] = []

        for index, item in enumerate(items):
            quantity = _to_quantity(item.quantity)
            unit_price = to_money(item.unit_price, field="unit_price")
            item_discount = _non_negative("item_discount", item.item_discount)

            if quantity <= 0:
                rejected.append(RejectedItem(index, "quantity must be positive"))
                continue
            if unit_price <= 0:
                rejected.append(RejectedItem(index, "unit_price must be positive"))
                continue

            gross = quantity * unit_price - item_discount
            subtotal = round_money(max(ZERO, gross))
            computed.append(
                ComputedItem(
                    index=index,
                    quantity=quantity,
                    unit_price=unit_price,
                    item_discount=item_discount,
                    subtotal=subtotal,
                    product_id=item.product_id,
                    description=item.description,
                )
            )

        if rejected:
            logger.info(
                "order_items_rejected",
                extra={
                    "rejected_count": len(rejected),
                    "reasons": [r.reason for r in rejected],
                },
            )

        if not computed:
            raise EmptyOrderError(rejected_count=len(rejected))

        subtotal = money_sum(i.subtotal for i in computed)
        percent_amount = round_money(subtotal * discount_percent / HUNDRED)
        total = round_money(subtotal - discount_value - percent_amount + freight + other_fees)

        if total < 0:
            raise InvalidAmountError("total", str(total), "discounts exceed the order value")

        return OrderTotals(
            items=tuple(computed),
            rejected_items=tuple(rejected),
            subtotal=subtotal,
            discount_value=discount_value,
            discount_percent=discount_percent,
            percent_discount_amount=percent_amount,
            freight=freight,
            other_fees=other_fees,
            total=total,
        )


_calculator = OrderTotalsCalculator()


def calculate_order_totals(
    items: Sequence[OrderItemInput],
    freight: Decimal = ZERO,
    other_fees: Decimal = ZERO,
    discount_value: Decimal = ZERO,
    discount_percent: Decimal = ZERO,
) -> OrderTotals:
    """Module-level convenience wrapper around OrderTotalsCalculator.calculate."""
    return _calculator.calculate(
        items,
        freight=freight,
        other_fees=other_fees,
        discount_value=discount_value,
        discount_percent=discount_percent,
    )
