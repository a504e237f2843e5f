"""
Tests for the order totals calculator.

Covers:
- Item subtotals and rounding
- Rejected items (quantity / unit price)
- Order-level discounts, freight and fees
- Error handling
"""

from decimal import Decimal

import pytest

from receivables_engines.totals import OrderTotalsCalculator, calculate_order_totals
from receivables_kernel.domain.dtos import OrderItemInput
from receivables_kernel.exceptions import EmptyOrderError, InvalidAmountError, InvalidFieldError


def _item(quantity: str, unit_price: str, item_discount: str = "0") -> OrderItemInput:
    return OrderItemInput(
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        item_discount=Decimal(item_discount),
    )


class TestItemSubtotals:
    def setup_method(self):
        self.calculator = OrderTotalsCalculator()

    def test_quantity_times_price_minus_discount(self):
        totals = self.calculator.calculate([_item("3", "10.00", "5.00")])
        assert totals.items[0].subtotal == Decimal("25.00")
        assert totals.total == Decimal("25.00")

    def test_fractional_quantity_rounds_half_up(self):
        totals = self.calculator.calculate([_item("0.333", "10.00")])
        assert totals.items[0].subtotal == Decimal("3.33")

    def test_discount_above_gross_floors_at_zero(self):
        totals = self.calculator.calculate([_item("1", "10.00", "15.00"), _item("1", "5.00")])
        assert totals.items[0].subtotal == Decimal("0.00")
        assert totals.subtotal == Decimal("5.00")

    def test_invalid_items_are_excluded(self):
        totals = self.calculator.calculate(
            [_item("0", "10.00"), _item("2", "-1.00"), _item("2", "7.50")]
        )
        assert [r.index for r in totals.rejected_items] == [0, 1]
        assert [i.index for i in totals.items] == [2]
        assert totals.total == Decimal("15.00")

    def test_no_valid_item_raises(self):
        with pytest.raises(EmptyOrderError) as exc_info:
            self.calculator.calculate([_item("0", "10.00")])
        assert exc_info.value.rejected_count == 1


class TestOrderLevelCharges:
    def test_full_formula(self):
        totals = calculate_order_totals(
            [_item("2", "100.00"), _item("1", "50.00")],
            freight=Decimal("20.00"),
            other_fees=Decimal("5.00"),
            discount_value=Decimal("10.00"),
            discount_percent=Decimal("10"),
        )
        assert totals.subtotal == Decimal("250.00")
        assert totals.percent_discount_amount == Decimal("25.00")
        # 250 - 10 - 25 + 20 + 5
        assert totals.total == Decimal("240.00")

    def test_percent_discount_rounds_half_up(self):
        totals = calculate_order_totals([_item("1", "0.50")], discount_percent=Decimal("1"))
        assert totals.percent_discount_amount == Decimal("0.01")
        assert totals.total == Decimal("0.49")

    @pytest.mark.parametrize("percent", ["-1", "100.01"])
    def test_percent_out_of_range(self, percent):
        with pytest.raises(InvalidFieldError):
            calculate_order_totals([_item("1", "10.00")], discount_percent=Decimal(percent))

    def test_negative_freight(self):
        with pytest.raises(InvalidAmountError):
            calculate_order_totals([_item("1", "10.00")], freight=Decimal("-1.00"))

    def test_discount_exceeding_order_rejected(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            calculate_order_totals([_item("1", "10.00")], discount_value=Decimal("10.01"))
        assert exc_info.value.field == "total"

    def test_float_quantity_rejected(self):
        with pytest.raises(TypeError):
            calculate_order_totals([OrderItemInput(quantity=1.5, unit_price=Decimal("1.00"))])

    def test_deterministic(self):
        items = [_item("1.5", "19.99", "0.99")]
        assert calculate_order_totals(items) == calculate_order_totals(items)


def test_rejected_items_are_logged(captured_logs):
    calculate_order_totals([_item("0", "10.00"), _item("1", "10.00")])
    records = [r for r in captured_logs() if r["message"] == "order_items_rejected"]
    assert records and records[0]["rejected_count"] == 1
