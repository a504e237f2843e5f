"""
Payment validation: net value derivation and check sub-ledger rules.

Pure functions; nothing here touches the database.
"""

from datetime import date
from decimal import Decimal

import pytest

from receivables_kernel.domain.dtos import CheckInput, PaymentMethod
from receivables_kernel.domain.validation import compute_payment_amounts, validate_checks
from receivables_kernel.exceptions import (
    ChequeSumMismatchError,
    CheckDataError,
    InvalidAmountError,
)


def _check(value: str, **overrides) -> CheckInput:
    fields = dict(
        holder_name="Maria Souza",
        holder_document="12345678901",
        bank="001",
        agency="1234",
        account="56789-0",
        check_number="000101",
        value=Decimal(value),
        due_date=date(2024, 3, 1),
    )
    fields.update(overrides)
    return CheckInput(**fields)


class TestComputePaymentAmounts:
    def test_net_value_formula(self):
        amounts = compute_payment_amounts(
            Decimal("100.00"),
            interest=Decimal("2.50"),
            penalty=Decimal("1.00"),
            discount=Decimal("3.50"),
        )
        assert amounts.net_value == Decimal("100.00")
        assert amounts.interest == Decimal("2.50")

    def test_paid_value_must_be_positive(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            compute_payment_amounts(Decimal("0"))
        assert exc_info.value.field == "paid_value"

    @pytest.mark.parametrize("field", ["interest", "penalty", "discount"])
    def test_negative_adjustment_rejected(self, field):
        with pytest.raises(InvalidAmountError) as exc_info:
            compute_payment_amounts(Decimal("10.00"), **{field: Decimal("-0.01")})
        assert exc_info.value.field == field

    def test_discount_consuming_payment_rejected(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            compute_payment_amounts(Decimal("10.00"), discount=Decimal("10.00"))
        assert exc_info.value.field == "net_value"

    def test_none_adjustments_are_zero(self):
        amounts = compute_payment_amounts("25", interest=None, penalty=None, discount=None)
        assert amounts.net_value == Decimal("25.00")


class TestValidateChecks:
    def test_non_check_method_without_checks(self):
        assert validate_checks(PaymentMethod.PIX, None, Decimal("10.00")) == ()

    def test_checks_with_other_method_rejected(self):
        with pytest.raises(CheckDataError):
            validate_checks(PaymentMethod.CASH, [_check("10.00")], Decimal("10.00"))

    def test_check_method_requires_a_check(self):
        with pytest.raises(CheckDataError):
            validate_checks(PaymentMethod.CHECK, [], Decimal("10.00"))

    def test_blank_field_reports_index(self):
        checks = [_check("5.00"), _check("5.00", bank="  ")]
        with pytest.raises(CheckDataError) as exc_info:
            validate_checks(PaymentMethod.CHECK, checks, Decimal("10.00"))
        assert exc_info.value.check_index == 1
        assert "bank" in exc_info.value.reason

    def test_missing_due_date(self):
        with pytest.raises(CheckDataError):
            validate_checks(PaymentMethod.CHECK, [_check("10.00", due_date=None)], Decimal("10.00"))

    def test_non_positive_check_value(self):
        with pytest.raises(CheckDataError):
            validate_checks(PaymentMethod.CHECK, [_check("0.00")], Decimal("10.00"))

    def test_sum_within_one_cent_accepted(self):
        checks = [_check("12.50"), _check("12.51", check_number="000102")]
        result = validate_checks(PaymentMethod.CHECK, checks, Decimal("25.00"))
        assert len(result) == 2

    def test_sum_outside_tolerance_rejected(self):
        checks = [_check("12.50"), _check("12.52", check_number="000102")]
        with pytest.raises(ChequeSumMismatchError) as exc_info:
            validate_checks(PaymentMethod.CHECK, checks, Decimal("25.00"))
        assert exc_info.value.checks_total == "25.02"
        assert exc_info.value.paid_value == "25.00"

    def test_fields_are_stripped(self):
        (check,) = validate_checks(
            PaymentMethod.CHECK, [_check("10", holder_name=" Maria ")], Decimal("10.00")
        )
        assert check.holder_name == "Maria"
        assert check.value == Decimal("10.00")
