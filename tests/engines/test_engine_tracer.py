"""Tests for the engine trace decorator and input fingerprints."""

from datetime import date
from decimal import Decimal

from receivables_engines.tracer import compute_input_fingerprint, traced_engine
from receivables_kernel.domain.dtos import OrderType


def test_fingerprint_is_deterministic():
    args = {"total": Decimal("10.00"), "order_date": date(2024, 1, 1)}
    first = compute_input_fingerprint(("total", "order_date"), args)
    assert first == compute_input_fingerprint(("total", "order_date"), dict(args))
    assert len(first) == 16


def test_fingerprint_changes_with_input():
    a = compute_input_fingerprint(("total",), {"total": Decimal("10.00")})
    b = compute_input_fingerprint(("total",), {"total": Decimal("10.01")})
    assert a != b


def test_missing_fields_are_null():
    assert compute_input_fingerprint(("x",), {}) == compute_input_fingerprint(("x",), {"x": None})


def test_enum_uses_value():
    a = compute_input_fingerprint(("t",), {"t": OrderType.SALE})
    b = compute_input_fingerprint(("t",), {"t": "sale"})
    assert a == b


def test_decorator_logs_and_returns(captured_logs):
    @traced_engine("doubler", "2.1", fingerprint_fields=("value",))
    def double(value):
        return value * 2

    assert double(Decimal("2.50")) == Decimal("5.00")
    (trace,) = [r for r in captured_logs() if r["message"] == "RECEIVABLES_ENGINE_TRACE"]
    assert trace["engine_name"] == "doubler"
    assert trace["engine_version"] == "2.1"
    assert trace["function"].endswith("double")
