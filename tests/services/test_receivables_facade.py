"""
ReceivablesService facade tests.

Every operation runs in its own transaction: success commits, any kernel
error rolls back and comes back as a failed OperationResult.
"""

from datetime import date
from decimal import Decimal

import pytest

from receivables_config import get_active_config
from receivables_kernel.domain.dtos import (
    CheckStatus,
    NoteInput,
    NoteSplit,
    PaymentInput,
    PaymentMethod,
    SettlementInput,
)
from receivables_kernel.domain.status import InstallmentStatus, NoteStatus, OrderStatus
from receivables_kernel.exceptions import (
    ConcurrentModificationError,
    CustomerNotFoundError,
    ImmutabilityViolationError,
    InvalidAmountError,
    OverpaymentError,
    TerminalNoteError,
)
from receivables_kernel.models.note import ReceivableNote
from receivables_kernel.models.order import Installment
from receivables_services.receivables_service import (
    OperationResult,
    OperationStatus,
    ReceivablesService,
    status_for,
)


@pytest.fixture
def client(session, make_customer):
    customer = make_customer(name="Mercearia Boa Vista", credit_limit=Decimal("1000.00"))
    session.commit()
    return customer


@pytest.fixture
def order_record(receivables_service, client, make_order_input):
    result = receivables_service.create_order(make_order_input(client.id))
    assert result.is_success
    return result.value.order


def _note(receivables_service, customer_id, value="100.00", number="DUP-1"):
    result = receivables_service.issue_note(
        NoteInput(
            customer_id=customer_id,
            original_value=Decimal(value),
            due_date=date(2024, 2, 1),
            number=number,
        )
    )
    assert result.is_success
    return result.value


# =========================================================================
# OperationResult
# =========================================================================


class TestOperationStatus:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (InvalidAmountError("paid_value", "0"), OperationStatus.VALIDATION_FAILED),
            (CustomerNotFoundError(1), OperationStatus.NOT_FOUND),
            (OverpaymentError("ReceivableNote", 1, "2", "1"), OperationStatus.INVARIANT_VIOLATION),
            (TerminalNoteError(1, "settled"), OperationStatus.STATE_CONFLICT),
            (ConcurrentModificationError("ReceivableNote", 1), OperationStatus.CONCURRENCY_CONFLICT),
            (ImmutabilityViolationError("Settlement", 1, "x"), OperationStatus.IMMUTABILITY_VIOLATION),
        ],
    )
    def test_status_for(self, error, expected):
        assert status_for(error) == expected

    def test_result_properties(self):
        failed = OperationResult(
            status=OperationStatus.CONCURRENCY_CONFLICT,
            error=ConcurrentModificationError("Installment", 3),
        )
        assert failed.is_success is False
        assert failed.is_retryable is True
        assert failed.error_code == "CONCURRENT_MODIFICATION"

        ok = OperationResult(status=OperationStatus.SUCCEEDED, value=1)
        assert ok.is_success and not ok.is_retryable
        assert ok.error_code is None


# =========================================================================
# Orders
# =========================================================================


class TestOrders:
    def test_create_order_commits(self, session, order_record):
        assert order_record.status == OrderStatus.OPEN
        assert [i.label for i in order_record.installments] == ["1/4", "2/4", "3/4", "4/4"]
        assert not session.in_transaction()

    def test_plan_installments_persists_nothing(self, session, receivables_service, client, make_order_input):
        result = receivables_service.plan_installments(make_order_input(client.id, condition="2x"))
        assert result.is_success
        assert [p.amount for p in result.value] == [Decimal("100.00"), Decimal("100.00")]
        assert session.query(Installment).count() == 0

    def test_invalid_condition(self, receivables_service, order_record):
        result = receivables_service.change_payment_condition(order_record.id, "toda segunda")
        assert result.status == OperationStatus.VALIDATION_FAILED
        assert result.error_code == "INVALID_PAYMENT_CONDITION"

    def test_named_condition_from_config(self, session, deterministic_clock, client, make_order_input, monkeypatch):
        monkeypatch.delenv("RECEIVABLES_CONFIG", raising=False)
        service = ReceivablesService.from_config(session, config=get_active_config(), clock=deterministic_clock)
        created = service.create_order(make_order_input(client.id, number="PV-9"))
        result = service.change_payment_condition(created.value.order.id, "Entrada + 2x")

        assert result.is_success
        assert [i.amount for i in result.value.installments] == [
            Decimal("80.00"),
            Decimal("60.00"),
            Decimal("60.00"),
        ]
        assert result.value.installments[0].due_date == date(2024, 1, 1)

    def test_cancel_order(self, receivables_service, order_record):
        result = receivables_service.cancel_order(order_record.id, reason="desistência")
        assert result.value.status == OrderStatus.CANCELLED

    def test_update_base_due_date(self, receivables_service, order_record):
        result = receivables_service.update_base_due_date(order_record.id, date(2024, 1, 11))
        assert result.value.installments[0].due_date == date(2024, 2, 10)


# =========================================================================
# Notes, settlements, payments
# =========================================================================


class TestSettlementFlow:
    def test_issue_apply_reverse(self, receivables_service, client):
        note = _note(receivables_service, client.id)

        applied = receivables_service.apply_settlement(
            SettlementInput(note_id=note.id, paid_value=Decimal("60.00"))
        )
        assert applied.is_success
        assert applied.value.net_value == Decimal("60.00")

        history = receivables_service.note_history(note.id).value
        assert history.note.status == NoteStatus.PARTIAL
        assert history.settled_total == Decimal("60.00")

        reversed_ = receivables_service.reverse_settlement(applied.value.id, reason="erro de digitação")
        assert reversed_.value.reversed is True
        assert receivables_service.note_history(note.id).value.note.status == NoteStatus.OPEN

    def test_failure_rolls_back(self, session, receivables_service, client, captured_logs):
        note = _note(receivables_service, client.id)
        result = receivables_service.apply_settlement(
            SettlementInput(note_id=note.id, paid_value=Decimal("150.00"))
        )

        assert result.status == OperationStatus.INVARIANT_VIOLATION
        assert isinstance(result.error, OverpaymentError)
        assert session.get(ReceivableNote, note.id).open_value == Decimal("100.00")
        (record,) = [r for r in captured_logs() if r["message"] == "receivables_operation_rejected"]
        assert record["error_code"] == "OVERPAYMENT"
        assert record["note_id"] == str(note.id)
        assert "correlation_id" in record

    def test_unexpected_errors_propagate(self, session, receivables_service, client, captured_logs):
        note = _note(receivables_service, client.id)
        with pytest.raises(TypeError):
            receivables_service.apply_settlement(SettlementInput(note_id=note.id, paid_value=10.5))
        assert any(r["message"] == "receivables_operation_failed" for r in captured_logs())
        assert not session.get(ReceivableNote, note.id).settlements

    def test_malformed_paid_value_is_a_validation_failure(self, session, receivables_service, client):
        note = _note(receivables_service, client.id)
        result = receivables_service.apply_settlement(SettlementInput(note_id=note.id, paid_value="12,50"))

        assert result.status == OperationStatus.VALIDATION_FAILED
        assert isinstance(result.error, InvalidAmountError)
        assert result.error.field == "paid_value"
        assert session.get(ReceivableNote, note.id).open_value == Decimal("100.00")

    def test_missing_original_value_is_a_validation_failure(self, receivables_service, client):
        result = receivables_service.issue_note(
            NoteInput(
                customer_id=client.id,
                original_value=None,
                due_date=date(2024, 2, 1),
                number="DUP-SEM-VALOR",
            )
        )

        assert result.status == OperationStatus.VALIDATION_FAILED
        assert result.error_code == "INVALID_AMOUNT"
        assert result.error.field == "original_value"

    def test_cancel_note(self, receivables_service, client):
        note = _note(receivables_service, client.id)
        result = receivables_service.cancel_note(note.id, reason="duplicada")
        assert result.value.status == NoteStatus.CANCELLED
        again = receivables_service.apply_settlement(SettlementInput(note_id=note.id, paid_value=Decimal("1")))
        assert again.status == OperationStatus.STATE_CONFLICT

    def test_not_found(self, receivables_service):
        result = receivables_service.reverse_settlement(12345)
        assert result.status == OperationStatus.NOT_FOUND
        assert result.error_code == "SETTLEMENT_NOT_FOUND"

    def test_direct_payment(self, receivables_service, order_record):
        inst_id = order_record.installments[0].id
        paid = receivables_service.record_payment(PaymentInput(installment_id=inst_id, paid_value=Decimal("50.00")))
        assert paid.is_success

        history = receivables_service.installment_payments(inst_id).value
        assert history.installment.status == InstallmentStatus.PAID
        assert history.received_total == Decimal("50.00")

        receivables_service.reverse_payment(paid.value.id)
        assert receivables_service.installment_payments(inst_id).value.received_total == Decimal("0.00")

    def test_overpayment_log_names_installment(self, receivables_service, order_record, captured_logs):
        inst_id = order_record.installments[0].id
        result = receivables_service.record_payment(PaymentInput(installment_id=inst_id, paid_value=Decimal("80.00")))

        assert result.status == OperationStatus.INVARIANT_VIOLATION
        (record,) = [r for r in captured_logs() if r["message"] == "receivables_operation_rejected"]
        assert record["installment_id"] == str(inst_id)
        assert record["operation"] == "record_payment"

    def test_recalculate_installment(self, receivables_service, order_record):
        result = receivables_service.recalculate_installment(order_record.installments[0].id)
        assert result.value.amount_paid == Decimal("0.00")


class TestConfirmInstallmentPayment:
    def test_split_cash_and_check(self, receivables_service, order_record, make_check):
        inst_id = order_record.installments[0].id
        result = receivables_service.confirm_installment_payment(
            inst_id,
            [
                NoteSplit(Decimal("25.00")),
                NoteSplit(Decimal("25.00"), payment_method=PaymentMethod.CHECK),
            ],
            payment_date=date(2024, 1, 20),
            checks={1: [make_check(Decimal("25.00"))]},
        )

        assert result.is_success
        cash, check = result.value
        assert cash.payment_method == PaymentMethod.CASH
        assert check.payment_method == PaymentMethod.CHECK
        assert len(check.checks) == 1
        assert cash.payment_date == date(2024, 1, 20)

        history = receivables_service.installment_payments(inst_id).value
        assert history.installment.status == InstallmentStatus.PAID
        assert history.received_total == Decimal("50.00")

    def test_bad_check_rolls_back_every_note(self, session, receivables_service, order_record, make_check):
        inst_id = order_record.installments[0].id
        result = receivables_service.confirm_installment_payment(
            inst_id,
            [
                NoteSplit(Decimal("25.00")),
                NoteSplit(Decimal("25.00"), payment_method=PaymentMethod.CHECK),
            ],
            checks={1: [make_check(Decimal("20.00"))]},
        )

        assert result.status == OperationStatus.INVARIANT_VIOLATION
        assert result.error_code == "CHEQUE_SUM_MISMATCH"
        assert session.query(ReceivableNote).count() == 0
        assert session.get(Installment, inst_id).amount_paid == Decimal("0.00")

    def test_check_status_outcome(self, receivables_service, order_record, make_check):
        result = receivables_service.confirm_installment_payment(
            order_record.installments[0].id,
            [NoteSplit(Decimal("50.00"), payment_method=PaymentMethod.CHECK)],
            checks={0: [make_check(Decimal("50.00"))]},
        )
        (check,) = result.value[0].checks
        assert check.status == CheckStatus.PENDING

        cleared = receivables_service.set_check_status(check.id, CheckStatus.CLEARED)
        assert cleared.is_success
        assert cleared.value.status == CheckStatus.CLEARED

        again = receivables_service.set_check_status(check.id, "returned")
        assert again.status == OperationStatus.STATE_CONFLICT
        assert again.error_code == "CHECK_STATUS_TRANSITION"

        missing = receivables_service.set_check_status(99999, CheckStatus.RETURNED)
        assert missing.status == OperationStatus.NOT_FOUND

    def test_split_mismatch(self, receivables_service, order_record):
        result = receivables_service.confirm_installment_payment(
            order_record.installments[0].id, [NoteSplit(Decimal("30.00"))]
        )
        assert result.error_code == "INSTALLMENT_SPLIT_MISMATCH"


# =========================================================================
# Credit and views
# =========================================================================


class TestCreditAndViews:
    def test_credit_limit_example(self, receivables_service, client):
        _note(receivables_service, client.id, value="950.00")
        result = receivables_service.evaluate_credit_limit(client.id, Decimal("100.00"))

        snapshot = result.value
        assert snapshot.exceeded is True
        assert snapshot.available == Decimal("50.00")

    def test_flagged_order(self, receivables_service, client, make_order_input):
        _note(receivables_service, client.id, value="950.00")
        result = receivables_service.create_order(make_order_input(client.id, total=Decimal("100.00")))
        assert result.is_success
        assert result.value.credit_flagged is True

    def test_client_views(self, receivables_service, client, order_record):
        _note(receivables_service, client.id, value="30.00")

        (summary,) = receivables_service.client_summaries().value
        assert summary.total_open == Decimal("230.00")

        detail = receivables_service.client_detail(client.id).value
        assert len(detail.installments) == 4
        assert len(detail.standalone_notes) == 1

    def test_order_summary_and_period(self, receivables_service, order_record):
        inst_id = order_record.installments[0].id
        receivables_service.record_payment(PaymentInput(installment_id=inst_id, paid_value=Decimal("50.00")))

        summary = receivables_service.order_financial_summary(order_record.id).value
        assert summary.amount_paid == Decimal("50.00")
        assert summary.status == OrderStatus.PARTIAL

        entries = receivables_service.payments_between(date(2024, 1, 1), date(2024, 1, 31)).value
        assert [e.net_value for e in entries] == [Decimal("50.00")]

    def test_grouped_notes(self, receivables_service, client, order_record):
        receivables_service.issue_notes_for_installment(
            order_record.installments[0].id, [NoteSplit(Decimal("50.00"))]
        )
        grouped = receivables_service.notes_grouped_by_order(client.id).value
        assert [g.order_number for g in grouped.groups] == [order_record.number]
