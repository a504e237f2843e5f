"""
ReconciliationSelector tests.

Read-side views: client listing and detail, notes by order, histories,
payments by period, order summary and credit exposure rows.
"""

from datetime import date
from decimal import Decimal

import pytest

from receivables_kernel.domain.aging import DueProximity, DueThresholds
from receivables_kernel.domain.dtos import NoteSplit, OrderType, PaymentMethod
from receivables_kernel.domain.status import NoteStatus, OrderStatus
from receivables_kernel.exceptions import (
    CustomerNotFoundError,
    InvalidFieldError,
    NoteNotFoundError,
    OrderNotFoundError,
)
from receivables_kernel.selectors.reconciliation_selector import PAYMENT_KIND, SETTLEMENT_KIND


class TestClientSummaries:
    def test_totals_and_overdue(self, selector, customer, sale_order, make_standalone_note):
        make_standalone_note(customer, Decimal("100.00"), due_date=date(2024, 2, 1))

        (summary,) = selector.client_summaries(as_of=date(2024, 2, 10))

        assert summary.customer_id == customer.id
        assert summary.name == "Mercado Central"
        assert summary.total_open == Decimal("300.00")
        assert summary.open_installments == 4
        assert summary.open_standalone_notes == 1
        assert summary.max_days_overdue == 10

    def test_linked_notes_not_counted_twice(self, selector, note_ledger, sale_order):
        note_ledger.issue_for_installment(sale_order.active_installments[0].id, [NoteSplit(Decimal("50.00"))])
        (summary,) = selector.client_summaries(as_of=date(2024, 1, 1))
        assert summary.total_open == Decimal("200.00")
        assert summary.open_standalone_notes == 0

    def test_sorted_by_name(self, selector, make_customer, make_standalone_note):
        zeta = make_customer(name="zeta Distribuidora")
        alfa = make_customer(name="Alfa Atacado")
        make_standalone_note(zeta)
        make_standalone_note(alfa)
        assert [s.customer_id for s in selector.client_summaries(date(2024, 1, 1))] == [alfa.id, zeta.id]

    def test_closed_and_non_receivable_items_excluded(
        self, selector, customer, make_order, order_service, payment_service, note_ledger, make_standalone_note
    ):
        make_order(customer, order_type=OrderType.PURCHASE)
        cancelled = make_order(customer)
        order_service.cancel_order(cancelled.id)
        paid = make_order(customer, total=Decimal("40.00"), condition="À vista")
        payment_service.record_payment(paid.active_installments[0].id, Decimal("40.00"))
        note = make_standalone_note(customer)
        note_ledger.cancel(note.id)

        assert selector.client_summaries(date(2024, 1, 1)) == []

    def test_empty(self, selector):
        assert selector.client_summaries(date(2024, 1, 1)) == []


class TestClientDetail:
    def test_proximity_buckets(self, selector, customer, sale_order):
        detail = selector.client_detail(customer.id, as_of=date(2024, 1, 29))

        assert [v.proximity for v in detail.installments] == [
            DueProximity.CRITICAL,
            DueProximity.LONG_TERM,
            DueProximity.LONG_TERM,
            DueProximity.LONG_TERM,
        ]
        assert detail.total_open == Decimal("200.00")
        assert detail.installments[0].order_number == sale_order.number

    def test_custom_thresholds(self, selector, customer, sale_order):
        detail = selector.client_detail(
            customer.id, as_of=date(2024, 1, 29), thresholds=DueThresholds(1, 2, 60)
        )
        assert detail.installments[0].proximity == DueProximity.ATTENTION
        assert detail.installments[1].proximity == DueProximity.NORMAL

    def test_paid_installment_has_no_proximity(self, selector, payment_service, customer, sale_order):
        first = sale_order.active_installments[0]
        payment_service.record_payment(first.id, first.amount)

        view = selector.client_detail(customer.id, as_of=date(2024, 3, 1)).installments[0]
        assert view.proximity is None
        assert view.days_overdue == 0
        assert view.is_open is False

    def test_noted_open(self, selector, note_ledger, settlement_engine, customer, sale_order):
        inst = sale_order.active_installments[0]
        note_a, _ = note_ledger.issue_for_installment(
            inst.id, [NoteSplit(Decimal("25.00")), NoteSplit(Decimal("25.00"))]
        )
        settlement_engine.apply(note_a.id, Decimal("25.00"))

        view = selector.client_detail(customer.id, as_of=date(2024, 1, 1)).installments[0]
        assert view.noted_open == Decimal("25.00")
        assert view.active_note_count == 2
        assert view.installment.open_amount == Decimal("25.00")

    def test_standalone_notes(self, selector, customer, make_standalone_note):
        make_standalone_note(customer, Decimal("70.00"), due_date=date(2024, 1, 1))
        detail = selector.client_detail(customer.id, as_of=date(2024, 1, 1))
        (view,) = detail.standalone_notes
        assert view.proximity == DueProximity.DUE_TODAY
        assert detail.total_open == Decimal("70.00")
        assert detail.installments == ()

    def test_unknown_customer(self, selector):
        with pytest.raises(CustomerNotFoundError):
            selector.client_detail(99, as_of=date(2024, 1, 1))


class TestNotesGroupedByOrder:
    def test_groups_and_standalone(self, selector, note_ledger, customer, sale_order, make_standalone_note):
        inst = sale_order.active_installments[0]
        note_ledger.issue_for_installment(inst.id, [NoteSplit(Decimal("20.00")), NoteSplit(Decimal("30.00"))])
        loose = make_standalone_note(customer, Decimal("15.00"))

        grouped = selector.notes_grouped_by_order(customer.id)

        (group,) = grouped.groups
        assert group.order_id == sale_order.id
        assert group.total_original == Decimal("50.00")
        assert group.total_open == Decimal("50.00")
        assert [n.id for n in grouped.standalone] == [loose.id]

    def test_cancelled_notes(self, selector, note_ledger, customer, make_standalone_note):
        note = make_standalone_note(customer)
        note_ledger.cancel(note.id)

        assert selector.notes_grouped_by_order(customer.id).standalone == ()
        (record,) = selector.notes_grouped_by_order(customer.id, include_cancelled=True).standalone
        assert record.status == NoteStatus.CANCELLED

    def test_filters_by_customer(self, selector, make_customer, make_standalone_note):
        a = make_customer()
        b = make_customer()
        make_standalone_note(a)
        make_standalone_note(b)
        assert len(selector.notes_grouped_by_order().standalone) == 2
        assert [n.customer_id for n in selector.notes_grouped_by_order(b.id).standalone] == [b.id]


class TestHistories:
    def test_note_history_keeps_reversed(self, selector, settlement_engine, customer, make_standalone_note, make_check):
        note = make_standalone_note(customer, Decimal("100.00"))
        first = settlement_engine.apply(
            note.id, Decimal("40.00"), method=PaymentMethod.CHECK, checks=[make_check(Decimal("40.00"))]
        )
        settlement_engine.apply(note.id, Decimal("10.00"))
        settlement_engine.reverse(first.id)

        history = selector.note_history(note.id)

        assert len(history.settlements) == 2
        assert history.settled_total == Decimal("10.00")
        assert history.settlements[0].reversed is True
        assert len(history.settlements[0].checks) == 1
        assert history.note.open_value == Decimal("90.00")

    def test_note_history_unknown(self, selector):
        with pytest.raises(NoteNotFoundError):
            selector.note_history(5)

    def test_installment_payments_combines_sources(
        self, selector, note_ledger, settlement_engine, payment_service, sale_order
    ):
        noted = sale_order.active_installments[0]
        (note,) = note_ledger.issue_for_installment(noted.id, [NoteSplit(Decimal("50.00"))])
        settlement_engine.apply(note.id, Decimal("30.00"))

        direct = sale_order.active_installments[1]
        payment_service.record_payment(direct.id, Decimal("50.00"))

        noted_history = selector.installment_payments(noted.id)
        assert len(noted_history.settlements) == 1
        assert noted_history.payments == ()
        assert noted_history.received_total == Decimal("30.00")

        direct_history = selector.installment_payments(direct.id)
        assert len(direct_history.payments) == 1
        assert direct_history.received_total == Decimal("50.00")


class TestPaymentsBetween:
    def test_period_and_reversed(self, selector, settlement_engine, payment_service, customer, sale_order, make_standalone_note):
        note = make_standalone_note(customer, Decimal("100.00"))
        in_period = settlement_engine.apply(note.id, Decimal("10.00"), payment_date=date(2024, 1, 5))
        settlement_engine.apply(note.id, Decimal("10.00"), payment_date=date(2024, 2, 5))
        reversed_one = settlement_engine.apply(note.id, Decimal("10.00"), payment_date=date(2024, 1, 6))
        settlement_engine.reverse(reversed_one.id)
        payment = payment_service.record_payment(
            sale_order.active_installments[0].id, Decimal("50.00"), payment_date=date(2024, 1, 31)
        )

        entries = selector.payments_between(date(2024, 1, 1), date(2024, 1, 31))

        assert [(e.kind, e.id) for e in entries] == [
            (SETTLEMENT_KIND, in_period.id),
            (PAYMENT_KIND, payment.id),
        ]
        assert entries[1].order_id == sale_order.id
        assert entries[1].customer_id == customer.id
        assert entries[0].order_id is None

        with_reversed = selector.payments_between(date(2024, 1, 1), date(2024, 1, 31), include_reversed=True)
        assert len(with_reversed) == 3

    def test_inverted_range(self, selector):
        with pytest.raises(InvalidFieldError):
            selector.payments_between(date(2024, 2, 1), date(2024, 1, 1))


class TestOrderFinancialSummary:
    def test_summary(self, selector, payment_service, sale_order):
        first = sale_order.active_installments[0]
        payment_service.record_payment(first.id, first.amount)

        summary = selector.order_financial_summary(sale_order.id)

        assert summary.status == OrderStatus.PARTIAL
        assert summary.amount_paid == Decimal("50.00")
        assert summary.open_amount == Decimal("150.00")
        assert summary.paid_installments == 1
        assert summary.installment_count == 4
        assert summary.next_due_date == date(2024, 3, 1)

    def test_unknown_order(self, selector):
        with pytest.raises(OrderNotFoundError):
            selector.order_financial_summary(1)


class TestCreditExposure:
    def test_rows(self, selector, note_ledger, customer, sale_order, make_standalone_note):
        note_ledger.issue_for_installment(sale_order.active_installments[0].id, [NoteSplit(Decimal("50.00"))])
        make_standalone_note(customer, Decimal("10.00"))

        exposure = selector.credit_exposure(customer.id)

        assert len(exposure.notes) == 2
        assert len(exposure.installments) == 4
        assert exposure.limit is None
