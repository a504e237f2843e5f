"""
Lost-update protection on note and installment balances.

Two sessions on a file-backed SQLite database: the second writer holds a
stale copy of the row, so its flush matches no row at the old version and
the kernel raises ConcurrentModificationError.  Through the facade the same
race comes back as a retryable OperationResult.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from receivables_kernel.db.engine import build_engine, create_tables, drop_tables
from receivables_kernel.domain.clock import DeterministicClock
from receivables_kernel.domain.dtos import NoteInput, SettlementInput
from receivables_kernel.exceptions import ConcurrentModificationError
from receivables_kernel.models.customer import Customer
from receivables_kernel.models.note import ReceivableNote
from receivables_kernel.models.order import Installment
from receivables_kernel.services.note_ledger import NoteLedger
from receivables_kernel.services.payment_service import PaymentService
from receivables_kernel.services.settlement_engine import SettlementEngine
from receivables_services.order_service import OrderService
from receivables_services.receivables_service import OperationStatus, ReceivablesService

pytestmark = pytest.mark.concurrency

CLOCK = DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def file_factory(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'receivables.db'}")
    create_tables(eng)
    yield sessionmaker(bind=eng, expire_on_commit=False)
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def committed_note_id(file_factory) -> int:
    with file_factory() as session:
        customer = Customer(name="Loja Norte", is_active=True)
        session.add(customer)
        session.flush()
        note = NoteLedger(session, CLOCK).issue(
            NoteInput(
                customer_id=customer.id,
                original_value=Decimal("100.00"),
                due_date=date(2024, 2, 1),
                number="DUP-500",
            )
        )
        session.commit()
        return note.id


@pytest.fixture
def committed_installment_id(file_factory, make_order_input) -> int:
    with file_factory() as session:
        customer = Customer(name="Loja Sul", is_active=True)
        session.add(customer)
        session.flush()
        order = OrderService(session, CLOCK).create_order(make_order_input(customer.id)).order
        session.commit()
        return order.active_installments[0].id


class TestSettlementRace:
    def test_stale_writer_is_rejected(self, file_factory, committed_note_id):
        session_a = file_factory()
        session_b = file_factory()
        try:
            stale = session_b.get(ReceivableNote, committed_note_id)
            assert stale.version == 1

            SettlementEngine(session_a, CLOCK).apply(committed_note_id, Decimal("30.00"))
            session_a.commit()

            with pytest.raises(ConcurrentModificationError) as exc_info:
                SettlementEngine(session_b, CLOCK).apply(committed_note_id, Decimal("80.00"))
            assert exc_info.value.entity_type == "ReceivableNote"
            session_b.rollback()
        finally:
            session_a.close()
            session_b.close()

        with file_factory() as check:
            note = check.get(ReceivableNote, committed_note_id)
            assert note.open_value == Decimal("70.00")
            assert len(note.settlements) == 1

    def test_facade_reports_retryable_conflict(self, file_factory, committed_note_id):
        session_a = file_factory()
        session_b = file_factory()
        try:
            stale = session_b.get(ReceivableNote, committed_note_id)
            assert stale.version == 1
            facade_a = ReceivablesService(session_a, clock=CLOCK)
            facade_b = ReceivablesService(session_b, clock=CLOCK)

            first = facade_a.apply_settlement(
                SettlementInput(note_id=committed_note_id, paid_value=Decimal("30.00"))
            )
            assert first.is_success

            lost = facade_b.apply_settlement(
                SettlementInput(note_id=committed_note_id, paid_value=Decimal("30.00"))
            )
            assert lost.status == OperationStatus.CONCURRENCY_CONFLICT
            assert lost.is_retryable

            retried = facade_b.apply_settlement(
                SettlementInput(note_id=committed_note_id, paid_value=Decimal("30.00"))
            )
            assert retried.is_success
        finally:
            session_a.close()
            session_b.close()

        with file_factory() as check:
            assert check.get(ReceivableNote, committed_note_id).open_value == Decimal("40.00")

    def test_retry_sees_fresh_balance(self, file_factory, committed_note_id):
        """After the conflict, a retry is validated against the committed balance."""
        session_a = file_factory()
        session_b = file_factory()
        try:
            stale = session_b.get(ReceivableNote, committed_note_id)
            assert stale.version == 1
            ReceivablesService(session_a, clock=CLOCK).apply_settlement(
                SettlementInput(note_id=committed_note_id, paid_value=Decimal("70.00"))
            )

            facade_b = ReceivablesService(session_b, clock=CLOCK)
            request = SettlementInput(note_id=committed_note_id, paid_value=Decimal("50.00"))
            assert facade_b.apply_settlement(request).is_retryable
            assert facade_b.apply_settlement(request).status == OperationStatus.INVARIANT_VIOLATION
        finally:
            session_a.close()
            session_b.close()


class TestInstallmentRace:
    def test_stale_direct_payment_is_rejected(self, file_factory, committed_installment_id):
        session_a = file_factory()
        session_b = file_factory()
        try:
            stale = session_b.get(Installment, committed_installment_id)
            assert stale.version == 1

            PaymentService(session_a, CLOCK).record_payment(committed_installment_id, Decimal("50.00"))
            session_a.commit()

            with pytest.raises(ConcurrentModificationError) as exc_info:
                PaymentService(session_b, CLOCK).record_payment(committed_installment_id, Decimal("50.00"))
            assert exc_info.value.entity_type == "Installment"
            session_b.rollback()
        finally:
            session_a.close()
            session_b.close()

        with file_factory() as check:
            inst = check.get(Installment, committed_installment_id)
            assert inst.amount_paid == Decimal("50.00")
            assert len(inst.live_payments) == 1
