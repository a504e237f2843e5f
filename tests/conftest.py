"""
Pytest fixtures for the receivables kernel test suite.

Provides:
- In-memory SQLite sessions (fresh schema per test)
- A deterministic clock
- Factories for customers, orders, notes and checks
- Captured JSON logs

Tests that need real commits from more than one connection (concurrency)
build their own file-backed engine under tmp_path.
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from receivables_config.schema import CreditPolicy, ReceivablesConfig
from receivables_engines.planner import parse_condition_label
from receivables_kernel.db.engine import build_engine, create_tables, drop_tables
from receivables_kernel.domain.clock import DeterministicClock
from receivables_kernel.domain.dtos import (
    CheckInput,
    NoteInput,
    OrderInput,
    OrderItemInput,
    OrderType,
    PaymentCondition,
)
from receivables_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from receivables_kernel.models.customer import Customer
from receivables_kernel.selectors.reconciliation_selector import ReconciliationSelector
from receivables_kernel.services.note_ledger import NoteLedger
from receivables_kernel.services.payment_service import PaymentService
from receivables_kernel.services.settlement_engine import SettlementEngine
from receivables_services.order_service import OrderService
from receivables_services.receivables_service import ReceivablesService

ORDER_DATE = date(2024, 1, 1)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture receivables_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, settlement_engine):
            settlement_engine.apply(...)
            logs = captured_logs()
            assert any(r["message"] == "settlement_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("receivables_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "concurrency: test commits through more than one session"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """A private in-memory database with the full schema."""
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """Provide a database session; anything left uncommitted is rolled back."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def note_ledger(session, deterministic_clock) -> NoteLedger:
    return NoteLedger(session, deterministic_clock)


@pytest.fixture
def strict_note_ledger(session, deterministic_clock) -> NoteLedger:
    return NoteLedger(session, deterministic_clock, strict_installment_split=True)


@pytest.fixture
def settlement_engine(session, deterministic_clock) -> SettlementEngine:
    return SettlementEngine(session, deterministic_clock)


@pytest.fixture
def payment_service(session, deterministic_clock) -> PaymentService:
    return PaymentService(session, deterministic_clock)


@pytest.fixture
def selector(session) -> ReconciliationSelector:
    return ReconciliationSelector(session)


@pytest.fixture
def order_service(session, deterministic_clock) -> OrderService:
    return OrderService(session, deterministic_clock, credit_policy=CreditPolicy.IGNORE)


@pytest.fixture
def receivables_config() -> ReceivablesConfig:
    return ReceivablesConfig()


@pytest.fixture
def receivables_service(session, deterministic_clock, receivables_config) -> ReceivablesService:
    return ReceivablesService(session, clock=deterministic_clock, config=receivables_config)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_customer(session):
    """Persist a customer and return it."""
    counter = {"n": 0}

    def _make(
        name: str | None = None,
        credit_limit: Decimal | None = None,
        document: str | None = None,
    ) -> Customer:
        counter["n"] += 1
        customer = Customer(
            name=name or f"Cliente {counter['n']}",
            document=document,
            credit_limit=credit_limit,
            is_active=True,
        )
        session.add(customer)
        session.flush()
        return customer

    return _make


@pytest.fixture
def customer(make_customer) -> Customer:
    return make_customer(name="Mercado Central")


def order_input(
    counterparty_id: int,
    total: Decimal = Decimal("200.00"),
    condition: PaymentCondition | str = "4x",
    number: str = "PV-1",
    order_type: OrderType = OrderType.SALE,
    order_date: date = ORDER_DATE,
    **kwargs,
) -> OrderInput:
    """An order with a single line item worth ``total``."""
    if isinstance(condition, str):
        condition = parse_condition_label(condition)
    return OrderInput(
        number=number,
        order_type=order_type,
        counterparty_id=counterparty_id,
        order_date=order_date,
        items=(OrderItemInput(quantity=Decimal("1"), unit_price=total, description="Item"),),
        payment_condition=condition,
        **kwargs,
    )


@pytest.fixture
def make_order_input():
    return order_input


@pytest.fixture
def make_order(order_service):
    """Create an order through OrderService and return the ORM row."""
    counter = {"n": 0}

    def _make(
        customer: Customer,
        total: Decimal = Decimal("200.00"),
        condition: PaymentCondition | str = "4x",
        number: str | None = None,
        order_type: OrderType = OrderType.SALE,
    ):
        counter["n"] += 1
        created = order_service.create_order(
            order_input(
                customer.id,
                total=total,
                condition=condition,
                number=number or f"PV-{counter['n']}",
                order_type=order_type,
            )
        )
        return created.order

    return _make


@pytest.fixture
def sale_order(make_order, customer):
    """R$200.00 sale in four installments of R$50.00."""
    return make_order(customer)


@pytest.fixture
def make_standalone_note(note_ledger):
    counter = {"n": 0}

    def _make(customer: Customer, value: Decimal = Decimal("100.00"), due_date: date = date(2024, 2, 1)):
        counter["n"] += 1
        return note_ledger.issue(
            NoteInput(
                customer_id=customer.id,
                original_value=value,
                due_date=due_date,
                number=f"DUP-{counter['n']}",
            )
        )

    return _make


def check_input(value: Decimal, number: str = "000101", **overrides) -> CheckInput:
    fields = dict(
        holder_name="Maria Souza",
        holder_document="12345678901",
        bank="001",
        agency="1234",
        account="56789-0",
        check_number=number,
        value=value,
        due_date=date(2024, 3, 1),
    )
    fields.update(overrides)
    return CheckInput(**fields)


@pytest.fixture
def make_check():
    return check_input
