"""
ReceivablesService -- inbound entry point for the receivables core.

Responsibility:
    Runs every operation of the core in its own transaction and reports the
    outcome as an OperationResult.  Callers apply ``result.value`` only when
    ``result.is_success``; on failure nothing was written and
    ``result.error`` carries the typed kernel exception.

Architecture position:
    Services -- imperative shell, owns transaction boundaries.  Composes
    the kernel's NoteLedger, SettlementEngine, PaymentService and
    ReconciliationSelector with the services-layer OrderService and
    CreditService.

Operation flow:
    operation(...)
      1. Bind correlation_id (and entity ids) into LogContext
      2. Run the kernel/service call (flush-only)
      3. Convert ORM rows to frozen records
      4. Commit on success; rollback on any error
      5. Typed kernel errors become a failed OperationResult; anything
         else is logged and re-raised

Invariants enforced:
    - All-or-nothing: a failed operation leaves no partial writes.
    - Read views never commit.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping, Sequence
from uuid import uuid4

from sqlalchemy.orm import Session

from receivables_config import get_active_config
from receivables_config.bridges import build_condition_resolver, build_due_thresholds
from receivables_config.schema import ReceivablesConfig
from receivables_kernel.domain.aging import DueThresholds
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.dtos import (
    CheckInput,
    CheckRecord,
    CheckStatus,
    CreditLimitSnapshot,
    InstallmentRecord,
    NoteInput,
    NoteRecord,
    NoteSplit,
    OrderInput,
    OrderItemInput,
    OrderRecord,
    PaymentCondition,
    PaymentInput,
    PaymentMethod,
    PaymentRecord,
    PlannedInstallment,
    SettlementInput,
    SettlementRecord,
)
from receivables_kernel.exceptions import (
    ConcurrencyError,
    ImmutabilityError,
    InvariantViolationError,
    NotFoundError,
    ReceivablesError,
    StateConflictError,
    ValidationError,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.selectors.reconciliation_selector import ReconciliationSelector
from receivables_kernel.services.note_ledger import NoteLedger
from receivables_kernel.services.payment_service import PaymentService
from receivables_kernel.services.settlement_engine import SettlementEngine
from receivables_services.credit_service import CreditService
from receivables_services.order_service import OrderService

logger = get_logger("services.receivables")


class OperationStatus(str, Enum):
    """Outcome category of a facade operation."""

    SUCCEEDED = "succeeded"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    INVARIANT_VIOLATION = "invariant_violation"
    STATE_CONFLICT = "state_conflict"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    IMMUTABILITY_VIOLATION = "immutability_violation"


_STATUS_BY_ERROR: tuple[tuple[type[ReceivablesError], OperationStatus], ...] = (
    (ValidationError, OperationStatus.VALIDATION_FAILED),
    (NotFoundError, OperationStatus.NOT_FOUND),
    (InvariantViolationError, OperationStatus.INVARIANT_VIOLATION),
    (StateConflictError, OperationStatus.STATE_CONFLICT),
    (ConcurrencyError, OperationStatus.CONCURRENCY_CONFLICT),
    (ImmutabilityError, OperationStatus.IMMUTABILITY_VIOLATION),
)


def status_for(error: ReceivablesError) -> OperationStatus:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return OperationStatus.VALIDATION_FAILED


@dataclass(frozen=True)
class OperationResult:
    """Result of one facade operation."""

    status: OperationStatus
    value: Any = None
    error: ReceivablesError | None = None

    @property
    def is_success(self) -> bool:
        return self.status == OperationStatus.SUCCEEDED

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    @property
    def is_retryable(self) -> bool:
        """A lost race: re-fetch and retry once."""
        return self.status == OperationStatus.CONCURRENCY_CONFLICT


@dataclass(frozen=True)
class OrderCreated:
    order: OrderRecord
    credit: CreditLimitSnapshot | None
    credit_flagged: bool


class ReceivablesService:
    """
    Transactional facade over the receivables core.

    Contract:
        Every public method returns an OperationResult.  Mutating methods
        commit on success and roll back on failure (when auto_commit=True).

    Usage:
        service = ReceivablesService.from_config(session)
        result = service.apply_settlement(SettlementInput(note_id=7, paid_value=Decimal("25.00")))
        if result.is_success:
            settlement = result.value
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ReceivablesConfig | None = None,
        condition_resolver: Callable[[str], PaymentCondition] | None = None,
        thresholds: DueThresholds | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or ReceivablesConfig()
        self._auto_commit = auto_commit
        self._thresholds = thresholds or build_due_thresholds(self._config)

        epsilon = self._config.epsilon
        self._notes = NoteLedger(
            session,
            self._clock,
            strict_installment_split=self._config.strict_installment_split,
            epsilon=epsilon,
        )
        self._settlements = SettlementEngine(session, self._clock, epsilon=epsilon)
        self._payments = PaymentService(session, self._clock, epsilon=epsilon)
        self._selector = ReconciliationSelector(session)
        self._credit = CreditService(session)
        self._orders = OrderService(
            session,
            self._clock,
            credit_policy=self._config.credit_policy,
            condition_resolver=condition_resolver or build_condition_resolver(self._config),
            credit_service=self._credit,
            note_ledger=self._notes,
        )

    @classmethod
    def from_config(
        cls,
        session: Session,
        config: ReceivablesConfig | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ) -> ReceivablesService:
        """Build the facade from the active configuration."""
        config = config or get_active_config()
        return cls(
            session,
            clock=clock,
            config=config,
            condition_resolver=build_condition_resolver(config),
            thresholds=build_due_thresholds(config),
            auto_commit=auto_commit,
        )

    # =========================================================================
    # Transaction wrapper
    # =========================================================================

    def _run(
        self,
        operation: str,
        fn: Callable[[], Any],
        read_only: bool = False,
        **context: Any,
    ) -> OperationResult:
        bound = {k: v for k, v in context.items() if v is not None}
        with LogContext.bind(correlation_id=str(uuid4()), **bound):
            t0 = time.monotonic()
            try:
                value = fn()
                if self._auto_commit and not read_only:
                    self._session.commit()
            except ReceivablesError as exc:
                if self._auto_commit:
                    self._session.rollback()
                status = status_for(exc)
                logger.warning(
                    "receivables_operation_rejected",
                    extra={
                        "operation": operation,
                        "status": status.value,
                        "error_code": exc.code,
                        "error": str(exc),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return OperationResult(status=status, error=exc)
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.error(
                    "receivables_operation_failed",
                    extra={
                        "operation": operation,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                    exc_info=True,
                )
                raise

            if not read_only:
                logger.info(
                    "receivables_operation_completed",
                    extra={
                        "operation": operation,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
            return OperationResult(status=OperationStatus.SUCCEEDED, value=value)

    # =========================================================================
    # Planning and orders
    # =========================================================================

    def plan_installments(self, order: OrderInput) -> OperationResult:
        """Totals and installment plan for an order; nothing is persisted."""

        def run() -> tuple[PlannedInstallment, ...]:
            return self._orders.plan(order).installments

        return self._run("plan_installments", run, read_only=True)

    def create_order(self, order: OrderInput) -> OperationResult:
        def run() -> OrderCreated:
            created = self._orders.create_order(order)
            return OrderCreated(
                order=OrderRecord.from_model(created.order),
                credit=created.credit,
                credit_flagged=created.credit_flagged,
            )

        return self._run("create_order", run, customer_id=order.counterparty_id)

    def update_items(
        self,
        order_id: int,
        items: Sequence[OrderItemInput],
        freight: Decimal | None = None,
        other_fees: Decimal | None = None,
        discount_value: Decimal | None = None,
        discount_percent: Decimal | None = None,
    ) -> OperationResult:
        def run() -> OrderRecord:
            order = self._orders.update_items(
                order_id,
                items,
                freight=freight,
                other_fees=other_fees,
                discount_value=discount_value,
                discount_percent=discount_percent,
            )
            return OrderRecord.from_model(order)

        return self._run("update_items", run, order_id=order_id)

    def change_payment_condition(
        self,
        order_id: int,
        condition: PaymentCondition | str,
    ) -> OperationResult:
        def run() -> OrderRecord:
            return OrderRecord.from_model(
                self._orders.change_payment_condition(order_id, condition)
            )

        return self._run("change_payment_condition", run, order_id=order_id)

    def update_base_due_date(self, order_id: int, base_due_date: date) -> OperationResult:
        def run() -> OrderRecord:
            return OrderRecord.from_model(
                self._orders.update_base_due_date(order_id, base_due_date)
            )

        return self._run("update_base_due_date", run, order_id=order_id)

    def cancel_order(self, order_id: int, reason: str | None = None) -> OperationResult:
        def run() -> OrderRecord:
            return OrderRecord.from_model(self._orders.cancel_order(order_id, reason))

        return self._run("cancel_order", run, order_id=order_id)

    # =========================================================================
    # Notes
    # =========================================================================

    def issue_note(self, note: NoteInput) -> OperationResult:
        def run() -> NoteRecord:
            return NoteRecord.from_model(self._notes.issue(note))

        return self._run("issue_note", run, customer_id=note.customer_id)

    def issue_notes_for_installment(
        self,
        installment_id: int,
        splits: Sequence[NoteSplit],
        issue_date: date | None = None,
    ) -> OperationResult:
        def run() -> tuple[NoteRecord, ...]:
            notes = self._notes.issue_for_installment(installment_id, splits, issue_date)
            return tuple(NoteRecord.from_model(n) for n in notes)

        return self._run("issue_notes_for_installment", run, installment_id=installment_id)

    def cancel_note(self, note_id: int, reason: str | None = None) -> OperationResult:
        def run() -> NoteRecord:
            return NoteRecord.from_model(self._notes.cancel(note_id, reason))

        return self._run("cancel_note", run, note_id=note_id)

    # =========================================================================
    # Settlements and payments
    # =========================================================================

    def apply_settlement(self, settlement: SettlementInput) -> OperationResult:
        def run() -> SettlementRecord:
            row = self._settlements.apply(
                settlement.note_id,
                settlement.paid_value,
                interest=settlement.interest,
                penalty=settlement.penalty,
                discount=settlement.discount,
                method=settlement.method,
                checks=settlement.checks,
                payment_date=settlement.payment_date,
                observation=settlement.observation,
            )
            return SettlementRecord.from_model(row)

        return self._run("apply_settlement", run, note_id=settlement.note_id)

    def reverse_settlement(self, settlement_id: int, reason: str | None = None) -> OperationResult:
        def run() -> SettlementRecord:
            return SettlementRecord.from_model(self._settlements.reverse(settlement_id, reason))

        return self._run("reverse_settlement", run, settlement_id=settlement_id)

    def confirm_installment_payment(
        self,
        installment_id: int,
        splits: Sequence[NoteSplit],
        payment_date: date | None = None,
        checks: Mapping[int, Sequence[CheckInput]] | None = None,
    ) -> OperationResult:
        """
        Issue the split notes of an installment and settle each in full.

        ``checks`` maps a split's index to the checks that pay it; splits
        without a payment method are settled in cash.
        """
        checks = checks or {}

        def run() -> tuple[SettlementRecord, ...]:
            notes = self._notes.issue_for_installment(installment_id, splits, payment_date)
            settled = []
            for index, (split, note) in enumerate(zip(splits, notes)):
                row = self._settlements.apply(
                    note.id,
                    note.open_value,
                    method=split.payment_method or PaymentMethod.CASH,
                    checks=checks.get(index),
                    payment_date=payment_date,
                )
                settled.append(SettlementRecord.from_model(row))
            return tuple(settled)

        return self._run("confirm_installment_payment", run, installment_id=installment_id)

    def record_payment(self, payment: PaymentInput) -> OperationResult:
        def run() -> PaymentRecord:
            row = self._payments.record_payment(
                payment.installment_id,
                payment.paid_value,
                interest=payment.interest,
                penalty=payment.penalty,
                discount=payment.discount,
                method=payment.method,
                checks=payment.checks,
                payment_date=payment.payment_date,
                observation=payment.observation,
            )
            return PaymentRecord.from_model(row)

        return self._run("record_payment", run, installment_id=payment.installment_id)

    def reverse_payment(self, payment_id: int, reason: str | None = None) -> OperationResult:
        def run() -> PaymentRecord:
            return PaymentRecord.from_model(self._payments.reverse_payment(payment_id, reason))

        return self._run("reverse_payment", run)

    def recalculate_installment(self, installment_id: int) -> OperationResult:
        def run() -> InstallmentRecord:
            return InstallmentRecord.from_model(
                self._settlements.recalculate_installment(installment_id)
            )

        return self._run("recalculate_installment", run, installment_id=installment_id)

    def set_check_status(
        self, check_id: int, status: CheckStatus, note: str | None = None
    ) -> OperationResult:
        def run() -> CheckRecord:
            return CheckRecord.from_model(self._settlements.set_check_status(check_id, status, note))

        return self._run("set_check_status", run)

    # =========================================================================
    # Credit
    # =========================================================================

    def evaluate_credit_limit(self, customer_id: int, amount: Decimal) -> OperationResult:
        return self._run(
            "evaluate_credit_limit",
            lambda: self._credit.evaluate(customer_id, amount),
            read_only=True,
            customer_id=customer_id,
        )

    # =========================================================================
    # Reconciliation views
    # =========================================================================

    def client_summaries(self, as_of: date | None = None) -> OperationResult:
        as_of = as_of or self._clock.today()
        return self._run(
            "client_summaries",
            lambda: self._selector.client_summaries(as_of),
            read_only=True,
        )

    def client_detail(self, customer_id: int, as_of: date | None = None) -> OperationResult:
        as_of = as_of or self._clock.today()
        return self._run(
            "client_detail",
            lambda: self._selector.client_detail(customer_id, as_of, self._thresholds),
            read_only=True,
            customer_id=customer_id,
        )

    def notes_grouped_by_order(
        self,
        customer_id: int | None = None,
        include_cancelled: bool = False,
    ) -> OperationResult:
        return self._run(
            "notes_grouped_by_order",
            lambda: self._selector.notes_grouped_by_order(customer_id, include_cancelled),
            read_only=True,
            customer_id=customer_id,
        )

    def note_history(self, note_id: int) -> OperationResult:
        return self._run(
            "note_history",
            lambda: self._selector.note_history(note_id),
            read_only=True,
            note_id=note_id,
        )

    def installment_payments(self, installment_id: int) -> OperationResult:
        return self._run(
            "installment_payments",
            lambda: self._selector.installment_payments(installment_id),
            read_only=True,
            installment_id=installment_id,
        )

    def payments_between(
        self,
        start: date,
        end: date,
        include_reversed: bool = False,
    ) -> OperationResult:
        return self._run(
            "payments_between",
            lambda: self._selector.payments_between(start, end, include_reversed),
            read_only=True,
        )

    def order_financial_summary(self, order_id: int) -> OperationResult:
        return self._run(
            "order_financial_summary",
            lambda: self._selector.order_financial_summary(order_id),
            read_only=True,
            order_id=order_id,
        )
