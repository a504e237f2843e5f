"""
OrderService -- order lifecycle on top of the receivables kernel.

Responsibility:
    Create orders from line items (totals + installment plan + credit
    policy), re-plan them while nothing has been received, shift their due
    dates, and cancel them.

Architecture position:
    Services -- composes kernel models and services with the pure engines.
    Flush-only; ReceivablesService owns the transaction.

Invariants enforced:
    - Totals and schedules always come from the engines; nothing is typed in.
    - Installments are never deleted.  A re-plan marks the current schedule
      superseded and writes a new one.
    - Re-planning is refused once the order has any financial activity
      (active notes or money received).
    - CANCELLED and COMPLETED orders are locked.
    - An order with live payments cannot be cancelled; cancelling it
      cancels its open notes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from receivables_config.schema import CreditPolicy
from receivables_engines.planner import parse_condition_label, plan_installments
from receivables_engines.totals import calculate_order_totals
from receivables_kernel.db.types import EPSILON, ZERO
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.dtos import (
    CreditLimitSnapshot,
    OrderInput,
    OrderItemInput,
    OrderTotals,
    OrderType,
    PaymentCondition,
    PlannedInstallment,
)
from receivables_kernel.domain.status import InstallmentStatus
from receivables_kernel.exceptions import (
    CreditLimitExceededError,
    CustomerNotFoundError,
    InvalidFieldError,
    OrderHasActivityError,
    OrderLockedError,
    OrderNotFoundError,
)
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.customer import Customer
from receivables_kernel.models.order import Installment, Order, OrderItem
from receivables_kernel.services.note_ledger import NoteLedger
from receivables_services.credit_service import CreditService

logger = get_logger("services.order")


@dataclass(frozen=True)
class OrderPlan:
    totals: OrderTotals
    installments: tuple[PlannedInstallment, ...]


@dataclass
class OrderCreation:
    order: Order
    credit: CreditLimitSnapshot | None
    credit_flagged: bool


class OrderService:
    """
    Order lifecycle operations.

    Args:
        session: Caller-owned session.
        clock: Used for cancellation timestamps of the order's notes.
        credit_policy: What to do when a sale would exceed the limit.
        condition_resolver: Turns a stored condition label back into a
            PaymentCondition when an order is re-planned.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        credit_policy: CreditPolicy = CreditPolicy.FLAG,
        condition_resolver=None,
        credit_service: CreditService | None = None,
        note_ledger: NoteLedger | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.credit_policy = CreditPolicy(credit_policy)
        self._resolve = condition_resolver or parse_condition_label
        self._credit = credit_service or CreditService(session)
        self._notes = note_ledger or NoteLedger(session, self.clock, epsilon=EPSILON)

    # =========================================================================
    # Planning and creation
    # =========================================================================

    def plan(self, order_input: OrderInput) -> OrderPlan:
        """Totals and installment plan for an order, without persisting anything."""
        totals = calculate_order_totals(
            order_input.items,
            freight=order_input.freight,
            other_fees=order_input.other_fees,
            discount_value=order_input.discount_value,
            discount_percent=order_input.discount_percent,
        )
        base = order_input.base_due_date or order_input.order_date
        installments = plan_installments(totals.total, order_input.payment_condition, base)
        return OrderPlan(totals=totals, installments=installments)

    def create_order(self, order_input: OrderInput) -> OrderCreation:
        number = (order_input.number or "").strip()
        if not number:
            raise InvalidFieldError("number", str(order_input.number), "is required")
        if self._number_taken(number):
            raise InvalidFieldError("number", number, "an order with this number already exists")

        order_type = OrderType(order_input.order_type)
        order_plan = self.plan(order_input)

        snapshot, flagged = None, False
        if order_type == OrderType.SALE:
            if self.session.get(Customer, order_input.counterparty_id) is None:
                raise CustomerNotFoundError(order_input.counterparty_id)
            snapshot, flagged = self._apply_credit_policy(
                order_input.counterparty_id, order_plan.totals.total
            )

        totals = order_plan.totals
        order = Order(
            number=number,
            order_type=order_type.value,
            counterparty_id=order_input.counterparty_id,
            order_date=order_input.order_date,
            subtotal=totals.subtotal,
            discount_value=totals.discount_value,
            discount_percent=totals.discount_percent,
            freight=totals.freight,
            other_fees=totals.other_fees,
            total=totals.total,
            payment_condition=order_input.payment_condition.label,
            base_due_date=order_input.base_due_date or order_input.order_date,
            cancelled=False,
            notes=order_input.notes,
        )
        order.items = self._build_items(totals)
        order.installments = self._build_installments(order_plan.installments)
        self.session.add(order)
        self.session.flush()

        logger.info(
            "order_created",
            extra={
                "order_id": order.id,
                "number": order.number,
                "order_type": order_type.value,
                "total": str(order.total),
                "installment_count": len(order_plan.installments),
                "rejected_items": len(totals.rejected_items),
                "credit_flagged": flagged,
            },
        )
        return OrderCreation(order=order, credit=snapshot, credit_flagged=flagged)

    # =========================================================================
    # Edits
    # =========================================================================

    def update_items(
        self,
        order_id: int,
        items: Sequence[OrderItemInput],
        freight: Decimal | None = None,
        other_fees: Decimal | None = None,
        discount_value: Decimal | None = None,
        discount_percent: Decimal | None = None,
    ) -> Order:
        """
        Replace the line items, recompute totals and re-plan the schedule.

        Charges left as None keep their current values.
        """
        order = self._load_editable(order_id)
        self._require_no_activity(order)

        totals = calculate_order_totals(
            items,
            freight=order.freight if freight is None else freight,
            other_fees=order.other_fees if other_fees is None else other_fees,
            discount_value=order.discount_value if discount_value is None else discount_value,
            discount_percent=(
                order.discount_percent if discount_percent is None else discount_percent
            ),
        )
        condition = self._resolve(order.payment_condition)
        planned = plan_installments(totals.total, condition, order.base_due_date)

        if order.is_sale:
            increase = totals.total - order.total
            if increase > 0:
                self._apply_credit_policy(order.counterparty_id, increase)

        previous_total = order.total
        order.items = self._build_items(totals)
        order.subtotal = totals.subtotal
        order.discount_value = totals.discount_value
        order.discount_percent = totals.discount_percent
        order.freight = totals.freight
        order.other_fees = totals.other_fees
        order.total = totals.total
        self._replace_schedule(order, planned)
        self.session.flush()

        logger.info(
            "order_items_updated",
            extra={
                "order_id": order.id,
                "previous_total": str(previous_total),
                "total": str(order.total),
                "item_count": len(totals.items),
                "installment_count": len(planned),
            },
        )
        return order

    def change_payment_condition(
        self,
        order_id: int,
        condition: PaymentCondition | str,
    ) -> Order:
        """Supersede the current schedule with one planned from ``condition``."""
        order = self._load_editable(order_id)
        self._require_no_activity(order)

        if isinstance(condition, str):
            condition = self._resolve(condition)
        planned = plan_installments(order.total, condition, order.base_due_date)

        previous = order.payment_condition
        order.payment_condition = condition.label
        self._replace_schedule(order, planned)
        self.session.flush()

        logger.info(
            "order_payment_condition_changed",
            extra={
                "order_id": order.id,
                "previous_condition": previous,
                "condition": condition.label,
                "installment_count": len(planned),
            },
        )
        return order

    def update_base_due_date(self, order_id: int, base_due_date: date) -> Order:
        """
        Move the base date; unpaid installments keep their day offsets from it.

        Paid installments keep the due date they were paid against.
        """
        order = self._load_editable(order_id)

        shifted = 0
        for installment in order.active_installments:
            if installment.status == InstallmentStatus.PAID:
                continue
            installment.due_date = base_due_date + timedelta(days=installment.days_from_base)
            shifted += 1

        previous = order.base_due_date
        order.base_due_date = base_due_date
        self.session.flush()

        logger.info(
            "order_base_due_date_updated",
            extra={
                "order_id": order.id,
                "previous_base_due_date": previous,
                "base_due_date": base_due_date,
                "installments_shifted": shifted,
            },
        )
        return order

    def cancel_order(self, order_id: int, reason: str | None = None) -> Order:
        """
        Cancel an order that has no live payments, cancelling its open notes.
        """
        order = self._load_editable(order_id)

        for installment in order.active_installments:
            if installment.live_payments or any(
                n.live_settlements for n in installment.active_notes
            ):
                raise OrderHasActivityError(
                    order.id, "payments were received; reverse them before cancelling"
                )

        cancelled_notes = []
        for installment in order.active_installments:
            for note in installment.active_notes:
                self._notes.cancel(note.id, reason=reason or f"order {order.number} cancelled")
                cancelled_notes.append(note.id)

        order.cancelled = True
        order.cancel_reason = reason
        self.session.flush()

        logger.info(
            "order_cancelled",
            extra={
                "order_id": order.id,
                "number": order.number,
                "cancelled_note_ids": cancelled_notes,
                "reason": reason,
            },
        )
        return order

    # =========================================================================
    # Internal
    # =========================================================================

    def _number_taken(self, number: str) -> bool:
        count = self.session.execute(
            select(func.count(Order.id)).where(Order.number == number)
        ).scalar_one()
        return count > 0

    def _load_editable(self, order_id: int) -> Order:
        order = self.session.execute(
            select(Order).where(Order.id == order_id).with_for_update()
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.is_locked:
            raise OrderLockedError(order.id, order.status.value)
        return order

    def _require_no_activity(self, order: Order) -> None:
        for installment in order.active_installments:
            if installment.active_notes:
                raise OrderHasActivityError(order.id, "installments already have notes issued")
            if installment.amount_paid > 0 or installment.live_payments:
                raise OrderHasActivityError(order.id, "payments were already received")

    def _apply_credit_policy(
        self,
        customer_id: int,
        candidate: Decimal,
    ) -> tuple[CreditLimitSnapshot | None, bool]:
        if self.credit_policy == CreditPolicy.IGNORE:
            return None, False

        snapshot = self._credit.evaluate(customer_id, candidate)
        if not snapshot.exceeded:
            return snapshot, False

        if self.credit_policy == CreditPolicy.BLOCK:
            raise CreditLimitExceededError(
                customer_id=customer_id,
                limit=str(snapshot.limit),
                used=str(snapshot.used),
                candidate=str(snapshot.candidate),
            )
        logger.warning(
            "credit_limit_exceeded_flagged",
            extra={
                "customer_id": customer_id,
                "limit": str(snapshot.limit),
                "used": str(snapshot.used),
                "candidate": str(snapshot.candidate),
            },
        )
        return snapshot, True

    @staticmethod
    def _build_items(totals: OrderTotals) -> list[OrderItem]:
        return [
            OrderItem(
                position=position,
                product_id=item.product_id,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                item_discount=item.item_discount,
                subtotal=item.subtotal,
            )
            for position, item in enumerate(totals.items, start=1)
        ]

    @staticmethod
    def _build_installments(planned: Sequence[PlannedInstallment]) -> list[Installment]:
        return [
            Installment(
                sequence=p.sequence,
                total_count=p.total_count,
                amount=p.amount,
                amount_paid=ZERO,
                due_date=p.due_date,
                days_from_base=p.days_from_base,
                superseded=False,
            )
            for p in planned
        ]

    def _replace_schedule(self, order: Order, planned: Sequence[PlannedInstallment]) -> None:
        for installment in order.active_installments:
            installment.superseded = True
        order.installments.extend(self._build_installments(planned))
