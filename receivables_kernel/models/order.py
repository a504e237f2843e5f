"""
Module: receivables_kernel.models.order
Responsibility: ORM persistence for orders, their line items and their
    installment schedule (parcelas).
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Installment.amount_paid <= Installment.amount (service layer + CHECK).
    - Installment and order status are derived from balances, never stored.
    - Installments carry an optimistic version counter; a flush against a
      stale version raises StaleDataError.
    - Installments are never deleted: a payment-condition change marks the
      old schedule superseded.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receivables_kernel.db.base import Base, TrackedBase
from receivables_kernel.db.types import ZERO
from receivables_kernel.domain.dtos import OrderType
from receivables_kernel.domain.status import (
    InstallmentStatus,
    OrderStatus,
    derive_installment_status,
    derive_order_status,
)

if TYPE_CHECKING:
    from receivables_kernel.models.note import ReceivableNote
    from receivables_kernel.models.settlement import InstallmentPayment


class Order(TrackedBase):
    """
    A sales or purchase order (pedido).

    Totals are recomputed by the order totals calculator on every item or
    discount edit; the schedule is replanned from the new total.  Once
    CANCELLED or COMPLETED the order is locked.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("number", name="uq_order_number"),
        Index("idx_order_counterparty", "counterparty_id"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)

    order_type: Mapped[OrderType] = mapped_column(String(20), nullable=False)

    # Customer id for sales; supplier id for purchases
    counterparty_id: Mapped[int] = mapped_column(Integer, nullable=False)

    order_date: Mapped[date] = mapped_column(Date, nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    freight: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    other_fees: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    total: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    payment_condition: Mapped[str] = mapped_column(String(100), nullable=False)

    # Due dates of the schedule are offsets from this date
    base_due_date: Mapped[date] = mapped_column(Date, nullable=False)

    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancel_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    items: Mapped[list[OrderItem]] = relationship(
        back_populates="order",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )

    installments: Mapped[list[Installment]] = relationship(
        back_populates="order",
        order_by="Installment.id",
    )

    def __repr__(self) -> str:
        return f"<Order {self.number}: {self.total}>"

    @property
    def is_sale(self) -> bool:
        return self.order_type == OrderType.SALE

    @property
    def active_installments(self) -> list[Installment]:
        """Current schedule (superseded installments excluded), by sequence."""
        return sorted(
            (i for i in self.installments if not i.superseded),
            key=lambda i: i.sequence,
        )

    @property
    def status(self) -> OrderStatus:
        return derive_order_status(
            self.cancelled,
            (i.status for i in self.active_installments),
        )

    @property
    def is_locked(self) -> bool:
        return self.status in (OrderStatus.CANCELLED, OrderStatus.COMPLETED)


class OrderItem(Base):
    """A line item; subtotal is computed, never typed in."""

    __tablename__ = "order_items"

    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 3, asdecimal=True), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    item_discount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")


class Installment(TrackedBase):
    """
    One scheduled portion (parcela) of an order's total.

    amount_paid is credited by settlements of linked notes and by direct
    installment payments, and debited only by their exact reversals.
    """

    __tablename__ = "installments"

    __table_args__ = (
        CheckConstraint("amount_paid >= 0", name="ck_installment_paid_nonnegative"),
        CheckConstraint("amount_paid <= amount", name="ck_installment_paid_le_amount"),
        Index("idx_installment_order", "order_id"),
        Index("idx_installment_due", "due_date"),
    )

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False)

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    days_from_base: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    superseded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    order: Mapped[Order] = relationship(back_populates="installments")

    notes: Mapped[list[ReceivableNote]] = relationship(
        back_populates="installment",
        order_by="ReceivableNote.id",
    )

    payments: Mapped[list[InstallmentPayment]] = relationship(
        back_populates="installment",
        order_by="InstallmentPayment.id",
    )

    def __repr__(self) -> str:
        return f"<Installment {self.sequence}/{self.total_count} of order {self.order_id}>"

    @property
    def open_amount(self) -> Decimal:
        return self.amount - self.amount_paid

    @property
    def status(self) -> InstallmentStatus:
        return derive_installment_status(self.amount, self.amount_paid)

    @property
    def active_notes(self) -> list[ReceivableNote]:
        return [n for n in self.notes if not n.cancelled]

    @property
    def live_payments(self) -> list[InstallmentPayment]:
        return [p for p in self.payments if not p.reversed]
