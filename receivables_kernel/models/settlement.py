"""
Module: receivables_kernel.models.settlement
Responsibility: ORM persistence for settlements (baixas) against notes,
    direct installment payments, and the check (cheque) sub-ledger.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - net_value = paid_value + interest + penalty - discount, fixed at creation.
    - A settlement/payment is reversed at most once and never deleted; once
      reversed it is fully frozen (db/immutability.py).
    - A check belongs to exactly one settlement or one direct payment.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receivables_kernel.db.base import TrackedBase
from receivables_kernel.db.types import ZERO
from receivables_kernel.domain.dtos import CheckStatus, PaymentMethod

if TYPE_CHECKING:
    from receivables_kernel.models.note import ReceivableNote
    from receivables_kernel.models.order import Installment


class Settlement(TrackedBase):
    """
    Money received against one receivable note.

    installment_credit is the portion of net_value actually credited onto
    the linked installment (bounded by its amount); reversal debits exactly
    this value back.
    """

    __tablename__ = "settlements"

    __table_args__ = (
        CheckConstraint("paid_value > 0", name="ck_settlement_paid_positive"),
        CheckConstraint("net_value > 0", name="ck_settlement_net_positive"),
        Index("idx_settlement_note", "note_id"),
        Index("idx_settlement_payment_date", "payment_date"),
    )

    note_id: Mapped[int] = mapped_column(ForeignKey("receivable_notes.id"), nullable=False)

    paid_value: Mapped[Decimal] = mapped_column(nullable=False)
    interest: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    penalty: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    discount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    net_value: Mapped[Decimal] = mapped_column(nullable=False)
    installment_credit: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)
    observation: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    reversed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    note: Mapped[ReceivableNote] = relationship(back_populates="settlements")

    checks: Mapped[list[Check]] = relationship(
        back_populates="settlement",
        order_by="Check.id",
    )

    def __repr__(self) -> str:
        flag = " reversed" if self.reversed else ""
        return f"<Settlement {self.id} note={self.note_id} net={self.net_value}{flag}>"


class InstallmentPayment(TrackedBase):
    """
    Money received directly against an installment that has no notes.

    installment_credit is what was actually added to amount_paid; reversal
    subtracts exactly this value.
    """

    __tablename__ = "installment_payments"

    __table_args__ = (
        CheckConstraint("paid_value > 0", name="ck_payment_paid_positive"),
        CheckConstraint("net_value > 0", name="ck_payment_net_positive"),
        Index("idx_payment_installment", "installment_id"),
        Index("idx_payment_payment_date", "payment_date"),
    )

    installment_id: Mapped[int] = mapped_column(ForeignKey("installments.id"), nullable=False)

    paid_value: Mapped[Decimal] = mapped_column(nullable=False)
    interest: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    penalty: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    discount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    net_value: Mapped[Decimal] = mapped_column(nullable=False)
    installment_credit: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)
    observation: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    reversed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    installment: Mapped[Installment] = relationship(back_populates="payments")

    checks: Mapped[list[Check]] = relationship(
        back_populates="payment",
        order_by="Check.id",
    )

    def __repr__(self) -> str:
        flag = " reversed" if self.reversed else ""
        return f"<InstallmentPayment {self.id} installment={self.installment_id} net={self.net_value}{flag}>"


class Check(TrackedBase):
    """
    A check (cheque) received as part of a settlement or direct payment.

    Only status may change after creation (PENDING -> CLEARED | RETURNED).
    """

    __tablename__ = "checks"

    __table_args__ = (
        CheckConstraint(
            "(settlement_id IS NOT NULL AND payment_id IS NULL) OR "
            "(settlement_id IS NULL AND payment_id IS NOT NULL)",
            name="ck_check_single_owner",
        ),
        CheckConstraint("value > 0", name="ck_check_value_positive"),
        Index("idx_check_settlement", "settlement_id"),
        Index("idx_check_payment", "payment_id"),
    )

    settlement_id: Mapped[int | None] = mapped_column(
        ForeignKey("settlements.id"),
        nullable=True,
    )
    payment_id: Mapped[int | None] = mapped_column(
        ForeignKey("installment_payments.id"),
        nullable=True,
    )

    holder_name: Mapped[str] = mapped_column(String(200), nullable=False)
    holder_document: Mapped[str] = mapped_column(String(20), nullable=False)
    bank: Mapped[str] = mapped_column(String(100), nullable=False)
    agency: Mapped[str] = mapped_column(String(20), nullable=False)
    account: Mapped[str] = mapped_column(String(30), nullable=False)
    check_number: Mapped[str] = mapped_column(String(30), nullable=False)

    value: Mapped[Decimal] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[CheckStatus] = mapped_column(
        String(20),
        default=CheckStatus.PENDING.value,
        nullable=False,
    )

    note: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    settlement: Mapped[Settlement | None] = relationship(back_populates="checks")
    payment: Mapped[InstallmentPayment | None] = relationship(back_populates="checks")

    def __repr__(self) -> str:
        return f"<Check {self.bank}/{self.check_number}: {self.value}>"
