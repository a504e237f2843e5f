"""
Module: receivables_kernel.models.note
Responsibility: ORM persistence for receivable notes (duplicatas).
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - 0 <= open_value <= original_value (service layer + CHECK constraints).
    - Status is derived from open_value, original_value and the cancelled flag.
    - Notes carry an optimistic version counter; concurrent settlements on
      the same note cannot both commit against the same open_value.
    - A cancelled note is frozen; a note with settlements is never deleted
      (db/immutability.py).
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
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receivables_kernel.db.base import TrackedBase
from receivables_kernel.domain.dtos import NoteOrigin, origin_for
from receivables_kernel.domain.status import (
    TERMINAL_NOTE_STATUSES,
    NoteStatus,
    derive_note_status,
)

if TYPE_CHECKING:
    from receivables_kernel.models.customer import Customer
    from receivables_kernel.models.order import Installment
    from receivables_kernel.models.settlement import Settlement


class ReceivableNote(TrackedBase):
    """
    A receivable note: money owed by a customer, optionally backing one
    installment of an order.
    """

    __tablename__ = "receivable_notes"

    __table_args__ = (
        UniqueConstraint("number", name="uq_note_number"),
        CheckConstraint("original_value > 0", name="ck_note_original_positive"),
        CheckConstraint("open_value >= 0", name="ck_note_open_nonnegative"),
        CheckConstraint("open_value <= original_value", name="ck_note_open_le_original"),
        Index("idx_note_customer", "customer_id"),
        Index("idx_note_installment", "installment_id"),
        Index("idx_note_due", "due_date"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)

    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), nullable=False)

    installment_id: Mapped[int | None] = mapped_column(
        ForeignKey("installments.id"),
        nullable=True,
    )

    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    original_value: Mapped[Decimal] = mapped_column(nullable=False)
    open_value: Mapped[Decimal] = mapped_column(nullable=False)

    # Expected method (hint only; the settlement records the real one)
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)

    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    customer: Mapped[Customer] = relationship()

    installment: Mapped[Installment | None] = relationship(back_populates="notes")

    settlements: Mapped[list[Settlement]] = relationship(
        back_populates="note",
        order_by="Settlement.id",
    )

    def __repr__(self) -> str:
        return f"<ReceivableNote {self.number}: {self.open_value}/{self.original_value}>"

    @property
    def origin(self) -> NoteOrigin:
        return origin_for(self.installment_id)

    @property
    def status(self) -> NoteStatus:
        return derive_note_status(self.original_value, self.open_value, self.cancelled)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_NOTE_STATUSES

    @property
    def live_settlements(self) -> list[Settlement]:
        return [s for s in self.settlements if not s.reversed]
