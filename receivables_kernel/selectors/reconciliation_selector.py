"""
Reconciliation query selector.

Read-only aggregations over notes, installments, settlements and direct
payments: the per-client receivables listing, the client detail screen,
notes grouped by order, settlement history and payments by period.  Also
loads the exposure rows the credit evaluator folds over.

Key design decisions:
- Returns DTOs (frozen dataclasses), not ORM models
- Uses the caller's Session and never flushes
- Only installments of live sales orders count as receivables: cancelled
  orders, purchase orders and superseded schedules are excluded
- Due proximity is derived on read from the as_of date; never stored
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from receivables_kernel.db.types import ZERO
from receivables_kernel.domain.aging import (
    DEFAULT_THRESHOLDS,
    DueProximity,
    DueThresholds,
    classify_due,
    days_overdue,
)
from receivables_kernel.domain.dtos import (
    CustomerExposure,
    InstallmentExposure,
    InstallmentRecord,
    NoteExposure,
    NoteRecord,
    OrderType,
    PaymentMethod,
    PaymentRecord,
    SettlementRecord,
)
from receivables_kernel.domain.status import InstallmentStatus, NoteStatus, OrderStatus
from receivables_kernel.domain.values import money_sum
from receivables_kernel.exceptions import (
    CustomerNotFoundError,
    InstallmentNotFoundError,
    InvalidFieldError,
    NoteNotFoundError,
    OrderNotFoundError,
)
from receivables_kernel.models.customer import Customer
from receivables_kernel.models.note import ReceivableNote
from receivables_kernel.models.order import Installment, Order
from receivables_kernel.models.settlement import InstallmentPayment, Settlement
from receivables_kernel.selectors.base import BaseSelector


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class ClientSummary:
    """One row of the receivables-by-client listing."""

    customer_id: int
    name: str | None
    total_open: Decimal
    open_installments: int
    open_standalone_notes: int
    max_days_overdue: int


@dataclass(frozen=True)
class InstallmentView:
    installment: InstallmentRecord
    order_number: str
    noted_open: Decimal
    active_note_count: int
    proximity: DueProximity | None
    days_overdue: int

    @property
    def is_open(self) -> bool:
        return self.installment.status != InstallmentStatus.PAID


@dataclass(frozen=True)
class NoteView:
    note: NoteRecord
    proximity: DueProximity | None
    days_overdue: int


@dataclass(frozen=True)
class ClientDetail:
    customer_id: int
    name: str
    document: str | None
    credit_limit: Decimal | None
    total_open: Decimal
    installments: tuple[InstallmentView, ...]
    standalone_notes: tuple[NoteView, ...]


@dataclass(frozen=True)
class OrderNoteGroup:
    order_id: int
    order_number: str
    customer_id: int
    notes: tuple[NoteRecord, ...]
    total_original: Decimal
    total_open: Decimal


@dataclass(frozen=True)
class NotesByOrder:
    groups: tuple[OrderNoteGroup, ...]
    standalone: tuple[NoteRecord, ...]


@dataclass(frozen=True)
class NoteHistory:
    note: NoteRecord
    settlements: tuple[SettlementRecord, ...]
    settled_total: Decimal


@dataclass(frozen=True)
class InstallmentHistory:
    installment: InstallmentRecord
    settlements: tuple[SettlementRecord, ...]
    payments: tuple[PaymentRecord, ...]
    received_total: Decimal


@dataclass(frozen=True)
class PaymentEntry:
    """Money received in a period, from either a settlement or a direct payment."""

    kind: str
    id: int
    payment_date: date
    customer_id: int
    order_id: int | None
    installment_id: int | None
    note_id: int | None
    paid_value: Decimal
    net_value: Decimal
    method: PaymentMethod
    reversed: bool


@dataclass(frozen=True)
class OrderFinancialSummary:
    order_id: int
    number: str
    status: OrderStatus
    total: Decimal
    amount_paid: Decimal
    open_amount: Decimal
    installment_count: int
    paid_installments: int
    notes_open: Decimal
    next_due_date: date | None


SETTLEMENT_KIND = "settlement"
PAYMENT_KIND = "installment_payment"


# =============================================================================
# Selector
# =============================================================================


class ReconciliationSelector(BaseSelector[ReceivableNote]):
    """
    Read side of the receivables core.

    Never mutates; safe to run concurrently with writers.
    """

    def _live_installments_stmt(self):
        return (
            select(Installment)
            .join(Order, Installment.order_id == Order.id)
            .where(
                Order.order_type == OrderType.SALE.value,
                Order.cancelled.is_(False),
                Installment.superseded.is_(False),
            )
            .options(selectinload(Installment.notes), selectinload(Installment.order))
        )

    def _live_installments(self, customer_id: int | None = None) -> list[Installment]:
        stmt = self._live_installments_stmt()
        if customer_id is not None:
            stmt = stmt.where(Order.counterparty_id == customer_id)
        stmt = stmt.order_by(Installment.due_date, Installment.id)
        return self._scalars(stmt)

    def _active_notes(self, customer_id: int | None = None, standalone_only: bool = False):
        stmt = select(ReceivableNote).where(ReceivableNote.cancelled.is_(False))
        if customer_id is not None:
            stmt = stmt.where(ReceivableNote.customer_id == customer_id)
        if standalone_only:
            stmt = stmt.where(ReceivableNote.installment_id.is_(None))
        return self._scalars(stmt.order_by(ReceivableNote.due_date, ReceivableNote.id))

    def _customer(self, customer_id: int) -> Customer:
        customer = self._get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    # =========================================================================
    # Credit exposure
    # =========================================================================

    def credit_exposure(self, customer_id: int) -> CustomerExposure:
        """Exposure rows for one customer, ready for the credit fold."""
        customer = self._customer(customer_id)
        notes = tuple(
            NoteExposure(
                note_id=n.id,
                open_value=n.open_value,
                cancelled=n.cancelled,
                installment_id=n.installment_id,
            )
            for n in self._active_notes(customer_id)
        )
        installments = tuple(
            InstallmentExposure(installment_id=i.id, residual=i.open_amount)
            for i in self._live_installments(customer_id)
            if i.open_amount > 0
        )
        return CustomerExposure(
            customer_id=customer.id,
            limit=customer.credit_limit,
            notes=notes,
            installments=installments,
        )

    # =========================================================================
    # Client views
    # =========================================================================

    def client_summaries(self, as_of: date) -> list[ClientSummary]:
        """
        Customers with anything open, by name.

        total_open is the open balance of live installments plus active
        standalone notes; linked notes are already inside their installment.
        """
        totals: dict[int, Decimal] = defaultdict(lambda: ZERO)
        installment_counts: dict[int, int] = defaultdict(int)
        note_counts: dict[int, int] = defaultdict(int)
        overdue: dict[int, int] = defaultdict(int)

        for inst in self._live_installments():
            if inst.open_amount <= 0:
                continue
            cid = inst.order.counterparty_id
            totals[cid] += inst.open_amount
            installment_counts[cid] += 1
            overdue[cid] = max(overdue[cid], days_overdue(inst.due_date, as_of))

        for note in self._active_notes(standalone_only=True):
            if note.open_value <= 0:
                continue
            cid = note.customer_id
            totals[cid] += note.open_value
            note_counts[cid] += 1
            overdue[cid] = max(overdue[cid], days_overdue(note.due_date, as_of))

        if not totals:
            return []

        names = {
            c.id: c.name
            for c in self._scalars(select(Customer).where(Customer.id.in_(list(totals))))
        }
        summaries = [
            ClientSummary(
                customer_id=cid,
                name=names.get(cid),
                total_open=total,
                open_installments=installment_counts[cid],
                open_standalone_notes=note_counts[cid],
                max_days_overdue=overdue[cid],
            )
            for cid, total in totals.items()
        ]
        return sorted(summaries, key=lambda s: ((s.name or "").casefold(), s.customer_id))

    def client_detail(
        self,
        customer_id: int,
        as_of: date,
        thresholds: DueThresholds = DEFAULT_THRESHOLDS,
    ) -> ClientDetail:
        """Installments (paid and open) and standalone notes of one customer."""
        customer = self._customer(customer_id)

        installments = []
        for inst in self._live_installments(customer_id):
            closed = inst.status == InstallmentStatus.PAID
            active = inst.active_notes
            installments.append(
                InstallmentView(
                    installment=InstallmentRecord.from_model(inst),
                    order_number=inst.order.number,
                    noted_open=money_sum(n.open_value for n in active),
                    active_note_count=len(active),
                    proximity=classify_due(inst.due_date, as_of, thresholds, closed=closed),
                    days_overdue=0 if closed else days_overdue(inst.due_date, as_of),
                )
            )

        notes = []
        for note in self._active_notes(customer_id, standalone_only=True):
            closed = note.status == NoteStatus.SETTLED
            notes.append(
                NoteView(
                    note=NoteRecord.from_model(note),
                    proximity=classify_due(note.due_date, as_of, thresholds, closed=closed),
                    days_overdue=0 if closed else days_overdue(note.due_date, as_of),
                )
            )

        total_open = money_sum(v.installment.open_amount for v in installments) + money_sum(
            v.note.open_value for v in notes
        )
        return ClientDetail(
            customer_id=customer.id,
            name=customer.name,
            document=customer.document,
            credit_limit=customer.credit_limit,
            total_open=total_open,
            installments=tuple(installments),
            standalone_notes=tuple(notes),
        )

    # =========================================================================
    # Notes
    # =========================================================================

    def notes_grouped_by_order(
        self,
        customer_id: int | None = None,
        include_cancelled: bool = False,
    ) -> NotesByOrder:
        """Notes grouped under the order of their installment; standalone ones apart."""
        stmt = (
            select(ReceivableNote, Order.id, Order.number)
            .outerjoin(Installment, ReceivableNote.installment_id == Installment.id)
            .outerjoin(Order, Installment.order_id == Order.id)
        )
        if customer_id is not None:
            stmt = stmt.where(ReceivableNote.customer_id == customer_id)
        if not include_cancelled:
            stmt = stmt.where(ReceivableNote.cancelled.is_(False))
        stmt = stmt.order_by(Order.number, ReceivableNote.due_date, ReceivableNote.id)

        grouped: dict[int, list[ReceivableNote]] = {}
        numbers: dict[int, str] = {}
        standalone = []
        for note, order_id, order_number in self._rows(stmt):
            if order_id is None:
                standalone.append(NoteRecord.from_model(note))
                continue
            grouped.setdefault(order_id, []).append(note)
            numbers[order_id] = order_number

        groups = tuple(
            OrderNoteGroup(
                order_id=order_id,
                order_number=numbers[order_id],
                customer_id=notes[0].customer_id,
                notes=tuple(NoteRecord.from_model(n) for n in notes),
                total_original=money_sum(n.original_value for n in notes),
                total_open=money_sum(n.open_value for n in notes if not n.cancelled),
            )
            for order_id, notes in grouped.items()
        )
        return NotesByOrder(groups=groups, standalone=tuple(standalone))

    def note_history(self, note_id: int) -> NoteHistory:
        """A note with every settlement ever applied to it, checks included."""
        note = self._get(ReceivableNote, note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        settlements = tuple(SettlementRecord.from_model(s) for s in note.settlements)
        return NoteHistory(
            note=NoteRecord.from_model(note),
            settlements=settlements,
            settled_total=money_sum(s.net_value for s in settlements if not s.reversed),
        )

    def installment_payments(self, installment_id: int) -> InstallmentHistory:
        """Settlements of the installment's notes plus its direct payments."""
        installment = self._get(Installment, installment_id)
        if installment is None:
            raise InstallmentNotFoundError(installment_id)

        settlements = self._scalars(
            select(Settlement)
            .join(ReceivableNote, Settlement.note_id == ReceivableNote.id)
            .where(ReceivableNote.installment_id == installment.id)
            .order_by(Settlement.payment_date, Settlement.id)
        )
        settlement_records = tuple(SettlementRecord.from_model(s) for s in settlements)
        payment_records = tuple(PaymentRecord.from_model(p) for p in installment.payments)

        received = money_sum(
            s.installment_credit for s in settlement_records if not s.reversed
        ) + money_sum(p.installment_credit for p in payment_records if not p.reversed)
        return InstallmentHistory(
            installment=InstallmentRecord.from_model(installment),
            settlements=settlement_records,
            payments=payment_records,
            received_total=received,
        )

    # =========================================================================
    # Period and order views
    # =========================================================================

    def payments_between(
        self,
        start: date,
        end: date,
        include_reversed: bool = False,
    ) -> list[PaymentEntry]:
        """Settlements and direct payments with start <= payment_date <= end."""
        if start > end:
            raise InvalidFieldError("start", start.isoformat(), "must not be after end")

        settlement_stmt = (
            select(
                Settlement,
                ReceivableNote.customer_id,
                ReceivableNote.installment_id,
                Installment.order_id,
            )
            .join(ReceivableNote, Settlement.note_id == ReceivableNote.id)
            .outerjoin(Installment, ReceivableNote.installment_id == Installment.id)
            .where(Settlement.payment_date >= start, Settlement.payment_date <= end)
        )
        payment_stmt = (
            select(InstallmentPayment, Order.counterparty_id, Order.id)
            .join(Installment, InstallmentPayment.installment_id == Installment.id)
            .join(Order, Installment.order_id == Order.id)
            .where(InstallmentPayment.payment_date >= start, InstallmentPayment.payment_date <= end)
        )
        if not include_reversed:
            settlement_stmt = settlement_stmt.where(Settlement.reversed.is_(False))
            payment_stmt = payment_stmt.where(InstallmentPayment.reversed.is_(False))

        entries = [
            PaymentEntry(
                kind=SETTLEMENT_KIND,
                id=s.id,
                payment_date=s.payment_date,
                customer_id=customer_id,
                order_id=order_id,
                installment_id=installment_id,
                note_id=s.note_id,
                paid_value=s.paid_value,
                net_value=s.net_value,
                method=PaymentMethod(s.payment_method),
                reversed=s.reversed,
            )
            for s, customer_id, installment_id, order_id in self._rows(settlement_stmt)
        ]
        entries.extend(
            PaymentEntry(
                kind=PAYMENT_KIND,
                id=p.id,
                payment_date=p.payment_date,
                customer_id=customer_id,
                order_id=order_id,
                installment_id=p.installment_id,
                note_id=None,
                paid_value=p.paid_value,
                net_value=p.net_value,
                method=PaymentMethod(p.payment_method),
                reversed=p.reversed,
            )
            for p, customer_id, order_id in self._rows(payment_stmt)
        )
        return sorted(entries, key=lambda e: (e.payment_date, e.kind, e.id))

    def order_financial_summary(self, order_id: int) -> OrderFinancialSummary:
        order = self._get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)

        installments = order.active_installments
        amount_paid = money_sum(i.amount_paid for i in installments)
        open_dates = [i.due_date for i in installments if i.status != InstallmentStatus.PAID]
        notes_open = money_sum(
            n.open_value for i in installments for n in i.active_notes
        )
        return OrderFinancialSummary(
            order_id=order.id,
            number=order.number,
            status=order.status,
            total=order.total,
            amount_paid=amount_paid,
            open_amount=money_sum(i.open_amount for i in installments),
            installment_count=len(installments),
            paid_installments=sum(1 for i in installments if i.status == InstallmentStatus.PAID),
            notes_open=notes_open,
            next_due_date=min(open_dates) if open_dates else None,
        )
