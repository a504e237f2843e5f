"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the kernel boundary:
    command inputs (orders, notes, settlements, direct payments, checks),
    engine outputs (planned installments, order totals, credit snapshots)
    and read-side records handed back to callers in place of ORM entities.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from the
    service/facade layer.

Invariants enforced:
    - Note origin is a tagged variant (Standalone | LinkedToInstallment),
      never a bare nullable id.
    - Records are frozen; callers cannot mutate kernel state through them.

Data flow:
    OrderInput -> OrderTotals -> PlannedInstallment -> NoteInput
        -> SettlementInput -> CreditLimitSnapshot
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Union

from receivables_kernel.db.types import ZERO
from receivables_kernel.domain.status import InstallmentStatus, NoteStatus, OrderStatus

if TYPE_CHECKING:
    from receivables_kernel.models.note import ReceivableNote as NoteModel
    from receivables_kernel.models.order import Installment as InstallmentModel
    from receivables_kernel.models.order import Order as OrderModel
    from receivables_kernel.models.settlement import Check as CheckModel
    from receivables_kernel.models.settlement import (
        InstallmentPayment as PaymentModel,
    )
    from receivables_kernel.models.settlement import Settlement as SettlementModel


# =============================================================================
# Enumerations shared by models and inputs
# =============================================================================


class OrderType(str, Enum):
    SALE = "sale"
    PURCHASE = "purchase"


class PaymentMethod(str, Enum):
    """How money was received."""

    CASH = "cash"
    PIX = "pix"
    CARD = "card"
    TRANSFER = "transfer"
    BANK_SLIP = "bank_slip"
    CHECK = "check"
    OTHER = "other"


class CheckStatus(str, Enum):
    PENDING = "pending"
    CLEARED = "cleared"
    RETURNED = "returned"


class ConditionKind(str, Enum):
    FLAT = "flat"
    SCHEDULE = "schedule"


# =============================================================================
# Note origin (tagged variant)
# =============================================================================


@dataclass(frozen=True)
class Standalone:
    """Note represents a freeform debt with no installment behind it."""


@dataclass(frozen=True)
class LinkedToInstallment:
    """Note covers (part of) one installment; settlements credit it."""

    installment_id: int


NoteOrigin = Union[Standalone, LinkedToInstallment]

STANDALONE = Standalone()


def origin_for(installment_id: int | None) -> NoteOrigin:
    """Build the origin variant from a nullable column value."""
    if installment_id is None:
        return STANDALONE
    return LinkedToInstallment(installment_id)


# =============================================================================
# Orders and planning
# =============================================================================


@dataclass(frozen=True)
class OrderItemInput:
    quantity: Decimal
    unit_price: Decimal
    item_discount: Decimal = ZERO
    product_id: int | None = None
    description: str | None = None


@dataclass(frozen=True)
class ComputedItem:
    """A line item that passed validation, with its subtotal."""

    index: int
    quantity: Decimal
    unit_price: Decimal
    item_discount: Decimal
    subtotal: Decimal
    product_id: int | None = None
    description: str | None = None


@dataclass(frozen=True)
class RejectedItem:
    index: int
    reason: str


@dataclass(frozen=True)
class OrderTotals:
    """Output of the order totals calculator."""

    items: tuple[ComputedItem, ...]
    rejected_items: tuple[RejectedItem, ...]
    subtotal: Decimal
    discount_value: Decimal
    discount_percent: Decimal
    percent_discount_amount: Decimal
    freight: Decimal
    other_fees: Decimal
    total: Decimal


@dataclass(frozen=True)
class ScheduleShare:
    """One row of an installment schedule."""

    percentage: Decimal
    days_from_order: int


@dataclass(frozen=True)
class PaymentCondition:
    """
    A payment condition: either a flat term or a percentage/day schedule.

    The label is what gets stored on the order ("À vista", "3x", "30/60/90").
    """

    label: str
    kind: ConditionKind = ConditionKind.FLAT
    term_days: int = 0
    shares: tuple[ScheduleShare, ...] = ()

    @classmethod
    def flat(cls, label: str, term_days: int = 0) -> PaymentCondition:
        return cls(label=label, kind=ConditionKind.FLAT, term_days=term_days)

    @classmethod
    def schedule(cls, label: str, shares: tuple[ScheduleShare, ...]) -> PaymentCondition:
        return cls(label=label, kind=ConditionKind.SCHEDULE, shares=tuple(shares))


@dataclass(frozen=True)
class PlannedInstallment:
    sequence: int
    total_count: int
    amount: Decimal
    due_date: date
    days_from_base: int


@dataclass(frozen=True)
class OrderInput:
    number: str
    order_type: OrderType
    counterparty_id: int
    order_date: date
    items: tuple[OrderItemInput, ...]
    payment_condition: PaymentCondition
    freight: Decimal = ZERO
    other_fees: Decimal = ZERO
    discount_value: Decimal = ZERO
    discount_percent: Decimal = ZERO
    base_due_date: date | None = None
    notes: str | None = None


# =============================================================================
# Notes, settlements, checks, direct payments
# =============================================================================


@dataclass(frozen=True)
class NoteInput:
    customer_id: int
    original_value: Decimal
    due_date: date
    origin: NoteOrigin = STANDALONE
    number: str | None = None
    issue_date: date | None = None
    payment_method: PaymentMethod | None = None
    description: str | None = None


@dataclass(frozen=True)
class NoteSplit:
    """One note of a batch issued against a single installment."""

    original_value: Decimal
    due_date: date | None = None
    number: str | None = None
    payment_method: PaymentMethod | None = None
    description: str | None = None


@dataclass(frozen=True)
class CheckInput:
    holder_name: str
    holder_document: str
    bank: str
    agency: str
    account: str
    check_number: str
    value: Decimal
    due_date: date
    note: str | None = None

    REQUIRED_FIELDS = (
        "holder_name",
        "holder_document",
        "bank",
        "agency",
        "account",
        "check_number",
    )


@dataclass(frozen=True)
class SettlementInput:
    note_id: int
    paid_value: Decimal
    interest: Decimal = ZERO
    penalty: Decimal = ZERO
    discount: Decimal = ZERO
    method: PaymentMethod = PaymentMethod.CASH
    checks: tuple[CheckInput, ...] = ()
    payment_date: date | None = None
    observation: str | None = None


@dataclass(frozen=True)
class PaymentInput:
    """Direct payment against an installment that has no notes."""

    installment_id: int
    paid_value: Decimal
    interest: Decimal = ZERO
    penalty: Decimal = ZERO
    discount: Decimal = ZERO
    method: PaymentMethod = PaymentMethod.CASH
    checks: tuple[CheckInput, ...] = ()
    payment_date: date | None = None
    observation: str | None = None


# =============================================================================
# Credit
# =============================================================================


@dataclass(frozen=True)
class NoteExposure:
    note_id: int
    open_value: Decimal
    cancelled: bool = False
    installment_id: int | None = None


@dataclass(frozen=True)
class InstallmentExposure:
    """An installment of a live sales order, with residual = amount - amount_paid."""

    installment_id: int
    residual: Decimal


@dataclass(frozen=True)
class CustomerExposure:
    """Everything the credit fold needs for one customer."""

    customer_id: int
    limit: Decimal | None
    notes: tuple[NoteExposure, ...]
    installments: tuple[InstallmentExposure, ...]


@dataclass(frozen=True)
class CreditLimitSnapshot:
    """
    Derived exposure for one customer.  Never persisted.

    limit/available are None when the customer has no configured limit;
    exceeded is then always False.
    """

    customer_id: int
    limit: Decimal | None
    used: Decimal
    available: Decimal | None
    candidate: Decimal
    exceeded: bool


# =============================================================================
# Records (read-side snapshots handed back to callers)
# =============================================================================


@dataclass(frozen=True)
class CheckRecord:
    id: int
    holder_name: str
    holder_document: str
    bank: str
    agency: str
    account: str
    check_number: str
    value: Decimal
    due_date: date
    status: CheckStatus
    note: str | None

    @classmethod
    def from_model(cls, model: CheckModel) -> CheckRecord:
        return cls(
            id=model.id,
            holder_name=model.holder_name,
            holder_document=model.holder_document,
            bank=model.bank,
            agency=model.agency,
            account=model.account,
            check_number=model.check_number,
            value=model.value,
            due_date=model.due_date,
            status=CheckStatus(model.status),
            note=model.note,
        )


@dataclass(frozen=True)
class InstallmentRecord:
    id: int
    order_id: int
    sequence: int
    total_count: int
    amount: Decimal
    amount_paid: Decimal
    open_amount: Decimal
    due_date: date
    days_from_base: int
    status: InstallmentStatus
    superseded: bool

    @property
    def label(self) -> str:
        return f"{self.sequence}/{self.total_count}"

    @classmethod
    def from_model(cls, model: InstallmentModel) -> InstallmentRecord:
        return cls(
            id=model.id,
            order_id=model.order_id,
            sequence=model.sequence,
            total_count=model.total_count,
            amount=model.amount,
            amount_paid=model.amount_paid,
            open_amount=model.open_amount,
            due_date=model.due_date,
            days_from_base=model.days_from_base,
            status=model.status,
            superseded=model.superseded,
        )


@dataclass(frozen=True)
class NoteRecord:
    id: int
    number: str
    customer_id: int
    origin: NoteOrigin
    issue_date: date
    due_date: date
    original_value: Decimal
    open_value: Decimal
    status: NoteStatus
    payment_method: PaymentMethod | None
    description: str | None
    cancel_reason: str | None
    version: int

    @classmethod
    def from_model(cls, model: NoteModel) -> NoteRecord:
        return cls(
            id=model.id,
            number=model.number,
            customer_id=model.customer_id,
            origin=model.origin,
            issue_date=model.issue_date,
            due_date=model.due_date,
            original_value=model.original_value,
            open_value=model.open_value,
            status=model.status,
            payment_method=(
                PaymentMethod(model.payment_method) if model.payment_method else None
            ),
            description=model.description,
            cancel_reason=model.cancel_reason,
            version=model.version,
        )


@dataclass(frozen=True)
class SettlementRecord:
    id: int
    note_id: int
    paid_value: Decimal
    interest: Decimal
    penalty: Decimal
    discount: Decimal
    net_value: Decimal
    installment_credit: Decimal
    payment_date: date
    payment_method: PaymentMethod
    reversed: bool
    reversed_at: datetime | None
    reversal_reason: str | None
    observation: str | None
    checks: tuple[CheckRecord, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, model: SettlementModel) -> SettlementRecord:
        return cls(
            id=model.id,
            note_id=model.note_id,
            paid_value=model.paid_value,
            interest=model.interest,
            penalty=model.penalty,
            discount=model.discount,
            net_value=model.net_value,
            installment_credit=model.installment_credit,
            payment_date=model.payment_date,
            payment_method=PaymentMethod(model.payment_method),
            reversed=model.reversed,
            reversed_at=model.reversed_at,
            reversal_reason=model.reversal_reason,
            observation=model.observation,
            checks=tuple(CheckRecord.from_model(c) for c in model.checks),
        )


@dataclass(frozen=True)
class PaymentRecord:
    id: int
    installment_id: int
    paid_value: Decimal
    interest: Decimal
    penalty: Decimal
    discount: Decimal
    net_value: Decimal
    installment_credit: Decimal
    payment_date: date
    payment_method: PaymentMethod
    reversed: bool
    reversed_at: datetime | None
    reversal_reason: str | None
    observation: str | None
    checks: tuple[CheckRecord, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, model: PaymentModel) -> PaymentRecord:
        return cls(
            id=model.id,
            installment_id=model.installment_id,
            paid_value=model.paid_value,
            interest=model.interest,
            penalty=model.penalty,
            discount=model.discount,
            net_value=model.net_value,
            installment_credit=model.installment_credit,
            payment_date=model.payment_date,
            payment_method=PaymentMethod(model.payment_method),
            reversed=model.reversed,
            reversed_at=model.reversed_at,
            reversal_reason=model.reversal_reason,
            observation=model.observation,
            checks=tuple(CheckRecord.from_model(c) for c in model.checks),
        )


@dataclass(frozen=True)
class OrderRecord:
    id: int
    number: str
    order_type: OrderType
    counterparty_id: int
    order_date: date
    subtotal: Decimal
    discount_value: Decimal
    discount_percent: Decimal
    freight: Decimal
    other_fees: Decimal
    total: Decimal
    payment_condition: str
    base_due_date: date
    status: OrderStatus
    installments: tuple[InstallmentRecord, ...]

    @classmethod
    def from_model(cls, model: OrderModel) -> OrderRecord:
        return cls(
            id=model.id,
            number=model.number,
            order_type=OrderType(model.order_type),
            counterparty_id=model.counterparty_id,
            order_date=model.order_date,
            subtotal=model.subtotal,
            discount_value=model.discount_value,
            discount_percent=model.discount_percent,
            freight=model.freight,
            other_fees=model.other_fees,
            total=model.total,
            payment_condition=model.payment_condition,
            base_due_date=model.base_due_date,
            status=model.status,
            installments=tuple(
                InstallmentRecord.from_model(i) for i in model.active_installments
            ),
        )
