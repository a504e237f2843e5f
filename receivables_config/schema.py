"""
ReceivablesConfig schema.

The human-authored configuration of the receivables core.  YAML files are
parsed into these frozen dataclasses by the loader; bridges turn them into
kernel constructor arguments.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class CreditPolicy(str, Enum):
    """What order creation does when a sale would exceed the credit limit."""

    BLOCK = "block"  # refuse the order
    FLAG = "flag"  # create it, log a warning, mark the result
    IGNORE = "ignore"  # do not evaluate


@dataclass(frozen=True)
class ScheduleShareDef:
    """One row of a named installment schedule."""

    percentage: Decimal
    days: int


@dataclass(frozen=True)
class PaymentConditionDef:
    """
    A named payment condition.

    Either a flat term (no shares, due after term_days) or a schedule of
    percentage/day shares.
    """

    name: str
    term_days: int = 0
    shares: tuple[ScheduleShareDef, ...] = ()

    @property
    def is_schedule(self) -> bool:
        return bool(self.shares)


@dataclass(frozen=True)
class ReceivablesConfig:
    """Runtime configuration for the receivables core."""

    config_id: str = "default"
    version: int = 1

    # Money
    epsilon: Decimal = Decimal("0.01")
    money_places: int = 2

    # Notes against installments: False logs a mismatch warning, True rejects
    strict_installment_split: bool = False

    # Credit
    credit_policy: CreditPolicy = CreditPolicy.FLAG

    # Planning
    default_term_days: int = 0
    payment_conditions: tuple[PaymentConditionDef, ...] = ()

    # Due proximity buckets (days until due)
    critical_days: int = 3
    attention_days: int = 7
    normal_days: int = 30

    database_url: str = "sqlite:///receivables.db"
    checksum: str = ""

    def condition_named(self, name: str) -> PaymentConditionDef | None:
        wanted = name.strip().casefold()
        for cond in self.payment_conditions:
            if cond.name.strip().casefold() == wanted:
                return cond
        return None
