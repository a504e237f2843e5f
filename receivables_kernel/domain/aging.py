"""
Aging -- due proximity of open receivables.

Responsibility:
    Classify open notes and installments by how close they are to (or how
    far past) their due date, and compute days overdue.  Like note status,
    proximity is derived on read and never stored.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ``as_of`` is always
    passed in; the clock is never read here.

Invariants enforced:
    - Buckets are contiguous: OVERDUE (< 0 days), DUE_TODAY (0),
      CRITICAL (1..critical), ATTENTION (..attention), NORMAL (..normal),
      LONG_TERM (beyond).
    - Settled, paid or cancelled items have no proximity (None).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum


class DueProximity(str, Enum):
    OVERDUE = "overdue"
    DUE_TODAY = "due_today"
    CRITICAL = "critical"
    ATTENTION = "attention"
    NORMAL = "normal"
    LONG_TERM = "long_term"


@dataclass(frozen=True)
class DueThresholds:
    """Upper bounds (in days until due) of the CRITICAL, ATTENTION and NORMAL buckets."""

    critical_days: int = 3
    attention_days: int = 7
    normal_days: int = 30

    def __post_init__(self) -> None:
        if not 0 < self.critical_days <= self.attention_days <= self.normal_days:
            raise ValueError(
                "Thresholds must satisfy 0 < critical <= attention <= normal, got "
                f"{self.critical_days}/{self.attention_days}/{self.normal_days}"
            )


DEFAULT_THRESHOLDS = DueThresholds()


def days_until_due(due_date: date, as_of: date) -> int:
    """Negative when overdue."""
    return (due_date - as_of).days


def days_overdue(due_date: date, as_of: date) -> int:
    """Whole days past due, 0 when not yet due."""
    return max(0, (as_of - due_date).days)


def classify_due(
    due_date: date,
    as_of: date,
    thresholds: DueThresholds = DEFAULT_THRESHOLDS,
    closed: bool = False,
) -> DueProximity | None:
    """Bucket an item by days until due; None for closed items."""
    if closed:
        return None
    days = days_until_due(due_date, as_of)
    if days < 0:
        return DueProximity.OVERDUE
    if days == 0:
        return DueProximity.DUE_TODAY
    if days <= thresholds.critical_days:
        return DueProximity.CRITICAL
    if days <= thresholds.attention_days:
        return DueProximity.ATTENTION
    if days <= thresholds.normal_days:
        return DueProximity.NORMAL
    return DueProximity.LONG_TERM
