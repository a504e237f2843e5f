"""
Module: receivables_engines.credit
Responsibility:
    Fold a customer's open notes and installments into a credit exposure
    and compare it with the configured limit.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The credit service loads
    the records and hands them in as exposure rows.

Invariants enforced:
    - Cancelled notes never count.
    - An installment with active notes is counted through its notes; only
      the residual its notes do not cover is added on top.  An installment
      is never counted twice.
    - No configured limit -> limit=None, available=None, exceeded=False.
    - Advisory only: nothing here mutates state.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Sequence

from receivables_engines.tracer import traced_engine
from receivables_kernel.db.types import ZERO
from receivables_kernel.domain.dtos import (
    CreditLimitSnapshot,
    InstallmentExposure,
    NoteExposure,
)
from receivables_kernel.domain.values import money_sum, to_money
from receivables_kernel.exceptions import InvalidAmountError


class CreditExposureCalculator:
    """Compute used credit and the limit snapshot."""

    def used(
        self,
        notes: Sequence[NoteExposure],
        installments: Sequence[InstallmentExposure],
    ) -> Decimal:
        active = [n for n in notes if not n.cancelled]
        covered: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for note in active:
            if note.installment_id is not None:
                covered[note.installment_id] += note.open_value

        used = money_sum(n.open_value for n in active)
        for inst in installments:
            residual = max(ZERO, inst.residual)
            if inst.installment_id in covered:
                used += max(ZERO, residual - covered[inst.installment_id])
            else:
                used += residual
        return used

    @traced_engine("credit_limit", "1.0", fingerprint_fields=("customer_id", "limit", "candidate"))
    def evaluate(
        self,
        customer_id: int,
        limit: Decimal | None,
        candidate: Decimal,
        notes: Sequence[NoteExposure],
        installments: Sequence[InstallmentExposure],
    ) -> CreditLimitSnapshot:
        candidate = to_money(candidate, default=ZERO, field="candidate_order_total")
        if candidate < 0:
            raise InvalidAmountError("candidate_order_total", str(candidate), "must not be negative")

        used = self.used(notes, installments)

        if limit is None:
            return CreditLimitSnapshot(
                customer_id=customer_id,
                limit=None,
                used=used,
                available=None,
                candidate=candidate,
                exceeded=False,
            )

        limit = to_money(limit, field="credit_limit")
        return CreditLimitSnapshot(
            customer_id=customer_id,
            limit=limit,
            used=used,
            available=limit - used,
            candidate=candidate,
            exceeded=(used + candidate) > limit,
        )
