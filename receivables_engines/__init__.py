"""
Module: receivables_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines composed by
    receivables_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import receivables_kernel.domain, receivables_kernel.db.types and
    receivables_kernel.exceptions only.  MUST NOT import services.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only arithmetic, half-up rounding to two places at the
      boundaries.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from receivables_engines.totals import calculate_order_totals
    from receivables_engines.planner import plan_installments, parse_condition_label
    from receivables_engines.credit import CreditExposureCalculator
"""

from receivables_engines.credit import CreditExposureCalculator
from receivables_engines.planner import (
    InstallmentPlanner,
    parse_condition_label,
    plan_installments,
)
from receivables_engines.totals import OrderTotalsCalculator, calculate_order_totals

__all__ = [
    "CreditExposureCalculator",
    "InstallmentPlanner",
    "OrderTotalsCalculator",
    "calculate_order_totals",
    "parse_condition_label",
    "plan_installments",
]
