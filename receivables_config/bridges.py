"""
Config -> Kernel Bridges.

Functions that turn a ReceivablesConfig into kernel and engine inputs.
They live here because the kernel must never import receivables_config.

Usage:
    from receivables_config.bridges import build_condition_resolver, build_due_thresholds

    config = get_active_config()
    resolve = build_condition_resolver(config)
    condition = resolve("30/60/90")
"""

from __future__ import annotations

from typing import Callable

from receivables_config.schema import PaymentConditionDef, ReceivablesConfig
from receivables_engines.planner import parse_condition_label
from receivables_kernel.domain.aging import DueThresholds
from receivables_kernel.domain.dtos import PaymentCondition, ScheduleShare

ConditionResolver = Callable[[str], PaymentCondition]


def payment_condition_from_def(definition: PaymentConditionDef) -> PaymentCondition:
    """Convert a named definition into the planner's PaymentCondition."""
    if definition.is_schedule:
        return PaymentCondition.schedule(
            definition.name,
            tuple(
                ScheduleShare(percentage=s.percentage, days_from_order=s.days)
                for s in definition.shares
            ),
        )
    return PaymentCondition.flat(definition.name, definition.term_days)


def build_condition_resolver(config: ReceivablesConfig) -> ConditionResolver:
    """
    Resolve order condition labels.

    Named conditions from the configuration win; anything else is parsed
    from the label itself ("À vista", "Nx", "30/60/90").
    """

    def resolve(label: str) -> PaymentCondition:
        definition = config.condition_named(label) if label else None
        if definition is not None:
            return payment_condition_from_def(definition)
        return parse_condition_label(label, default_term_days=config.default_term_days)

    return resolve


def build_due_thresholds(config: ReceivablesConfig) -> DueThresholds:
    return DueThresholds(
        critical_days=config.critical_days,
        attention_days=config.attention_days,
        normal_days=config.normal_days,
    )
