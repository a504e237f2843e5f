"""
Configuration Loader (``receivables_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``receivables_config.schema`` dataclasses.  Runtime callers go through
``receivables_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Money precision is fixed by storage (Numeric(18, 2)); any other
  ``money_places`` is rejected.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` with a descriptive message.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from receivables_config.schema import (
    CreditPolicy,
    PaymentConditionDef,
    ReceivablesConfig,
    ScheduleShareDef,
)

_STORAGE_MONEY_PLACES = 2


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field: str) -> Decimal:
    """Parse a Decimal from YAML; floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, bool):
        raise ValueError(f"{field}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field}: not a number: {value!r}") from exc


def parse_payment_condition(data: dict[str, Any]) -> PaymentConditionDef:
    """Parse a PaymentConditionDef from a dict."""
    name = data["name"]
    shares = tuple(
        ScheduleShareDef(
            percentage=parse_decimal(s["percentage"], f"{name}.percentage"),
            days=int(s["days"]),
        )
        for s in data.get("shares", ()) or ()
    )
    return PaymentConditionDef(
        name=name,
        term_days=int(data.get("term_days", 0)),
        shares=shares,
    )


def parse_config(data: dict[str, Any]) -> ReceivablesConfig:
    """
    Parse a ReceivablesConfig from a dict.

    Absent keys keep their schema defaults.
    """
    defaults = ReceivablesConfig()

    money = data.get("money", {}) or {}
    money_places = int(money.get("places", defaults.money_places))
    if money_places != _STORAGE_MONEY_PLACES:
        raise ValueError(
            f"money.places must be {_STORAGE_MONEY_PLACES} (storage precision), got {money_places}"
        )
    epsilon = parse_decimal(money.get("epsilon", defaults.epsilon), "money.epsilon")
    if epsilon < 0:
        raise ValueError(f"money.epsilon must not be negative, got {epsilon}")

    notes = data.get("notes", {}) or {}
    credit = data.get("credit", {}) or {}
    planning = data.get("planning", {}) or {}
    due = data.get("due_proximity", {}) or {}
    database = data.get("database", {}) or {}

    try:
        policy = CreditPolicy(str(credit.get("policy", defaults.credit_policy.value)).lower())
    except ValueError as exc:
        raise ValueError(
            f"credit.policy must be one of {[p.value for p in CreditPolicy]}"
        ) from exc

    config = ReceivablesConfig(
        config_id=str(data.get("id", defaults.config_id)),
        version=int(data.get("version", defaults.version)),
        epsilon=epsilon,
        money_places=money_places,
        strict_installment_split=bool(
            notes.get("strict_installment_split", defaults.strict_installment_split)
        ),
        credit_policy=policy,
        default_term_days=int(planning.get("default_term_days", defaults.default_term_days)),
        payment_conditions=tuple(
            parse_payment_condition(c) for c in planning.get("payment_conditions", ()) or ()
        ),
        critical_days=int(due.get("critical_days", defaults.critical_days)),
        attention_days=int(due.get("attention_days", defaults.attention_days)),
        normal_days=int(due.get("normal_days", defaults.normal_days)),
        database_url=str(database.get("url", defaults.database_url)),
        checksum=compute_checksum(data),
    )

    if not 0 < config.critical_days <= config.attention_days <= config.normal_days:
        raise ValueError(
            "due_proximity thresholds must satisfy 0 < critical <= attention <= normal"
        )
    return config


def load_config(path: Path) -> ReceivablesConfig:
    """Load and parse a configuration file."""
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization (deterministic)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
