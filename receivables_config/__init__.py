"""
receivables_config -- single public entrypoint for receivables configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``receivables_kernel`` and below
    ``receivables_services``.  The kernel MUST NEVER import from
    ``receivables_config``; bridges translate config into kernel inputs.

Environment:
    RECEIVABLES_CONFIG        path to a YAML file (default: sets/default.yaml)
    RECEIVABLES_DATABASE_URL  overrides ``database.url``

Failure modes:
    - ``FileNotFoundError`` -- configured path does not exist.
    - ``ValueError`` -- schema validation failures.
"""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path

from receivables_config.loader import load_config, parse_config
from receivables_config.schema import (
    CreditPolicy,
    PaymentConditionDef,
    ReceivablesConfig,
    ScheduleShareDef,
)
from receivables_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "RECEIVABLES_CONFIG"
DATABASE_URL_ENV_VAR = "RECEIVABLES_DATABASE_URL"

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> ReceivablesConfig:
    """
    The ONLY public configuration entrypoint.

    Resolution order for the file: explicit ``path``, then the
    RECEIVABLES_CONFIG environment variable, then the bundled default.
    RECEIVABLES_DATABASE_URL, when set, replaces the database URL.

    Emits a ``RECEIVABLES_CONFIG_TRACE`` log entry on every call.
    """
    config_path = Path(path or os.environ.get(CONFIG_ENV_VAR) or _DEFAULT_CONFIG_FILE)
    config = load_config(config_path)

    url_override = os.environ.get(DATABASE_URL_ENV_VAR)
    if url_override:
        config = dataclasses.replace(config, database_url=url_override)

    _logger.info(
        "RECEIVABLES_CONFIG_TRACE",
        extra={
            "trace_type": "RECEIVABLES_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "config_path": str(config_path),
            "checksum": config.checksum,
            "credit_policy": config.credit_policy.value,
            "strict_installment_split": config.strict_installment_split,
            "payment_condition_count": len(config.payment_conditions),
        },
    )
    return config


__all__ = [
    "CreditPolicy",
    "PaymentConditionDef",
    "ReceivablesConfig",
    "ScheduleShareDef",
    "get_active_config",
    "load_config",
    "parse_config",
]
