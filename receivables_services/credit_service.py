"""
CreditService -- credit limit evaluation for one customer.

Loads the customer's exposure rows through the kernel's reconciliation
selector and folds them with the pure CreditExposureCalculator.  Advisory
and read-only: nothing is written, and whether an exceeded limit blocks
anything is decided by the caller's credit policy.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from receivables_engines.credit import CreditExposureCalculator
from receivables_kernel.domain.dtos import CreditLimitSnapshot
from receivables_kernel.logging_config import get_logger
from receivables_kernel.selectors.reconciliation_selector import ReconciliationSelector

logger = get_logger("services.credit")


class CreditService:
    def __init__(
        self,
        session: Session,
        calculator: CreditExposureCalculator | None = None,
    ):
        self._selector = ReconciliationSelector(session)
        self._calculator = calculator or CreditExposureCalculator()

    def evaluate(self, customer_id: int, candidate_order_total: Decimal) -> CreditLimitSnapshot:
        """
        Compare used + candidate with the customer's limit.

        Raises:
            CustomerNotFoundError: Unknown customer.
            InvalidAmountError: Negative candidate.
        """
        exposure = self._selector.credit_exposure(customer_id)
        snapshot = self._calculator.evaluate(
            customer_id=exposure.customer_id,
            limit=exposure.limit,
            candidate=candidate_order_total,
            notes=exposure.notes,
            installments=exposure.installments,
        )
        logger.info(
            "credit_limit_evaluated",
            extra={
                "customer_id": customer_id,
                "limit": None if snapshot.limit is None else str(snapshot.limit),
                "used": str(snapshot.used),
                "available": None if snapshot.available is None else str(snapshot.available),
                "candidate": str(snapshot.candidate),
                "exceeded": snapshot.exceeded,
            },
        )
        return snapshot
