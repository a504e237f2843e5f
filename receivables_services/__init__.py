"""
receivables_services -- transactional shell over the receivables kernel.

Composes the kernel's write services and selectors with the pure engines
and the configuration bridges.  ReceivablesService is the inbound entry
point; it owns commit and rollback.
"""

from receivables_services.credit_service import CreditService
from receivables_services.order_service import OrderCreation, OrderPlan, OrderService
from receivables_services.receivables_service import (
    OperationResult,
    OperationStatus,
    OrderCreated,
    ReceivablesService,
)

__all__ = [
    "CreditService",
    "OperationResult",
    "OperationStatus",
    "OrderCreated",
    "OrderCreation",
    "OrderPlan",
    "OrderService",
    "ReceivablesService",
]
