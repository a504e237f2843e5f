"""ORM models for the receivables kernel."""

from receivables_kernel.models.customer import Customer
from receivables_kernel.models.note import ReceivableNote
from receivables_kernel.models.order import Installment, Order, OrderItem
from receivables_kernel.models.settlement import Check, InstallmentPayment, Settlement

__all__ = [
    "Customer",
    "Order",
    "OrderItem",
    "Installment",
    "ReceivableNote",
    "Settlement",
    "InstallmentPayment",
    "Check",
]
