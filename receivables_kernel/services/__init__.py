"""Services for the receivables kernel (write side)."""

from receivables_kernel.services.note_ledger import NoteLedger, outstanding_for_notes
from receivables_kernel.services.payment_service import PaymentService
from receivables_kernel.services.settlement_engine import SettlementEngine

__all__ = [
    "NoteLedger",
    "PaymentService",
    "SettlementEngine",
    "outstanding_for_notes",
]
