"""Selectors for the receivables kernel (read side)."""

from receivables_kernel.selectors.reconciliation_selector import (
    ClientDetail,
    ClientSummary,
    InstallmentHistory,
    InstallmentView,
    NoteHistory,
    NotesByOrder,
    NoteView,
    OrderFinancialSummary,
    OrderNoteGroup,
    PaymentEntry,
    ReconciliationSelector,
)

__all__ = [
    "ClientDetail",
    "ClientSummary",
    "InstallmentHistory",
    "InstallmentView",
    "NoteHistory",
    "NoteView",
    "NotesByOrder",
    "OrderFinancialSummary",
    "OrderNoteGroup",
    "PaymentEntry",
    "ReconciliationSelector",
]
