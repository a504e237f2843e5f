"""
Receivables Kernel

Order-level receivables bookkeeping with:
- Installment schedules derived from order totals
- Receivable notes (duplicatas) with derived status
- Settlements and exact reversals, including check sub-ledger
- Optimistic versioning on balances
- Credit exposure computed from live balances
"""

__version__ = "0.1.0"
