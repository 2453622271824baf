"""
Finance Core

Recurring obligation and amortization engine: installment loan math,
calendar recurrence, materialization of due obligations into ledger
entries, and budget bucket synchronization. All money uses Decimal.
"""

__version__ = "1.0.0"
