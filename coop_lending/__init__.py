"""
Cooperative Lending Engine

Loan amortization and installment-ledger engine for a savings-and-loan
cooperative: exact repayment schedules, per-installment payment and
delinquency tracking, and the loan lifecycle state machine. All monetary
math uses Decimal.
"""

__version__ = "1.0.0"
