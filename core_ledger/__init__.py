"""
Core Ledger

Account ledger with owner-scoped deposits, withdrawals and transfers,
Decimal money, minimum balance enforcement, atomic commits and a
hash-chained audit trail.
"""

__version__ = "1.0.0"
