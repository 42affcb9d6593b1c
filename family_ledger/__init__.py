"""
Family Ledger Core

Persistence, authentication/authorization and derived analytics for a
single-cluster family ledger. Balances are always derived from the
append-only transaction log, amounts use Decimal precision.
"""

__version__ = "1.0.0"
