"""
Wallet Ledger Service

User wallets with deposit, withdraw and transfer operations backed by a
relational ledger. Balances never go negative, multi-row updates are atomic
and every committed mutation leaves an immutable ledger entry.
"""

__version__ = "1.0.0"
