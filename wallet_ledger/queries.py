"""
Wallet Query Module

Read-only balance and history lookups against committed ledger state.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import List, Optional

from .errors import InvalidInput
from .ledger import LedgerEntry, signed_total
from .storage import LedgerStore
from .logging_config import get_logger


@dataclass(frozen=True)
class Reconciliation:
    """Stored balance compared with the sum of signed ledger entries"""
    account_id: int
    balance: Decimal
    ledger_total: Decimal
    entry_count: int

    @property
    def is_balanced(self) -> bool:
        return self.balance == self.ledger_total

    @property
    def difference(self) -> Decimal:
        return self.balance - self.ledger_total


class WalletQueries:
    """Balance and history reads; no atomic unit is opened"""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = get_logger("wallet.queries")

    def get_balance(self, account_id: int) -> Decimal:
        """
        Current committed balance

        Raises:
            NotFound: If the account does not exist
        """
        return self.store.get_balance(account_id)

    def get_history(self, account_id: int, limit: Optional[int] = None) -> List[LedgerEntry]:
        """
        Ledger entries for an account, most recent first

        An account without entries yields an empty list.

        Raises:
            NotFound: If the account does not exist
            InvalidInput: If limit is not positive
        """
        if limit is not None and limit <= 0:
            raise InvalidInput("limit must be positive")
        return self.store.list_entries(account_id, limit=limit)

    def reconcile(self, account_id: int) -> Reconciliation:
        """
        Check that the balance equals the sum of the account's signed entries

        Entries and balance are read separately, so an operation committing
        in between shows up as a transient difference.
        """
        entries = self.store.list_entries(account_id)
        balance = self.store.get_balance(account_id)
        result = Reconciliation(
            account_id=account_id,
            balance=balance,
            ledger_total=signed_total(entries),
            entry_count=len(entries)
        )
        if not result.is_balanced:
            self.logger.error(
                "Account %s out of balance: stored %s, ledger %s",
                account_id, result.balance, result.ledger_total
            )
        return result
