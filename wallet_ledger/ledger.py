"""
Ledger Records Module

Immutable ledger entries and the signed-amount rules that tie them to
account balances. An account's balance must always equal the sum of the
signed amounts of its entries.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Iterable
from enum import Enum

from .money import ZERO, quantize


class EntryKind(Enum):
    """Kinds of balance-affecting events"""
    DEPOSIT = "deposit"            # Money in from outside the system
    WITHDRAW = "withdraw"          # Money out of the system
    TRANSFER_OUT = "transfer_out"  # Debit side of a transfer
    TRANSFER_IN = "transfer_in"    # Credit side of a transfer

    @property
    def is_credit(self) -> bool:
        """Check if this kind increases the balance"""
        return self in (EntryKind.DEPOSIT, EntryKind.TRANSFER_IN)


@dataclass(frozen=True)
class LedgerEntry:
    """
    One committed balance change

    The amount is always positive; the direction comes from the kind.
    """
    id: int
    account_id: int
    kind: EntryKind
    amount: Decimal
    description: str
    created_at: datetime

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign implied by the kind"""
        return self.amount if self.kind.is_credit else -self.amount

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON friendly dictionary"""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "type": self.kind.value,
            "amount": str(self.amount),
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class UserRecord:
    """Credentials row owned by the auth collaborator"""
    id: int
    name: str
    password_hash: str


def signed_total(entries: Iterable[LedgerEntry]) -> Decimal:
    """Sum of signed entry amounts"""
    total = ZERO
    for entry in entries:
        total += entry.signed_amount
    return quantize(total)


def newest_first(entries: Iterable[LedgerEntry]) -> list:
    """Order entries by creation time descending, newest id first on ties"""
    return sorted(entries, key=lambda e: (e.created_at, e.id), reverse=True)
