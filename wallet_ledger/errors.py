"""
Wallet Error Taxonomy

Every failure raised by the ledger engine carries an ErrorKind so callers can
match on an explicit enumeration instead of comparing exception messages.
Client rejections (bad input, business rules) are kept apart from
infrastructure faults, and integrity risks get their own kind because they
must be escalated.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Tag attached to every wallet failure"""
    INVALID_INPUT = "invalid_input"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    UNKNOWN_RECIPIENT = "unknown_recipient"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    DUPLICATE_USER = "duplicate_user"
    FORBIDDEN = "forbidden"
    TRANSACTION_FAILED = "transaction_failed"
    STORE_ERROR = "store_error"
    INTEGRITY_RISK = "integrity_risk"


CLIENT_ERROR_KINDS = frozenset({
    ErrorKind.INVALID_INPUT,
    ErrorKind.INSUFFICIENT_FUNDS,
    ErrorKind.UNKNOWN_RECIPIENT,
    ErrorKind.NOT_FOUND,
    ErrorKind.INVALID_CREDENTIALS,
    ErrorKind.DUPLICATE_USER,
    ErrorKind.FORBIDDEN,
})


class WalletError(Exception):
    """Base class for all wallet failures"""
    kind: ErrorKind = ErrorKind.STORE_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def is_client_error(self) -> bool:
        """True for rejections caused by the caller rather than the system"""
        return self.kind in CLIENT_ERROR_KINDS


class InvalidInput(WalletError):
    """Malformed or non-positive amount, or otherwise unusable parameters"""
    kind = ErrorKind.INVALID_INPUT


class InsufficientFunds(WalletError):
    """Debit larger than the current balance"""
    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, account_id: int, balance, requested):
        super().__init__("Insufficient balance")
        self.account_id = account_id
        self.balance = balance
        self.requested = requested


class UnknownRecipient(WalletError):
    """Transfer target account does not exist"""
    kind = ErrorKind.UNKNOWN_RECIPIENT

    def __init__(self, account_id: int):
        super().__init__(f"Recipient account {account_id} does not exist")
        self.account_id = account_id


class NotFound(WalletError):
    """Requested account does not exist"""
    kind = ErrorKind.NOT_FOUND


class InvalidCredentials(WalletError):
    """Unknown user name or wrong password"""
    kind = ErrorKind.INVALID_CREDENTIALS


class DuplicateUser(WalletError):
    """User name already registered"""
    kind = ErrorKind.DUPLICATE_USER


class Forbidden(WalletError):
    """Authenticated caller acting on an account it does not own"""
    kind = ErrorKind.FORBIDDEN


class StoreError(WalletError):
    """Infrastructure fault reported by a storage backend"""
    kind = ErrorKind.STORE_ERROR
    retryable = False


class SerializationFailure(StoreError):
    """Concurrent writers collided; the whole operation may be re-run"""
    retryable = True


class TransactionFailed(WalletError):
    """An atomic unit could not be opened, written or committed"""
    kind = ErrorKind.TRANSACTION_FAILED

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        super().__init__(step)
        self.step = step
        self.cause = cause


class IntegrityRiskError(WalletError):
    """
    Aborting an atomic unit failed.

    The store may hold a partially applied unit; operators must be alerted.
    """
    kind = ErrorKind.INTEGRITY_RISK

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"rollback failed during {operation}")
        self.operation = operation
        self.cause = cause
