"""
Transaction Coordinator Module

Runs deposits, withdrawals and transfers as all-or-nothing atomic units over
a LedgerStore. Each operation moves through

    STARTED -> VALIDATED -> MUTATING -> COMMITTED

or ends in ABORTED with every partial write undone. No operation returns
while its atomic unit is still open.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from enum import Enum

from .errors import (
    WalletError, InvalidInput, InsufficientFunds, UnknownRecipient,
    NotFound, StoreError, TransactionFailed, IntegrityRiskError
)
from .ledger import EntryKind
from .money import MAX_AMOUNT, AmountLike, require_positive
from .storage import AtomicUnit, LedgerStore
from .logging_config import get_logger, log_action


# Failure reasons reported per step
STEP_BEGIN = "failed to start transaction"
STEP_READ_BALANCE = "failed to read balance"
STEP_UPDATE_BALANCE = "failed to update balance"
STEP_DEDUCT_BALANCE = "failed to deduct balance"
STEP_CREDIT_BALANCE = "failed to credit balance"
STEP_RECORD = "failed to record transaction"
STEP_COMMIT = "failed to commit"

DEPOSIT_DESCRIPTION = "Deposit to wallet"
WITHDRAW_DESCRIPTION = "Withdraw from wallet"


class OperationType(Enum):
    """Logical wallet operations"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"


class OperationState(Enum):
    """Lifecycle of one operation"""
    STARTED = "started"
    VALIDATED = "validated"
    MUTATING = "mutating"
    COMMITTED = "committed"
    ABORTED = "aborted"


@dataclass
class Receipt:
    """Outcome of a committed operation"""
    operation: OperationType
    account_id: int
    amount: Decimal
    balance_after: Decimal
    entry_ids: List[int]
    committed_at: datetime
    counterparty_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON friendly dictionary"""
        result = {
            "operation": self.operation.value,
            "account_id": self.account_id,
            "amount": str(self.amount),
            "balance": str(self.balance_after),
            "entry_ids": list(self.entry_ids),
            "committed_at": self.committed_at.isoformat(),
        }
        if self.counterparty_id is not None:
            result["counterparty_id"] = self.counterparty_id
        return result


@dataclass
class _Operation:
    """Book-keeping for a single attempt of an operation"""
    operation: OperationType
    account_id: int
    amount: Decimal
    state: OperationState = OperationState.STARTED
    history: List[OperationState] = field(default_factory=lambda: [OperationState.STARTED])

    def advance(self, state: OperationState) -> None:
        self.state = state
        self.history.append(state)


class TransactionCoordinator:
    """
    Executes wallet operations against a ledger store

    The store handle is injected; the coordinator owns no connection state of
    its own and is safe to share between request threads.
    """

    def __init__(self, store: LedgerStore, max_retries: int = 3):
        self.store = store
        self.max_retries = max_retries
        self.logger = get_logger("wallet.transactions")

    def deposit(self, account_id: int, amount: AmountLike) -> Receipt:
        """
        Add money to an account

        Raises:
            InvalidInput: If amount is not positive (no unit is opened) or the
                new balance would exceed MAX_AMOUNT
            NotFound: If the account does not exist
            TransactionFailed: If any step of the unit fails
        """
        value = self._validate_amount(OperationType.DEPOSIT, account_id, amount)

        def body(unit: AtomicUnit, op: _Operation) -> Receipt:
            balance = self._step(STEP_READ_BALANCE, unit.get_balance, account_id)
            self._check_ceiling(account_id, balance, value)
            op.advance(OperationState.MUTATING)
            self._step(STEP_UPDATE_BALANCE, unit.adjust_balance, account_id, value)
            entry_id = self._step(STEP_RECORD, unit.append_entry, account_id,
                                  EntryKind.DEPOSIT, value, DEPOSIT_DESCRIPTION)
            return self._receipt(op, balance + value, [entry_id])

        return self._run(OperationType.DEPOSIT, account_id, value, body)

    def withdraw(self, account_id: int, amount: AmountLike) -> Receipt:
        """
        Take money out of an account

        The balance is read inside the unit, so the sufficiency check and the
        debit see the same row state.

        Raises:
            InvalidInput: If amount is not positive (no unit is opened)
            InsufficientFunds: If the balance is lower than amount
            NotFound: If the account does not exist
            TransactionFailed: If any step of the unit fails
        """
        value = self._validate_amount(OperationType.WITHDRAW, account_id, amount)

        def body(unit: AtomicUnit, op: _Operation) -> Receipt:
            balance = self._step(STEP_READ_BALANCE, unit.get_balance, account_id)
            if balance < value:
                raise InsufficientFunds(account_id, balance, value)
            op.advance(OperationState.MUTATING)
            self._step(STEP_UPDATE_BALANCE, unit.adjust_balance, account_id, -value)
            entry_id = self._step(STEP_RECORD, unit.append_entry, account_id,
                                  EntryKind.WITHDRAW, value, WITHDRAW_DESCRIPTION)
            return self._receipt(op, balance - value, [entry_id])

        return self._run(OperationType.WITHDRAW, account_id, value, body)

    def transfer(self, from_id: int, to_id: int, amount: AmountLike) -> Receipt:
        """
        Move money between two accounts in one atomic unit

        The recipient is checked before a unit is opened so that a doomed
        transfer never holds locks. Both rows are then locked in id order,
        the sender's balance is checked, and the debit, the credit and one
        entry per side are written together.

        Raises:
            InvalidInput: If amount is not positive, both ids are the same or
                the recipient's balance would exceed MAX_AMOUNT
            UnknownRecipient: If to_id does not exist (no unit is opened)
            InsufficientFunds: If the sender's balance is lower than amount
            NotFound: If the sender does not exist
            TransactionFailed: If any step of the unit fails
        """
        value = self._validate_amount(OperationType.TRANSFER, from_id, amount)
        if from_id == to_id:
            self._reject(OperationType.TRANSFER, from_id, InvalidInput("cannot transfer to the same account"))

        if not self.store.account_exists(to_id):
            self._reject(OperationType.TRANSFER, from_id, UnknownRecipient(to_id))

        def body(unit: AtomicUnit, op: _Operation) -> Receipt:
            balances = {}
            for account_id in sorted((from_id, to_id)):
                balances[account_id] = self._step(STEP_READ_BALANCE, unit.get_balance, account_id)

            if balances[from_id] < value:
                raise InsufficientFunds(from_id, balances[from_id], value)
            self._check_ceiling(to_id, balances[to_id], value)

            op.advance(OperationState.MUTATING)
            self._step(STEP_DEDUCT_BALANCE, unit.adjust_balance, from_id, -value)
            self._step(STEP_CREDIT_BALANCE, unit.adjust_balance, to_id, value)
            out_id = self._step(STEP_RECORD, unit.append_entry, from_id,
                                EntryKind.TRANSFER_OUT, value, f"Transfer to user {to_id}")
            in_id = self._step(STEP_RECORD, unit.append_entry, to_id,
                               EntryKind.TRANSFER_IN, value, f"Transfer from user {from_id}")

            receipt = self._receipt(op, balances[from_id] - value, [out_id, in_id])
            receipt.counterparty_id = to_id
            return receipt

        return self._run(OperationType.TRANSFER, from_id, value, body)

    # ------------------------------------------------------------------
    # Unit lifecycle
    # ------------------------------------------------------------------

    def _run(self, operation: OperationType, account_id: int, amount: Decimal,
             body: Callable[[AtomicUnit, _Operation], Receipt]) -> Receipt:
        """Run an operation, re-running it after retryable store conflicts"""
        attempt = 0
        while True:
            try:
                return self._execute_once(operation, account_id, amount, body)
            except TransactionFailed as e:
                retryable = isinstance(e.cause, StoreError) and e.cause.retryable
                if not retryable or attempt >= self.max_retries:
                    raise
                attempt += 1
                log_action(
                    self.logger, "warning", f"Retrying {operation.value} after serialization failure",
                    user_id=account_id, action=operation.value,
                    extra={"attempt": attempt, "step": e.step}
                )

    def _execute_once(self, operation: OperationType, account_id: int, amount: Decimal,
                      body: Callable[[AtomicUnit, _Operation], Receipt]) -> Receipt:
        op = _Operation(operation=operation, account_id=account_id, amount=amount)

        try:
            unit = self.store.begin()
        except StoreError as e:
            op.advance(OperationState.ABORTED)
            self._log_fault(op, STEP_BEGIN, e)
            raise TransactionFailed(STEP_BEGIN, e)

        op.advance(OperationState.VALIDATED)
        try:
            receipt = body(unit, op)
        except WalletError as e:
            self._abort(unit, op)
            if e.is_client_error:
                self._log_rejection(op, e)
            else:
                self._log_fault(op, getattr(e, 'step', e.message), e)
            raise
        except BaseException:
            self._abort(unit, op)
            raise

        try:
            unit.commit()
        except StoreError as e:
            self._abort(unit, op)
            self._log_fault(op, STEP_COMMIT, e)
            raise TransactionFailed(STEP_COMMIT, e)

        op.advance(OperationState.COMMITTED)
        log_action(
            self.logger, "info", f"{operation.value.capitalize()} committed",
            user_id=account_id, action=operation.value,
            resource=f"account:{account_id}",
            extra={
                "amount": str(amount),
                "balance": str(receipt.balance_after),
                "entry_ids": receipt.entry_ids,
                "counterparty_id": receipt.counterparty_id,
                "states": [s.value for s in op.history],
            }
        )
        return receipt

    def _abort(self, unit: AtomicUnit, op: _Operation) -> None:
        """
        Roll back an open unit

        A failed rollback is escalated as IntegrityRiskError; the store may
        hold a partially applied unit.
        """
        if unit.closed:
            op.advance(OperationState.ABORTED)
            return
        try:
            unit.rollback()
        except Exception as e:
            op.advance(OperationState.ABORTED)
            log_action(
                self.logger, "critical", f"Rollback failed during {op.operation.value}",
                user_id=op.account_id, action=op.operation.value,
                resource=f"account:{op.account_id}",
                extra={
                    "integrity_risk": True,
                    "error": str(e),
                    "states": [s.value for s in op.history],
                }
            )
            raise IntegrityRiskError(op.operation.value, e) from e
        op.advance(OperationState.ABORTED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_amount(self, operation: OperationType, account_id: int,
                         amount: AmountLike) -> Decimal:
        try:
            return require_positive(amount)
        except InvalidInput as e:
            self._reject(operation, account_id, e)

    def _reject(self, operation: OperationType, account_id: int, error: WalletError) -> None:
        """Log a pre-check rejection and raise it; no unit has been opened"""
        op = _Operation(operation=operation, account_id=account_id, amount=Decimal('0'))
        op.advance(OperationState.ABORTED)
        self._log_rejection(op, error)
        raise error

    @staticmethod
    def _check_ceiling(account_id: int, balance: Decimal, credit: Decimal) -> None:
        """Reject a credit that would push a balance past what the store can hold"""
        if balance + credit > MAX_AMOUNT:
            raise InvalidInput(f"balance of account {account_id} would exceed {MAX_AMOUNT}")

    @staticmethod
    def _step(step: str, func: Callable, *args):
        """Run one store primitive, naming the step if the store fails"""
        try:
            return func(*args)
        except NotFound:
            raise
        except StoreError as e:
            raise TransactionFailed(step, e)

    @staticmethod
    def _receipt(op: _Operation, balance_after: Decimal, entry_ids: List[int]) -> Receipt:
        return Receipt(
            operation=op.operation,
            account_id=op.account_id,
            amount=op.amount,
            balance_after=balance_after,
            entry_ids=entry_ids,
            committed_at=datetime.now(timezone.utc)
        )

    def _log_rejection(self, op: _Operation, error: WalletError) -> None:
        log_action(
            self.logger, "info", f"{op.operation.value.capitalize()} rejected: {error.message}",
            user_id=op.account_id, action=op.operation.value,
            extra={"kind": error.kind.value, "states": [s.value for s in op.history]}
        )

    def _log_fault(self, op: _Operation, step: str, error: BaseException) -> None:
        log_action(
            self.logger, "error", f"{op.operation.value.capitalize()} aborted: {step}",
            user_id=op.account_id, action=op.operation.value,
            extra={"error": str(error), "states": [s.value for s in op.history]}
        )
