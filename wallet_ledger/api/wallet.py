"""
Wallet endpoints

Route handlers are plain functions so FastAPI runs them in its threadpool;
ledger operations block on store locks and I/O.
"""

from typing import Optional
from fastapi import APIRouter, Depends

from ..errors import Forbidden
from .auth import WalletSystem, get_wallet_system, get_current_account
from .schemas import (
    DepositRequest, WithdrawRequest, TransferRequest,
    ReceiptResponse, BalanceResponse, HistoryResponse
)


router = APIRouter()


def _require_owner(account_id: int, principal: int) -> None:
    if account_id != principal:
        raise Forbidden("Access to another account is forbidden")


@router.post("/deposit", response_model=ReceiptResponse)
def deposit(
    request: DepositRequest,
    account_id: int = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Deposit money to the caller's wallet"""
    receipt = system.coordinator.deposit(account_id, request.amount)
    return {"message": "Deposit successful", **receipt.to_dict()}


@router.post("/withdraw", response_model=ReceiptResponse)
def withdraw(
    request: WithdrawRequest,
    account_id: int = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Withdraw money from the caller's wallet"""
    receipt = system.coordinator.withdraw(account_id, request.amount)
    return {"message": "Withdraw successful", **receipt.to_dict()}


@router.post("/transfer", response_model=ReceiptResponse)
def transfer(
    request: TransferRequest,
    account_id: int = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Transfer money from the caller's wallet to another account"""
    receipt = system.coordinator.transfer(account_id, request.to_account_id, request.amount)
    return {"message": "Transfer successful", **receipt.to_dict()}


@router.get("/balance/{account_id}", response_model=BalanceResponse)
def get_balance(
    account_id: int,
    principal: int = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Get the balance of the caller's wallet"""
    _require_owner(account_id, principal)
    balance = system.queries.get_balance(account_id)
    return {"account_id": account_id, "balance": str(balance)}


@router.get("/transactions/{account_id}", response_model=HistoryResponse)
def get_transactions(
    account_id: int,
    limit: Optional[int] = None,
    principal: int = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Get the caller's ledger entries, most recent first"""
    _require_owner(account_id, principal)
    entries = system.queries.get_history(account_id, limit=limit)
    return {"transactions": [entry.to_dict() for entry in entries]}
