"""
Pydantic schemas for API requests and responses
"""

from typing import List, Optional, Union
from pydantic import BaseModel, Field


# Amounts are parsed by the ledger core so that malformed values surface as
# invalid_input rather than schema errors
AmountField = Union[str, int, float]


class RegisterRequest(BaseModel):
    name: str
    password: str


class LoginRequest(BaseModel):
    name: str
    password: str


class DepositRequest(BaseModel):
    amount: AmountField = Field(..., description="Decimal amount, preferably as a string")


class WithdrawRequest(BaseModel):
    amount: AmountField = Field(..., description="Decimal amount, preferably as a string")


class TransferRequest(BaseModel):
    to_account_id: int
    amount: AmountField = Field(..., description="Decimal amount, preferably as a string")


class ReceiptResponse(BaseModel):
    message: str
    operation: str
    account_id: int
    amount: str
    balance: str
    entry_ids: List[int]
    committed_at: str
    counterparty_id: Optional[int] = None


class BalanceResponse(BaseModel):
    account_id: int
    balance: str


class LedgerEntryModel(BaseModel):
    id: int
    type: str
    amount: str
    description: str
    created_at: str


class HistoryResponse(BaseModel):
    transactions: List[LedgerEntryModel]
