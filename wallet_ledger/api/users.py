"""
Registration and login endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import WalletSystem, get_wallet_system
from .schemas import RegisterRequest, LoginRequest


router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    request: RegisterRequest,
    system: WalletSystem = Depends(get_wallet_system)
):
    """Register a user and open its wallet"""
    account_id = system.users.register(request.name, request.password)
    return {"message": "User created successfully", "account_id": account_id}


@router.post("/login")
def login(
    request: LoginRequest,
    system: WalletSystem = Depends(get_wallet_system)
):
    """Exchange credentials for an access token"""
    token = system.users.login(request.name, request.password)
    return {"token": token}
