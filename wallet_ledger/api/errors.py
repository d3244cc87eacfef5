"""
Error kind to HTTP response mapping
"""

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import ErrorKind, WalletError, TransactionFailed
from ..logging_config import get_logger


logger = get_logger("wallet.api")

STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INSUFFICIENT_FUNDS: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNKNOWN_RECIPIENT: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.DUPLICATE_USER: status.HTTP_409_CONFLICT,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.TRANSACTION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.STORE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.INTEGRITY_RISK: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

GENERIC_FAULT_MESSAGE = "Internal server error"


def error_body(error: WalletError) -> dict:
    """Public payload for a wallet error; faults never expose store details"""
    if error.is_client_error:
        message = error.message
    elif isinstance(error, TransactionFailed):
        message = error.step.capitalize()
    else:
        message = GENERIC_FAULT_MESSAGE
    return {"error": message, "code": error.kind.value}


async def wallet_error_handler(request: Request, exc: WalletError) -> JSONResponse:
    status_code = STATUS_BY_KIND[exc.kind]
    if status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path,
                     exc.kind.value, exc.message)
    return JSONResponse(status_code=status_code, content=error_body(exc))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid input", "code": ErrorKind.INVALID_INPUT.value}
    )
