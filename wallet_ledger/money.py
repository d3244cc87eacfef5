"""
Money Handling Module

Fixed-point amount parsing for wallet balances. Amounts are Decimal values
quantized to cents. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

from .errors import InvalidInput

# Set global decimal context for financial precision
getcontext().prec = 28

CENTS = Decimal('0.01')
ZERO = Decimal('0.00')
# Largest amount or balance every backend holds exactly (NUMERIC(18, 2))
MAX_AMOUNT = Decimal('9999999999999999.99')

AmountLike = Union[Decimal, int, float, str]


def quantize(value: Decimal) -> Decimal:
    """Round a Decimal to cent precision"""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_amount(value: AmountLike) -> Decimal:
    """
    Convert caller input to a cent-precision Decimal

    Floats are converted through their string form so that 0.1 stays 0.10
    rather than the binary approximation.

    Raises:
        InvalidInput: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise InvalidInput("amount must be a number")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidInput(f"amount '{value}' is not a number")
    else:
        raise InvalidInput("amount must be a number")

    if not amount.is_finite():
        raise InvalidInput("amount must be finite")

    try:
        return quantize(amount)
    except InvalidOperation:
        raise InvalidInput("amount is out of range")


def require_positive(value: AmountLike) -> Decimal:
    """Parse an amount and reject zero, negative or oversized values"""
    amount = parse_amount(value)
    if amount <= ZERO:
        raise InvalidInput("amount must be greater than zero")
    if amount > MAX_AMOUNT:
        raise InvalidInput(f"amount must not exceed {MAX_AMOUNT}")
    return amount


def to_minor_units(amount: Decimal) -> int:
    """Convert a Decimal amount to integer cents"""
    return int(quantize(amount) * 100)


def from_minor_units(cents: int) -> Decimal:
    """Convert integer cents back to a Decimal amount"""
    return quantize(Decimal(cents) / 100)
