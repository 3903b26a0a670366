"""
Id and Amount Policy Module

Deterministic rules shared by the engine: transaction id generation and
amount validation. Amounts are fixed-point with two decimal places and are
never rounded here; callers pass already-quantized values.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
from typing import Any, Optional
import secrets

from .results import ErrorKind, Ok, Result, fail

MINOR_UNIT = Decimal("0.01")
TRANSACTION_ID_PREFIX = "TXN"
ACCOUNT_ID_PREFIX = "ACC"


def generate_transaction_id(now: Optional[datetime] = None) -> str:
    """
    Generate a transaction id: prefix, UTC timestamp to the millisecond and
    a random 32-bit hex suffix, e.g. ``TXN20240501123045123-9f3a0c1b``.
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y%m%d%H%M%S") + f"{now.microsecond // 1000:03d}"
    return f"{TRANSACTION_ID_PREFIX}{stamp}-{secrets.token_hex(4)}"


def generate_account_id(now: Optional[datetime] = None) -> str:
    """Generate an account number such as ``ACC1714566645123-4f2a``"""
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    return f"{ACCOUNT_ID_PREFIX}{millis}-{secrets.token_hex(2)}"


def parse_amount(value: Any) -> Result[Decimal]:
    """
    Convert caller input to a Decimal amount.

    Accepts ``Decimal``, ``int`` and numeric strings. Floats are rejected
    because binary floating point cannot represent most cent values exactly.
    """
    if isinstance(value, bool) or isinstance(value, float):
        return fail(ErrorKind.INVALID_AMOUNT, f"Amount must be a decimal value, got {type(value).__name__}")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            return fail(ErrorKind.INVALID_AMOUNT, f"Cannot convert '{value}' to an amount")
    else:
        return fail(ErrorKind.INVALID_AMOUNT, f"Unsupported amount type {type(value).__name__}")

    if not amount.is_finite():
        return fail(ErrorKind.INVALID_AMOUNT, f"Amount must be finite, got {amount}")
    return Ok(amount)


def is_quantized(amount: Decimal) -> bool:
    """True when ``amount`` is an exact multiple of the minor unit"""
    return amount.is_finite() and amount % MINOR_UNIT == 0


def validate_amount(value: Any) -> Result[Decimal]:
    """
    Validate a movement amount: positive and an exact multiple of 0.01.

    Returns the amount normalised to two places (``Decimal('5')`` becomes
    ``Decimal('5.00')``); this is a change of representation, not rounding.
    """
    parsed = parse_amount(value)
    if not parsed.ok:
        return parsed

    amount = parsed.value
    if amount <= 0:
        return fail(ErrorKind.INVALID_AMOUNT, f"Amount must be positive, got {amount}", amount=amount)
    if not is_quantized(amount):
        return fail(
            ErrorKind.INVALID_AMOUNT,
            f"Amount {amount} is not a multiple of {MINOR_UNIT}",
            amount=amount,
        )
    return Ok(amount.quantize(MINOR_UNIT))


def validate_balance_value(value: Any) -> Result[Decimal]:
    """Validate a balance or floor value: quantized, zero or positive allowed"""
    parsed = parse_amount(value)
    if not parsed.ok:
        return parsed

    amount = parsed.value
    if not is_quantized(amount):
        return fail(
            ErrorKind.INVALID_AMOUNT,
            f"Value {amount} is not a multiple of {MINOR_UNIT}",
            amount=amount,
        )
    return Ok(amount.quantize(MINOR_UNIT))


def format_amount(amount: Decimal) -> str:
    """Format for display"""
    return f"{amount:,.2f}"
