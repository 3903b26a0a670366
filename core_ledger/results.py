"""
Operation Results Module

Every ledger operation returns either ``Ok(value)`` or ``Err(LedgerError)``.
Failures are values, not exceptions, so callers and tests branch on
``ErrorKind`` instead of catching.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorKind(Enum):
    """Failure kinds surfaced by the directory and the engine"""
    INVALID_AMOUNT = "invalid_amount"
    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCESS_DENIED = "access_denied"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    DUPLICATE_TRANSACTION_ID = "duplicate_transaction_id"
    PERSIST_FAILURE = "persist_failure"
    ACCOUNT_ALREADY_EXISTS = "account_already_exists"
    INVALID_TRANSFER = "invalid_transfer"

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same request may succeed"""
        return self in (ErrorKind.DUPLICATE_TRANSACTION_ID, ErrorKind.PERSIST_FAILURE)


@dataclass(frozen=True)
class LedgerError:
    """
    Structured failure with enough context to render a precise message.

    ``balance`` and ``minimum_balance`` are only set for INSUFFICIENT_FUNDS.
    The real owner of an account is never part of an error.
    """
    kind: ErrorKind
    message: str
    account_id: Optional[str] = None
    amount: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    minimum_balance: Optional[Decimal] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary"""
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        for key in ("account_id", "amount", "balance", "minimum_balance"):
            value = getattr(self, key)
            if value is not None:
                result[key] = str(value) if isinstance(value, Decimal) else value
        if self.details:
            result["details"] = dict(self.details)
        return result


class LedgerOperationError(Exception):
    """Raised by ``Err.unwrap()`` for callers that prefer exceptions"""

    def __init__(self, error: LedgerError):
        super().__init__(f"{error.kind.value}: {error.message}")
        self.error = error


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result"""
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """Failed result"""
    error: LedgerError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    def unwrap(self):
        raise LedgerOperationError(self.error)


Result = Union[Ok[T], Err]


def fail(kind: ErrorKind, message: str, **context: Any) -> Err:
    """Shorthand for building an ``Err``"""
    return Err(LedgerError(kind=kind, message=message, **context))
