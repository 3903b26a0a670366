"""
Ledger Data Model

Accounts and transaction records. All monetary values are Decimal with two
decimal places and are stored as strings.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum

from .storage import StorageRecord


class AccountClass(Enum):
    """Account product classes"""
    SAVINGS = "SAVINGS"
    CURRENT = "CURRENT"

    @classmethod
    def from_str(cls, value: str) -> "AccountClass":
        """Coerce arbitrary casing into a valid account class"""
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError) as error:
            raise ValueError(f"Unsupported account class: {value}") from error


class TransactionType(Enum):
    """Money movements recorded by the ledger"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"


class TransactionOutcome(Enum):
    """Outcome flag of a transaction record"""
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class Account(StorageRecord):
    """
    Ledger account.

    ``id`` is the account number and never changes. ``balance`` may only be
    changed through the AccountDirectory balance paths.
    """
    owner_id: str
    display_name: str
    balance: Decimal
    account_class: AccountClass
    minimum_balance: Decimal
    active: bool = True

    def __post_init__(self):
        if not isinstance(self.balance, Decimal):
            raise ValueError("Account balance must be a Decimal")
        if not isinstance(self.minimum_balance, Decimal):
            raise ValueError("Minimum balance must be a Decimal")

    @property
    def available_to_withdraw(self) -> Decimal:
        """Largest amount that can leave the account without breaching the floor"""
        return max(self.balance - self.minimum_balance, Decimal("0.00"))

    def satisfies_floor(self) -> bool:
        """Check the minimum balance invariant"""
        return not self.active or self.balance >= self.minimum_balance

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        """Convert dictionary to Account"""
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            owner_id=data['owner_id'],
            display_name=data['display_name'],
            balance=Decimal(data['balance']),
            account_class=AccountClass(data['account_class']),
            minimum_balance=Decimal(data['minimum_balance']),
            active=bool(data['active']),
        )


@dataclass
class Transaction(StorageRecord):
    """
    Immutable record of one committed money movement.

    DEPOSIT and WITHDRAWAL records name the account as ``source_account_id``;
    only TRANSFER records carry both ids.
    """
    source_account_id: Optional[str]
    destination_account_id: Optional[str]
    amount: Decimal
    transaction_type: TransactionType
    description: str
    outcome: TransactionOutcome = TransactionOutcome.COMMITTED

    def __post_init__(self):
        if not self.source_account_id and not self.destination_account_id:
            raise ValueError("Transaction must reference at least one account")

        both = bool(self.source_account_id and self.destination_account_id)
        if both != (self.transaction_type == TransactionType.TRANSFER):
            raise ValueError("Only TRANSFER transactions reference both a source and a destination")

        if not isinstance(self.amount, Decimal) or self.amount <= 0:
            raise ValueError("Transaction amount must be a positive Decimal")

    @property
    def timestamp(self) -> datetime:
        return self.created_at

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        """Convert dictionary to Transaction"""
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            source_account_id=data.get('source_account_id'),
            destination_account_id=data.get('destination_account_id'),
            amount=Decimal(data['amount']),
            transaction_type=TransactionType(data['transaction_type']),
            description=data['description'],
            outcome=TransactionOutcome(data.get('outcome', TransactionOutcome.COMMITTED.value)),
        )
