"""
Pydantic schemas for API requests and response serialization
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..models import Account, Transaction


class OpenAccountRequest(BaseModel):
    display_name: str = Field(..., min_length=1, description="Account holder display name")
    account_class: str = Field("SAVINGS", description="SAVINGS or CURRENT")
    initial_deposit: str = Field(..., description="Decimal amount as string")
    minimum_balance: Optional[str] = Field(None, description="Decimal floor as string; configured default if omitted")


class DepositRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Decimal amount as string")


class WithdrawRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Decimal amount as string")


class TransferRequest(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: str = Field(..., description="Decimal amount as string")


def serialize_account(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "owner_id": account.owner_id,
        "display_name": account.display_name,
        "account_class": account.account_class.value,
        "balance": str(account.balance),
        "minimum_balance": str(account.minimum_balance),
        "available_to_withdraw": str(account.available_to_withdraw),
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat(),
    }


def serialize_transaction(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "transaction_type": transaction.transaction_type.value,
        "source_account_id": transaction.source_account_id,
        "destination_account_id": transaction.destination_account_id,
        "amount": str(transaction.amount),
        "description": transaction.description,
        "outcome": transaction.outcome.value,
        "created_at": transaction.created_at.isoformat(),
    }
