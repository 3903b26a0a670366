"""
Transaction endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import LedgerSystem, get_ledger_system, get_principal_id
from .errors import raise_for_error
from .schemas import DepositRequest, WithdrawRequest, TransferRequest, serialize_transaction


router = APIRouter()


@router.post("/deposit", status_code=status.HTTP_201_CREATED)
def deposit(
    request: DepositRequest,
    principal_id: str = Depends(get_principal_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Make a deposit"""
    result = system.engine.deposit(principal_id, request.account_id, request.amount)
    if not result.ok:
        raise_for_error(result)
    return {
        "transaction": serialize_transaction(result.value),
        "message": "Deposit processed successfully"
    }


@router.post("/withdraw", status_code=status.HTTP_201_CREATED)
def withdraw(
    request: WithdrawRequest,
    principal_id: str = Depends(get_principal_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Make a withdrawal"""
    result = system.engine.withdraw(principal_id, request.account_id, request.amount)
    if not result.ok:
        raise_for_error(result)
    return {
        "transaction": serialize_transaction(result.value),
        "message": "Withdrawal processed successfully"
    }


@router.post("/transfer", status_code=status.HTTP_201_CREATED)
def transfer(
    request: TransferRequest,
    principal_id: str = Depends(get_principal_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Transfer between accounts"""
    result = system.engine.transfer(
        principal_id, request.from_account_id, request.to_account_id, request.amount
    )
    if not result.ok:
        raise_for_error(result)
    return {
        "transaction": serialize_transaction(result.value),
        "message": "Transfer processed successfully"
    }
