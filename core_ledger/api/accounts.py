"""
Account endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from .auth import LedgerSystem, get_ledger_system, get_principal_id
from .errors import raise_for_error
from .schemas import OpenAccountRequest, serialize_account, serialize_transaction
from ..models import AccountClass


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def open_account(
    request: OpenAccountRequest,
    principal_id: str = Depends(get_principal_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Open a new account for the calling principal"""
    try:
        account_class = AccountClass.from_str(request.account_class)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = system.engine.open_account(
        principal_id,
        display_name=request.display_name,
        account_class=account_class,
        initial_deposit=request.initial_deposit,
        minimum_balance=request.minimum_balance
    )
    if not result.ok:
        raise_for_error(result)

    return {
        "account": serialize_account(result.value),
        "message": "Account created successfully"
    }


@router.get("")
def list_accounts(
    principal_id: str = Depends(get_principal_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the calling principal's active accounts"""
    result = system.directory.list_by_owner(principal_id)
    if not result.ok:
        raise_for_error(result)
    return {"accounts": [serialize_account(account) for account in result.value]}


@router.get("/balance-alerts")
def balance_alerts(
    principal_id: str = Depends(get_principal_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Classify the calling principal's accounts against the balance thresholds"""
    result = system.balance_monitor.scan_owner(principal_id)
    if not result.ok:
        raise_for_error(result)

    summary = result.value
    return {
        "total_accounts": summary.total_accounts,
        "critical_accounts": summary.critical_accounts,
        "low_accounts": summary.low_accounts,
        "low_balance_threshold": str(system.thresholds.low_balance),
        "critical_balance_threshold": str(system.thresholds.critical_balance),
    }


@router.get("/{account_id}")
def get_account(
    account_id: str,
    principal_id: str = Depends(get_principal_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get account details"""
    result = system.engine.get_account(principal_id, account_id)
    if not result.ok:
        raise_for_error(result)
    return serialize_account(result.value)


@router.get("/{account_id}/transactions")
def get_account_transactions(
    account_id: str,
    limit: Optional[int] = Query(None, ge=1),
    principal_id: str = Depends(get_principal_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get transaction history for an account, newest first"""
    result = system.engine.get_history(principal_id, account_id)
    if not result.ok:
        raise_for_error(result)

    transactions = result.value
    if limit is not None:
        transactions = transactions[:limit]
    return {"transactions": [serialize_transaction(txn) for txn in transactions]}
