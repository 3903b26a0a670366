"""
Session endpoints
"""

from fastapi import APIRouter, Depends

from .auth import LedgerSystem, get_ledger_system, get_principal_id


router = APIRouter()


@router.post("/logout")
def logout(
    principal_id: str = Depends(get_principal_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """End the session and drop cached account state"""
    system.directory.invalidate_all(principal_id)
    return {"message": "Logged out"}
