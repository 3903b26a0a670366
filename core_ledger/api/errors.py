"""
Mapping of ledger failures to HTTP responses
"""

from fastapi import HTTPException, status

from ..results import Err, ErrorKind


ERROR_STATUS_CODES = {
    ErrorKind.INVALID_AMOUNT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_TRANSFER: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INSUFFICIENT_FUNDS: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ACCOUNT_ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE_TRANSACTION_ID: status.HTTP_409_CONFLICT,
    ErrorKind.PERSIST_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def raise_for_error(result: Err) -> None:
    """Raise the HTTPException matching a failed result"""
    raise HTTPException(
        status_code=ERROR_STATUS_CODES.get(result.kind, status.HTTP_400_BAD_REQUEST),
        detail=dict(result.error.to_dict(), retryable=result.kind.is_transient)
    )
