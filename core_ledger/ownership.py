"""
Ownership Guard

Stateless check binding an authenticated principal to the accounts it may
operate on. The principal id is trusted as given; credentials are verified
upstream.
"""

from dataclasses import dataclass
from typing import Union

from .models import Account


@dataclass(frozen=True)
class Allow:
    principal_id: str
    account_id: str

    @property
    def allowed(self) -> bool:
        return True


@dataclass(frozen=True)
class Deny:
    """
    Denied access. ``owner_id`` is kept for the audit trail only and must not
    be shown to the principal.
    """
    principal_id: str
    account_id: str
    owner_id: str

    @property
    def allowed(self) -> bool:
        return False

    def audit_metadata(self) -> dict:
        return {
            "principal_id": self.principal_id,
            "account_id": self.account_id,
            "owner_id": self.owner_id,
        }


Decision = Union[Allow, Deny]


class OwnershipGuard:
    """Only the owner of an account may act on it"""

    def authorize(self, principal_id: str, account: Account) -> Decision:
        if principal_id is not None and account.owner_id == str(principal_id):
            return Allow(principal_id=str(principal_id), account_id=account.id)
        return Deny(
            principal_id=str(principal_id),
            account_id=account.id,
            owner_id=account.owner_id,
        )
