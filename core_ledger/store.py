"""
Ledger Store

Durable keyed storage for accounts and transactions on top of a
StorageInterface backend. This is the persistence collaborator consumed by
the AccountDirectory; it raises on failure and knows nothing about caching,
ownership or balance rules.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models import Account, Transaction
from .storage import StorageInterface


class StoreError(Exception):
    """The underlying storage rejected a read or write"""


class DuplicateRecordError(StoreError):
    """A record with the same id already exists"""

    def __init__(self, table: str, record_id: str):
        super().__init__(f"{table} record {record_id} already exists")
        self.table = table
        self.record_id = record_id


class RecordNotFoundError(StoreError):
    """The record to update does not exist"""

    def __init__(self, table: str, record_id: str):
        super().__init__(f"{table} record {record_id} not found")
        self.table = table
        self.record_id = record_id


class LedgerStore:
    """
    Account and transaction persistence.

    Every write method is atomic on its own; ``commit_movement`` and
    ``open_account`` make several writes atomic together.
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts_table: str = "accounts",
        transactions_table: str = "transactions"
    ):
        self.storage = storage
        self.accounts_table = accounts_table
        self.transactions_table = transactions_table

    def get_account(self, account_id: str) -> Optional[Account]:
        """Load an account, active or not"""
        try:
            data = self.storage.load(self.accounts_table, account_id)
        except Exception as e:
            raise StoreError(f"Failed to load account {account_id}: {e}") from e
        return Account.from_dict(data) if data else None

    def put_account(self, account: Account) -> None:
        """Insert a new account"""
        try:
            with self.storage.atomic():
                self._insert_account(account)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to save account {account.id}: {e}") from e

    def update_balance(self, account_id: str, new_balance: Decimal) -> Account:
        """Overwrite the stored balance of one account and return the stored copy"""
        try:
            with self.storage.atomic():
                return self._write_balance(account_id, new_balance, datetime.now(timezone.utc))
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to update balance of {account_id}: {e}") from e

    def save_account(self, account: Account) -> None:
        """Overwrite an existing account record"""
        try:
            with self.storage.atomic():
                if not self.storage.exists(self.accounts_table, account.id):
                    raise RecordNotFoundError(self.accounts_table, account.id)
                self.storage.save(self.accounts_table, account.id, account.to_dict())
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to save account {account.id}: {e}") from e

    def list_accounts_by_owner(self, owner_id: str) -> List[Account]:
        """All accounts owned by ``owner_id``, active or not"""
        try:
            rows = self.storage.find(self.accounts_table, {"owner_id": owner_id})
        except Exception as e:
            raise StoreError(f"Failed to list accounts of {owner_id}: {e}") from e
        return [Account.from_dict(row) for row in rows]

    def append_transaction(self, transaction: Transaction) -> None:
        """Append a transaction record; never overwrites"""
        try:
            with self.storage.atomic():
                self._insert_transaction(transaction)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to append transaction {transaction.id}: {e}") from e

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        try:
            data = self.storage.load(self.transactions_table, transaction_id)
        except Exception as e:
            raise StoreError(f"Failed to load transaction {transaction_id}: {e}") from e
        return Transaction.from_dict(data) if data else None

    def list_transactions_by_account(self, account_id: str) -> List[Transaction]:
        """Transactions where the account is source or destination, oldest first"""
        try:
            rows = self.storage.find_any(
                self.transactions_table,
                {"source_account_id": account_id, "destination_account_id": account_id}
            )
        except Exception as e:
            raise StoreError(f"Failed to list transactions of {account_id}: {e}") from e

        # Rows arrive in insertion order; the stable sort keeps it for equal timestamps
        transactions = [Transaction.from_dict(row) for row in rows]
        transactions.sort(key=lambda t: t.created_at)
        return transactions

    def commit_movement(self, balances: Dict[str, Decimal], transaction: Transaction) -> List[Account]:
        """
        Write several balances and append one transaction as a single atomic
        commit. Either everything is stored or nothing is.

        Returns the stored accounts in the order of ``balances``.
        """
        now = transaction.created_at
        try:
            with self.storage.atomic():
                self._insert_transaction(transaction)
                return [
                    self._write_balance(account_id, new_balance, now)
                    for account_id, new_balance in balances.items()
                ]
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to commit transaction {transaction.id}: {e}") from e

    def open_account(self, account: Account, opening_transaction: Optional[Transaction] = None) -> None:
        """Insert an account together with its opening deposit record"""
        try:
            with self.storage.atomic():
                self._insert_account(account)
                if opening_transaction is not None:
                    self._insert_transaction(opening_transaction)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to open account {account.id}: {e}") from e

    def _insert_account(self, account: Account) -> None:
        if self.storage.exists(self.accounts_table, account.id):
            raise DuplicateRecordError(self.accounts_table, account.id)
        self.storage.save(self.accounts_table, account.id, account.to_dict())

    def _insert_transaction(self, transaction: Transaction) -> None:
        if self.storage.exists(self.transactions_table, transaction.id):
            raise DuplicateRecordError(self.transactions_table, transaction.id)
        self.storage.save(self.transactions_table, transaction.id, transaction.to_dict())

    def _write_balance(self, account_id: str, new_balance: Decimal, now: datetime) -> Account:
        data = self.storage.load(self.accounts_table, account_id)
        if not data:
            raise RecordNotFoundError(self.accounts_table, account_id)
        data['balance'] = str(new_balance)
        data['updated_at'] = now.isoformat()
        self.storage.save(self.accounts_table, account_id, data)
        return Account.from_dict(data)
