"""
Account Directory Module

Owns the in-memory view of accounts backed by the LedgerStore. The cache is
write-through: a cached account changes only after the store has confirmed
the write. The directory also owns the per-account locks that make balance
read-modify-write spans linearizable.
"""

from contextlib import contextmanager
from dataclasses import replace
from decimal import Decimal
from datetime import datetime, timezone
from typing import Dict, List, Optional
import threading

from .audit import AuditTrail, AuditEventType
from .logging_config import get_logger, log_action
from .models import Account, AccountClass, Transaction
from .results import ErrorKind, Ok, Result, fail
from .store import DuplicateRecordError, LedgerStore, RecordNotFoundError, StoreError

__all__ = ["Account", "AccountClass", "AccountDirectory"]


class AccountDirectory:
    """
    Account lookup with a write-through cache.

    Construct one per process (or per test) and pass it explicitly; there is
    no module-level instance.
    """

    def __init__(self, store: LedgerStore, audit_trail: Optional[AuditTrail] = None):
        self.store = store
        self.audit_trail = audit_trail
        self.logger = get_logger("core_ledger.accounts")

        self._cache: Dict[str, Account] = {}
        self._cache_lock = threading.RLock()
        self._account_locks: Dict[str, threading.RLock] = {}
        self._account_locks_guard = threading.Lock()

    # Locking

    def _lock_for(self, account_id: str) -> threading.RLock:
        with self._account_locks_guard:
            lock = self._account_locks.get(account_id)
            if lock is None:
                lock = threading.RLock()
                self._account_locks[account_id] = lock
            return lock

    @contextmanager
    def locked(self, *account_ids: str):
        """
        Hold the exclusive update lock of every given account.

        Locks are taken in ascending id order so two opposite transfers
        cannot deadlock.
        """
        locks = [self._lock_for(account_id) for account_id in sorted(set(account_ids))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # Reads

    def _cached(self, account_id: str) -> Optional[Account]:
        with self._cache_lock:
            account = self._cache.get(account_id)
            return replace(account) if account else None

    def _cache_put(self, account: Account) -> None:
        with self._cache_lock:
            self._cache[account.id] = replace(account)

    def resolve(self, account_id: str) -> Result[Account]:
        """
        Look up an active account: cache first, then the store.

        A cache miss is filled under the account's lock, so a fill can never
        replace a newer balance cached by a concurrent commit. Returns a copy,
        so callers cannot change cached state.
        """
        account = self._cached(account_id)
        if account is None:
            with self._lock_for(account_id):
                account = self._cached(account_id)
                if account is None:
                    try:
                        account = self.store.get_account(account_id)
                    except StoreError as e:
                        return fail(ErrorKind.PERSIST_FAILURE, str(e), account_id=account_id)
                    if account is None:
                        return fail(ErrorKind.ACCOUNT_NOT_FOUND, f"Account not found: {account_id}", account_id=account_id)
                    self._cache_put(account)

        if not account.active:
            return fail(ErrorKind.ACCOUNT_NOT_FOUND, f"Account not found: {account_id}", account_id=account_id)
        return Ok(account)

    def list_by_owner(self, owner_id: str) -> Result[List[Account]]:
        """
        Active accounts of an owner.

        The owner's account ids come from the store; each account is then
        resolved through the cache under its lock, so the listing never
        carries a balance older than the cached one.
        """
        try:
            listed = self.store.list_accounts_by_owner(owner_id)
        except StoreError as e:
            return fail(ErrorKind.PERSIST_FAILURE, str(e))

        accounts = []
        for stored in listed:
            with self._lock_for(stored.id):
                account = self._cached(stored.id)
                if account is None:
                    try:
                        account = self.store.get_account(stored.id)
                    except StoreError as e:
                        return fail(ErrorKind.PERSIST_FAILURE, str(e), account_id=stored.id)
                    if account is None:
                        continue
                    self._cache_put(account)
            accounts.append(account)

        active = [account for account in accounts if account.active]
        self.logger.debug(f"Retrieved {len(active)} accounts for owner: {owner_id}")
        return Ok(active)

    # Writes

    def create(self, account: Account, opening_transaction: Optional[Transaction] = None) -> Result[Account]:
        """
        Persist a new account, then cache it.

        ``opening_transaction`` is stored in the same atomic commit.
        """
        with self.locked(account.id):
            with self._cache_lock:
                exists_in_cache = account.id in self._cache
            if exists_in_cache:
                return self._already_exists(account.id)

            try:
                self.store.open_account(account, opening_transaction)
            except DuplicateRecordError as e:
                if e.table == self.store.accounts_table:
                    return self._already_exists(account.id)
                return fail(ErrorKind.DUPLICATE_TRANSACTION_ID, str(e), account_id=account.id)
            except StoreError as e:
                self.logger.error(f"Failed to create account {account.id}: {e}")
                return fail(ErrorKind.PERSIST_FAILURE, str(e), account_id=account.id)

            self._cache_put(account)

        log_action(
            self.logger, "info", f"Account created: {account.id}",
            user_id=account.owner_id, action="create_account", resource=f"account:{account.id}",
            extra={"account_class": account.account_class.value, "balance": str(account.balance)}
        )
        self._audit(
            AuditEventType.ACCOUNT_OPENED, account.id, account.owner_id,
            {
                "account_class": account.account_class.value,
                "display_name": account.display_name,
                "opening_balance": account.balance,
                "minimum_balance": account.minimum_balance,
            }
        )
        return Ok(replace(account))

    def _already_exists(self, account_id: str):
        self.logger.warning(f"Account already exists: {account_id}")
        return fail(ErrorKind.ACCOUNT_ALREADY_EXISTS, f"Account already exists: {account_id}", account_id=account_id)

    def apply_balance(self, account_id: str, new_balance: Decimal) -> Result[Account]:
        """
        Write one balance through to the store, then update the cache.

        Callers performing a read-modify-write must hold ``locked(account_id)``
        across the read and this call.
        """
        with self._lock_for(account_id):
            try:
                stored = self.store.update_balance(account_id, new_balance)
            except RecordNotFoundError:
                return fail(ErrorKind.ACCOUNT_NOT_FOUND, f"Account not found: {account_id}", account_id=account_id)
            except StoreError as e:
                self.logger.error(f"Failed to update balance of {account_id}: {e}")
                return fail(ErrorKind.PERSIST_FAILURE, str(e), account_id=account_id)
            self._cache_put(stored)
        self.logger.debug(f"Account balance updated: {account_id} -> {new_balance}")
        return Ok(replace(stored))

    def apply_movement(self, balances: Dict[str, Decimal], transaction: Transaction) -> Result[Transaction]:
        """
        Commit new balances for one or more accounts together with the
        transaction record, atomically, then update the cache.
        """
        try:
            stored_accounts = self.store.commit_movement(balances, transaction)
        except DuplicateRecordError as e:
            return fail(ErrorKind.DUPLICATE_TRANSACTION_ID, str(e))
        except RecordNotFoundError as e:
            return fail(ErrorKind.ACCOUNT_NOT_FOUND, str(e), account_id=e.record_id)
        except StoreError as e:
            self.logger.error(f"Failed to commit transaction {transaction.id}: {e}")
            return fail(ErrorKind.PERSIST_FAILURE, str(e))

        for account in stored_accounts:
            self._cache_put(account)
        return Ok(transaction)

    def deactivate(self, account_id: str, principal_id: Optional[str] = None) -> Result[Account]:
        """Soft-deactivate an account; it then resolves as not found"""
        with self.locked(account_id):
            resolved = self.resolve(account_id)
            if not resolved.ok:
                return resolved

            account = replace(resolved.value, active=False, updated_at=datetime.now(timezone.utc))
            try:
                self.store.save_account(account)
            except StoreError as e:
                return fail(ErrorKind.PERSIST_FAILURE, str(e), account_id=account_id)
            self._cache_put(account)

        self._audit(AuditEventType.ACCOUNT_DEACTIVATED, account_id, principal_id, {"balance": account.balance})
        return Ok(account)

    def invalidate_all(self, principal_id: Optional[str] = None) -> None:
        """Drop the whole cache, e.g. when a principal logs out"""
        with self._cache_lock:
            dropped = len(self._cache)
            self._cache.clear()
        self.logger.debug(f"Account cache cleared ({dropped} entries)")
        self._audit(AuditEventType.CACHE_INVALIDATED, "*", principal_id, {"entries": dropped})

    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    def _audit(self, event_type: AuditEventType, entity_id: str,
               principal_id: Optional[str], metadata: dict) -> None:
        if not self.audit_trail:
            return
        try:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="account",
                entity_id=entity_id,
                user_id=str(principal_id) if principal_id is not None else None,
                metadata=metadata
            )
        except Exception:
            # The directory change is already committed; the audit gap is reported here
            self.logger.exception(f"Failed to write audit event {event_type.value} for account:{entity_id}")
