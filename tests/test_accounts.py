"""
Test suite for the account directory

Covers the write-through cache, resolve semantics, account creation,
deactivation and per-account locking.
"""

import threading
import time
from decimal import Decimal
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from core_ledger.storage import InMemoryStorage, StorageError
from core_ledger.audit import AuditTrail, AuditEventType
from core_ledger.store import LedgerStore, StoreError
from core_ledger.models import Transaction, TransactionType
from core_ledger.accounts import AccountDirectory, Account, AccountClass
from core_ledger.results import ErrorKind


def make_account(account_id="ACC-1", owner_id="alice", balance="500.00", minimum_balance="100.00"):
    now = datetime.now(timezone.utc)
    return Account(
        id=account_id,
        created_at=now,
        updated_at=now,
        owner_id=owner_id,
        display_name="Everyday",
        balance=Decimal(balance),
        account_class=AccountClass.SAVINGS,
        minimum_balance=Decimal(minimum_balance),
    )


class TestAccountModel:
    """Test the Account dataclass"""

    def test_balance_must_be_decimal(self):
        with pytest.raises(ValueError):
            Account(
                id="ACC-1",
                created_at=datetime.now(timezone.utc),
                updated_at=datetime.now(timezone.utc),
                owner_id="alice",
                display_name="x",
                balance=500.0,
                account_class=AccountClass.SAVINGS,
                minimum_balance=Decimal("100.00"),
            )

    def test_available_to_withdraw(self):
        assert make_account(balance="500.00").available_to_withdraw == Decimal("400.00")
        assert make_account(balance="100.00").available_to_withdraw == Decimal("0.00")

    def test_account_class_from_str(self):
        assert AccountClass.from_str(" current ") == AccountClass.CURRENT
        with pytest.raises(ValueError):
            AccountClass.from_str("checking")

    def test_serialization_round_trip_keeps_decimal_strings(self):
        account = make_account(balance="123.45")
        data = account.to_dict()

        assert data["balance"] == "123.45"
        assert data["account_class"] == "SAVINGS"
        assert Account.from_dict(data) == account


class TestResolve:
    """Test account lookup"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = LedgerStore(self.storage)
        self.directory = AccountDirectory(self.store)

    def test_resolve_populates_cache_from_store(self):
        self.store.put_account(make_account())

        assert self.directory.cache_size() == 0
        result = self.directory.resolve("ACC-1")

        assert result.ok
        assert result.value.balance == Decimal("500.00")
        assert self.directory.cache_size() == 1

    def test_resolve_hits_cache_second_time(self):
        self.store.put_account(make_account())
        self.directory.resolve("ACC-1")

        with patch.object(self.store, "get_account") as get_account:
            self.directory.resolve("ACC-1")

        get_account.assert_not_called()

    def test_resolve_twice_returns_identical_values(self):
        self.directory.create(make_account())

        first = self.directory.resolve("ACC-1").value
        second = self.directory.resolve("ACC-1").value

        assert first == second
        assert first is not second

    def test_resolved_copy_cannot_change_cache(self):
        self.directory.create(make_account())

        copy = self.directory.resolve("ACC-1").value
        copy.balance = Decimal("1.00")

        assert self.directory.resolve("ACC-1").value.balance == Decimal("500.00")

    def test_resolve_missing(self):
        result = self.directory.resolve("ACC-404")

        assert result.kind == ErrorKind.ACCOUNT_NOT_FOUND

    def test_resolve_store_failure(self):
        with patch.object(self.store, "get_account", side_effect=StoreError("offline")):
            result = self.directory.resolve("ACC-1")

        assert result.kind == ErrorKind.PERSIST_FAILURE
        assert self.directory.cache_size() == 0


class TestCreate:
    """Test account creation"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.store = LedgerStore(self.storage)
        self.directory = AccountDirectory(self.store, self.audit_trail)

    def test_create_persists_and_caches(self):
        result = self.directory.create(make_account())

        assert result.ok
        assert self.store.get_account("ACC-1") is not None
        assert self.directory.cache_size() == 1

        opened = self.audit_trail.get_events_for_entity("account", "ACC-1")
        assert [e.event_type for e in opened] == [AuditEventType.ACCOUNT_OPENED]

    def test_create_duplicate_in_cache(self):
        self.directory.create(make_account())

        result = self.directory.create(make_account(balance="999.00"))

        assert result.kind == ErrorKind.ACCOUNT_ALREADY_EXISTS
        assert self.store.get_account("ACC-1").balance == Decimal("500.00")

    def test_create_duplicate_in_store_only(self):
        self.store.put_account(make_account())

        result = self.directory.create(make_account())

        assert result.kind == ErrorKind.ACCOUNT_ALREADY_EXISTS

    def test_create_with_opening_transaction(self):
        account = make_account()
        opening = Transaction(
            id="TXN-OPEN",
            created_at=account.created_at,
            updated_at=account.created_at,
            source_account_id=account.id,
            destination_account_id=None,
            amount=Decimal("500.00"),
            transaction_type=TransactionType.DEPOSIT,
            description="Opening deposit",
        )

        assert self.directory.create(account, opening).ok
        assert self.store.get_transaction("TXN-OPEN").amount == Decimal("500.00")

    def test_create_store_failure_leaves_cache_untouched(self):
        with patch.object(self.store, "open_account", side_effect=StoreError("offline")):
            result = self.directory.create(make_account())

        assert result.kind == ErrorKind.PERSIST_FAILURE
        assert self.directory.cache_size() == 0


class TestWriteThrough:
    """Cache changes only after the store confirms"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = LedgerStore(self.storage)
        self.directory = AccountDirectory(self.store)
        self.directory.create(make_account())

    def test_apply_balance(self):
        result = self.directory.apply_balance("ACC-1", Decimal("750.00"))

        assert result.ok
        assert self.store.get_account("ACC-1").balance == Decimal("750.00")
        assert self.directory.resolve("ACC-1").value.balance == Decimal("750.00")

    def test_apply_balance_store_failure_keeps_old_cache(self):
        with patch.object(self.store, "update_balance", side_effect=StoreError("disk full")):
            result = self.directory.apply_balance("ACC-1", Decimal("750.00"))

        assert result.kind == ErrorKind.PERSIST_FAILURE
        assert self.directory.resolve("ACC-1").value.balance == Decimal("500.00")

    def test_apply_balance_unknown_account(self):
        result = self.directory.apply_balance("ACC-404", Decimal("1.00"))

        assert result.kind == ErrorKind.ACCOUNT_NOT_FOUND

    def test_apply_movement_duplicate_transaction(self):
        now = datetime.now(timezone.utc)
        txn = Transaction(
            id="TXN-1", created_at=now, updated_at=now,
            source_account_id="ACC-1", destination_account_id=None,
            amount=Decimal("5.00"), transaction_type=TransactionType.DEPOSIT,
            description="Cash deposit",
        )
        assert self.directory.apply_movement({"ACC-1": Decimal("505.00")}, txn).ok

        again = self.directory.apply_movement({"ACC-1": Decimal("510.00")}, txn)

        assert again.kind == ErrorKind.DUPLICATE_TRANSACTION_ID
        assert self.store.get_account("ACC-1").balance == Decimal("505.00")
        assert self.directory.resolve("ACC-1").value.balance == Decimal("505.00")


class TestListAndLifecycle:
    """Test owner listing, deactivation and cache invalidation"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.store = LedgerStore(self.storage)
        self.directory = AccountDirectory(self.store, self.audit_trail)
        self.directory.create(make_account("ACC-1", "alice"))
        self.directory.create(make_account("ACC-2", "alice"))
        self.directory.create(make_account("ACC-3", "bob"))

    def test_list_by_owner(self):
        accounts = self.directory.list_by_owner("alice").unwrap()

        assert sorted(a.id for a in accounts) == ["ACC-1", "ACC-2"]

    def test_deactivated_account_is_not_found_and_not_listed(self):
        assert self.directory.deactivate("ACC-1", principal_id="ops").ok

        assert self.directory.resolve("ACC-1").kind == ErrorKind.ACCOUNT_NOT_FOUND
        assert [a.id for a in self.directory.list_by_owner("alice").unwrap()] == ["ACC-2"]
        assert self.store.get_account("ACC-1").active is False

    def test_invalidate_all_reloads_from_store(self):
        self.store.update_balance("ACC-1", Decimal("42.00"))
        assert self.directory.resolve("ACC-1").value.balance == Decimal("500.00")

        self.directory.invalidate_all(principal_id="alice")

        assert self.directory.cache_size() == 0
        assert self.directory.resolve("ACC-1").value.balance == Decimal("42.00")
        invalidations = self.audit_trail.get_events_by_type(AuditEventType.CACHE_INVALIDATED)
        assert invalidations[0].metadata["entries"] == 3


class TestAuditFailure:
    """A failed audit write never undoes or fails a committed directory change"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.store = LedgerStore(self.storage)
        self.directory = AccountDirectory(self.store, self.audit_trail)

    def audit_fails(self):
        return patch.object(self.audit_trail, "log_event", side_effect=StorageError("audit table locked"))

    def test_create(self):
        with self.audit_fails():
            result = self.directory.create(make_account())

        assert result.ok
        assert self.store.get_account("ACC-1") is not None
        assert self.directory.cache_size() == 1

    def test_deactivate(self):
        self.directory.create(make_account())

        with self.audit_fails():
            result = self.directory.deactivate("ACC-1", principal_id="ops")

        assert result.ok
        assert self.store.get_account("ACC-1").active is False

    def test_invalidate_all(self):
        self.directory.create(make_account())

        with self.audit_fails():
            self.directory.invalidate_all("alice")

        assert self.directory.cache_size() == 0

    def test_failure_is_logged(self):
        with self.audit_fails(), patch.object(self.directory.logger, "exception") as log_exception:
            self.directory.invalidate_all("alice")

        log_exception.assert_called_once()
        assert "cache_invalidated" in log_exception.call_args[0][0]


class TestLocking:
    """Test per-account locks"""

    def test_locked_blocks_same_account(self):
        directory = AccountDirectory(LedgerStore(InMemoryStorage()))
        order = []

        def second():
            with directory.locked("ACC-1"):
                order.append("second")

        with directory.locked("ACC-1"):
            thread = threading.Thread(target=second)
            thread.start()
            time.sleep(0.05)
            order.append("first")
        thread.join(timeout=5)

        assert order == ["first", "second"]

    def test_locked_different_accounts_do_not_block(self):
        directory = AccountDirectory(LedgerStore(InMemoryStorage()))
        entered = threading.Event()

        def other():
            with directory.locked("ACC-2"):
                entered.set()

        with directory.locked("ACC-1"):
            thread = threading.Thread(target=other)
            thread.start()
            assert entered.wait(timeout=5)
        thread.join(timeout=5)

    def test_locked_accepts_repeated_ids(self):
        directory = AccountDirectory(LedgerStore(InMemoryStorage()))

        with directory.locked("ACC-1", "ACC-1"):
            pass
