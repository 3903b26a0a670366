"""
Concurrency tests for the transaction engine

Balance read-modify-write spans must not lose updates, and opposite
transfers must not deadlock.
"""

import tempfile
import threading
from decimal import Decimal
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from core_ledger.storage import InMemoryStorage, SQLiteStorage
from core_ledger.store import LedgerStore
from core_ledger.accounts import AccountDirectory, Account, AccountClass
from core_ledger.transactions import TransactionEngine


def make_account(account_id, owner_id, balance, minimum_balance="0.00"):
    now = datetime.now(timezone.utc)
    return Account(
        id=account_id,
        created_at=now,
        updated_at=now,
        owner_id=owner_id,
        display_name=account_id,
        balance=Decimal(balance),
        account_class=AccountClass.CURRENT,
        minimum_balance=Decimal(minimum_balance),
    )


def run_threads(target, count):
    threads = [threading.Thread(target=target, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    assert not any(thread.is_alive() for thread in threads), "worker threads did not finish"


class TestConcurrentDeposits:
    """N concurrent deposits of X end at initial + N*X"""

    @pytest.mark.parametrize("backend", ["memory", "sqlite"])
    def test_no_lost_updates(self, backend):
        with tempfile.TemporaryDirectory() as temp_dir:
            if backend == "sqlite":
                storage = SQLiteStorage(Path(temp_dir) / "ledger.db")
            else:
                storage = InMemoryStorage()
            store = LedgerStore(storage)
            directory = AccountDirectory(store)
            engine = TransactionEngine(directory)
            directory.create(make_account("ACC-A", "alice", "100.00")).unwrap()

            results = []
            results_lock = threading.Lock()

            def worker(_):
                result = engine.deposit("alice", "ACC-A", Decimal("2.50"))
                with results_lock:
                    results.append(result)

            run_threads(worker, 40)

            assert all(result.ok for result in results)
            assert len({result.value.id for result in results}) == 40
            assert store.get_account("ACC-A").balance == Decimal("200.00")
            assert directory.resolve("ACC-A").value.balance == Decimal("200.00")
            assert len(store.list_transactions_by_account("ACC-A")) == 40
            storage.close()

    def test_concurrent_withdrawals_never_breach_floor(self):
        storage = InMemoryStorage()
        store = LedgerStore(storage)
        directory = AccountDirectory(store)
        engine = TransactionEngine(directory)
        directory.create(make_account("ACC-A", "alice", "200.00", "100.00")).unwrap()

        results = []

        def worker(_):
            results.append(engine.withdraw("alice", "ACC-A", Decimal("30.00")))

        run_threads(worker, 10)

        succeeded = [result for result in results if result.ok]
        assert len(succeeded) == 3
        assert store.get_account("ACC-A").balance == Decimal("110.00")


class TestConcurrentTransfers:
    """Opposite transfers between the same pair of accounts"""

    def test_opposite_transfers_do_not_deadlock(self):
        storage = InMemoryStorage()
        store = LedgerStore(storage)
        directory = AccountDirectory(store)
        engine = TransactionEngine(directory)
        directory.create(make_account("ACC-A", "alice", "1000.00")).unwrap()
        directory.create(make_account("ACC-B", "bob", "1000.00")).unwrap()

        def worker(i):
            if i % 2:
                engine.transfer("alice", "ACC-A", "ACC-B", Decimal("1.00")).unwrap()
            else:
                engine.transfer("bob", "ACC-B", "ACC-A", Decimal("1.00")).unwrap()

        run_threads(worker, 50)

        total = store.get_account("ACC-A").balance + store.get_account("ACC-B").balance
        assert total == Decimal("2000.00")
        assert store.get_account("ACC-A").balance == Decimal("1000.00")
        assert len(store.list_transactions_by_account("ACC-A")) == 50


class TestReadsDuringWrites:
    """A read that fills the cache must not overwrite a newer committed balance"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = LedgerStore(self.storage)
        self.directory = AccountDirectory(self.store)
        self.engine = TransactionEngine(self.directory)
        self.directory.create(make_account("ACC-A", "alice", "500.00")).unwrap()

    def test_listing_with_deposit_committed_mid_read(self):
        list_accounts = self.store.list_accounts_by_owner

        def listing_then_deposit(owner_id):
            listed = list_accounts(owner_id)
            self.engine.deposit("alice", "ACC-A", Decimal("50.00")).unwrap()
            return listed

        with patch.object(self.store, "list_accounts_by_owner", side_effect=listing_then_deposit):
            accounts = self.directory.list_by_owner("alice").unwrap()

        assert accounts[0].balance == Decimal("550.00")

        self.engine.deposit("alice", "ACC-A", Decimal("10.00")).unwrap()

        assert self.store.get_account("ACC-A").balance == Decimal("560.00")
        assert self.directory.resolve("ACC-A").value.balance == Decimal("560.00")

    def test_cache_miss_fill_with_concurrent_deposit(self):
        self.directory.invalidate_all()
        get_account = self.store.get_account
        deposited = threading.Event()
        workers = []

        def deposit():
            self.engine.deposit("alice", "ACC-A", Decimal("50.00")).unwrap()
            deposited.set()

        def read_then_race(account_id):
            account = get_account(account_id)
            if not workers:
                worker = threading.Thread(target=deposit)
                workers.append(worker)
                worker.start()
                # The deposit waits for the account lock held by this read
                deposited.wait(timeout=0.2)
            return account

        with patch.object(self.store, "get_account", side_effect=read_then_race):
            assert self.engine.get_account("alice", "ACC-A").ok
            workers[0].join(timeout=5)

        assert deposited.is_set()
        self.engine.deposit("alice", "ACC-A", Decimal("10.00")).unwrap()

        assert self.store.get_account("ACC-A").balance == Decimal("560.00")
        assert self.directory.resolve("ACC-A").value.balance == Decimal("560.00")
