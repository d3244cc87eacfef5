"""
Concurrency tests

Many threads race on the same accounts; balances must never go negative
and the ledger must stay balanced.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from wallet_ledger.errors import InsufficientFunds
from wallet_ledger.queries import WalletQueries
from wallet_ledger.storage import InMemoryLedgerStore, SQLiteLedgerStore
from wallet_ledger.transactions import TransactionCoordinator


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryLedgerStore(lock_timeout=30)
    else:
        backend = SQLiteLedgerStore(tmp_path / "wallet.db", lock_timeout=30)
    backend.ensure_schema()
    yield backend
    backend.close()


class TestConcurrentOperations:
    """Test racing operations"""

    def test_concurrent_withdrawals_never_overdraw(self, store):
        coordinator = TransactionCoordinator(store)
        account_id = store.create_user("alice", "h")
        coordinator.deposit(account_id, "100.00")

        def withdraw():
            try:
                coordinator.withdraw(account_id, "10.00")
                return True
            except InsufficientFunds:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: withdraw(), range(25)))

        assert results.count(True) == 10
        assert store.get_balance(account_id) == Decimal("0.00")
        assert WalletQueries(store).reconcile(account_id).is_balanced

    def test_opposing_transfers_conserve_money(self, store):
        coordinator = TransactionCoordinator(store)
        alice = store.create_user("alice", "h")
        bob = store.create_user("bob", "h")
        coordinator.deposit(alice, "50.00")
        coordinator.deposit(bob, "50.00")

        def move(i):
            source, target = (alice, bob) if i % 2 == 0 else (bob, alice)
            try:
                coordinator.transfer(source, target, "7.00")
            except InsufficientFunds:
                pass

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(move, range(40)))

        queries = WalletQueries(store)
        alice_balance = store.get_balance(alice)
        bob_balance = store.get_balance(bob)
        assert alice_balance >= Decimal("0.00")
        assert bob_balance >= Decimal("0.00")
        assert alice_balance + bob_balance == Decimal("100.00")
        assert queries.reconcile(alice).is_balanced
        assert queries.reconcile(bob).is_balanced

    def test_concurrent_deposits_all_recorded(self, store):
        coordinator = TransactionCoordinator(store)
        account_id = store.create_user("alice", "h")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: coordinator.deposit(account_id, "0.01"), range(50)))

        assert store.get_balance(account_id) == Decimal("0.50")
        assert len(store.list_entries(account_id)) == 50
