"""
Test suite for the ledger store backends

Runs the same contract against the in-memory and SQLite stores; the
PostgreSQL backend only runs when a database is available.
"""

import os
import threading
import pytest
from decimal import Decimal

from wallet_ledger.errors import NotFound, StoreError, SerializationFailure, DuplicateUser
from wallet_ledger.ledger import EntryKind
from wallet_ledger.storage import (
    InMemoryLedgerStore, SQLiteLedgerStore, PostgreSQLLedgerStore, create_store, _sqlite_error
)


# Skip PostgreSQL tests unless a database is configured
SKIP_POSTGRESQL_TESTS = os.getenv('SKIP_POSTGRESQL_TESTS', 'true').lower() == 'true'
POSTGRESQL_TEST_URL = os.getenv('POSTGRESQL_TEST_URL', 'postgresql://localhost/wallet_test')


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each backend under test, with the schema in place"""
    if request.param == "memory":
        backend = InMemoryLedgerStore()
    else:
        backend = SQLiteLedgerStore(tmp_path / "wallet.db")
    backend.ensure_schema()
    yield backend
    backend.close()


def _fund(store, account_id, amount):
    with store.atomic() as unit:
        unit.adjust_balance(account_id, Decimal(amount))
        unit.append_entry(account_id, EntryKind.DEPOSIT, Decimal(amount), "Deposit to wallet")


class TestUsers:
    """Test user and account creation"""

    def test_create_user_opens_zero_balance_account(self, store):
        account_id = store.create_user("alice", "scrypt$salt$digest")

        assert store.account_exists(account_id)
        assert store.get_balance(account_id) == Decimal("0.00")
        assert store.list_entries(account_id) == []

    def test_ids_are_distinct(self, store):
        first = store.create_user("alice", "h")
        second = store.create_user("bob", "h")
        assert first != second

    def test_duplicate_name_rejected(self, store):
        store.create_user("alice", "h")
        with pytest.raises(DuplicateUser):
            store.create_user("alice", "other")

        # A failed registration leaves the store writable
        assert store.create_user("bob", "h")

    def test_find_user(self, store):
        account_id = store.create_user("alice", "scrypt$salt$digest")

        user = store.find_user("alice")
        assert user.id == account_id
        assert user.name == "alice"
        assert user.password_hash == "scrypt$salt$digest"
        assert store.find_user("nobody") is None


class TestReads:
    """Test committed-state reads"""

    def test_unknown_account(self, store):
        assert not store.account_exists(404)
        with pytest.raises(NotFound):
            store.get_balance(404)
        with pytest.raises(NotFound):
            store.list_entries(404)

    def test_entries_newest_first_with_limit(self, store):
        account_id = store.create_user("alice", "h")
        for amount in ("1.00", "2.00", "3.00"):
            _fund(store, account_id, amount)

        entries = store.list_entries(account_id)
        assert [e.amount for e in entries] == [Decimal("3.00"), Decimal("2.00"), Decimal("1.00")]
        assert all(e.account_id == account_id for e in entries)
        assert all(e.created_at.tzinfo is not None for e in entries)

        limited = store.list_entries(account_id, limit=2)
        assert [e.amount for e in limited] == [Decimal("3.00"), Decimal("2.00")]

    def test_cent_amounts_are_exact(self, store):
        account_id = store.create_user("alice", "h")
        _fund(store, account_id, "0.10")
        _fund(store, account_id, "0.20")
        assert store.get_balance(account_id) == Decimal("0.30")


class TestAtomicUnits:
    """Test atomic unit semantics"""

    def test_commit_makes_writes_visible(self, store):
        account_id = store.create_user("alice", "h")

        unit = store.begin()
        assert unit.get_balance(account_id) == Decimal("0.00")
        unit.adjust_balance(account_id, Decimal("25.00"))
        assert unit.get_balance(account_id) == Decimal("25.00")
        entry_id = unit.append_entry(account_id, EntryKind.DEPOSIT, Decimal("25.00"), "Deposit to wallet")
        unit.commit()

        assert unit.closed
        assert store.get_balance(account_id) == Decimal("25.00")
        entries = store.list_entries(account_id)
        assert [e.id for e in entries] == [entry_id]
        assert entries[0].kind == EntryKind.DEPOSIT
        assert entries[0].description == "Deposit to wallet"

    def test_rollback_discards_writes(self, store):
        account_id = store.create_user("alice", "h")

        unit = store.begin()
        unit.adjust_balance(account_id, Decimal("25.00"))
        unit.append_entry(account_id, EntryKind.DEPOSIT, Decimal("25.00"), "Deposit to wallet")
        unit.rollback()

        assert unit.closed
        assert store.get_balance(account_id) == Decimal("0.00")
        assert store.list_entries(account_id) == []

    def test_closed_unit_rejects_operations(self, store):
        account_id = store.create_user("alice", "h")
        unit = store.begin()
        unit.commit()

        with pytest.raises(StoreError):
            unit.commit()
        with pytest.raises(StoreError):
            unit.rollback()
        with pytest.raises(StoreError):
            unit.adjust_balance(account_id, Decimal("1.00"))

    def test_atomic_context_rolls_back_on_error(self, store):
        account_id = store.create_user("alice", "h")

        with pytest.raises(RuntimeError):
            with store.atomic() as unit:
                unit.adjust_balance(account_id, Decimal("10.00"))
                raise RuntimeError("boom")

        assert store.get_balance(account_id) == Decimal("0.00")
        # the write lock was released
        _fund(store, account_id, "1.00")
        assert store.get_balance(account_id) == Decimal("1.00")

    def test_adjust_unknown_account(self, store):
        with pytest.raises(NotFound):
            with store.atomic() as unit:
                unit.adjust_balance(404, Decimal("1.00"))

    def test_entry_amount_must_be_positive(self, store):
        account_id = store.create_user("alice", "h")
        with pytest.raises(StoreError):
            with store.atomic() as unit:
                unit.append_entry(account_id, EntryKind.DEPOSIT, Decimal("0.00"), "nothing")

    def test_store_does_not_enforce_non_negative_balance(self, store):
        account_id = store.create_user("alice", "h")
        with store.atomic() as unit:
            unit.adjust_balance(account_id, Decimal("-5.00"))
        assert store.get_balance(account_id) == Decimal("-5.00")

    def test_delta_is_rounded_to_cents(self, store):
        account_id = store.create_user("alice", "h")
        with store.atomic() as unit:
            unit.adjust_balance(account_id, Decimal("1.005"))
        assert store.get_balance(account_id) == Decimal("1.01")


class TestInMemoryIsolation:
    """Isolation behaviour specific to the in-memory store"""

    def test_uncommitted_writes_are_invisible(self):
        store = InMemoryLedgerStore()
        account_id = store.create_user("alice", "h")

        unit = store.begin()
        unit.adjust_balance(account_id, Decimal("10.00"))
        unit.append_entry(account_id, EntryKind.DEPOSIT, Decimal("10.00"), "Deposit to wallet")

        assert store.get_balance(account_id) == Decimal("0.00")
        assert store.list_entries(account_id) == []

        unit.commit()
        assert store.get_balance(account_id) == Decimal("10.00")

    def test_begin_times_out_while_unit_open(self):
        store = InMemoryLedgerStore(lock_timeout=0.05)
        unit = store.begin()

        with pytest.raises(StoreError):
            store.begin()

        unit.rollback()
        store.begin().rollback()

    def test_entries_of_one_unit_share_timestamp(self):
        store = InMemoryLedgerStore()
        a = store.create_user("a", "h")
        b = store.create_user("b", "h")
        with store.atomic() as unit:
            unit.append_entry(a, EntryKind.TRANSFER_OUT, Decimal("1.00"), "out")
            unit.append_entry(b, EntryKind.TRANSFER_IN, Decimal("1.00"), "in")

        assert store.list_entries(a)[0].created_at == store.list_entries(b)[0].created_at


class TestSQLiteBackend:
    """SQLite specific behaviour"""

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "wallet.db"
        store = SQLiteLedgerStore(path)
        store.ensure_schema()
        account_id = store.create_user("alice", "h")
        _fund(store, account_id, "12.34")
        store.close()

        reopened = SQLiteLedgerStore(path)
        reopened.ensure_schema()
        assert reopened.get_balance(account_id) == Decimal("12.34")
        assert reopened.find_user("alice").id == account_id
        reopened.close()

    def test_writer_blocks_other_threads_until_commit(self, tmp_path):
        store = SQLiteLedgerStore(tmp_path / "wallet.db")
        store.ensure_schema()
        account_id = store.create_user("alice", "h")

        unit = store.begin()
        unit.adjust_balance(account_id, Decimal("10.00"))

        seen = []
        reader = threading.Thread(target=lambda: seen.append(store.get_balance(account_id)))
        reader.start()
        reader.join(timeout=0.2)
        assert seen == []

        unit.commit()
        reader.join(timeout=5)
        assert seen == [Decimal("10.00")]
        store.close()

    def test_out_of_range_amounts_raise_store_error(self):
        store = SQLiteLedgerStore(":memory:")
        store.ensure_schema()
        account_id = store.create_user("alice", "h")

        with pytest.raises(StoreError):
            with store.atomic() as unit:
                unit.adjust_balance(account_id, Decimal("100000000000000000"))
        with pytest.raises(StoreError):
            with store.atomic() as unit:
                unit.append_entry(account_id, EntryKind.DEPOSIT, Decimal("100000000000000000"), "big")

        assert store.get_balance(account_id) == Decimal("0.00")
        assert store.list_entries(account_id) == []
        store.close()

    def test_busy_errors_are_retryable(self):
        import sqlite3

        assert isinstance(_sqlite_error(sqlite3.OperationalError("database is locked")), SerializationFailure)
        plain = _sqlite_error(sqlite3.OperationalError("no such table: accounts"))
        assert isinstance(plain, StoreError)
        assert not plain.retryable


class TestCreateStore:
    """Test building stores from database URLs"""

    def test_memory_url(self):
        store = create_store("memory://")
        assert isinstance(store, InMemoryLedgerStore)

    def test_sqlite_memory_url(self):
        store = create_store("sqlite:///:memory:")
        assert isinstance(store, SQLiteLedgerStore)
        # schema was bootstrapped
        account_id = store.create_user("alice", "h")
        assert store.get_balance(account_id) == Decimal("0.00")
        store.close()

    def test_sqlite_file_url(self, tmp_path):
        store = create_store(f"sqlite:///{tmp_path / 'wallet.db'}")
        assert isinstance(store, SQLiteLedgerStore)
        assert store.db_path == str(tmp_path / "wallet.db")
        store.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_store("mysql://localhost/wallet")


@pytest.mark.skipif(SKIP_POSTGRESQL_TESTS, reason="PostgreSQL tests skipped")
class TestPostgreSQLBackend:
    """Contract checks against a live PostgreSQL database"""

    def setup_method(self):
        self.store = PostgreSQLLedgerStore(POSTGRESQL_TEST_URL)
        self.store.ensure_schema()
        self.suffix = os.urandom(4).hex()

    def teardown_method(self):
        self.store.close()

    def test_unit_commit_and_rollback(self):
        account_id = self.store.create_user(f"alice-{self.suffix}", "h")

        unit = self.store.begin()
        unit.adjust_balance(account_id, Decimal("10.00"))
        unit.append_entry(account_id, EntryKind.DEPOSIT, Decimal("10.00"), "Deposit to wallet")
        unit.commit()

        unit = self.store.begin()
        unit.adjust_balance(account_id, Decimal("-3.00"))
        unit.rollback()

        assert self.store.get_balance(account_id) == Decimal("10.00")
        entries = self.store.list_entries(account_id)
        assert len(entries) == 1
        assert entries[0].amount == Decimal("10.00")

    def test_duplicate_user(self):
        self.store.create_user(f"bob-{self.suffix}", "h")
        with pytest.raises(DuplicateUser):
            self.store.create_user(f"bob-{self.suffix}", "h")


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def execute(self, sql, params=None):
        self.conn.check()

    def fetchall(self):
        return [(1,)]

    def fetchone(self):
        return (1,)

    def close(self):
        pass


class FakeConnection:
    def __init__(self, psycopg2, dead=False):
        self.psycopg2 = psycopg2
        self.dead = dead
        self.autocommit = True

    def check(self):
        if self.dead:
            raise self.psycopg2.OperationalError("server closed the connection unexpectedly")

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.check()

    def rollback(self):
        self.check()


class FakePool:
    """Mimics ThreadedConnectionPool: getconn fails as soon as maxconn are out"""

    def __init__(self, psycopg2, maxconn):
        self.psycopg2 = psycopg2
        self.maxconn = maxconn
        self.in_use = 0
        self.discarded = []
        self.hand_out_dead = False
        self._lock = threading.Lock()

    def getconn(self):
        with self._lock:
            if self.in_use >= self.maxconn:
                raise self.psycopg2.pool.PoolError("connection pool exhausted")
            self.in_use += 1
        return FakeConnection(self.psycopg2, dead=self.hand_out_dead)

    def putconn(self, conn, close=False):
        with self._lock:
            self.in_use -= 1
        if close:
            self.discarded.append(conn)

    def closeall(self):
        pass


@pytest.fixture
def pooled_store(monkeypatch):
    """Build a PostgreSQL store over a fake connection pool"""
    psycopg2 = pytest.importorskip("psycopg2")
    import psycopg2.pool

    pools = []

    def make_pool(minconn, maxconn, dsn):
        pool = FakePool(psycopg2, maxconn)
        pools.append(pool)
        return pool

    monkeypatch.setattr(psycopg2.pool, "ThreadedConnectionPool", make_pool)

    def build(pool_size=1, lock_timeout=5.0):
        store = PostgreSQLLedgerStore("postgresql://localhost/wallet", pool_size=pool_size,
                                      lock_timeout=lock_timeout)
        return store, pools[-1]

    return build


class TestPostgreSQLConnectionPool:
    """Connection handling of the PostgreSQL store without a server"""

    def test_callers_beyond_pool_size_wait_for_a_connection(self, pooled_store):
        store, pool = pooled_store(pool_size=1)
        first = store.begin()

        releaser = threading.Timer(0.1, first.rollback)
        releaser.start()
        second = store.begin()
        releaser.join()

        assert pool.in_use == 1
        second.rollback()
        assert pool.in_use == 0

    def test_wait_for_connection_is_bounded(self, pooled_store):
        store, pool = pooled_store(pool_size=1, lock_timeout=0.05)
        first = store.begin()

        with pytest.raises(StoreError) as exc_info:
            store.begin()
        assert "timed out" in exc_info.value.message

        first.rollback()
        store.begin().rollback()
        assert pool.in_use == 0

    def test_dead_connection_is_discarded(self, pooled_store):
        store, pool = pooled_store(pool_size=2)
        pool.hand_out_dead = True

        with pytest.raises(StoreError):
            store.get_balance(1)

        assert len(pool.discarded) == 1
        assert pool.in_use == 0

        pool.hand_out_dead = False
        assert store.account_exists(1)
