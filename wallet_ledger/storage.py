"""
Ledger Store Module

Persistent accounts and append-only ledger entries behind an abstract store
interface, with in-memory (testing), SQLite (single node) and PostgreSQL
(production) implementations. All monetary values are Decimal, or integer
cents where the backend has no exact decimal type.

Mutations happen on an AtomicUnit obtained from ``LedgerStore.begin()``. A
unit serializes writers to the rows it touches for its whole lifetime and is
closed exactly once, by ``commit()`` or ``rollback()``.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager
import sqlite3
import threading

from .errors import NotFound, StoreError, SerializationFailure, DuplicateUser
from .ledger import EntryKind, LedgerEntry, UserRecord, newest_first
from .money import ZERO, quantize, to_minor_units, from_minor_units
from .logging_config import get_logger


logger = get_logger("wallet.storage")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AtomicUnit(ABC):
    """
    Group of store operations that commit or abort together

    Subclasses implement the ``_do_*`` hooks; this base class tracks whether
    the unit is still open so that no unit is ever closed twice.
    """

    def __init__(self):
        self._closed = False

    @property
    def closed(self) -> bool:
        """Check if the unit was committed or rolled back"""
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreError("atomic unit is already closed")

    def get_balance(self, account_id: int) -> Decimal:
        """Read a balance inside the unit, locking the row for the unit's lifetime"""
        self._ensure_open()
        return self._do_get_balance(account_id)

    def adjust_balance(self, account_id: int, delta: Decimal) -> None:
        """
        Add ``delta`` to a balance

        The store does not reject a resulting negative balance; callers must
        check sufficiency before issuing a negative delta.

        Raises:
            NotFound: If the account row does not exist
        """
        self._ensure_open()
        self._do_adjust_balance(account_id, quantize(delta))

    def append_entry(self, account_id: int, kind: EntryKind, amount: Decimal,
                     description: str) -> int:
        """Insert one immutable ledger entry and return its id"""
        self._ensure_open()
        if amount <= ZERO:
            raise StoreError("ledger entry amount must be positive")
        return self._do_append_entry(account_id, kind, quantize(amount), description)

    def commit(self) -> None:
        """
        Make the unit's writes durable

        On failure the unit stays open and must be rolled back.
        """
        self._ensure_open()
        self._do_commit()
        self._closed = True

    def rollback(self) -> None:
        """Discard the unit's writes; the unit is closed even if this raises"""
        self._ensure_open()
        try:
            self._do_rollback()
        finally:
            self._closed = True

    @abstractmethod
    def _do_get_balance(self, account_id: int) -> Decimal:
        pass

    @abstractmethod
    def _do_adjust_balance(self, account_id: int, delta: Decimal) -> None:
        pass

    @abstractmethod
    def _do_append_entry(self, account_id: int, kind: EntryKind, amount: Decimal,
                         description: str) -> int:
        pass

    @abstractmethod
    def _do_commit(self) -> None:
        pass

    @abstractmethod
    def _do_rollback(self) -> None:
        pass


class LedgerStore(ABC):
    """Abstract interface for ledger storage backends"""

    @abstractmethod
    def begin(self) -> AtomicUnit:
        """
        Open an atomic unit

        Raises:
            StoreError: If the backend cannot start a transaction in time
        """
        pass

    @abstractmethod
    def get_balance(self, account_id: int) -> Decimal:
        """Committed balance of an account; NotFound if it does not exist"""
        pass

    @abstractmethod
    def account_exists(self, account_id: int) -> bool:
        """Check if an account row exists"""
        pass

    @abstractmethod
    def list_entries(self, account_id: int, limit: Optional[int] = None) -> List[LedgerEntry]:
        """
        Committed entries of an account, newest first

        Raises:
            NotFound: If the account does not exist
        """
        pass

    @abstractmethod
    def create_user(self, name: str, password_hash: str) -> int:
        """
        Create a user and its zero-balance account in one unit

        Raises:
            DuplicateUser: If the name is already registered
        """
        pass

    @abstractmethod
    def find_user(self, name: str) -> Optional[UserRecord]:
        """Look up credentials by user name"""
        pass

    def ensure_schema(self) -> None:
        """Create tables if they are missing (default no-op)"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connections"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        unit = self.begin()
        try:
            yield unit
            unit.commit()
        except Exception:
            if not unit.closed:
                unit.rollback()
            raise


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryUnit(AtomicUnit):
    """
    Unit over InMemoryLedgerStore

    Holds the store's writer lock from begin to close. Writes are staged
    locally and applied under the data lock at commit, so readers outside the
    unit only ever see committed balances.
    """

    def __init__(self, store: 'InMemoryLedgerStore'):
        super().__init__()
        self._store = store
        self._deltas: Dict[int, Decimal] = {}
        self._pending: List[Tuple[int, int, EntryKind, Decimal, str]] = []

    def _do_get_balance(self, account_id: int) -> Decimal:
        committed = self._store._committed_balance(account_id)
        return committed + self._deltas.get(account_id, ZERO)

    def _do_adjust_balance(self, account_id: int, delta: Decimal) -> None:
        # Raises NotFound for unknown rows, like an UPDATE touching zero rows
        self._store._committed_balance(account_id)
        self._deltas[account_id] = self._deltas.get(account_id, ZERO) + delta

    def _do_append_entry(self, account_id: int, kind: EntryKind, amount: Decimal,
                         description: str) -> int:
        if not self._store.account_exists(account_id):
            raise StoreError(f"ledger entry references missing account {account_id}")
        entry_id = self._store._allocate_entry_id()
        self._pending.append((entry_id, account_id, kind, amount, description))
        return entry_id

    def _do_commit(self) -> None:
        self._store._apply(self._deltas, self._pending)
        self._store._writer_lock.release()

    def _do_rollback(self) -> None:
        self._deltas.clear()
        self._pending.clear()
        self._store._writer_lock.release()


class InMemoryLedgerStore(LedgerStore):
    """In-memory ledger implementation for testing and development"""

    def __init__(self, lock_timeout: float = 5.0):
        self.lock_timeout = lock_timeout
        self._accounts: Dict[int, Decimal] = {}
        self._entries: List[LedgerEntry] = []
        self._users: Dict[str, UserRecord] = {}
        self._next_account_id = 1
        self._next_entry_id = 1
        self._lock = threading.RLock()          # guards the data structures
        self._writer_lock = threading.Lock()    # held by one open unit at a time

    def begin(self) -> AtomicUnit:
        if not self._writer_lock.acquire(timeout=self.lock_timeout):
            raise StoreError("timed out waiting for the ledger write lock")
        return InMemoryUnit(self)

    def _committed_balance(self, account_id: int) -> Decimal:
        with self._lock:
            if account_id not in self._accounts:
                raise NotFound(f"Account {account_id} not found")
            return self._accounts[account_id]

    def _allocate_entry_id(self) -> int:
        with self._lock:
            entry_id = self._next_entry_id
            self._next_entry_id += 1
            return entry_id

    def _apply(self, deltas: Dict[int, Decimal],
               pending: List[Tuple[int, int, EntryKind, Decimal, str]]) -> None:
        with self._lock:
            now = _utcnow()
            for account_id, delta in deltas.items():
                self._accounts[account_id] = quantize(self._accounts[account_id] + delta)
            for entry_id, account_id, kind, amount, description in pending:
                self._entries.append(LedgerEntry(
                    id=entry_id,
                    account_id=account_id,
                    kind=kind,
                    amount=amount,
                    description=description,
                    created_at=now
                ))

    def get_balance(self, account_id: int) -> Decimal:
        return self._committed_balance(account_id)

    def account_exists(self, account_id: int) -> bool:
        with self._lock:
            return account_id in self._accounts

    def list_entries(self, account_id: int, limit: Optional[int] = None) -> List[LedgerEntry]:
        with self._lock:
            if account_id not in self._accounts:
                raise NotFound(f"Account {account_id} not found")
            entries = newest_first(e for e in self._entries if e.account_id == account_id)
        if limit is not None:
            entries = entries[:limit]
        return entries

    def create_user(self, name: str, password_hash: str) -> int:
        if not self._writer_lock.acquire(timeout=self.lock_timeout):
            raise StoreError("timed out waiting for the ledger write lock")
        try:
            with self._lock:
                if name in self._users:
                    raise DuplicateUser(f"User '{name}' already exists")
                account_id = self._next_account_id
                self._next_account_id += 1
                self._users[name] = UserRecord(id=account_id, name=name,
                                               password_hash=password_hash)
                self._accounts[account_id] = ZERO
                return account_id
        finally:
            self._writer_lock.release()

    def find_user(self, name: str) -> Optional[UserRecord]:
        with self._lock:
            return self._users.get(name)

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------


SQLITE_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id INTEGER PRIMARY KEY REFERENCES users(id),
        balance INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id INTEGER NOT NULL REFERENCES accounts(id),
        kind TEXT NOT NULL,
        amount INTEGER NOT NULL CHECK (amount > 0),
        description TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_ledger_entries_account_created
    ON ledger_entries(account_id, created_at)
    """,
)


def _sqlite_error(exc: sqlite3.Error) -> StoreError:
    """Translate a sqlite3 error, flagging lock contention as retryable"""
    message = str(exc).lower()
    if isinstance(exc, sqlite3.OperationalError) and ("locked" in message or "busy" in message):
        return SerializationFailure(f"database busy: {exc}")
    return StoreError(f"sqlite error: {exc}")


class SQLiteUnit(AtomicUnit):
    """Unit over a SQLite connection opened with BEGIN IMMEDIATE"""

    def __init__(self, store: 'SQLiteLedgerStore'):
        super().__init__()
        self._store = store
        self._conn = store._connection

    def _do_get_balance(self, account_id: int) -> Decimal:
        try:
            row = self._conn.execute(
                "SELECT balance FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise _sqlite_error(e)
        if row is None:
            raise NotFound(f"Account {account_id} not found")
        return from_minor_units(row['balance'])

    def _do_adjust_balance(self, account_id: int, delta: Decimal) -> None:
        try:
            cursor = self._conn.execute(
                "UPDATE accounts SET balance = balance + ? WHERE id = ?",
                (to_minor_units(delta), account_id)
            )
        except sqlite3.Error as e:
            raise _sqlite_error(e)
        except OverflowError as e:
            raise StoreError(f"balance change out of range: {e}")
        if cursor.rowcount == 0:
            raise NotFound(f"Account {account_id} not found")

    def _do_append_entry(self, account_id: int, kind: EntryKind, amount: Decimal,
                         description: str) -> int:
        created_at = _utcnow().isoformat(timespec='microseconds')
        try:
            cursor = self._conn.execute(
                "INSERT INTO ledger_entries (account_id, kind, amount, description, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (account_id, kind.value, to_minor_units(amount), description, created_at)
            )
        except sqlite3.Error as e:
            raise _sqlite_error(e)
        except OverflowError as e:
            raise StoreError(f"entry amount out of range: {e}")
        return cursor.lastrowid

    def _do_commit(self) -> None:
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise _sqlite_error(e)
        self._store._lock.release()

    def _do_rollback(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            raise _sqlite_error(e)
        finally:
            self._store._lock.release()


class SQLiteLedgerStore(LedgerStore):
    """SQLite ledger implementation; amounts are stored as integer cents"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", lock_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.lock_timeout = lock_timeout
        # Autocommit mode; units issue BEGIN/COMMIT/ROLLBACK explicitly
        self._connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=lock_timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            self._connection.execute("PRAGMA foreign_keys = ON")
            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def ensure_schema(self) -> None:
        with self._lock:
            for statement in SQLITE_SCHEMA:
                self._connection.execute(statement)

    def begin(self) -> AtomicUnit:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise StoreError("timed out waiting for the ledger write lock")
        try:
            self._connection.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self._lock.release()
            raise _sqlite_error(e)
        return SQLiteUnit(self)

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._connection.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise _sqlite_error(e)

    def get_balance(self, account_id: int) -> Decimal:
        rows = self._query("SELECT balance FROM accounts WHERE id = ?", (account_id,))
        if not rows:
            raise NotFound(f"Account {account_id} not found")
        return from_minor_units(rows[0]['balance'])

    def account_exists(self, account_id: int) -> bool:
        rows = self._query("SELECT 1 FROM accounts WHERE id = ? LIMIT 1", (account_id,))
        return bool(rows)

    def list_entries(self, account_id: int, limit: Optional[int] = None) -> List[LedgerEntry]:
        if not self.account_exists(account_id):
            raise NotFound(f"Account {account_id} not found")

        sql = (
            "SELECT id, account_id, kind, amount, description, created_at "
            "FROM ledger_entries WHERE account_id = ? "
            "ORDER BY created_at DESC, id DESC"
        )
        params: tuple = (account_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (account_id, limit)

        return [
            LedgerEntry(
                id=row['id'],
                account_id=row['account_id'],
                kind=EntryKind(row['kind']),
                amount=from_minor_units(row['amount']),
                description=row['description'],
                created_at=datetime.fromisoformat(row['created_at'])
            )
            for row in self._query(sql, params)
        ]

    def create_user(self, name: str, password_hash: str) -> int:
        unit = self.begin()
        try:
            cursor = self._connection.execute(
                "INSERT INTO users (name, password_hash) VALUES (?, ?)", (name, password_hash)
            )
            account_id = cursor.lastrowid
            self._connection.execute(
                "INSERT INTO accounts (id, balance) VALUES (?, 0)", (account_id,)
            )
        except sqlite3.IntegrityError:
            unit.rollback()
            raise DuplicateUser(f"User '{name}' already exists")
        except sqlite3.Error as e:
            unit.rollback()
            raise _sqlite_error(e)

        try:
            unit.commit()
        except StoreError:
            unit.rollback()
            raise
        return account_id

    def find_user(self, name: str) -> Optional[UserRecord]:
        rows = self._query("SELECT id, name, password_hash FROM users WHERE name = ?", (name,))
        if not rows:
            return None
        row = rows[0]
        return UserRecord(id=row['id'], name=row['name'], password_hash=row['password_hash'])

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


# ---------------------------------------------------------------------------
# PostgreSQL backend
# ---------------------------------------------------------------------------


POSTGRES_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id BIGINT PRIMARY KEY REFERENCES users(id),
        balance NUMERIC(18, 2) NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_entries (
        id BIGSERIAL PRIMARY KEY,
        account_id BIGINT NOT NULL REFERENCES accounts(id),
        kind TEXT NOT NULL,
        amount NUMERIC(18, 2) NOT NULL CHECK (amount > 0),
        description TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_ledger_entries_account_created
    ON ledger_entries(account_id, created_at DESC)
    """,
)

# serialization_failure, deadlock_detected
RETRYABLE_PGCODES = {"40001", "40P01"}


class PostgreSQLUnit(AtomicUnit):
    """Unit over one pooled connection; balance reads take FOR UPDATE row locks"""

    def __init__(self, store: 'PostgreSQLLedgerStore', conn):
        super().__init__()
        self._store = store
        self._conn = conn

    def _execute(self, sql: str, params: tuple):
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, params)
            return cursor
        except self._store.psycopg2.Error as e:
            cursor.close()
            raise self._store._translate(e)

    def _do_get_balance(self, account_id: int) -> Decimal:
        cursor = self._execute("SELECT balance FROM accounts WHERE id = %s FOR UPDATE", (account_id,))
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        if row is None:
            raise NotFound(f"Account {account_id} not found")
        return quantize(row[0])

    def _do_adjust_balance(self, account_id: int, delta: Decimal) -> None:
        cursor = self._execute(
            "UPDATE accounts SET balance = balance + %s WHERE id = %s", (delta, account_id)
        )
        try:
            if cursor.rowcount == 0:
                raise NotFound(f"Account {account_id} not found")
        finally:
            cursor.close()

    def _do_append_entry(self, account_id: int, kind: EntryKind, amount: Decimal,
                         description: str) -> int:
        cursor = self._execute(
            "INSERT INTO ledger_entries (account_id, kind, amount, description) "
            "VALUES (%s, %s, %s, %s) RETURNING id",
            (account_id, kind.value, amount, description)
        )
        try:
            return cursor.fetchone()[0]
        finally:
            cursor.close()

    def _do_commit(self) -> None:
        try:
            self._conn.commit()
        except self._store.psycopg2.Error as e:
            raise self._store._translate(e)
        self._store._release(self._conn)

    def _do_rollback(self) -> None:
        try:
            self._conn.rollback()
        except self._store.psycopg2.Error as e:
            self._store._release(self._conn, broken=True)
            raise self._store._translate(e)
        self._store._release(self._conn)


class PostgreSQLLedgerStore(LedgerStore):
    """
    PostgreSQL ledger backend with ACID transaction support

    Connections come from a thread-safe pool. Callers beyond ``pool_size``
    wait up to ``lock_timeout`` seconds for a connection instead of failing
    immediately.
    """

    def __init__(self, connection_string: str, pool_size: int = 5, lock_timeout: float = 5.0):
        try:
            import psycopg2
            import psycopg2.pool
            self.psycopg2 = psycopg2
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self.lock_timeout = lock_timeout
        self._slots = threading.BoundedSemaphore(pool_size)
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(1, pool_size, connection_string)
        except psycopg2.Error as e:
            raise StoreError(f"cannot connect to PostgreSQL: {e}")

    def _translate(self, exc) -> StoreError:
        if getattr(exc, 'pgcode', None) in RETRYABLE_PGCODES:
            return SerializationFailure(f"serialization failure: {exc}")
        return StoreError(f"postgresql error: {exc}")

    def _acquire(self):
        if not self._slots.acquire(timeout=self.lock_timeout):
            raise StoreError("timed out waiting for a database connection")
        try:
            conn = self._pool.getconn()
        except self.psycopg2.Error as e:
            self._slots.release()
            raise StoreError(f"cannot acquire connection: {e}")
        conn.autocommit = False
        return conn

    def _release(self, conn, broken: bool = False) -> None:
        try:
            self._pool.putconn(conn, close=broken)
        finally:
            self._slots.release()

    def _discard(self, conn) -> bool:
        """Roll back after a failed statement; True if the connection is unusable"""
        try:
            conn.rollback()
        except self.psycopg2.Error:
            return True
        return False

    def begin(self) -> AtomicUnit:
        conn = self._acquire()
        cursor = conn.cursor()
        try:
            # SET LOCAL opens the transaction and scopes the timeout to it
            cursor.execute("SET LOCAL lock_timeout = %s", (f"{int(self.lock_timeout * 1000)}ms",))
        except self.psycopg2.Error as e:
            self._release(conn, broken=True)
            raise self._translate(e)
        finally:
            cursor.close()
        return PostgreSQLUnit(self, conn)

    def _query(self, sql: str, params: tuple = ()) -> list:
        conn = self._acquire()
        broken = False
        try:
            with conn.cursor() as cursor:
                cursor.execute(sql, params)
                rows = cursor.fetchall()
            conn.commit()
            return rows
        except self.psycopg2.Error as e:
            broken = self._discard(conn)
            raise self._translate(e)
        finally:
            self._release(conn, broken=broken)

    def ensure_schema(self) -> None:
        conn = self._acquire()
        broken = False
        try:
            with conn.cursor() as cursor:
                for statement in POSTGRES_SCHEMA:
                    cursor.execute(statement)
            conn.commit()
        except self.psycopg2.Error as e:
            broken = self._discard(conn)
            raise self._translate(e)
        finally:
            self._release(conn, broken=broken)

    def get_balance(self, account_id: int) -> Decimal:
        rows = self._query("SELECT balance FROM accounts WHERE id = %s", (account_id,))
        if not rows:
            raise NotFound(f"Account {account_id} not found")
        return quantize(rows[0][0])

    def account_exists(self, account_id: int) -> bool:
        rows = self._query("SELECT 1 FROM accounts WHERE id = %s LIMIT 1", (account_id,))
        return bool(rows)

    def list_entries(self, account_id: int, limit: Optional[int] = None) -> List[LedgerEntry]:
        if not self.account_exists(account_id):
            raise NotFound(f"Account {account_id} not found")

        rows = self._query(
            "SELECT id, account_id, kind, amount, description, created_at "
            "FROM ledger_entries WHERE account_id = %s "
            "ORDER BY created_at DESC, id DESC LIMIT %s",
            (account_id, limit)
        )
        return [
            LedgerEntry(
                id=row[0],
                account_id=row[1],
                kind=EntryKind(row[2]),
                amount=quantize(row[3]),
                description=row[4],
                created_at=row[5]
            )
            for row in rows
        ]

    def create_user(self, name: str, password_hash: str) -> int:
        conn = self._acquire()
        broken = False
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    "INSERT INTO users (name, password_hash) VALUES (%s, %s) RETURNING id",
                    (name, password_hash)
                )
                account_id = cursor.fetchone()[0]
                cursor.execute("INSERT INTO accounts (id, balance) VALUES (%s, 0)", (account_id,))
            conn.commit()
            return account_id
        except self.psycopg2.IntegrityError:
            broken = self._discard(conn)
            raise DuplicateUser(f"User '{name}' already exists")
        except self.psycopg2.Error as e:
            broken = self._discard(conn)
            raise self._translate(e)
        finally:
            self._release(conn, broken=broken)

    def find_user(self, name: str) -> Optional[UserRecord]:
        rows = self._query("SELECT id, name, password_hash FROM users WHERE name = %s", (name,))
        if not rows:
            return None
        return UserRecord(id=rows[0][0], name=rows[0][1], password_hash=rows[0][2])

    def close(self) -> None:
        """Close all pooled PostgreSQL connections"""
        self._pool.closeall()


def create_store(database_url: str, pool_size: int = 5, lock_timeout: float = 5.0,
                 bootstrap_schema: bool = True) -> LedgerStore:
    """
    Build a ledger store from a database URL

    Supported forms: ``memory://``, ``sqlite:///path/to.db``,
    ``sqlite:///:memory:`` and ``postgresql://...``.
    """
    if database_url.startswith("memory://"):
        store: LedgerStore = InMemoryLedgerStore(lock_timeout=lock_timeout)
    elif database_url.startswith("sqlite:///"):
        store = SQLiteLedgerStore(database_url[len("sqlite:///"):], lock_timeout=lock_timeout)
    elif database_url.startswith(("postgresql://", "postgres://")):
        store = PostgreSQLLedgerStore(database_url, pool_size=pool_size, lock_timeout=lock_timeout)
    else:
        raise ValueError(f"Unsupported database URL: {database_url}")

    if bootstrap_schema:
        store.ensure_schema()

    logger.info("Ledger store ready: %s", type(store).__name__)
    return store
