"""
Wallet record storage.

Both backends expose the same three operations:

- ``get(address)`` returns the stored record or None
- ``upsert(address, mutator)`` runs an atomic read-modify-write for one address
- ``list_top(n)`` returns the n records with the most wins

Every read-modify-write for an address runs under that address's lock, so
concurrent accumulating updates never lose a delta. Different addresses do
not contend with each other.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol

from .errors import StorageError
from .models import WalletRecord

logger = logging.getLogger(__name__)

Mutator = Callable[[WalletRecord, bool], WalletRecord]

# Largest value a SQLite INTEGER column holds; counters stay within it on every backend.
MAX_COUNTER = 2 ** 63 - 1


class WalletStore(Protocol):
    def get(self, address: str) -> Optional[WalletRecord]: ...

    def upsert(self, address: str, mutator: Mutator) -> tuple[WalletRecord, bool]: ...

    def list_top(self, n: int) -> list[WalletRecord]: ...


class KeyedLocks:
    """Registry handing out one lock per key."""

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._lock_for(key):
            yield

    def __len__(self) -> int:
        return len(self._locks)


def _apply(address: str, current: WalletRecord, created: bool, mutator: Mutator) -> WalletRecord:
    updated = mutator(current, created)
    if updated.address != address:
        raise ValueError(f"Mutator changed wallet address {address!r} to {updated.address!r}")
    return updated


def _sort_key(record: WalletRecord) -> tuple[int, str]:
    return (-record.win_count, record.address)


class InMemoryWalletStore:
    def __init__(self):
        self.records: dict[str, WalletRecord] = {}
        self._locks = KeyedLocks()

    def get(self, address: str) -> Optional[WalletRecord]:
        record = self.records.get(address)
        return record.model_copy() if record else None

    def upsert(self, address: str, mutator: Mutator) -> tuple[WalletRecord, bool]:
        with self._locks.hold(address):
            existing = self.records.get(address)
            created = existing is None
            current = WalletRecord(address=address) if created else existing.model_copy()
            updated = _apply(address, current, created, mutator)
            self.records[address] = updated.model_copy()
            return updated, created

    def list_top(self, n: int) -> list[WalletRecord]:
        records = sorted(list(self.records.values()), key=_sort_key)
        return [r.model_copy() for r in records[:max(n, 0)]]


SCHEMA = """
CREATE TABLE IF NOT EXISTS wallet_data (
    wallet_address TEXT PRIMARY KEY,
    tokens INTEGER NOT NULL DEFAULT 0,
    punches INTEGER NOT NULL DEFAULT 0,
    bonusPunches INTEGER NOT NULL DEFAULT 0,
    referredBy TEXT NOT NULL DEFAULT '',
    characterName TEXT NOT NULL DEFAULT '',
    winCount INTEGER NOT NULL DEFAULT 0
)
"""

# Columns a table created by an earlier deployment may be missing.
LATE_COLUMNS = {
    "bonusPunches": "INTEGER NOT NULL DEFAULT 0",
    "winCount": "INTEGER NOT NULL DEFAULT 0",
}

COLUMNS = ("wallet_address", "tokens", "punches", "bonusPunches", "referredBy", "characterName", "winCount")

UPSERT_SQL = f"""
INSERT INTO wallet_data ({", ".join(COLUMNS)}) VALUES ({", ".join("?" for _ in COLUMNS)})
ON CONFLICT(wallet_address) DO UPDATE SET
    tokens = excluded.tokens,
    punches = excluded.punches,
    bonusPunches = excluded.bonusPunches,
    referredBy = excluded.referredBy,
    characterName = excluded.characterName,
    winCount = excluded.winCount
"""


def _row_to_record(row: sqlite3.Row) -> WalletRecord:
    return WalletRecord(
        address=row["wallet_address"],
        tokens=row["tokens"] or 0,
        punches=row["punches"] or 0,
        bonus_punches=row["bonusPunches"] or 0,
        referred_by=row["referredBy"] or "",
        character_name=row["characterName"] or "",
        win_count=row["winCount"] or 0,
    )


def _record_to_row(record: WalletRecord) -> tuple:
    return (
        record.address, record.tokens, record.punches, record.bonus_punches,
        record.referred_by, record.character_name, record.win_count,
    )


class SqliteWalletStore:
    """SQLite-backed store.

    Opens a short-lived connection per operation. Upserts run inside
    ``BEGIN IMMEDIATE`` while holding the per-address lock, which also keeps
    writers in other processes sharing the file from interleaving.
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self._locks = KeyedLocks()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            logger.error("Failed to open wallet database %s: %s", self.db_path, e)
            raise StorageError(f"Cannot open wallet database: {e}") from e
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connection() as conn:
            try:
                conn.execute(SCHEMA)
                existing = {row["name"] for row in conn.execute("PRAGMA table_info(wallet_data)")}
                for column, definition in LATE_COLUMNS.items():
                    if column not in existing:
                        conn.execute(f"ALTER TABLE wallet_data ADD COLUMN {column} {definition}")
                        logger.info("Added column %s to wallet_data", column)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_wallet_data_wins ON wallet_data (winCount DESC)")
            except sqlite3.Error as e:
                logger.error("Failed to initialize wallet schema: %s", e)
                raise StorageError(f"Cannot initialize wallet schema: {e}") from e

    def get(self, address: str) -> Optional[WalletRecord]:
        with self._connection() as conn:
            try:
                row = conn.execute(
                    "SELECT * FROM wallet_data WHERE wallet_address = ?", (address,)
                ).fetchone()
            except sqlite3.Error as e:
                logger.error("Failed to read wallet %s: %s", address, e)
                raise StorageError(f"Cannot read wallet {address}: {e}") from e
        return _row_to_record(row) if row else None

    def upsert(self, address: str, mutator: Mutator) -> tuple[WalletRecord, bool]:
        with self._locks.hold(address), self._connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT * FROM wallet_data WHERE wallet_address = ?", (address,)
                ).fetchone()
            except sqlite3.Error as e:
                logger.error("Failed to read wallet %s for update: %s", address, e)
                self._rollback(conn)
                raise StorageError(f"Cannot read wallet {address}: {e}") from e

            created = row is None
            current = WalletRecord(address=address) if created else _row_to_record(row)
            try:
                updated = _apply(address, current, created, mutator)
            except Exception:
                self._rollback(conn)
                raise

            try:
                conn.execute(UPSERT_SQL, _record_to_row(updated))
                conn.execute("COMMIT")
            except (sqlite3.Error, OverflowError) as e:
                logger.error("Failed to write wallet %s: %s", address, e)
                self._rollback(conn)
                raise StorageError(f"Cannot write wallet {address}: {e}") from e
            return updated, created

    def list_top(self, n: int) -> list[WalletRecord]:
        with self._connection() as conn:
            try:
                rows = conn.execute(
                    "SELECT * FROM wallet_data ORDER BY winCount DESC, wallet_address ASC LIMIT ?",
                    (max(n, 0),),
                ).fetchall()
            except sqlite3.Error as e:
                logger.error("Failed to read leaderboard: %s", e)
                raise StorageError(f"Cannot read leaderboard: {e}") from e
        return [_row_to_record(row) for row in rows]

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("Rollback failed on wallet database: %s", e)
