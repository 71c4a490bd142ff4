"""
Storage Backend Module

Provides the abstract record store used by the ledger and two implementations:
in-memory (testing, embedding) and SQLite (persistence). All monetary values
are stored as Decimal strings and dates as ISO strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Sequence, Tuple, Iterable
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import copy
import logging
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .exceptions import RecordNotFound


logger = logging.getLogger("microledger.storage")

# Sort order: [(field, 1 | -1), ...], applied left to right
SortSpec = Sequence[Tuple[str, int]]
ASCENDING = 1
DESCENDING = -1


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


def matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    """Check a record against equality filters"""
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


def sort_records(records: List[Dict[str, Any]], sort: Optional[SortSpec]) -> List[Dict[str, Any]]:
    """Stable multi-key sort; missing values sort before present ones"""
    if not sort:
        return records
    for field_name, direction in reversed(list(sort)):
        records.sort(
            key=lambda r: (r.get(field_name) is not None, r.get(field_name) if r.get(field_name) is not None else 0),
            reverse=direction < 0
        )
    return records


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def find(self, table: str, filters: Dict[str, Any],
             sort: Optional[SortSpec] = None) -> List[Dict[str, Any]]:
        """Find records matching equality filters, optionally sorted"""
        results = [record for record in self.load_all(table) if matches(record, filters)]
        return sort_records(results, sort)

    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """First record (insertion order) matching filters"""
        for record in self.load_all(table):
            if matches(record, filters):
                return record
        return None

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new record; fails if the id is already taken"""
        if self.exists(table, record_id):
            raise ValueError(f"Record {record_id} already exists in {table}")
        self.save(table, record_id, data)
        return self.load(table, record_id)

    def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Merge a patch into an existing record; None if it does not exist"""
        existing = self.load(table, record_id)
        if existing is None:
            return None
        existing.update(patch)
        self.save(table, record_id, existing)
        return existing

    def batch_update(self, table: str, updates: Iterable[Tuple[str, Dict[str, Any]]]) -> int:
        """
        Apply several patches as one all-or-nothing unit.

        Raises:
            RecordNotFound: If any target record is missing; nothing is applied
        """
        updates = list(updates)
        with self.atomic():
            staged = []
            for record_id, patch in updates:
                existing = self.load(table, record_id)
                if existing is None:
                    raise RecordNotFound(f"Record {record_id} not found in {table}")
                existing.update(patch)
                staged.append((record_id, existing))
            for record_id, record in staged:
                self.save(table, record_id, record)
        return len(staged)

    def sum(self, table: str, filters: Dict[str, Any], field_name: str) -> Decimal:
        """Sum a numeric field across matching records"""
        total = Decimal('0')
        for record in self.find(table, filters):
            value = record.get(field_name)
            if value is not None:
                total += Decimal(str(value))
        return total

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation.

    Transactions snapshot the whole store on begin and restore it on rollback.
    The store lock is held for the lifetime of a transaction, so concurrent
    writers from other threads wait instead of interleaving.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
        self._depth = 0

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            # JSON round trip copies and normalizes values like a real backend
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is not None:
                return copy.deepcopy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return [copy.deepcopy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._data[table] = {}

    def begin_transaction(self) -> None:
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = copy.deepcopy(self._data)
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        if self._depth == 0:
            return
        # Nested rollbacks unwind the whole transaction
        self._data = self._snapshot
        self._snapshot = None
        depth, self._depth = self._depth, 0
        for _ in range(depth):
            self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._tables = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @property
    def _in_transaction(self) -> bool:
        return self._depth > 0

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            if not self._in_transaction:
                self._connection.commit()
            self._tables.add(table)

    def _commit_unless_in_transaction(self) -> None:
        if not self._in_transaction:
            self._connection.commit()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Upsert keeps the original row (and its insertion sequence)
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
            """, (record_id, data_json, now, now))
            self._commit_unless_in_transaction()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY seq
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._commit_unless_in_transaction()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._commit_unless_in_transaction()

    def begin_transaction(self) -> None:
        # The lock stays held until commit/rollback so other threads
        # cannot slip writes into this transaction
        self._lock.acquire()
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0:
            self._connection.commit()
        self._lock.release()

    def rollback(self) -> None:
        if self._depth == 0:
            return
        self._connection.rollback()
        # Tables created inside the transaction are gone again
        self._tables.clear()
        depth, self._depth = self._depth, 0
        for _ in range(depth):
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(backend: str, database_path: str = ":memory:") -> StorageInterface:
    """Build a storage backend by name ("memory" or "sqlite")"""
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        logger.info("Opening SQLite store at %s", database_path)
        return SQLiteStorage(database_path)
    raise ValueError(f"Unknown storage backend: {backend}")
