"""
Storage Backend Module

Provides an abstract key-value storage interface with in-memory (testing)
and SQLite (persistence) implementations, and the EntityStore that keeps
namespaced record collections on top of it.

Each collection is serialized as one JSON array under a stable key. A value
that cannot be parsed reads back as an empty collection and the next write
replaces it.

Only one writer is supported. Every EntityStore call runs under a single
re-entrant lock; several processes sharing one SQLite file are not.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Union
from datetime import datetime, timezone
from contextlib import contextmanager
from pathlib import Path
import json
import sqlite3
import threading

from .config import get_config
from .errors import NotFound, StorageUnavailable
from .logging_config import get_logger

logger = get_logger("family_ledger.storage")

IDENTITIES = "identities"
TRANSACTIONS = "transactions"
REQUESTS = "requests"
MESSAGES = "messages"

COLLECTIONS = (IDENTITIES, TRANSACTIONS, REQUESTS, MESSAGES)


class StorageInterface(ABC):
    """Abstract interface for key-value storage media"""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the raw value stored under key"""
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a raw value under key"""
        pass

    @abstractmethod
    def remove_item(self, key: str) -> bool:
        """Remove key, returning whether it existed"""
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        """List every stored key"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.RLock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove_item(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.commit()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            cursor = self._connection.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            )
            row = cursor.fetchone()
            return row['value'] if row else None

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute("""
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, value, now))
            self._connection.commit()

    def remove_item(self, key: str) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                "DELETE FROM kv_store WHERE key = ?", (key,)
            )
            self._connection.commit()
            return cursor.rowcount > 0

    def keys(self) -> List[str]:
        with self._lock:
            cursor = self._connection.execute("SELECT key FROM kv_store ORDER BY key")
            return [row['key'] for row in cursor.fetchall()]

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class EntityStore:
    """
    Namespaced record collections over a key-value medium.

    Records are JSON-compatible dicts with an ``id`` key. Collections keep
    insertion order; sorting for display is left to callers.
    """

    def __init__(self, storage: StorageInterface, namespace: Optional[str] = None):
        self.storage = storage
        self.namespace = namespace or get_config().storage_namespace
        self._lock = threading.RLock()
        self._journal: Optional[Dict[str, Optional[str]]] = None

    # Raw key handling

    def _key(self, name: str) -> str:
        return f"{self.namespace}_{name}"

    def _set_raw(self, key: str, value: str) -> None:
        if self._journal is not None and key not in self._journal:
            self._journal[key] = self.storage.get_item(key)
        self.storage.set_item(key, value)

    def _remove_raw(self, key: str) -> bool:
        if self._journal is not None and key not in self._journal:
            self._journal[key] = self.storage.get_item(key)
        return self.storage.remove_item(key)

    def _read_collection(self, collection: str) -> List[Dict[str, Any]]:
        raw = self.storage.get_item(self._key(collection))
        if raw is None:
            return []
        try:
            records = json.loads(raw)
            if not isinstance(records, list):
                raise StorageUnavailable(f"Collection '{collection}' is not a JSON array")
        except (ValueError, StorageUnavailable) as e:
            logger.warning(
                "Unreadable collection treated as empty",
                extra={'resource': collection, 'extra': {'error': str(e)}}
            )
            return []
        return [record for record in records if isinstance(record, dict)]

    def _write_collection(self, collection: str, records: List[Dict[str, Any]]) -> None:
        self._set_raw(self._key(collection), json.dumps(records, default=str))

    # Collections

    def append(self, collection: str, record: Dict[str, Any]) -> None:
        """Append a record to a collection"""
        with self._lock:
            records = self._read_collection(collection)
            # Detached copy of the caller's dict
            records.append(json.loads(json.dumps(record, default=str)))
            self._write_collection(collection, records)

    def all(self, collection: str) -> List[Dict[str, Any]]:
        """Return every record of a collection in insertion order"""
        with self._lock:
            return self._read_collection(collection)

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Return one record by id, or None"""
        with self._lock:
            for record in self._read_collection(collection):
                if record.get('id') == record_id:
                    return record
            return None

    def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a shallow patch to one record and return the updated record"""
        with self._lock:
            records = self._read_collection(collection)
            for record in records:
                if record.get('id') == record_id:
                    record.update(json.loads(json.dumps(patch, default=str)))
                    self._write_collection(collection, records)
                    return record
            raise NotFound(f"No record '{record_id}' in {collection}.")

    # Current session slot

    def load_session(self) -> Optional[Dict[str, Any]]:
        """Return the persisted session dict, None when absent or unreadable"""
        with self._lock:
            raw = self.storage.get_item(self._key("session"))
            if raw is None:
                return None
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning("Unreadable session slot treated as absent")
                return None
            return data if isinstance(data, dict) else None

    def save_session(self, data: Dict[str, Any]) -> None:
        with self._lock:
            self._set_raw(self._key("session"), json.dumps(data, default=str))

    def clear_session(self) -> bool:
        with self._lock:
            return self._remove_raw(self._key("session"))

    # Onboarding flags

    def get_flag(self, identity_id: str) -> bool:
        """Return the onboarding-acknowledged flag for an identity"""
        with self._lock:
            return self.storage.get_item(self._key(f"onboarded_{identity_id}")) == "true"

    def set_flag(self, identity_id: str, value: bool = True) -> None:
        with self._lock:
            self._set_raw(self._key(f"onboarded_{identity_id}"), "true" if value else "false")

    # Atomic blocks

    @contextmanager
    def atomic(self) -> Iterator["EntityStore"]:
        """
        Hold the writer lock across several writes.

        If the block raises, every key written inside it is restored to the
        value it had on entry. Nested blocks join the outermost one.
        """
        with self._lock:
            if self._journal is not None:
                yield self
                return

            self._journal = {}
            try:
                yield self
            except Exception:
                for key, original in self._journal.items():
                    if original is None:
                        self.storage.remove_item(key)
                    else:
                        self.storage.set_item(key, original)
                logger.warning(
                    "Atomic block rolled back",
                    extra={'extra': {'keys': sorted(self._journal)}}
                )
                raise
            finally:
                self._journal = None
