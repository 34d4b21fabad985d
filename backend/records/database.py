from __future__ import annotations

import copy
import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Protocol

from .record_policy import StaleWriteError
from .time_utils import to_iso, utc_now


@dataclass(frozen=True)
class StoredValue:
    value: Any
    version: int


class KeyValueStore(Protocol):
    def get(self, key: str) -> StoredValue: ...

    def set(self, key: str, value: Any, *, expected_version: int | None = None) -> int: ...

    def delete(self, key: str) -> bool: ...


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class SQLiteKeyValueStore:
    """Durable string-keyed store of JSON values, one row per logical collection.

    Every key carries a version stamp. ``set`` with ``expected_version`` only
    succeeds while the stored version still matches.
    """

    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                  key TEXT PRIMARY KEY,
                  value_json TEXT NOT NULL,
                  version INTEGER NOT NULL DEFAULT 1,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );
                """
            )

    def get(self, key: str) -> StoredValue:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT value_json, version FROM kv_store WHERE key = ?",
                (key,),
            ).fetchone()
        if not row:
            return StoredValue(value=None, version=0)
        return StoredValue(value=json.loads(row["value_json"]), version=int(row["version"]))

    def set(self, key: str, value: Any, *, expected_version: int | None = None) -> int:
        now = to_iso(utc_now())
        with self._lock, self.connection() as conn:
            row = conn.execute("SELECT version FROM kv_store WHERE key = ?", (key,)).fetchone()
            current = int(row["version"]) if row else 0
            if expected_version is not None and expected_version != current:
                raise StaleWriteError(f"Collection '{key}' changed since it was read.")
            next_version = current + 1
            conn.execute(
                """
                INSERT INTO kv_store (key, value_json, version, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  value_json = excluded.value_json,
                  version = excluded.version,
                  updated_at = excluded.updated_at
                """,
                (key, _json_dumps(value), next_version, now, now),
            )
        return next_version

    def delete(self, key: str) -> bool:
        with self._lock, self.connection() as conn:
            cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            return cursor.rowcount > 0


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._data: dict[str, StoredValue] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> StoredValue:
        with self._lock:
            stored = self._data.get(key)
            if stored is None:
                return StoredValue(value=None, version=0)
            return StoredValue(value=copy.deepcopy(stored.value), version=stored.version)

    def set(self, key: str, value: Any, *, expected_version: int | None = None) -> int:
        with self._lock:
            current = self._data[key].version if key in self._data else 0
            if expected_version is not None and expected_version != current:
                raise StaleWriteError(f"Collection '{key}' changed since it was read.")
            # Stored values are their JSON round-trip, same as the SQLite store.
            self._data[key] = StoredValue(value=json.loads(_json_dumps(value)), version=current + 1)
            return current + 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None
