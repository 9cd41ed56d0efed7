"""Key-value stores used to persist the local copy of Sharpspring leads."""
from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Union

LOGGER = logging.getLogger(__name__)

DELETE_CHUNK_SIZE = 1024


class KeyValueStore(Protocol):
    """Interface of a persistent store of records keyed by Sharpspring id.

    Keys are normalised to strings. ``get_all_batched`` pages through all
    entries ordered by key.
    """

    def get(self, key: Any, default: Any = None) -> Any:  # pragma: no cover - runtime protocol
        ...

    def set(self, key: Any, value: Any) -> None:  # pragma: no cover - runtime protocol
        ...

    def delete(self, key: Any) -> None:  # pragma: no cover - runtime protocol
        ...

    def delete_multiple(self, keys: Iterable[Any]) -> None:  # pragma: no cover - runtime protocol
        ...

    def delete_all(self) -> None:  # pragma: no cover - runtime protocol
        ...

    def has(self, key: Any) -> bool:  # pragma: no cover - runtime protocol
        ...

    def get_multiple(self, keys: Iterable[Any]) -> Dict[str, Any]:  # pragma: no cover - runtime protocol
        ...

    def get_all_batched(self, limit: int = 1024, offset: int = 0) -> Dict[str, Any]:  # pragma: no cover - runtime protocol
        ...


def iter_all(store: KeyValueStore, batch_size: int = 1024) -> Iterator[tuple]:
    """Yield ``(key, value)`` for every entry in ``store``, one batch at a time."""

    offset = 0
    while True:
        batch = store.get_all_batched(batch_size, offset)
        yield from batch.items()
        if len(batch) < batch_size:
            return
        offset += batch_size


class MemoryStore:
    """Dictionary backed store, mostly for tests and one-off runs."""

    def __init__(self, initial: Optional[Dict[Any, Any]] = None) -> None:
        self._data: Dict[str, Any] = {str(key): value for key, value in (initial or {}).items()}

    def get(self, key: Any, default: Any = None) -> Any:
        return self._data.get(str(key), default)

    def set(self, key: Any, value: Any) -> None:
        self._data[str(key)] = value

    def delete(self, key: Any) -> None:
        self._data.pop(str(key), None)

    def delete_multiple(self, keys: Iterable[Any]) -> None:
        for key in keys:
            self.delete(key)

    def delete_all(self) -> None:
        self._data.clear()

    def has(self, key: Any) -> bool:
        return str(key) in self._data

    def get_multiple(self, keys: Iterable[Any]) -> Dict[str, Any]:
        return {str(key): self._data[str(key)] for key in keys if str(key) in self._data}

    def get_all_batched(self, limit: int = 1024, offset: int = 0) -> Dict[str, Any]:
        keys = sorted(self._data)[offset : offset + limit]
        return {key: self._data[key] for key in keys}

    def __len__(self) -> int:
        return len(self._data)


class SqliteStore:
    """Store entries as JSON text in a single SQLite table."""

    def __init__(self, db_path: Union[str, Path], table: str = "sharpspring_leads") -> None:
        if not table.isidentifier():
            raise ValueError(f"Invalid table name '{table}'")
        self.db_path = str(db_path)
        self.table = table
        with self._connect() as conn:
            conn.execute(f"CREATE TABLE IF NOT EXISTS {self.table} (key TEXT PRIMARY KEY, value TEXT NOT NULL)")

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Yield a connection; commit on success, roll back on error, always close."""

        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as exc:
            LOGGER.debug("Transaction failed, rolling back: %s", exc)
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: Any, default: Any = None) -> Any:
        with self._connect() as conn:
            row = conn.execute(f"SELECT value FROM {self.table} WHERE key = ?", (str(key),)).fetchone()
        return json.loads(row["value"]) if row else default

    def set(self, key: Any, value: Any) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)",
                (str(key), json.dumps(value)),
            )

    def delete(self, key: Any) -> None:
        self.delete_multiple([key])

    def delete_multiple(self, keys: Iterable[Any]) -> None:
        keys = [str(key) for key in keys]
        with self._connect() as conn:
            for start in range(0, len(keys), DELETE_CHUNK_SIZE):
                chunk = keys[start : start + DELETE_CHUNK_SIZE]
                placeholders = ", ".join("?" for _ in chunk)
                conn.execute(f"DELETE FROM {self.table} WHERE key IN ({placeholders})", chunk)

    def delete_all(self) -> None:
        with self._connect() as conn:
            conn.execute(f"DELETE FROM {self.table}")

    def has(self, key: Any) -> bool:
        with self._connect() as conn:
            row = conn.execute(f"SELECT 1 FROM {self.table} WHERE key = ?", (str(key),)).fetchone()
        return row is not None

    def get_multiple(self, keys: Iterable[Any]) -> Dict[str, Any]:
        keys = [str(key) for key in keys]
        found: Dict[str, Any] = {}
        with self._connect() as conn:
            for start in range(0, len(keys), DELETE_CHUNK_SIZE):
                chunk = keys[start : start + DELETE_CHUNK_SIZE]
                placeholders = ", ".join("?" for _ in chunk)
                rows: List[sqlite3.Row] = conn.execute(
                    f"SELECT key, value FROM {self.table} WHERE key IN ({placeholders})", chunk
                ).fetchall()
                found.update({row["key"]: json.loads(row["value"]) for row in rows})
        return found

    def get_all_batched(self, limit: int = 1024, offset: int = 0) -> Dict[str, Any]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT key, value FROM {self.table} ORDER BY key LIMIT ? OFFSET ?", (limit, offset)
            ).fetchall()
        return {row["key"]: json.loads(row["value"]) for row in rows}


__all__ = ["DELETE_CHUNK_SIZE", "KeyValueStore", "MemoryStore", "SqliteStore", "iter_all"]
