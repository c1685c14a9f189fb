"""Key/value persistence standing in for browser-local storage.

Values are JSON documents under string keys. Every key carries a version
counter (0 = absent) so callers can do compare-and-swap writes instead of
blind whole-document overwrites.

Reads never raise for bad data: `load()` returns a `Loaded` result that is
either a value, "missing", or a `StoreCorruptionError`, and the caller decides
what to fall back to.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


class StoreCorruptionError(Exception):
    def __init__(self, key: str, detail: str):
        super().__init__(f"Unparseable value under {key!r}: {detail}")
        self.key = key
        self.detail = detail


class VersionConflict(Exception):
    def __init__(self, key: str, expected: int, actual: int):
        super().__init__(f"Version conflict on {key!r}: expected {expected}, found {actual}")
        self.key = key
        self.expected = expected
        self.actual = actual


@dataclass(frozen=True)
class Loaded:
    value: Any = None
    version: int = 0
    error: StoreCorruptionError | None = None

    @property
    def found(self) -> bool:
        return self.version > 0 and self.error is None

    def or_default(self, default: Any) -> Any:
        return self.value if self.found else default


def _decode(key: str, raw: str, version: int) -> Loaded:
    try:
        return Loaded(value=json.loads(raw), version=version)
    except ValueError as e:
        return Loaded(version=version, error=StoreCorruptionError(key, str(e)))


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


class KeyValueStore:
    """Interface shared by the in-memory and SQLite stores."""

    def load(self, key: str) -> Loaded:
        raise NotImplementedError

    def save(self, key: str, value: Any, expected_version: int | None = None) -> int:
        return self.save_raw(key, _encode(value), expected_version)

    def save_raw(self, key: str, raw: str, expected_version: int | None = None) -> int:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> list[str]:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: dict[str, tuple[str, int]] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Loaded:
        with self._lock:
            item = self._data.get(key)
        if item is None:
            return Loaded()
        raw, version = item
        return _decode(key, raw, version)

    def save_raw(self, key: str, raw: str, expected_version: int | None = None) -> int:
        with self._lock:
            current = self._data.get(key, ("", 0))[1]
            if expected_version is not None and expected_version != current:
                raise VersionConflict(key, expected_version, current)
            self._data[key] = (raw, current + 1)
            return current + 1

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class SqliteStore(KeyValueStore):
    """File-backed store; one row per key."""

    def __init__(self, path: str) -> None:
        self.path = path
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with self._db() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL,
                  version INTEGER NOT NULL,
                  updated_at TEXT NOT NULL
                )
                """
            )

    def _db(self) -> sqlite3.Connection:
        # Fresh connection per operation: sync routes run on a threadpool.
        conn = sqlite3.connect(self.path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA busy_timeout = 10000")
        return conn

    def load(self, key: str) -> Loaded:
        with self._db() as conn:
            row = conn.execute("SELECT value, version FROM kv WHERE key=?", (key,)).fetchone()
        if row is None:
            return Loaded()
        return _decode(key, str(row["value"]), int(row["version"]))

    def save_raw(self, key: str, raw: str, expected_version: int | None = None) -> int:
        now = datetime.now(timezone.utc).isoformat()
        with self._db() as conn:
            row = conn.execute("SELECT version FROM kv WHERE key=?", (key,)).fetchone()
            current = int(row["version"]) if row else 0
            if expected_version is not None and expected_version != current:
                raise VersionConflict(key, expected_version, current)

            if current == 0:
                try:
                    conn.execute(
                        "INSERT INTO kv(key, value, version, updated_at) VALUES (?,?,?,?)",
                        (key, raw, 1, now),
                    )
                except sqlite3.IntegrityError:
                    # Another writer inserted between our read and write.
                    raise VersionConflict(key, 0, -1) from None
                return 1

            cur = conn.execute(
                "UPDATE kv SET value=?, version=version+1, updated_at=? WHERE key=? AND version=?",
                (raw, now, key, current),
            )
            if cur.rowcount != 1:
                raise VersionConflict(key, current, -1)
            return current + 1

    def delete(self, key: str) -> None:
        with self._db() as conn:
            conn.execute("DELETE FROM kv WHERE key=?", (key,))

    def keys(self, prefix: str = "") -> list[str]:
        # LIKE would treat '_' and '%' in emails as wildcards; filter in Python.
        with self._db() as conn:
            rows = conn.execute("SELECT key FROM kv ORDER BY key").fetchall()
        return [str(r["key"]) for r in rows if str(r["key"]).startswith(prefix)]
