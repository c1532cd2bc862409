"""SQLite-backed key/value store for configuration and setup progress."""
from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional

from sheetdb import crypto
from sheetdb.errors import ConfigurationError

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConfigStore:
    """Persist string settings, optionally wrapped in an encrypted envelope.

    A single connection is shared behind a lock so the provisioning worker
    thread and callers polling progress can use the same store.
    """

    def __init__(self, path: str | Path = MEMORY_PATH, passphrase: Optional[str] = None) -> None:
        self._path = str(path)
        self._passphrase = passphrase or ""
        self._lock = threading.Lock()
        if self._path != MEMORY_PATH:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._transaction() as conn:
            conn.execute(_SCHEMA)

    @property
    def path(self) -> str:
        return self._path

    @property
    def has_passphrase(self) -> bool:
        return bool(self._passphrase)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Plain values
    # ------------------------------------------------------------------
    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._transaction() as conn:
            row = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        return row["value"] if row is not None else default

    def set(self, key: str, value: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO config (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, str(value), _utc_now()),
            )

    def get_many(self, keys: Iterable[str]) -> Dict[str, str]:
        wanted = list(keys)
        if not wanted:
            return {}
        placeholders = ", ".join("?" for _ in wanted)
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT key, value FROM config WHERE key IN ({placeholders})", wanted
            ).fetchall()
        return {row["key"]: row["value"] for row in rows}

    def set_many(self, values: Mapping[str, str]) -> None:
        timestamp = _utc_now()
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO config (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                [(key, str(value), timestamp) for key, value in values.items()],
            )

    def delete(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM config WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT key FROM config ORDER BY key").fetchall()
        return [row["key"] for row in rows]

    # ------------------------------------------------------------------
    # Encrypted values
    # ------------------------------------------------------------------
    def _require_passphrase(self) -> str:
        if not self._passphrase:
            raise ConfigurationError("An encryption passphrase is required for secret values")
        return self._passphrase

    def set_encrypted(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``; an empty value clears the secret."""

        if not value:
            self.set(key, "")
            return
        self.set(key, crypto.encrypt(value, self._require_passphrase()))

    def get_decrypted(self, key: str) -> Optional[str]:
        envelope = self.get(key)
        if not envelope:
            return None
        return crypto.decrypt(envelope, self._require_passphrase())


__all__ = ["ConfigStore", "MEMORY_PATH"]
