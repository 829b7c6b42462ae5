"""Persistent key-value storage backends.

Every backend behaves like browser local storage: string keys, string
values, one flat namespace per profile and an optional byte quota.
"""

import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional
from urllib.parse import quote, unquote

import structlog

from bhandara.exceptions import (
    StorageQuotaExceededError,
    StorageReadError,
    StorageWriteError,
)
from bhandara.models.config import BhandaraConfig, StorageBackend


logger = structlog.get_logger(__name__)


class KeyValueStorage(ABC):
    """Base class for string key-value stores with quota accounting.

    The quota counts ``len(key) + len(value)`` over every entry, the way
    browsers account local storage.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self.logger = logger.bind(component=type(self).__name__)

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value stored under ``key``, or None."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        """Return all stored keys."""
        pass

    @abstractmethod
    def _write(self, key: str, value: str) -> None:
        pass

    def _usage_excluding(self, key: str) -> int:
        total = 0
        for existing in self.keys():
            if existing == key:
                continue
            value = self.get(existing)
            if value is not None:
                total += len(existing) + len(value)
        return total

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``.

        Raises:
            StorageQuotaExceededError: if the write would exceed the quota
            StorageWriteError: if the backend cannot persist the value
        """
        if self.quota_bytes is not None:
            try:
                used = self._usage_excluding(key)
            except StorageReadError as e:
                raise StorageWriteError(f"Cannot check quota for '{key}': {e}") from e
            required = used + len(key) + len(value)
            if required > self.quota_bytes:
                self.logger.warning(
                    "Storage quota exceeded",
                    key=key,
                    required_bytes=required,
                    quota_bytes=self.quota_bytes,
                )
                raise StorageQuotaExceededError(key, required, self.quota_bytes)
        self._write(key, value)

    def clear(self) -> None:
        """Remove every key."""
        for key in self.keys():
            self.delete(key)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryStorage(KeyValueStorage):
    """Process-local storage, mostly useful for tests and ephemeral sessions."""

    def __init__(self, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)

    def _write(self, key: str, value: str) -> None:
        self._data[key] = value


class FileStorage(KeyValueStorage):
    """One UTF-8 file per key inside a profile directory."""

    suffix = ".value"

    def __init__(self, directory: str, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}{self.suffix}"

    def get(self, key: str) -> Optional[str]:
        try:
            return self._path_for(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            self.logger.error("Failed to read key", key=key, error=str(e))
            raise StorageReadError(f"Cannot read '{key}': {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageWriteError(f"Cannot delete '{key}': {e}") from e

    def keys(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(
            unquote(path.name[: -len(self.suffix)])
            for path in self.directory.iterdir()
            if path.is_file() and path.name.endswith(self.suffix)
        )

    def _write(self, key: str, value: str) -> None:
        target = self._path_for(key)
        tmp_name = None
        try:
            # Write next to the target so the replace stays on one filesystem
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.directory, delete=False, suffix=".tmp"
            ) as handle:
                tmp_name = handle.name
                handle.write(value)
            os.replace(tmp_name, target)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            self.logger.error("Failed to write key", key=key, error=str(e))
            raise StorageWriteError(f"Cannot write '{key}': {e}") from e


class SQLiteStorage(KeyValueStorage):
    """Key-value pairs in a single SQLite table."""

    def __init__(self, path: str, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.db_path = path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS kv (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                """)
        except sqlite3.Error as e:
            self.logger.error("Failed to initialize storage database", error=str(e))
            raise StorageWriteError(f"Cannot initialize {self.db_path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            self.logger.error("Failed to read key", key=key, error=str(e))
            raise StorageReadError(f"Cannot read '{key}': {e}") from e
        return row[0] if row else None

    def delete(self, key: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageWriteError(f"Cannot delete '{key}': {e}") from e

    def keys(self) -> List[str]:
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT key FROM kv ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(f"Cannot list keys: {e}") from e
        return [row[0] for row in rows]

    def _usage_excluding(self, key: str) -> int:
        try:
            with self._connect() as conn:
                total = conn.execute(
                    "SELECT SUM(LENGTH(key) + LENGTH(value)) FROM kv WHERE key != ?",
                    (key,),
                ).fetchone()[0]
        except sqlite3.Error as e:
            raise StorageReadError(f"Cannot compute storage usage: {e}") from e
        return total or 0

    def _write(self, key: str, value: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                    (key, value),
                )
        except sqlite3.Error as e:
            self.logger.error("Failed to write key", key=key, error=str(e))
            raise StorageWriteError(f"Cannot write '{key}': {e}") from e


def create_storage(config: BhandaraConfig) -> KeyValueStorage:
    """Build the storage backend selected by ``config``."""
    backend = config.storage_backend
    quota = config.storage_quota_bytes

    if backend == StorageBackend.MEMORY:
        storage: KeyValueStorage = MemoryStorage(quota_bytes=quota)
    elif backend == StorageBackend.FILE:
        storage = FileStorage(config.storage_path, quota_bytes=quota)
    elif backend == StorageBackend.SQLITE:
        db_path = Path(config.storage_path)
        if db_path.is_dir():
            db_path = db_path / "bhandara.db"
        storage = SQLiteStorage(str(db_path), quota_bytes=quota)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    logger.info("Storage created", backend=StorageBackend(backend).value, path=config.storage_path)
    return storage
