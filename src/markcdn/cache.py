"""Persistent build cache.

This module provides the key/value store that survives between builds:
- SQLiteBuildCache: Persistent store with SQLite backend
- MemoryBuildCache: In-process store (tests, one-off runs)

Both expose the async ``get``/``set`` pair the upload coordinator needs.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from markcdn.constants import (
    CACHE_KEY_PROJECT_FILES,
    DEFAULT_CACHE_DB_FILENAME,
    DEFAULT_CACHE_DIR,
)


@runtime_checkable
class BuildCache(Protocol):
    """Key/value store scoped to markcdn."""

    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...


class MemoryBuildCache:
    """Dict-backed build cache."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class SQLiteBuildCache:
    """SQLite-based persistent key/value cache.

    Values are stored as JSON text. Uses WAL mode so a reader never blocks
    on a concurrent build appending to the same database.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize SQLite cache.

        Args:
            db_path: Path to the SQLite database file
        """
        self._db_path = Path(db_path)

        # Ensure parent directory exists
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    @classmethod
    def default(cls, base_dir: Path | None = None) -> SQLiteBuildCache:
        """Open the cache at ``<base_dir>/.markcdn/cache.db``."""
        base = base_dir or Path.cwd()
        return cls(base / DEFAULT_CACHE_DIR / DEFAULT_CACHE_DB_FILENAME)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager that creates a connection and closes it on exit."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
            """)
            conn.commit()

    def get_sync(self, key: str) -> Any:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning(f"[Cache] Discarding corrupt entry: {key}")
            return None

    def set_sync(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                (key, payload, int(time.time())),
            )
            conn.commit()

    def clear(self) -> int:
        """Clear all entries.

        Returns:
            Number of entries deleted
        """
        with self._connect() as conn:
            count = conn.execute("SELECT COUNT(*) AS cnt FROM kv").fetchone()["cnt"]
            conn.execute("DELETE FROM kv")
            conn.commit()
            return count

    async def get(self, key: str) -> Any:
        return await asyncio.to_thread(self.get_sync, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self.set_sync, key, value)


async def load_project_files(cache: BuildCache) -> list[dict[str, Any]]:
    """Read the persisted list of uploaded file records."""
    files = await cache.get(CACHE_KEY_PROJECT_FILES)
    if not isinstance(files, list):
        return []
    return [f for f in files if isinstance(f, dict)]


async def append_project_file(cache: BuildCache, record: dict[str, Any]) -> None:
    """Append one file record to the persisted list.

    Read-modify-write: callers within one process must serialize appends.
    Separate builds sharing a cache may still drop each other's appends
    (last write wins); a dropped record only costs a re-upload later.
    """
    files = await load_project_files(cache)
    files.append(record)
    await cache.set(CACHE_KEY_PROJECT_FILES, files)
