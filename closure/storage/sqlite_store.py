"""SQLite-backed key-value store

One table, kv(key TEXT PRIMARY KEY, value TEXT), values JSON-encoded.
Blocking sqlite calls run in a worker thread so the event loop never waits
on disk or on lock contention.

Connections are short-lived (one per operation); WAL mode lets the settings
surface read while the orchestrator writes.
"""

from __future__ import annotations

import asyncio
import json
import random
import sqlite3
import time
from collections.abc import Callable, Generator, Iterable, Mapping
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

from closure.config import (
    DB_CONNECT_TIMEOUT,
    DB_PATH,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
)
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter
from closure.storage.kv import StoreError

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at REAL NOT NULL
)
"""


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Decorator to retry database operations on SQLITE_BUSY errors

    Exponential backoff with jitter; any other OperationalError is raised
    immediately.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    message = str(e).lower()
                    if "locked" not in message and "busy" not in message:
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "Database lock retry exhausted after %d attempts: %s",
                            max_retries,
                            e,
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    sleep_time = delay + random.uniform(0, delay * DB_RETRY_JITTER)
                    counter("store.lock_retry")
                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )
                    time.sleep(sleep_time)
            raise AssertionError("unreachable")

        return wrapper  # type: ignore[return-value]

    return decorator


class SqliteKeyValueStore:
    """Persistent KeyValueStore on a single SQLite file."""

    def __init__(self, db_path: str | Path = DB_PATH):
        self.db_path = Path(db_path)
        self._initialized = False

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(str(self.db_path), timeout=DB_CONNECT_TIMEOUT)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        if self._initialized:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(SCHEMA)
        self._initialized = True

    @retry_on_db_lock()
    def _get_sync(self, keys: list[str] | None) -> dict[str, Any]:
        self._ensure_table()
        with self._connect() as conn:
            if keys is None:
                rows = conn.execute("SELECT key, value FROM kv").fetchall()
            elif not keys:
                rows = []
            else:
                placeholders = ",".join("?" for _ in keys)
                rows = conn.execute(
                    f"SELECT key, value FROM kv WHERE key IN ({placeholders})", keys
                ).fetchall()

        result: dict[str, Any] = {}
        for key, raw in rows:
            try:
                result[key] = json.loads(raw)
            except json.JSONDecodeError:
                counter("store.corrupt_value")
                logger.warning("Dropping undecodable value for key %s", key)
        return result

    @retry_on_db_lock()
    def _set_sync(self, items: dict[str, str]) -> None:
        self._ensure_table()
        now = time.time()
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                [(key, value, now) for key, value in items.items()],
            )

    @retry_on_db_lock()
    def _remove_sync(self, keys: list[str]) -> None:
        self._ensure_table()
        with self._connect() as conn:
            conn.executemany("DELETE FROM kv WHERE key = ?", [(k,) for k in keys])

    @retry_on_db_lock()
    def _clear_sync(self) -> None:
        self._ensure_table()
        with self._connect() as conn:
            conn.execute("DELETE FROM kv")

    async def get(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        key_list = None if keys is None else list(keys)
        try:
            return await asyncio.to_thread(self._get_sync, key_list)
        except sqlite3.Error as e:
            counter("store.errors")
            raise StoreError(f"read failed: {e}") from e

    async def set(self, items: Mapping[str, Any]) -> None:
        try:
            encoded = {key: json.dumps(value) for key, value in items.items()}
        except (TypeError, ValueError) as e:
            raise StoreError(f"value is not JSON-serializable: {e}") from e
        try:
            await asyncio.to_thread(self._set_sync, encoded)
        except sqlite3.Error as e:
            counter("store.errors")
            raise StoreError(f"write failed: {e}") from e

    async def remove(self, keys: Iterable[str]) -> None:
        try:
            await asyncio.to_thread(self._remove_sync, list(keys))
        except sqlite3.Error as e:
            counter("store.errors")
            raise StoreError(f"remove failed: {e}") from e

    async def clear(self) -> None:
        try:
            await asyncio.to_thread(self._clear_sync)
        except sqlite3.Error as e:
            counter("store.errors")
            raise StoreError(f"clear failed: {e}") from e
