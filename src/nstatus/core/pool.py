"""
Async SQLite connection manager built on aiosqlite.

Owns the single connection to the local cache database, applies the
connection pragmas (WAL journal, relaxed sync, busy timeout), and retries
with exponential backoff when SQLite reports a transient
``database is locked`` / ``database is busy`` condition, e.g. when a second
client process holds a write lock. Query-level errors such as constraint
violations or syntax errors are not retried.

The connection runs in autocommit mode: every statement is its own atomic
transaction, which is what the per-key write discipline of
[CacheStore][nstatus.core.cache_store.CacheStore] relies on.

Examples:
    ```python
    pool = Pool(PoolConfig(path="~/.local/share/nstatus/cache.sqlite3"))

    async with pool:
        rows = await pool.fetchall("SELECT kind, key FROM cache_entry")
    ```

See Also:
    [CacheStore][nstatus.core.cache_store.CacheStore]: The domain facade that
        wraps this pool.
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Literal

import aiosqlite
from pydantic import BaseModel, Field, ValidationInfo, field_validator

from .exceptions import CacheError
from .logger import Logger
from .yaml import load_yaml


MEMORY_PATH = ":memory:"

_TRANSIENT_MESSAGES = ("database is locked", "database is busy")


def _is_transient(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return any(m in message for m in _TRANSIENT_MESSAGES)


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class PoolRetryConfig(BaseModel):
    """Retry strategy for transient lock contention.

    Exponential backoff doubles the delay each attempt
    (``initial_delay * 2^attempt``), capped at ``max_delay``; linear backoff
    grows as ``initial_delay * (attempt + 1)``.
    """

    max_attempts: int = Field(default=5, ge=1, le=20, description="Max attempts per statement")
    initial_delay: float = Field(default=0.05, ge=0.0, description="Initial retry delay")
    max_delay: float = Field(default=2.0, ge=0.0, description="Maximum retry delay")
    exponential_backoff: bool = Field(default=True, description="Use exponential backoff")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        """Ensure max_delay >= initial_delay."""
        initial_delay = info.data.get("initial_delay", 0.05)
        if v < initial_delay:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial_delay})")
        return v


class PoolConfig(BaseModel):
    """SQLite connection settings.

    ``path`` may use ``~``; parent directories are created on connect.
    ``":memory:"`` gives a throwaway database.
    """

    path: str = Field(
        default="~/.local/share/nstatus/cache.sqlite3",
        min_length=1,
        description="SQLite database file",
    )
    busy_timeout: float = Field(
        default=5.0, ge=0.0, description="Seconds SQLite waits on a locked database"
    )
    journal_mode: Literal["wal", "delete", "truncate", "memory"] = Field(
        default="wal", description="SQLite journal mode"
    )
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)

    @property
    def resolved_path(self) -> str:
        if self.path == MEMORY_PATH:
            return self.path
        return str(Path(self.path).expanduser())


# ---------------------------------------------------------------------------
# Pool Class
# ---------------------------------------------------------------------------


class Pool:
    """Async SQLite connection manager.

    Created disconnected; call [connect()][nstatus.core.pool.Pool.connect]
    or use ``async with``.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._conn: aiosqlite.Connection | None = None
        self._connection_lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        return cls(config=PoolConfig(**config_dict))

    def _retry_delay(self, attempt: int) -> float:
        retry = self._config.retry
        if retry.exponential_backoff:
            delay = retry.initial_delay * (2**attempt)
        else:
            delay = retry.initial_delay * (attempt + 1)
        return float(min(delay, retry.max_delay))

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database, retrying while it is locked by another process.

        Raises:
            CacheError: If the database cannot be opened after all attempts.
        """
        async with self._connection_lock:
            if self._conn is not None:
                return

            path = self._config.resolved_path
            if path != MEMORY_PATH:
                Path(path).parent.mkdir(parents=True, exist_ok=True)

            self._logger.info("connection_starting", path=path)

            max_attempts = self._config.retry.max_attempts
            for attempt in range(max_attempts):
                conn: aiosqlite.Connection | None = None
                try:
                    conn = await aiosqlite.connect(
                        path, timeout=self._config.busy_timeout, isolation_level=None
                    )
                    conn.row_factory = sqlite3.Row
                    await conn.execute(f"PRAGMA journal_mode={self._config.journal_mode}")
                    await conn.execute("PRAGMA synchronous=NORMAL")
                    self._conn = conn
                    self._logger.info("connection_established", path=path)
                    return
                except sqlite3.OperationalError as e:
                    if conn is not None:
                        await conn.close()
                    if not _is_transient(e) or attempt + 1 >= max_attempts:
                        self._logger.error(
                            "connection_failed", path=path, attempts=attempt + 1, error=str(e)
                        )
                        raise CacheError(
                            f"cannot open cache database {path}", operation="connect", cause=e
                        ) from e
                    delay = self._retry_delay(attempt)
                    self._logger.warning(
                        "connection_retry", attempt=attempt + 1, delay_s=delay, error=str(e)
                    )
                    await asyncio.sleep(delay)

    async def close(self) -> None:
        """Close the connection. Idempotent."""
        async with self._connection_lock:
            if self._conn is not None:
                try:
                    await self._conn.close()
                    self._logger.info("connection_closed")
                finally:
                    self._conn = None

    # -------------------------------------------------------------------------
    # Query Methods (with retry for transient lock contention)
    # -------------------------------------------------------------------------

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Pool not connected. Call connect() first.")
        return self._conn

    async def _execute_with_retry(
        self,
        operation: Literal["execute", "fetchall", "fetchone"],
        query: str,
        params: Any,
    ) -> Any:
        """Run one statement, retrying only on transient lock errors."""
        max_attempts = self._config.retry.max_attempts

        for attempt in range(max_attempts):
            conn = self._connection()
            try:
                cursor = await conn.execute(query, params)
                try:
                    if operation == "fetchall":
                        return await cursor.fetchall()
                    if operation == "fetchone":
                        return await cursor.fetchone()
                    return cursor.rowcount
                finally:
                    await cursor.close()
            except sqlite3.OperationalError as e:
                if not _is_transient(e):
                    raise
                if attempt + 1 >= max_attempts:
                    self._logger.error(
                        "query_failed", operation=operation, attempts=max_attempts, error=str(e)
                    )
                    raise CacheError(
                        f"{operation} failed after {max_attempts} attempts",
                        operation=operation,
                        cause=e,
                    ) from e
                delay = self._retry_delay(attempt)
                self._logger.warning(
                    "query_retry",
                    operation=operation,
                    attempt=attempt + 1,
                    delay_s=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

        raise RuntimeError("Unexpected state in _execute_with_retry")

    async def execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Execute a statement and return the number of affected rows."""
        return int(await self._execute_with_retry("execute", query, params))

    async def executescript(self, script: str) -> None:
        """Run a multi-statement DDL script (no retry; used at startup only)."""
        await self._connection().executescript(script)

    async def fetchall(self, query: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        rows = await self._execute_with_retry("fetchall", query, params)
        return list(rows)

    async def fetchone(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        row: sqlite3.Row | None = await self._execute_with_retry("fetchone", query, params)
        return row

    async def fetchval(self, query: str, params: tuple[Any, ...] = ()) -> Any:
        """Return the first column of the first row, or ``None``."""
        row = await self.fetchone(query, params)
        return None if row is None else row[0]

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def config(self) -> PoolConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"Pool(path={self._config.resolved_path}, connected={self.is_connected})"
