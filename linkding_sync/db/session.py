"""Database session management for the local bookmark store.

``DatabaseSessionManager`` owns the SQLite connection and runs every store
operation on a worker thread:
- WAL journal and foreign keys on every connection
- an application-level read/write lock so a page transaction is never
  interleaved with another writer
- timeouts and retry with backoff when SQLite reports "database is locked"
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from linkding_sync.db.models import ALL_MODELS, database_proxy
from linkding_sync.db.rw_lock import AsyncRWLock

DB_OPERATION_TIMEOUT = 30.0
DB_MAX_RETRIES = 3


class RowSqliteDatabase(SqliteExtDatabase):
    """SQLite database subclass that configures the row factory for dict-like access."""

    def _connect(self) -> sqlite3.Connection:
        conn = super()._connect()
        conn.row_factory = sqlite3.Row
        return conn


@dataclass
class DatabaseSessionManager:
    """Peewee-backed database session manager used by every repository.

    Attributes:
        path: Path to the SQLite database file, or ":memory:" for in-memory
        operation_timeout: Default timeout for database operations in seconds
        max_retries: Maximum retries when the database is locked or busy
    """

    path: str
    _logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _database: peewee.SqliteDatabase = field(init=False)
    _rw_lock: AsyncRWLock = field(init=False)

    operation_timeout: float = field(default=DB_OPERATION_TIMEOUT)
    max_retries: int = field(default=DB_MAX_RETRIES)

    def __post_init__(self) -> None:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._database = RowSqliteDatabase(
            self.path,
            pragmas={
                "journal_mode": "wal",
                "synchronous": "normal",
                "foreign_keys": 1,
                "busy_timeout": 5000,
            },
            check_same_thread=False,
        )
        database_proxy.initialize(self._database)
        self._rw_lock = AsyncRWLock()

    @property
    def database(self) -> peewee.SqliteDatabase:
        return self._database

    @property
    def rw_lock(self) -> AsyncRWLock:
        return self._rw_lock

    def migrate(self) -> None:
        """Create tables and add columns missing from older stores (idempotent)."""
        with self._database.connection_context(), self._database.bind_ctx(ALL_MODELS):
            self._database.create_tables(ALL_MODELS, safe=True)
            self._ensure_schema_compatibility()
        self._logger.info("db_migrated", extra={"path": self._mask_path(self.path)})

    def _ensure_schema_compatibility(self) -> None:
        checks = [
            ("sync_cursor_state", "last_full_sync_at", "DATETIME"),
        ]
        for table, column, coltype in checks:
            self._ensure_column(table, column, coltype)

    def _ensure_column(self, table: str, column: str, coltype: str) -> None:
        if table not in self._database.get_tables():
            return
        existing = {col.name for col in self._database.get_columns(table)}
        if column in existing:
            return
        self._database.execute_sql(f"ALTER TABLE {table} ADD COLUMN {column} {coltype}")
        self._logger.info("db_column_added", extra={"table": table, "column": column})

    def close(self) -> None:
        if not self._database.is_closed():
            self._database.close()

    async def _safe_db_operation(
        self,
        operation: Callable[..., Any],
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "database_operation",
        read_only: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Execute a single store operation on a worker thread.

        Writes are serialized behind the write lock; reads share the read lock.

        Raises:
            asyncio.TimeoutError: If the operation times out
            peewee.OperationalError: If the database stays locked after retries
            peewee.IntegrityError: If a constraint is violated
        """

        def _op_wrapper() -> Any:
            with self._database.connection_context():
                return operation(*args, **kwargs)

        async def _run_with_lock() -> Any:
            guard = self._rw_lock.read_lock() if read_only else self._rw_lock.write_lock()
            async with guard:
                return await asyncio.to_thread(_op_wrapper)

        return await self._run_with_retries(
            _run_with_lock, timeout=timeout, operation_name=operation_name, kind="operation"
        )

    async def _safe_db_transaction(
        self,
        operation: Callable[..., Any],
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "database_transaction",
        **kwargs: Any,
    ) -> Any:
        """Execute an operation inside one atomic transaction.

        Either every statement the operation issues is committed or none is,
        so readers never observe a half-applied page.
        """

        def _execute_in_transaction() -> Any:
            with self._database.connection_context(), self._database.atomic() as txn:
                try:
                    return operation(*args, **kwargs)
                except BaseException:
                    txn.rollback()
                    raise

        async def _run_transaction() -> Any:
            async with self._rw_lock.write_lock():
                return await asyncio.to_thread(_execute_in_transaction)

        return await self._run_with_retries(
            _run_transaction, timeout=timeout, operation_name=operation_name, kind="transaction"
        )

    async def _run_with_retries(
        self,
        runner: Callable[[], Any],
        *,
        timeout: float | None,
        operation_name: str,
        kind: str,
    ) -> Any:
        if timeout is None:
            timeout = self.operation_timeout

        retries = 0
        while True:
            try:
                return await asyncio.wait_for(runner(), timeout=timeout)

            except TimeoutError:
                self._logger.exception(
                    f"db_{kind}_timeout",
                    extra={"operation": operation_name, "timeout": timeout, "retries": retries},
                )
                raise

            except peewee.OperationalError as e:
                error_msg = str(e).lower()
                if ("locked" in error_msg or "busy" in error_msg) and retries < self.max_retries:
                    retries += 1
                    wait_time = 0.1 * (2**retries)
                    self._logger.warning(
                        f"db_{kind}_locked_retrying",
                        extra={
                            "operation": operation_name,
                            "retry": retries,
                            "max_retries": self.max_retries,
                            "wait_time": wait_time,
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(wait_time)
                    continue

                self._logger.exception(
                    f"db_{kind}_operational_error",
                    extra={"operation": operation_name, "retries": retries, "error": str(e)},
                )
                raise

            except peewee.IntegrityError as e:
                self._logger.exception(
                    f"db_{kind}_integrity_error",
                    extra={"operation": operation_name, "error": str(e)},
                )
                raise

    @staticmethod
    def _mask_path(path: str) -> str:
        """Mask a path for logging (show only parent/filename)."""
        try:
            p = Path(path)
            if not p.name:
                return str(p)
            parent = p.parent.name
            if parent:
                return f".../{parent}/{p.name}"
            return p.name
        except (OSError, ValueError, AttributeError):
            return "..."
