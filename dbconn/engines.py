"""Persistence engines that open, migrate, query and close database handles."""

from __future__ import annotations

import logging
import sqlite3
import ssl
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import aiosqlite
import asyncpg

from .errors import UnsupportedBackendError
from .migrations import Migration
from .models import ConnectionOptions, PostgresOptions, SqliteOptions, SqlitePooledOptions, SslOptions

LOG = logging.getLogger(__name__)


@runtime_checkable
class PersistenceEngine(Protocol):
    """Protocol implemented by persistence engines."""

    async def open(self, options: ConnectionOptions) -> Any:
        """Open a handle for ``options``; raises whatever the driver raises."""

    async def run_migrations(
        self,
        handle: Any,
        migrations: Sequence[Migration],
        *,
        table_name: str,
        table_prefix: str = "",
    ) -> None:
        """Apply pending migrations, one transaction per migration."""

    async def query(self, handle: Any, sql: str) -> list[Any]:
        """Run a statement and return its rows."""

    def is_open(self, handle: Any) -> bool:
        """Whether the handle can still serve queries."""

    async def close(self, handle: Any) -> None:
        """Release the handle."""


class _AsyncpgMigrationContext:
    family = "postgres"

    def __init__(self, connection: asyncpg.Connection, table_prefix: str) -> None:
        self._connection = connection
        self.table_prefix = table_prefix

    async def execute(self, sql: str, *args: object) -> None:
        await self._connection.execute(sql, *args)


class AsyncpgEngine:
    """Postgres engine backed by an asyncpg connection pool."""

    def __init__(self, *, min_size: int = 1) -> None:
        self._min_size = min_size

    async def open(self, options: ConnectionOptions) -> asyncpg.Pool:
        if not isinstance(options, PostgresOptions):
            raise UnsupportedBackendError(options.type)
        kwargs = self._pool_kwargs(options)
        LOG.debug(
            "Opening asyncpg pool",
            extra={"host": options.host, "port": options.port, "database": options.database},
        )
        return await asyncpg.create_pool(**kwargs)

    async def run_migrations(
        self,
        handle: asyncpg.Pool,
        migrations: Sequence[Migration],
        *,
        table_name: str,
        table_prefix: str = "",
    ) -> None:
        async with handle.acquire() as conn:
            await conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{table_name}" '
                "(id SERIAL PRIMARY KEY, timestamp BIGINT NOT NULL, name VARCHAR NOT NULL)"
            )
            rows = await conn.fetch(f'SELECT name FROM "{table_name}"')
            executed = {str(row["name"]) for row in rows}
            context = _AsyncpgMigrationContext(conn, table_prefix)
            for migration in migrations:
                if migration.name in executed:
                    continue
                async with conn.transaction():
                    await migration.up(context)
                    await conn.execute(
                        f'INSERT INTO "{table_name}" (timestamp, name) VALUES ($1, $2)',
                        int(time.time() * 1000),
                        migration.name,
                    )

    async def query(self, handle: asyncpg.Pool, sql: str) -> list[Any]:
        return list(await handle.fetch(sql))

    def is_open(self, handle: asyncpg.Pool) -> bool:
        return not handle.is_closing()

    async def close(self, handle: asyncpg.Pool) -> None:
        await handle.close()

    def _pool_kwargs(self, options: PostgresOptions) -> dict[str, object]:
        max_size = max(options.pool_size, 1)
        kwargs: dict[str, object] = {
            "host": options.host,
            "port": options.port,
            "user": options.username,
            "password": options.password,
            "database": options.database,
            "min_size": min(self._min_size, max_size),
            "max_size": max_size,
            "server_settings": {"search_path": options.schema},
            "ssl": _ssl_for(options.ssl),
        }
        if options.connect_timeout_ms > 0:
            kwargs["timeout"] = options.connect_timeout_ms / 1000
        idle_timeout_ms = options.extra.get("idleTimeoutMillis")
        if isinstance(idle_timeout_ms, int):
            kwargs["max_inactive_connection_lifetime"] = idle_timeout_ms / 1000
        return kwargs


def _ssl_for(value: bool | SslOptions) -> bool | ssl.SSLContext:
    """Map SSL options to an SSLContext (client PEM is staged on disk for load_cert_chain)."""

    if isinstance(value, bool):
        return value
    context = ssl.create_default_context(cadata=value.ca) if value.ca else ssl.create_default_context()
    if not value.reject_unauthorized:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if value.cert:
        with tempfile.TemporaryDirectory() as tmp:
            cert_path = Path(tmp) / "client.crt"
            cert_path.write_text(value.cert)
            key_path: Path | None = None
            if value.key:
                key_path = Path(tmp) / "client.key"
                key_path.write_text(value.key)
            context.load_cert_chain(cert_path, key_path)
    return context


@dataclass(slots=True)
class SqliteHandle:
    """Open aiosqlite connection plus its closed flag."""

    connection: aiosqlite.Connection
    database: str
    closed: bool = False


class _SqliteMigrationContext:
    family = "sqlite"

    def __init__(self, connection: aiosqlite.Connection, table_prefix: str) -> None:
        self._connection = connection
        self.table_prefix = table_prefix

    async def execute(self, sql: str, *args: object) -> None:
        await self._connection.execute(sql, args)


class SqliteEngine:
    """sqlite engine backed by aiosqlite.

    Pooled options share a single connection; WAL keeps readers from
    blocking the writer.
    """

    async def open(self, options: ConnectionOptions) -> SqliteHandle:
        if not isinstance(options, (SqliteOptions, SqlitePooledOptions)):
            raise UnsupportedBackendError(options.type)
        Path(options.database).parent.mkdir(parents=True, exist_ok=True)
        timeout = options.acquire_timeout / 1000 if isinstance(options, SqlitePooledOptions) else 5.0
        LOG.debug("Opening sqlite database", extra={"database": options.database})
        connection = await aiosqlite.connect(options.database, timeout=timeout, isolation_level=None)
        if options.enable_wal:
            await connection.execute("PRAGMA journal_mode=WAL")
        return SqliteHandle(connection=connection, database=options.database)

    async def run_migrations(
        self,
        handle: SqliteHandle,
        migrations: Sequence[Migration],
        *,
        table_name: str,
        table_prefix: str = "",
    ) -> None:
        conn = handle.connection
        await conn.execute(
            f'CREATE TABLE IF NOT EXISTS "{table_name}" '
            "(id INTEGER PRIMARY KEY AUTOINCREMENT, timestamp INTEGER NOT NULL, name TEXT NOT NULL)"
        )
        rows = await conn.execute_fetchall(f'SELECT name FROM "{table_name}"')
        executed = {str(row[0]) for row in rows}
        context = _SqliteMigrationContext(conn, table_prefix)
        for migration in migrations:
            if migration.name in executed:
                continue
            await conn.execute("BEGIN TRANSACTION")
            try:
                await migration.up(context)
                await conn.execute(
                    f'INSERT INTO "{table_name}" (timestamp, name) VALUES (?, ?)',
                    (int(time.time() * 1000), migration.name),
                )
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    async def query(self, handle: SqliteHandle, sql: str) -> list[Any]:
        if handle.closed:
            raise sqlite3.ProgrammingError("Cannot operate on a closed database.")
        return list(await handle.connection.execute_fetchall(sql))

    def is_open(self, handle: SqliteHandle) -> bool:
        return not handle.closed

    async def close(self, handle: SqliteHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        await handle.connection.close()


@dataclass(frozen=True, slots=True)
class RoutedHandle:
    """Handle tagged with the engine that opened it."""

    engine: PersistenceEngine
    inner: Any


class RoutingEngine:
    """Dispatches each options variant to the engine registered for its type."""

    def __init__(self, engines: Mapping[str, PersistenceEngine]) -> None:
        self._engines = dict(engines)

    @property
    def backends(self) -> tuple[str, ...]:
        return tuple(sorted(self._engines))

    async def open(self, options: ConnectionOptions) -> RoutedHandle:
        engine = self._engines.get(options.type)
        if engine is None:
            raise UnsupportedBackendError(options.type)
        return RoutedHandle(engine=engine, inner=await engine.open(options))

    async def run_migrations(
        self,
        handle: RoutedHandle,
        migrations: Sequence[Migration],
        *,
        table_name: str,
        table_prefix: str = "",
    ) -> None:
        await handle.engine.run_migrations(
            handle.inner,
            migrations,
            table_name=table_name,
            table_prefix=table_prefix,
        )

    async def query(self, handle: RoutedHandle, sql: str) -> list[Any]:
        return await handle.engine.query(handle.inner, sql)

    def is_open(self, handle: RoutedHandle) -> bool:
        return handle.engine.is_open(handle.inner)

    async def close(self, handle: RoutedHandle) -> None:
        await handle.engine.close(handle.inner)


def default_engine() -> RoutingEngine:
    """Engine covering the backends with a bundled driver (Postgres and sqlite)."""

    sqlite_engine = SqliteEngine()
    return RoutingEngine(
        {
            "postgres": AsyncpgEngine(),
            "sqlite": sqlite_engine,
            "sqlite-pooled": sqlite_engine,
        }
    )


__all__ = [
    "AsyncpgEngine",
    "PersistenceEngine",
    "RoutedHandle",
    "RoutingEngine",
    "SqliteEngine",
    "SqliteHandle",
    "default_engine",
]
