"""Tests for the bundled persistence engines."""

from __future__ import annotations

import sqlite3
import ssl
from pathlib import Path
from types import MappingProxyType
from typing import Any

import aiosqlite
import pytest

from dbconn.engines import AsyncpgEngine, RoutedHandle, RoutingEngine, SqliteEngine, default_engine
from dbconn.errors import UnsupportedBackendError
from dbconn.models import MysqlOptions, PostgresOptions, SqliteOptions, SqlitePooledOptions, SslOptions


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


COMMON: dict[str, Any] = {
    "entity_prefix": "",
    "entities": (),
    "subscribers": (),
    "migrations_table_name": "migrations",
    "migrations_run": False,
    "synchronize": False,
    "max_query_execution_time": 0,
    "logging": False,
    "migrations": (),
}


class _CreateTable:
    def __init__(self, name: str, table: str) -> None:
        self.name = name
        self.table = table
        self.runs = 0

    async def up(self, context):  # type: ignore[no-untyped-def]
        self.runs += 1
        await context.execute(f"CREATE TABLE {context.table_prefix}{self.table} (id INTEGER PRIMARY KEY)")


class _Failing:
    name = "Broken3"

    async def up(self, context):  # type: ignore[no-untyped-def]
        await context.execute("CREATE TABLE half_done (id INTEGER)")
        raise RuntimeError("migration failed")


def _sqlite_options(tmp_path: Path, **overrides: Any) -> SqliteOptions:
    fields = {**COMMON, "database": str(tmp_path / "data" / "db.sqlite"), "enable_wal": False}
    fields.update(overrides)
    return SqliteOptions(**fields)


def _postgres_options(**overrides: Any) -> PostgresOptions:
    fields = {
        **COMMON,
        "database": "app",
        "host": "db.internal",
        "port": 5433,
        "username": "app",
        "password": "secret",
        "schema": "tenant",
        "pool_size": 4,
        "connect_timeout_ms": 2_500,
        "ssl": False,
        "extra": MappingProxyType({"idleTimeoutMillis": 30_000}),
    }
    fields.update(overrides)
    return PostgresOptions(**fields)


@pytest.mark.anyio
async def test_sqlite_engine_opens_queries_and_closes(tmp_path: Path) -> None:
    engine = SqliteEngine()
    handle = await engine.open(_sqlite_options(tmp_path))

    try:
        assert isinstance(handle.connection, aiosqlite.Connection)
        assert engine.is_open(handle)
        assert await engine.query(handle, "SELECT 1") == [(1,)]
    finally:
        await engine.close(handle)

    assert not engine.is_open(handle)
    assert (tmp_path / "data" / "db.sqlite").exists()
    with pytest.raises(sqlite3.ProgrammingError):
        await engine.query(handle, "SELECT 1")
    await engine.close(handle)


@pytest.mark.anyio
async def test_sqlite_engine_enables_wal(tmp_path: Path) -> None:
    engine = SqliteEngine()
    options = SqlitePooledOptions(**COMMON, database=str(tmp_path / "pooled.sqlite"), pool_size=3)
    handle = await engine.open(options)

    try:
        assert await engine.query(handle, "PRAGMA journal_mode") == [("wal",)]
    finally:
        await engine.close(handle)


@pytest.mark.anyio
async def test_sqlite_engine_applies_pending_migrations_once(tmp_path: Path) -> None:
    engine = SqliteEngine()
    first = _CreateTable("Initial1", "accounts")
    second = _CreateTable("Orders2", "orders")
    handle = await engine.open(_sqlite_options(tmp_path))

    try:
        await engine.run_migrations(handle, [first], table_name="app_migrations", table_prefix="app_")
        await engine.run_migrations(handle, [first, second], table_name="app_migrations", table_prefix="app_")
        recorded = await engine.query(handle, 'SELECT name FROM "app_migrations" ORDER BY id')
        tables = await engine.query(handle, "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
    finally:
        await engine.close(handle)

    assert first.runs == 1
    assert second.runs == 1
    assert recorded == [("Initial1",), ("Orders2",)]
    assert ("app_accounts",) in tables
    assert ("app_orders",) in tables


@pytest.mark.anyio
async def test_sqlite_engine_rolls_back_failed_migration(tmp_path: Path) -> None:
    engine = SqliteEngine()
    handle = await engine.open(_sqlite_options(tmp_path))

    try:
        with pytest.raises(RuntimeError, match="migration failed"):
            await engine.run_migrations(
                handle,
                [_CreateTable("Initial1", "accounts"), _Failing()],
                table_name="migrations",
            )
        recorded = await engine.query(handle, 'SELECT name FROM "migrations"')
        tables = await engine.query(handle, "SELECT name FROM sqlite_master WHERE type = 'table'")
    finally:
        await engine.close(handle)

    assert recorded == [("Initial1",)]
    assert ("half_done",) not in tables


@pytest.mark.anyio
async def test_sqlite_engine_rejects_other_backends(tmp_path: Path) -> None:
    with pytest.raises(UnsupportedBackendError):
        await SqliteEngine().open(_postgres_options())


class _FakePool:
    def __init__(self) -> None:
        self.closing = False
        self.fetched: list[str] = []

    async def fetch(self, sql: str) -> list[dict[str, int]]:
        self.fetched.append(sql)
        return [{"?column?": 1}]

    def is_closing(self) -> bool:
        return self.closing

    async def close(self) -> None:
        self.closing = True


@pytest.mark.anyio
async def test_asyncpg_engine_maps_options_to_pool_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    pool = _FakePool()

    async def _fake_create_pool(**kwargs: Any) -> _FakePool:
        captured.update(kwargs)
        return pool

    monkeypatch.setattr("dbconn.engines.asyncpg.create_pool", _fake_create_pool)
    engine = AsyncpgEngine()

    handle = await engine.open(_postgres_options())

    assert handle is pool
    assert captured == {
        "host": "db.internal",
        "port": 5433,
        "user": "app",
        "password": "secret",
        "database": "app",
        "min_size": 1,
        "max_size": 4,
        "server_settings": {"search_path": "tenant"},
        "ssl": False,
        "timeout": 2.5,
        "max_inactive_connection_lifetime": 30.0,
    }
    assert engine.is_open(handle)
    assert await engine.query(handle, "SELECT 1") == [{"?column?": 1}]
    await engine.close(handle)
    assert not engine.is_open(handle)


@pytest.mark.anyio
async def test_asyncpg_engine_surfaces_driver_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    error = TimeoutError()

    async def _timeout(**kwargs: Any) -> None:
        raise error

    monkeypatch.setattr("dbconn.engines.asyncpg.create_pool", _timeout)

    with pytest.raises(TimeoutError) as excinfo:
        await AsyncpgEngine().open(_postgres_options())

    assert excinfo.value is error


@pytest.mark.anyio
async def test_asyncpg_engine_builds_ssl_context_for_structured_options(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    async def _fake_create_pool(**kwargs: Any) -> _FakePool:
        captured.update(kwargs)
        return _FakePool()

    monkeypatch.setattr("dbconn.engines.asyncpg.create_pool", _fake_create_pool)

    await AsyncpgEngine().open(_postgres_options(ssl=SslOptions(reject_unauthorized=False), connect_timeout_ms=0))

    context = captured["ssl"]
    assert isinstance(context, ssl.SSLContext)
    assert context.check_hostname is False
    assert context.verify_mode == ssl.CERT_NONE
    assert "timeout" not in captured


@pytest.mark.anyio
async def test_routing_engine_dispatches_by_options_type(tmp_path: Path) -> None:
    engine = RoutingEngine({"sqlite": SqliteEngine()})

    handle = await engine.open(_sqlite_options(tmp_path))
    try:
        assert isinstance(handle, RoutedHandle)
        assert engine.is_open(handle)
        assert await engine.query(handle, "SELECT 2") == [(2,)]
    finally:
        await engine.close(handle)

    assert not engine.is_open(handle)


@pytest.mark.anyio
async def test_default_engine_has_no_mysql_driver() -> None:
    engine = default_engine()
    options = MysqlOptions(
        **COMMON,
        type="mariadb",
        database="app",
        host="localhost",
        port=3306,
        username="root",
        password="",
    )

    assert engine.backends == ("postgres", "sqlite", "sqlite-pooled")
    with pytest.raises(UnsupportedBackendError) as excinfo:
        await engine.open(options)

    assert excinfo.value.backend_tag == "mariadb"
