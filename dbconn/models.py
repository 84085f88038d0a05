"""Connection option variants handed to the persistence engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Mapping, Union

if TYPE_CHECKING:
    from .migrations import Migration

LoggingOption = Union[bool, Literal["all"], tuple[str, ...]]


@dataclass(frozen=True, slots=True)
class SslOptions:
    """Structured TLS settings; ``None`` marks a value the operator left empty."""

    ca: str | None = None
    cert: str | None = None
    key: str | None = field(default=None, repr=False)
    reject_unauthorized: bool = True


@dataclass(frozen=True, slots=True)
class CommonOptions:
    """Fields shared by every backend variant."""

    entity_prefix: str
    entities: tuple[object, ...]
    subscribers: tuple[object, ...]
    migrations_table_name: str
    migrations_run: bool
    synchronize: bool
    max_query_execution_time: int
    logging: LoggingOption
    migrations: tuple["Migration", ...]
    database: str


@dataclass(frozen=True, slots=True)
class SqliteOptions(CommonOptions):
    """Single-connection sqlite file."""

    enable_wal: bool
    type: Literal["sqlite"] = "sqlite"


@dataclass(frozen=True, slots=True)
class SqlitePooledOptions(CommonOptions):
    """Pooled sqlite file; WAL is always on so readers do not block the writer."""

    pool_size: int
    enable_wal: bool = True
    acquire_timeout: int = 60_000
    destroy_timeout: int = 5_000
    type: Literal["sqlite-pooled"] = "sqlite-pooled"


@dataclass(frozen=True, slots=True)
class PostgresOptions(CommonOptions):
    """Postgres server connection."""

    host: str
    port: int
    username: str
    password: str = field(repr=False)
    schema: str
    pool_size: int
    connect_timeout_ms: int
    ssl: bool | SslOptions
    extra: Mapping[str, object]
    type: Literal["postgres"] = "postgres"


@dataclass(frozen=True, slots=True)
class MysqlOptions(CommonOptions):
    """MySQL or MariaDB server connection."""

    type: Literal["mysql", "mariadb"]
    host: str
    port: int
    username: str
    password: str = field(repr=False)
    timezone: str = "Z"


ConnectionOptions = Union[SqliteOptions, SqlitePooledOptions, PostgresOptions, MysqlOptions]


__all__ = [
    "CommonOptions",
    "ConnectionOptions",
    "LoggingOption",
    "MysqlOptions",
    "PostgresOptions",
    "SqliteOptions",
    "SqlitePooledOptions",
    "SslOptions",
]
