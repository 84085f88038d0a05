"""Database configuration models and loading helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import tomllib

from pydantic import BaseModel, Field

CONFIG_FILE = Path.home() / ".config" / "dbconn" / "config.toml"

SUPPORTED_BACKENDS = ("sqlite", "postgresdb", "mysqldb", "mariadb")


class LoggingConfig(BaseModel):
    """Query logging forwarded to the persistence engine."""

    enabled: bool = False
    options: str = "error"
    max_query_execution_time: int = Field(default=0, ge=0)


class SqliteConfig(BaseModel):
    """Settings for the file-backed sqlite backend."""

    database: str = "database.sqlite"
    pool_size: int = Field(default=0, ge=0)
    enable_wal: bool = False


class PostgresSslConfig(BaseModel):
    """TLS settings for Postgres; empty strings mean "not set"."""

    enabled: bool = False
    ca: str = ""
    cert: str = ""
    key: str = ""
    reject_unauthorized: bool = True


class PostgresConfig(BaseModel):
    """Settings for the Postgres backend, including Azure Entra ID auth."""

    database: str = "postgres"
    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    user: str = "postgres"
    password: str = ""
    schema_name: str = "public"
    pool_size: int = Field(default=2, ge=0)
    connection_timeout_ms: int = Field(default=20_000, ge=0)
    idle_timeout_ms: int = Field(default=30_000, ge=0)
    auth_type: Literal["password", "azure_entra_id"] = "password"
    azure_tenant_id: str = ""
    azure_client_id: str = ""
    azure_client_secret: str = ""
    azure_token_refresh_margin_ms: int = Field(default=300_000, ge=0)
    ssl: PostgresSslConfig = Field(default_factory=PostgresSslConfig)


class MysqlConfig(BaseModel):
    """Settings shared by the MySQL and MariaDB backends."""

    database: str = "dbconn"
    host: str = "localhost"
    port: int = Field(default=3306, ge=1, le=65535)
    user: str = "root"
    password: str = ""


class DatabaseConfig(BaseModel):
    """Operator-facing database configuration.

    ``type`` is kept as plain text so that an unknown backend is reported by
    the options builder rather than rejected while parsing the file.
    """

    type: str = "sqlite"
    table_prefix: str = ""
    ping_interval_seconds: float = Field(default=2.0, gt=0)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sqlite: SqliteConfig = Field(default_factory=SqliteConfig)
    postgresdb: PostgresConfig = Field(default_factory=PostgresConfig)
    mysqldb: MysqlConfig = Field(default_factory=MysqlConfig)


class InstanceSettings(BaseModel):
    """Process-level settings the database layer depends on."""

    user_folder: Path = Field(default_factory=lambda: Path.home() / ".dbconn")
    environment: Literal["production", "development", "test"] = "production"

    @property
    def in_test(self) -> bool:
        return self.environment == "test"


def load_config(path: Path | None = None) -> DatabaseConfig:
    """Load the ``[database]`` table; fall back to defaults if the file is unusable."""

    data = _read_table(path or CONFIG_FILE, "database")
    if data is None:
        return DatabaseConfig()
    return DatabaseConfig(**data)


def load_instance_settings(path: Path | None = None) -> InstanceSettings:
    """Load the ``[instance]`` table; fall back to defaults if the file is unusable."""

    data = _read_table(path or CONFIG_FILE, "instance")
    if data is None:
        return InstanceSettings()
    return InstanceSettings(**data)


def _read_table(path: Path, table: str) -> dict[str, object] | None:
    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return None
    except (tomllib.TOMLDecodeError, OSError):
        return None
    section = raw.get(table)
    if not isinstance(section, dict):
        return None
    return section


__all__ = [
    "CONFIG_FILE",
    "DatabaseConfig",
    "InstanceSettings",
    "LoggingConfig",
    "MysqlConfig",
    "PostgresConfig",
    "PostgresSslConfig",
    "SUPPORTED_BACKENDS",
    "SqliteConfig",
    "load_config",
    "load_instance_settings",
]
