"""Translate operator configuration into backend-specific connection options."""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Literal

from .config import SUPPORTED_BACKENDS, DatabaseConfig, InstanceSettings, LoggingConfig, PostgresConfig
from .credentials import AzureTokenCache
from .errors import ConfigurationError, UnsupportedBackendError
from .models import (
    ConnectionOptions,
    LoggingOption,
    MysqlOptions,
    PostgresOptions,
    SqliteOptions,
    SqlitePooledOptions,
    SslOptions,
)
from .registry import DialectFamily, ModuleRegistry, SchemaCatalog

LOG = logging.getLogger(__name__)

SQLITE_POOL_ACQUIRE_TIMEOUT_MS = 60_000
SQLITE_POOL_DESTROY_TIMEOUT_MS = 5_000

TokenCacheFactory = Callable[[PostgresConfig], AzureTokenCache]


def resolve_logging(config: LoggingConfig) -> LoggingOption:
    """Map the logging settings onto the engine's logging option."""

    if not config.enabled:
        return False
    options = "".join(config.options.split())
    if options == "all":
        return "all"
    return tuple(options.split(","))


def azure_token_cache_for(config: PostgresConfig) -> AzureTokenCache:
    """Default token cache factory built from the Postgres Azure settings."""

    return AzureTokenCache(
        tenant_id=config.azure_tenant_id,
        client_id=config.azure_client_id,
        client_secret=config.azure_client_secret,
        refresh_margin_ms=config.azure_token_refresh_margin_ms,
    )


class ConnectionOptionsBuilder:
    """Builds immutable connection options for the configured backend."""

    def __init__(
        self,
        config: DatabaseConfig,
        instance_settings: InstanceSettings,
        module_registry: ModuleRegistry | None = None,
        *,
        catalog: SchemaCatalog | None = None,
        token_cache_factory: TokenCacheFactory = azure_token_cache_for,
    ) -> None:
        self._config = config
        self._instance_settings = instance_settings
        self._module_registry = module_registry or ModuleRegistry()
        self._catalog = catalog or SchemaCatalog()
        self._token_cache_factory = token_cache_factory
        self._token_cache: AzureTokenCache | None = None

    @property
    def backend(self) -> str:
        return self._config.type

    async def get_options(self) -> ConnectionOptions:
        """Build options for ``config.type``; unknown backends are rejected first."""

        db_type = self._config.type
        if db_type not in SUPPORTED_BACKENDS:
            raise UnsupportedBackendError(db_type)
        LOG.debug("Building connection options", extra={"backend": db_type})
        if db_type == "sqlite":
            return self._sqlite_options()
        if db_type == "postgresdb":
            return await self._postgres_options()
        return self._mysql_options(db_type)

    def get_overrides(self, db_type: Literal["postgresdb", "mysqldb"]) -> dict[str, object]:
        """Server connection fields with the configured literal password."""

        server = self._config.postgresdb if db_type == "postgresdb" else self._config.mysqldb
        self._require(db_type, "host", server.host)
        self._require(db_type, "database", server.database)
        return {
            "database": server.database,
            "host": server.host,
            "port": server.port,
            "username": server.user,
            "password": server.password,
        }

    async def get_postgres_overrides(self) -> dict[str, object]:
        """Like :meth:`get_overrides`, swapping in an Azure token when Entra ID auth is on."""

        overrides = self.get_overrides("postgresdb")
        if self._config.postgresdb.auth_type == "azure_entra_id":
            overrides["password"] = await self._azure_token_cache().get_token()
        return overrides

    def _common_options(self, family: DialectFamily) -> dict[str, object]:
        prefix = self._config.table_prefix
        logging_config = self._config.logging
        return {
            "entity_prefix": prefix,
            "entities": (*self._catalog.entities, *self._module_registry.entities),
            "subscribers": tuple(self._catalog.subscribers),
            "migrations_table_name": f"{prefix}migrations",
            "migrations_run": False,
            "synchronize": False,
            "max_query_execution_time": logging_config.max_query_execution_time,
            "logging": resolve_logging(logging_config),
            "migrations": self._catalog.migrations_for(family),
        }

    def _sqlite_options(self) -> SqliteOptions | SqlitePooledOptions:
        sqlite = self._config.sqlite
        self._require("sqlite", "database", sqlite.database)
        database = str((Path(self._instance_settings.user_folder) / sqlite.database).resolve())
        common = self._common_options("sqlite")
        if sqlite.pool_size > 0:
            return SqlitePooledOptions(
                **common,
                database=database,
                pool_size=sqlite.pool_size,
                enable_wal=True,
                acquire_timeout=SQLITE_POOL_ACQUIRE_TIMEOUT_MS,
                destroy_timeout=SQLITE_POOL_DESTROY_TIMEOUT_MS,
            )
        return SqliteOptions(**common, database=database, enable_wal=sqlite.enable_wal)

    async def _postgres_options(self) -> PostgresOptions:
        postgres = self._config.postgresdb
        overrides = await self.get_postgres_overrides()
        return PostgresOptions(
            **self._common_options("postgres"),
            **overrides,
            schema=postgres.schema_name,
            pool_size=postgres.pool_size,
            connect_timeout_ms=postgres.connection_timeout_ms,
            ssl=self._postgres_ssl(postgres),
            extra=MappingProxyType({"idleTimeoutMillis": postgres.idle_timeout_ms}),
        )

    def _mysql_options(self, db_type: str) -> MysqlOptions:
        return MysqlOptions(
            **self._common_options("mysql"),
            **self.get_overrides("mysqldb"),
            type="mysql" if db_type == "mysqldb" else "mariadb",
            timezone="Z",
        )

    @staticmethod
    def _postgres_ssl(postgres: PostgresConfig) -> bool | SslOptions:
        ssl = postgres.ssl
        if not ssl.ca and not ssl.cert and not ssl.key and ssl.reject_unauthorized:
            return ssl.enabled
        return SslOptions(
            ca=ssl.ca or None,
            cert=ssl.cert or None,
            key=ssl.key or None,
            reject_unauthorized=ssl.reject_unauthorized,
        )

    def _azure_token_cache(self) -> AzureTokenCache:
        if self._token_cache is None:
            self._token_cache = self._token_cache_factory(self._config.postgresdb)
        return self._token_cache

    @staticmethod
    def _require(backend: str, field: str, value: str) -> None:
        if not value.strip():
            raise ConfigurationError(backend, field)


__all__ = [
    "ConnectionOptionsBuilder",
    "SQLITE_POOL_ACQUIRE_TIMEOUT_MS",
    "SQLITE_POOL_DESTROY_TIMEOUT_MS",
    "azure_token_cache_for",
    "resolve_logging",
]
