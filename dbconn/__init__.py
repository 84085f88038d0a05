"""Database connectivity core: connection options, Azure tokens and connection lifecycle."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import DatabaseConfig, InstanceSettings, load_config, load_instance_settings
from .connection import ConnectionState, DbConnection, ErrorReporter, LoggingErrorReporter
from .credentials import AuthMode, AzureTokenCache, CachedToken, TokenProvider, select_auth_mode
from .engines import AsyncpgEngine, PersistenceEngine, RoutingEngine, SqliteEngine, default_engine
from .errors import (
    AuthenticationError,
    AuthPhase,
    ConfigurationError,
    ConnectionNotInitializedError,
    ConnectionTimeoutError,
    DatabaseError,
    UnsupportedBackendError,
)
from .migrations import Migration, MigrationContext, wrap_migration
from .models import (
    ConnectionOptions,
    MysqlOptions,
    PostgresOptions,
    SqliteOptions,
    SqlitePooledOptions,
    SslOptions,
)
from .options import ConnectionOptionsBuilder, resolve_logging
from .periodic import PeriodicTask
from .registry import ModuleRegistry, SchemaCatalog

__all__ = [
    "AsyncpgEngine",
    "AuthMode",
    "AuthPhase",
    "AuthenticationError",
    "AzureTokenCache",
    "CachedToken",
    "ConfigurationError",
    "ConnectionNotInitializedError",
    "ConnectionOptions",
    "ConnectionOptionsBuilder",
    "ConnectionState",
    "ConnectionTimeoutError",
    "DatabaseConfig",
    "DatabaseError",
    "DbConnection",
    "ErrorReporter",
    "InstanceSettings",
    "LoggingErrorReporter",
    "Migration",
    "MigrationContext",
    "ModuleRegistry",
    "MysqlOptions",
    "PeriodicTask",
    "PersistenceEngine",
    "PostgresOptions",
    "RoutingEngine",
    "SchemaCatalog",
    "SqliteEngine",
    "SqliteOptions",
    "SqlitePooledOptions",
    "SslOptions",
    "TokenProvider",
    "UnsupportedBackendError",
    "__version__",
    "default_engine",
    "load_config",
    "load_instance_settings",
    "resolve_logging",
    "select_auth_mode",
]
