"""Lifecycle of the single live database connection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from .config import DatabaseConfig, InstanceSettings
from .engines import PersistenceEngine, default_engine
from .errors import ConnectionNotInitializedError, ConnectionTimeoutError
from .migrations import wrap_migration
from .models import ConnectionOptions, PostgresOptions
from .options import ConnectionOptionsBuilder
from .periodic import PeriodicTask
from .registry import ModuleRegistry, SchemaCatalog

LOG = logging.getLogger(__name__)

CONNECT_TIMEOUT_MESSAGE = "Connection terminated due to connection timeout"
PING_QUERY = "SELECT 1"


class ErrorReporter(Protocol):
    """Sink for errors that must not interrupt the caller."""

    def error(self, exc: BaseException) -> None: ...


class LoggingErrorReporter:
    """Reports errors through the module logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOG

    def error(self, exc: BaseException) -> None:
        self._logger.error("Database error: %s", exc, exc_info=exc)


@dataclass(slots=True)
class ConnectionState:
    """Liveness and migration flags; ``migrated`` stays set after a failed ping."""

    connected: bool = False
    migrated: bool = False


class DbConnection:
    """Opens, migrates, health-checks and closes one database handle."""

    def __init__(
        self,
        options_builder: ConnectionOptionsBuilder,
        *,
        engine: PersistenceEngine | None = None,
        error_reporter: ErrorReporter | None = None,
        ping_interval_seconds: float = 2.0,
        health_checks: bool = True,
    ) -> None:
        self._options_builder = options_builder
        self._engine = engine or default_engine()
        self._error_reporter = error_reporter or LoggingErrorReporter()
        self._health_checks = health_checks
        self._ping_task = PeriodicTask(self.ping, ping_interval_seconds)
        self._options: ConnectionOptions | None = None
        self._handle: Any | None = None
        self.connection_state = ConnectionState()

    @classmethod
    def from_config(
        cls,
        config: DatabaseConfig,
        instance_settings: InstanceSettings,
        module_registry: ModuleRegistry | None = None,
        *,
        catalog: SchemaCatalog | None = None,
        engine: PersistenceEngine | None = None,
        error_reporter: ErrorReporter | None = None,
    ) -> DbConnection:
        """Wire a connection from configuration; health checks are off in test mode."""

        builder = ConnectionOptionsBuilder(config, instance_settings, module_registry, catalog=catalog)
        return cls(
            builder,
            engine=engine,
            error_reporter=error_reporter,
            ping_interval_seconds=config.ping_interval_seconds,
            health_checks=not instance_settings.in_test,
        )

    @property
    def options(self) -> ConnectionOptions | None:
        return self._options

    @property
    def handle(self) -> Any | None:
        return self._handle

    @property
    def health_check_running(self) -> bool:
        return self._ping_task.running

    async def init(self) -> None:
        """Open the connection; does nothing when already connected."""

        if self.connection_state.connected:
            return
        if self._options is None:
            self._options = await self._options_builder.get_options()
        options = self._options
        if self._handle is not None and self._engine.is_open(self._handle):
            LOG.info("Closing previous database handle before reconnecting")
            await self._engine.close(self._handle)
        self._handle = None
        try:
            self._handle = await self._engine.open(options)
        except Exception as exc:
            if isinstance(options, PostgresOptions) and _is_connect_timeout(exc):
                raise ConnectionTimeoutError(options.connect_timeout_ms, cause=exc) from exc
            raise
        self.connection_state.connected = True
        LOG.info("Database connection established", extra={"backend": options.type})
        if self._health_checks:
            self._ping_task.start()

    async def migrate(self) -> None:
        """Run pending migrations, each in its own transaction."""

        if self._handle is None or self._options is None:
            raise ConnectionNotInitializedError()
        options = self._options
        migrations = [wrap_migration(migration) for migration in options.migrations]
        await self._engine.run_migrations(
            self._handle,
            migrations,
            table_name=options.migrations_table_name,
            table_prefix=options.entity_prefix,
        )
        self.connection_state.migrated = True

    async def close(self) -> None:
        """Stop health checks and release the handle; safe to call repeatedly."""

        self._ping_task.cancel()
        if self._handle is not None and self._engine.is_open(self._handle):
            await self._engine.close(self._handle)
            self.connection_state.connected = False
            LOG.info("Database connection closed")

    async def ping(self) -> None:
        """Check the handle is still responsive; failures go to the error reporter."""

        if self._handle is None or not self._engine.is_open(self._handle):
            return
        try:
            await self._engine.query(self._handle, PING_QUERY)
        except Exception as exc:
            self.connection_state.connected = False
            self._error_reporter.error(exc)
            return
        self.connection_state.connected = True


def _is_connect_timeout(exc: BaseException) -> bool:
    return isinstance(exc, TimeoutError) or CONNECT_TIMEOUT_MESSAGE in str(exc)


__all__ = [
    "ConnectionState",
    "DbConnection",
    "ErrorReporter",
    "LoggingErrorReporter",
]
