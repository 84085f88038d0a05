"""Migration contract and the timing wrapper applied before migrations run."""

from __future__ import annotations

import logging
import time
from typing import Protocol, runtime_checkable

LOG = logging.getLogger(__name__)


@runtime_checkable
class MigrationContext(Protocol):
    """Execution surface engines hand to a running migration."""

    table_prefix: str
    family: str

    async def execute(self, sql: str, *args: object) -> None:
        """Run one statement inside the migration's transaction."""


@runtime_checkable
class Migration(Protocol):
    """A versioned schema change, applied once and recorded by name."""

    name: str

    async def up(self, context: MigrationContext) -> None: ...


class WrappedMigration:
    """Migration decorator that logs and times each run."""

    def __init__(self, migration: Migration) -> None:
        self._migration = migration

    @property
    def name(self) -> str:
        return self._migration.name

    @property
    def wrapped(self) -> Migration:
        return self._migration

    async def up(self, context: MigrationContext) -> None:
        LOG.info("Starting migration %s", self.name, extra={"migration": self.name})
        started = time.perf_counter()
        try:
            await self._migration.up(context)
        except Exception:
            LOG.exception("Migration %s failed", self.name, extra={"migration": self.name})
            raise
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        LOG.info(
            "Finished migration %s in %d ms",
            self.name,
            elapsed_ms,
            extra={"migration": self.name, "elapsed_ms": elapsed_ms},
        )

    def __repr__(self) -> str:
        return f"WrappedMigration({self._migration!r})"


def wrap_migration(migration: Migration) -> WrappedMigration:
    """Wrap a migration for logging and timing; already-wrapped migrations pass through."""

    if isinstance(migration, WrappedMigration):
        return migration
    return WrappedMigration(migration)


__all__ = ["Migration", "MigrationContext", "WrappedMigration", "wrap_migration"]
