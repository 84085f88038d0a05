"""Registries supplying entities, subscribers and migrations to the options builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal, Mapping, Sequence

from .migrations import Migration

DialectFamily = Literal["sqlite", "postgres", "mysql"]


@dataclass(frozen=True, slots=True)
class SchemaCatalog:
    """Built-in schema pieces shipped with the host application."""

    entities: Sequence[object] = ()
    subscribers: Sequence[object] = ()
    migrations: Mapping[DialectFamily, Sequence[Migration]] = field(default_factory=dict)

    def migrations_for(self, family: DialectFamily) -> tuple[Migration, ...]:
        """Return the migrations for a dialect family (empty when none are registered)."""

        return tuple(self.migrations.get(family, ()))


class ModuleRegistry:
    """Collects entities contributed by extension modules."""

    def __init__(self) -> None:
        self._entities: list[object] = []

    @property
    def entities(self) -> tuple[object, ...]:
        """Registered entities, in registration order."""

        return tuple(self._entities)

    def register_entity(self, entity: object) -> None:
        if entity in self._entities:
            raise ValueError(f"Entity '{getattr(entity, '__name__', entity)}' is already registered")
        self._entities.append(entity)

    def register_entities(self, entities: Iterable[object]) -> None:
        for entity in entities:
            self.register_entity(entity)


__all__ = ["DialectFamily", "ModuleRegistry", "SchemaCatalog"]
