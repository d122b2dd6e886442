"""
Member ordering strategies for the IL writer.

The writer asks an EntityProcessor for the order of every member list it
emits (types, nested types, fields, methods, properties, events). Sorting by
name makes dumps stable across compiler runs; the other strategies keep the
physical metadata order reachable.
"""

from abc import ABC, abstractmethod
from typing import Sequence, TypeVar

from msil_comparator.engines.dotnet.model import (
    EventDefinition,
    FieldDefinition,
    MethodDefinition,
    PropertyDefinition,
    TypeDefinition,
)

T = TypeVar("T")


class EntityProcessor(ABC):
    """Decides the order in which the writer emits sibling entities."""

    name: str = ""

    @abstractmethod
    def order(self, entities: Sequence[T]) -> list[T]:
        """Return the entities in emission order."""

    def process_types(self, types: Sequence[TypeDefinition]) -> list[TypeDefinition]:
        return self.order(types)

    def process_fields(self, fields: Sequence[FieldDefinition]) -> list[FieldDefinition]:
        return self.order(fields)

    def process_methods(self, methods: Sequence[MethodDefinition]) -> list[MethodDefinition]:
        return self.order(methods)

    def process_properties(
        self, properties: Sequence[PropertyDefinition]
    ) -> list[PropertyDefinition]:
        return self.order(properties)

    def process_events(self, events: Sequence[EventDefinition]) -> list[EventDefinition]:
        return self.order(events)


class SortByNameProcessor(EntityProcessor):
    """Ordinal sort by name; overloaded methods are tie-broken by signature."""

    name = "name"

    def order(self, entities):
        return sorted(entities, key=lambda entity: entity.sort_key)


class DeclarationOrderProcessor(EntityProcessor):
    """Physical table order, as ildasm prints it."""

    name = "declaration"

    def order(self, entities):
        return list(entities)


class TokenOrderProcessor(EntityProcessor):
    """Metadata token order."""

    name = "token"

    def order(self, entities):
        return sorted(entities, key=lambda entity: entity.token)


ENTITY_PROCESSORS: dict[str, type[EntityProcessor]] = {
    SortByNameProcessor.name: SortByNameProcessor,
    DeclarationOrderProcessor.name: DeclarationOrderProcessor,
    TokenOrderProcessor.name: TokenOrderProcessor,
}


def get_entity_processor(name: str) -> EntityProcessor:
    """
    Create an ordering strategy by name.

    Raises:
        ValueError: If the name is not a known strategy
    """
    try:
        return ENTITY_PROCESSORS[name.lower()]()
    except KeyError:
        known = ", ".join(sorted(ENTITY_PROCESSORS))
        raise ValueError(f"Unknown member order '{name}' (expected one of: {known})")
