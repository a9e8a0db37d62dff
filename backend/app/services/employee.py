# ruff: noqa: TC003
from __future__ import annotations

from datetime import date
from typing import Protocol, runtime_checkable

from pydantic import BaseModel


class EntityInfo(BaseModel):
    """Directory metadata about an entity holding resources."""

    id: str
    display_name: str = ""
    hire_date: date | None = None  # for proration and tenure tier lookups
    hours_per_day: int | None = None


@runtime_checkable
class EntityDirectory(Protocol):
    """Interface for the system of record that knows entities."""

    async def get_entity(self, entity_id: str) -> EntityInfo | None:
        """Fetch entity metadata. Returns None if not found."""
        ...

    async def list_entities(self) -> list[EntityInfo]:
        """List every known entity."""
        ...


class InMemoryEntityDirectory:
    """In-memory stub implementation for development."""

    def __init__(self) -> None:
        self._entities: dict[str, EntityInfo] = {}

    def seed(self, entity: EntityInfo) -> None:
        """Seed an entity for testing."""
        self._entities[entity.id] = entity

    async def get_entity(self, entity_id: str) -> EntityInfo | None:
        return self._entities.get(entity_id)

    async def list_entities(self) -> list[EntityInfo]:
        return list(self._entities.values())


_entity_directory: EntityDirectory = InMemoryEntityDirectory()


def get_entity_directory() -> EntityDirectory:
    """FastAPI dependency for the entity directory."""
    return _entity_directory


def set_entity_directory(directory: EntityDirectory) -> None:
    """Override the directory (for testing or production wiring)."""
    global _entity_directory
    _entity_directory = directory


async def resolve_hire_date(entity_id: str, explicit: date | None = None) -> date | None:
    """An explicitly supplied hire date wins over the directory's."""
    if explicit is not None:
        return explicit
    entity = await get_entity_directory().get_entity(entity_id)
    return entity.hire_date if entity is not None else None


async def resolve_hours_per_day(entity_id: str) -> int | None:
    """The entity's working day length, when the directory knows it."""
    entity = await get_entity_directory().get_entity(entity_id)
    return entity.hours_per_day if entity is not None else None
