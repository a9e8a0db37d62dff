from __future__ import annotations

from dataclasses import dataclass

from app.exceptions import PolicyConfigurationError
from app.models.enums import ResourceDomain, Unit


@dataclass(frozen=True)
class ResourceType:
    """A kind of resource an entity can hold (PTO, wellness points, ...)."""

    name: str
    unit: Unit
    domain: ResourceDomain
    unique_per_day: bool = False


class ResourceRegistry:
    """Lookup of known resource types.

    Built once at startup and handed to the policy parser and the ledger
    stores; nothing registers itself at import time.
    """

    def __init__(self, resource_types: list[ResourceType] | None = None) -> None:
        self._types: dict[str, ResourceType] = {}
        for resource_type in resource_types or []:
            self.register(resource_type)

    def register(self, resource_type: ResourceType) -> None:
        self._types[resource_type.name] = resource_type

    def get(self, name: str) -> ResourceType:
        try:
            return self._types[name]
        except KeyError:
            msg = f"Unknown resource type: {name}"
            raise PolicyConfigurationError(msg) from None

    def get_or_create(self, name: str, unit: Unit, domain: ResourceDomain = ResourceDomain.TIME_OFF) -> ResourceType:
        if name not in self._types:
            unique = domain == ResourceDomain.TIME_OFF
            self.register(ResourceType(name=name, unit=unit, domain=domain, unique_per_day=unique))
        return self._types[name]

    def is_unique_per_day(self, name: str) -> bool:
        resource_type = self._types.get(name)
        return resource_type is not None and resource_type.unique_per_day

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def all(self) -> list[ResourceType]:
        return sorted(self._types.values(), key=lambda rt: rt.name)


def build_default_registry() -> ResourceRegistry:
    """Registry with the built-in time-off and rewards resource types."""
    return ResourceRegistry(
        [
            ResourceType("pto", Unit.DAYS, ResourceDomain.TIME_OFF, unique_per_day=True),
            ResourceType("sick", Unit.DAYS, ResourceDomain.TIME_OFF, unique_per_day=True),
            ResourceType("parental", Unit.DAYS, ResourceDomain.TIME_OFF, unique_per_day=True),
            ResourceType("floating_holiday", Unit.DAYS, ResourceDomain.TIME_OFF, unique_per_day=True),
            ResourceType("wellness", Unit.POINTS, ResourceDomain.REWARDS),
            ResourceType("recognition", Unit.POINTS, ResourceDomain.REWARDS),
            ResourceType("learning", Unit.DOLLARS, ResourceDomain.REWARDS),
            ResourceType("volunteer", Unit.HOURS, ResourceDomain.REWARDS),
            ResourceType("flex_benefits", Unit.DOLLARS, ResourceDomain.REWARDS),
            ResourceType("remote_days", Unit.DAYS, ResourceDomain.REWARDS, unique_per_day=True),
        ]
    )

