"""
Resource limits.

A limit is either ``Unlimited`` or ``Bounded(n)``. The ``-1`` sentinel used by
storage and by the public API only exists at the serialization boundary.
"""

from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, model_serializer

from packages.billing.models.domain.enums import ResourceType

UNLIMITED_SENTINEL = -1
UNLIMITED_LABEL = "Unlimited"


class Unlimited(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unlimited"] = "unlimited"

    def allows(self, current: int, quantity: int) -> bool:
        return True

    def to_storage(self) -> int:
        return UNLIMITED_SENTINEL

    def display(self) -> Union[int, str]:
        return UNLIMITED_LABEL

    @property
    def value(self) -> Optional[int]:
        return None


class Bounded(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["bounded"] = "bounded"
    n: int = Field(ge=0)

    def allows(self, current: int, quantity: int) -> bool:
        return current + quantity <= self.n

    def to_storage(self) -> int:
        return self.n

    def display(self) -> Union[int, str]:
        return self.n

    @property
    def value(self) -> Optional[int]:
        return self.n


Limit = Union[Unlimited, Bounded]


def limit_from_storage(raw: int) -> Limit:
    """Convert a stored integer (-1 = unlimited) into a Limit."""
    if raw == UNLIMITED_SENTINEL:
        return Unlimited()
    if raw < 0:
        raise ValueError(f"Invalid limit {raw}: only -1 may denote unlimited")
    return Bounded(n=raw)


def _coerce(raw: Any) -> Limit:
    if isinstance(raw, (Unlimited, Bounded)):
        return raw
    if isinstance(raw, bool):
        raise ValueError("Limit must be an integer")
    if isinstance(raw, int):
        return limit_from_storage(raw)
    if isinstance(raw, Mapping):
        if raw.get("kind") == "unlimited":
            return Unlimited()
        return Bounded(n=raw["n"])
    raise ValueError(f"Unsupported limit value: {raw!r}")


class ResourceLimits(RootModel[dict[ResourceType, Limit]]):
    """Limit vector: one limit per metered resource."""

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_storage(cls, raw: Mapping[str, int]) -> "ResourceLimits":
        missing = {r.value for r in ResourceType} - set(raw)
        if missing:
            raise ValueError(f"Limit vector missing resources: {sorted(missing)}")
        return cls({ResourceType(k): _coerce(v) for k, v in raw.items()})

    def get(self, resource: ResourceType) -> Limit:
        return self.root[resource]

    def to_storage(self) -> dict[str, int]:
        return {r.value: limit.to_storage() for r, limit in self.root.items()}

    @model_serializer
    def _serialize(self) -> dict[str, int]:
        return self.to_storage()
