"""
Policy table types for MVCS versioning.

This module defines which entity types and properties take part in
version history:
- PropertyDef: A single scalar or collection property of an entity type
- EntityTypeDef: An entity type with its primary key and properties
- VersionPolicy: The resolved tracking decision for one entity type

Invariants:
    - Entity type names are unique within a registry
    - Property names are unique within an entity type
    - Every primary-key component is a declared scalar property
    - Collection properties name the entity type they reference

How to change safely:
    - Add new properties at the end of the properties tuple
    - Changing primary_key changes identities of existing entities; never
      do it for a type that already has recorded versions
    - Flipping versioned flags only affects future commits

Example:
    >>> from dbaas.mvcs.schema.types import EntityTypeDef, prop
    >>> Order = EntityTypeDef(
    ...     name="Order",
    ...     primary_key=("id",),
    ...     properties=(
    ...         prop("id"),
    ...         prop("status"),
    ...         prop("notes", versioned=False),
    ...         prop("lines", "collection", target_type="OrderLine"),
    ...     ),
    ...     versioned=True,
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any


class PropertyKind(Enum):
    """How a property value is captured in a version."""

    SCALAR = "scalar"  # Serialized value
    COLLECTION = "collection"  # Ordered list of related identities

    @classmethod
    def from_str(cls, value: str) -> PropertyKind:
        """Convert string representation to PropertyKind.

        Raises:
            ValueError: If value is not a valid property kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid property kind '{value}'. Valid kinds: {valid}")


@dataclass(frozen=True)
class VersionPolicy:
    """Resolved tracking policy for one entity type.

    Attributes:
        track_all_by_default: The type itself is opted in
        included: Properties individually opted in
        excluded: Properties individually opted out
    """

    track_all_by_default: bool
    included: frozenset[str] = frozenset()
    excluded: frozenset[str] = frozenset()

    @property
    def enabled(self) -> bool:
        """Whether instances of the type need versions at all."""
        return self.track_all_by_default or bool(self.included)

    def tracks(self, name: str) -> bool:
        """Whether a property participates in versioning."""
        if self.track_all_by_default:
            return name not in self.excluded
        return name in self.included


@dataclass(frozen=True)
class PropertyDef:
    """Definition of one property of an entity type.

    Attributes:
        name: Property name as it appears in entity values
        kind: Scalar value or collection of related entities
        target_type: Entity type referenced by a collection
        versioned: True to opt in, False to opt out, None to inherit
            the type-level decision
        description: Human-readable description
    """

    name: str
    kind: PropertyKind = PropertyKind.SCALAR
    target_type: str | None = None
    versioned: bool | None = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate property definition."""
        if not self.name:
            raise ValueError("Property name cannot be empty")
        if self.kind == PropertyKind.COLLECTION and not self.target_type:
            raise ValueError(f"target_type required for collection property '{self.name}'")

    @property
    def is_collection(self) -> bool:
        return self.kind == PropertyKind.COLLECTION

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"name": self.name, "kind": self.kind.value}
        if self.target_type is not None:
            result["target_type"] = self.target_type
        if self.versioned is not None:
            result["versioned"] = self.versioned
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PropertyDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            kind=PropertyKind.from_str(data.get("kind", "scalar")),
            target_type=data.get("target_type"),
            versioned=data.get("versioned"),
            description=data.get("description", ""),
        )


def prop(
    name: str,
    kind: str | PropertyKind = PropertyKind.SCALAR,
    *,
    target_type: str | None = None,
    versioned: bool | None = None,
    description: str = "",
) -> PropertyDef:
    """Convenience function to create a PropertyDef.

    Example:
        >>> prop("title")
        >>> prop("secret", versioned=False)
        >>> prop("tags", "collection", target_type="Tag")
    """
    if isinstance(kind, str):
        kind = PropertyKind.from_str(kind)
    return PropertyDef(
        name=name,
        kind=kind,
        target_type=target_type,
        versioned=versioned,
        description=description,
    )


@dataclass(frozen=True)
class EntityTypeDef:
    """Definition of an entity type and its versioning policy.

    Attributes:
        name: Unique type name
        primary_key: Ordered names of the primary-key properties
        properties: Declared properties, in capture order
        versioned: Type-level opt-in (track every property not excluded)
        description: Human-readable description

    Invariants:
        - primary_key is non-empty and names declared scalar properties
        - Property names are unique
    """

    name: str
    primary_key: tuple[str, ...]
    properties: tuple[PropertyDef, ...] = dataclass_field(default_factory=tuple)
    versioned: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity type definition."""
        if not self.name:
            raise ValueError("Entity type name cannot be empty")
        if not self.primary_key:
            raise ValueError(f"Entity type '{self.name}' must declare a primary key")

        names = [p.name for p in self.properties]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate property name in entity type '{self.name}'")

        for key in self.primary_key:
            definition = self.get_property(key)
            if definition is None:
                raise ValueError(
                    f"Primary key '{key}' is not a declared property of '{self.name}'"
                )
            if definition.is_collection:
                raise ValueError(f"Primary key '{key}' of '{self.name}' cannot be a collection")

    def get_property(self, name: str) -> PropertyDef | None:
        """Get a property by name."""
        for p in self.properties:
            if p.name == name:
                return p
        return None

    def scalar_properties(self) -> list[PropertyDef]:
        return [p for p in self.properties if not p.is_collection]

    def collection_properties(self) -> list[PropertyDef]:
        return [p for p in self.properties if p.is_collection]

    def version_policy(self) -> VersionPolicy:
        """Resolve the per-type and per-property flags into a policy."""
        return VersionPolicy(
            track_all_by_default=self.versioned,
            included=frozenset(p.name for p in self.properties if p.versioned is True),
            excluded=frozenset(p.name for p in self.properties if p.versioned is False),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "primary_key": list(self.primary_key),
            "properties": [p.to_dict() for p in self.properties],
        }
        if self.versioned:
            result["versioned"] = True
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityTypeDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            primary_key=tuple(data["primary_key"]),
            properties=tuple(PropertyDef.from_dict(p) for p in data.get("properties", [])),
            versioned=data.get("versioned", False),
            description=data.get("description", ""),
        )

    def __hash__(self) -> int:
        return hash(self.name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EntityTypeDef):
            return NotImplemented
        return self.name == other.name
