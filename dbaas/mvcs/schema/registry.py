"""
Entity registry for MVCS.

The EntityRegistry is the policy table consulted by the versioning core.
It provides:
- Registration of entity types with their versioning flags
- Lookup by type name
- Resolved VersionPolicy per type, computed once at freeze time
- Fingerprinting so deployments can detect policy drift

Invariants:
    - Registry is mutable during startup, frozen before commits are served
    - Once frozen, no new types can be registered
    - Entity type names are globally unique
    - Policies are resolved by plain lookup, never by inspecting entity objects

How to change safely:
    - Register all types before calling freeze_registry()
    - Run validate_all() after registration to catch dangling collection targets

Example:
    >>> from dbaas.mvcs.schema import EntityRegistry, EntityTypeDef, prop
    >>> registry = EntityRegistry()
    >>> registry.register(EntityTypeDef(name="User", primary_key=("id",),
    ...                                 properties=(prop("id"),), versioned=True))
    >>> registry.freeze()
    'sha256:...'
    >>> registry.policy_for("User").track_all_by_default
    True
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Dict, Iterator, Optional

from .types import EntityTypeDef, VersionPolicy

logger = logging.getLogger(__name__)

# Global registry instance
_global_registry: Optional[EntityRegistry] = None
_registry_lock = threading.Lock()

_UNTRACKED = VersionPolicy(track_all_by_default=False)


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""
    pass


class DuplicateRegistrationError(Exception):
    """Raised when attempting to register a duplicate entity type."""
    pass


class EntityRegistry:
    """Central registry for entity type definitions and their policies.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the registry is frozen (immutable)
        fingerprint: SHA-256 hash of the policy table (computed on freeze)
    """

    def __init__(self) -> None:
        """Initialize an empty, mutable registry."""
        self._types: Dict[str, EntityTypeDef] = {}
        self._policies: Dict[str, VersionPolicy] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Policy table fingerprint (available after freeze)."""
        return self._fingerprint

    def register(self, entity_type: EntityTypeDef) -> None:
        """Register an entity type definition.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name is already registered
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity type '{entity_type.name}': registry is frozen"
                )

            if entity_type.name in self._types:
                raise DuplicateRegistrationError(
                    f"Entity type '{entity_type.name}' already registered"
                )

            self._types[entity_type.name] = entity_type
            self._policies[entity_type.name] = entity_type.version_policy()
            logger.debug(f"Registered entity type: {entity_type.name}")

    def get(self, name: str) -> Optional[EntityTypeDef]:
        """Get an entity type by name, or None if unknown."""
        return self._types.get(name)

    def policy_for(self, name: str) -> VersionPolicy:
        """Get the resolved versioning policy for a type.

        Unknown types are never versioned.
        """
        return self._policies.get(name, _UNTRACKED)

    def entity_types(self) -> Iterator[EntityTypeDef]:
        """Iterate over all registered entity types."""
        yield from self._types.values()

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __len__(self) -> int:
        return len(self._types)

    def freeze(self) -> str:
        """Freeze the registry and compute fingerprint.

        Returns:
            Fingerprint string in format 'sha256:<hash>'

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            versioned = sum(1 for p in self._policies.values() if p.enabled)
            logger.info(
                f"Entity registry frozen with {len(self._types)} types "
                f"({versioned} versioned), fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert registry to dictionary representation, sorted by name."""
        return {
            "entity_types": [self._types[name].to_dict() for name in sorted(self._types)],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict) -> EntityRegistry:
        """Create registry from dictionary representation (not frozen)."""
        registry = cls()
        for type_data in data.get("entity_types", []):
            registry.register(EntityTypeDef.from_dict(type_data))
        return registry

    @classmethod
    def from_json(cls, json_str: str) -> EntityRegistry:
        return cls.from_dict(json.loads(json_str))

    def validate_all(self) -> list[str]:
        """Validate all registered types for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        for entity_type in self._types.values():
            for p in entity_type.collection_properties():
                if p.target_type not in self._types:
                    errors.append(
                        f"Collection '{p.name}' in entity type '{entity_type.name}' "
                        f"references unknown type '{p.target_type}'"
                    )
        return errors


def get_registry() -> EntityRegistry:
    """Get the global entity registry, creating it if needed."""
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = EntityRegistry()
        return _global_registry


def freeze_registry() -> str:
    """Freeze the global registry.

    This should be called after all types are registered and before
    the first commit.

    Returns:
        Policy table fingerprint

    Raises:
        RegistryFrozenError: If already frozen
    """
    return get_registry().freeze()


def reset_registry() -> None:
    """Reset the global registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
