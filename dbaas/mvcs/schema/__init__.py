"""
Schema module for MVCS.

This module provides the versioning policy table:
- Entity type definitions (EntityTypeDef, PropertyDef, PropertyKind)
- Resolved per-type policies (VersionPolicy)
- The registry that holds them

Invariants:
    - Policies are resolved once, when types are registered
    - All entity types must be registered before the first commit

How to change safely:
    - Add new properties to existing types; never rename primary-key properties
    - Run EntityRegistry.validate_all() in deployment checks
"""

from .registry import (
    DuplicateRegistrationError,
    EntityRegistry,
    RegistryFrozenError,
    freeze_registry,
    get_registry,
    reset_registry,
)
from .types import EntityTypeDef, PropertyDef, PropertyKind, VersionPolicy, prop

__all__ = [
    # Types
    "EntityTypeDef",
    "PropertyDef",
    "PropertyKind",
    "VersionPolicy",
    "prop",
    # Registry
    "EntityRegistry",
    "get_registry",
    "freeze_registry",
    "reset_registry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
]
