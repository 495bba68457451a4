"""
Eligibility filter: which entities and properties take part in versioning.

Resolution order for an entity type:
    1. Type opted in: every property except the individually excluded ones
    2. Otherwise: only the individually included properties

An instance needs a version at all iff its policy is enabled.
"""

from __future__ import annotations

from ..schema.registry import EntityRegistry
from ..schema.types import PropertyDef


class EligibilityFilter:
    """Pure classification against the registry's resolved policies."""

    def __init__(self, registry: EntityRegistry) -> None:
        self.registry = registry

    def needs_version(self, entity_type: str) -> bool:
        return self.registry.policy_for(entity_type).enabled

    def checked_properties(self, entity_type: str) -> tuple[list[PropertyDef], list[PropertyDef]]:
        """Return the (scalar, collection) properties to check, in declared order."""
        definition = self.registry.get(entity_type)
        if definition is None:
            return [], []

        policy = self.registry.policy_for(entity_type)
        scalars = [p for p in definition.scalar_properties() if policy.tracks(p.name)]
        collections = [p for p in definition.collection_properties() if policy.tracks(p.name)]
        return scalars, collections
