"""
Diff engine: turns one pending mutation into one new version.

Transitions:

    created   baseline: none          changes: tracked properties with a value
    updated   baseline: chain walk    changes: properties that differ from baseline
    deleted   baseline: not needed    changes: none (tombstone)

For updated and deleted, the current head is linked as previous version
and its is_actual flag is flipped to False in memory. Nothing is persisted
here; the coordinator stages the rows.

Comparison rule for updates: a property is recorded iff the baseline has
no entry and the current value is not None, or the baseline has an entry
and the encoded current value differs textually from it.

Collections are captured as the ordered list of related identities; None
and empty collections both encode to "[]".
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from ..schema.registry import EntityRegistry
from ..schema.types import PropertyDef
from .chain import VersionArena
from .encoder import ValueEncoder
from .errors import IdentityError, IntegrityError, SerializationError
from .identity import IdentityDeriver, read_value
from .models import Change, ChangeType, EntityEntry, Version

logger = logging.getLogger(__name__)

Captured = list[tuple[str, Optional[str]]]


class DiffEngine:
    """Computes minimal change sets and links new versions into chains.

    Attributes:
        registry: Policy table, used to resolve collection target types
        encoder: Serialization configuration for tracked values
        deriver: Identity deriver for related entities
        baseline_early_stop: Stop chain walks once every tracked
            property is resolved
    """

    def __init__(
        self,
        registry: EntityRegistry,
        encoder: ValueEncoder | None = None,
        deriver: IdentityDeriver | None = None,
        baseline_early_stop: bool = True,
    ) -> None:
        self.registry = registry
        self.encoder = encoder or ValueEncoder()
        self.deriver = deriver or IdentityDeriver()
        self.baseline_early_stop = baseline_early_stop

    def capture(
        self,
        values: Mapping[str, Any],
        scalars: list[PropertyDef],
        collections: list[PropertyDef],
    ) -> Captured:
        """Encode the current value of each checked property.

        Scalars come first, then collections, each in declared order.

        Raises:
            SerializationError: If a value cannot be encoded
            IdentityError: If a related entity has no identity
        """
        captured: Captured = []
        for p in scalars:
            captured.append((p.name, self.encoder.encode(read_value(values, p.name), p.name)))
        for p in collections:
            captured.append((p.name, self._encode_collection(p, read_value(values, p.name))))
        return captured

    def _encode_collection(self, definition: PropertyDef, items: Any) -> str:
        if items is None:
            return self.encoder.encode_identities([])

        if isinstance(items, (str, bytes, Mapping)) or not isinstance(items, Iterable):
            raise SerializationError(
                f"Collection property '{definition.name}' is not a sequence of entities",
                property_name=definition.name,
                value_type=type(items).__name__,
            )

        target = self.registry.get(definition.target_type or "")
        if target is None:
            raise IdentityError(
                f"Collection '{definition.name}' references unregistered type "
                f"'{definition.target_type}'",
                entity_type=definition.target_type,
                property_name=definition.name,
            )

        return self.encoder.encode_identities(self.deriver.derive_id(target, item) for item in items)

    def diff(
        self,
        entry: EntityEntry,
        object_id: str,
        captured: Captured,
        head: Optional[Version],
        arena: VersionArena,
        actor: Optional[str] = None,
        ts_ms: Optional[int] = None,
    ) -> Version:
        """Produce the new version for one entry.

        Args:
            entry: Pending mutation
            object_id: Identity of the entity
            captured: Encoded current values (ignored for deletes)
            head: Current head for the identity, if any
            arena: Versions available for baseline reconstruction
            actor: Who performed the change
            ts_ms: Version timestamp (Unix ms)

        Raises:
            IntegrityError: If the head does not fit the transition
        """
        if ts_ms is None:
            ts_ms = int(time.time() * 1000)

        if entry.change_type == ChangeType.CREATED:
            if head is not None and not head.is_tombstone:
                raise IntegrityError(
                    f"Cannot create {entry.entity_type} '{object_id}': identity already has "
                    f"active version {head.id}",
                    object_id=object_id,
                    entity_type=entry.entity_type,
                    reason="already_exists",
                )
            return self.created_version(entry.entity_type, object_id, captured, head, actor, ts_ms)

        if head is None or head.is_tombstone:
            reason = "no_head" if head is None else "deleted"
            raise IntegrityError(
                f"Cannot record {entry.change_type.value} for {entry.entity_type} "
                f"'{object_id}': no active version to chain onto ({reason})",
                object_id=object_id,
                entity_type=entry.entity_type,
                reason=reason,
            )

        if entry.change_type == ChangeType.UPDATED:
            return self.updated_version(head, captured, arena, actor, ts_ms)
        return self.deleted_version(head, actor, ts_ms)

    def created_version(
        self,
        entity_type: str,
        object_id: str,
        captured: Captured,
        tombstone: Optional[Version] = None,
        actor: Optional[str] = None,
        ts_ms: Optional[int] = None,
    ) -> Version:
        """First version of a chain: every tracked property with a value.

        A tombstone head left by an earlier delete of the same identity is
        retired; the new chain does not link to it.
        """
        if tombstone is not None:
            tombstone.is_actual = False

        return Version(
            object_id=object_id,
            entity_type=entity_type,
            change_type=ChangeType.CREATED,
            changes=[Change(name, value) for name, value in captured if value is not None],
            actor=actor,
            created_at=ts_ms if ts_ms is not None else int(time.time() * 1000),
        )

    def updated_version(
        self,
        head: Version,
        captured: Captured,
        arena: VersionArena,
        actor: Optional[str] = None,
        ts_ms: Optional[int] = None,
    ) -> Version:
        """Record the properties that differ from the reconstructed baseline."""
        names = [name for name, _ in captured] if self.baseline_early_stop else None
        baseline = arena.baseline(head, names)

        changes = []
        for name, value in captured:
            if name in baseline:
                if value != baseline[name]:
                    changes.append(Change(name, value))
            elif value is not None:
                changes.append(Change(name, value))

        head.is_actual = False
        return Version(
            object_id=head.object_id,
            entity_type=head.entity_type,
            change_type=ChangeType.UPDATED,
            changes=changes,
            previous_version_id=head.id,
            actor=actor,
            created_at=ts_ms if ts_ms is not None else int(time.time() * 1000),
        )

    def deleted_version(
        self,
        head: Version,
        actor: Optional[str] = None,
        ts_ms: Optional[int] = None,
    ) -> Version:
        """Close the chain with an empty tombstone."""
        head.is_actual = False
        return Version(
            object_id=head.object_id,
            entity_type=head.entity_type,
            change_type=ChangeType.DELETED,
            previous_version_id=head.id,
            actor=actor,
            created_at=ts_ms if ts_ms is not None else int(time.time() * 1000),
        )
