"""
Data model for version history.

- ChangeType: Kind of state transition (created, updated, deleted)
- Change: One (property, serialized value) pair
- Version: One recorded transition of one entity
- EntityEntry: One pending mutation handed in by the persistence layer
- CommitResult: Rows to append to the surrounding transaction

Invariants:
    - A Version is immutable once written, except is_actual on the old head
    - previous_version_id is None only for Created versions
    - Deleted versions carry no changes
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class ChangeType(Enum):
    """Transition kind of a pending mutation."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class Change:
    """A changed property and its serialized value (None when cleared)."""

    property_name: str
    value: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {"property": self.property_name, "value": self.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Change:
        return cls(property_name=data["property"], value=data.get("value"))


@dataclass
class Version:
    """A recorded state transition of one entity.

    Attributes:
        object_id: Identity of the entity
        entity_type: Registered type name of the entity
        change_type: Transition that produced this version
        changes: Properties that differ from the reconstructed baseline
        is_actual: True while this version is the head of its chain
        previous_version_id: Id of the preceding version, None for Created
        actor: Who performed the change, if known
        created_at: Unix ms
        id: Unique version id
    """

    object_id: str
    entity_type: str
    change_type: ChangeType
    changes: list[Change] = field(default_factory=list)
    is_actual: bool = True
    previous_version_id: Optional[str] = None
    actor: Optional[str] = None
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def key(self) -> tuple[str, str]:
        """Chain key: (entity_type, object_id)."""
        return (self.entity_type, self.object_id)

    @property
    def is_tombstone(self) -> bool:
        return self.change_type == ChangeType.DELETED

    def changes_json(self) -> str:
        return json.dumps([c.to_dict() for c in self.changes], ensure_ascii=False)

    @staticmethod
    def parse_changes(raw: str) -> list[Change]:
        return [Change.from_dict(c) for c in json.loads(raw)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "object_id": self.object_id,
            "entity_type": self.entity_type,
            "change_type": self.change_type.value,
            "changes": [c.to_dict() for c in self.changes],
            "is_actual": self.is_actual,
            "previous_version_id": self.previous_version_id,
            "actor": self.actor,
            "created_at": self.created_at,
        }


@dataclass
class EntityEntry:
    """A pending mutation of one entity.

    Attributes:
        entity_type: Registered type name
        change_type: Transition being committed
        values: Current property values; collection properties hold the
            related entities (mappings or objects exposing their keys)
    """

    entity_type: str
    change_type: ChangeType
    values: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def created(cls, entity_type: str, values: Mapping[str, Any]) -> EntityEntry:
        return cls(entity_type, ChangeType.CREATED, values)

    @classmethod
    def updated(cls, entity_type: str, values: Mapping[str, Any]) -> EntityEntry:
        return cls(entity_type, ChangeType.UPDATED, values)

    @classmethod
    def deleted(cls, entity_type: str, values: Mapping[str, Any]) -> EntityEntry:
        return cls(entity_type, ChangeType.DELETED, values)


@dataclass
class CommitResult:
    """Rows staged by one commit.

    Attributes:
        versions: New version rows, in batch order
        retired: Previously stored heads whose is_actual flipped to False
    """

    versions: list[Version] = field(default_factory=list)
    retired: list[Version] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.versions or self.retired)
