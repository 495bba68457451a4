"""
Version arena and chain traversal.

Versions are held in an arena indexed by id. Each version points backward
through previous_version_id; the forward relation ("next versions") is
derived on demand by scanning, never stored.

Invariants:
    - Walking back from any version terminates (cycles raise IntegrityError)
    - Every previous_version_id resolves inside the arena
"""

from __future__ import annotations

from typing import Collection, Dict, Iterable, Iterator, Optional

from .errors import IntegrityError
from .models import Version


class VersionArena:
    """Versions of one or more chains, indexed by id."""

    def __init__(self, versions: Iterable[Version] = ()) -> None:
        self._versions: Dict[str, Version] = {}
        for version in versions:
            self.add(version)

    def add(self, version: Version) -> None:
        self._versions[version.id] = version

    def get(self, version_id: str) -> Optional[Version]:
        return self._versions.get(version_id)

    def __contains__(self, version_id: object) -> bool:
        return version_id in self._versions

    def __len__(self) -> int:
        return len(self._versions)

    def __iter__(self) -> Iterator[Version]:
        return iter(self._versions.values())

    def walk_back(self, start: Version) -> Iterator[Version]:
        """Yield start and each preceding version, newest first.

        Raises:
            IntegrityError: If a link is dangling or the chain loops
        """
        seen: set[str] = set()
        current: Optional[Version] = start
        while current is not None:
            if current.id in seen:
                raise IntegrityError(
                    f"Version chain for '{current.object_id}' contains a cycle",
                    object_id=current.object_id,
                    entity_type=current.entity_type,
                    reason="cycle",
                )
            seen.add(current.id)
            yield current

            previous_id = current.previous_version_id
            if previous_id is None:
                return
            current = self._versions.get(previous_id)
            if current is None:
                raise IntegrityError(
                    f"Version {previous_id} referenced by chain is missing",
                    object_id=start.object_id,
                    entity_type=start.entity_type,
                    reason="dangling_previous",
                )

    def next_versions(self, version_id: str) -> list[Version]:
        """Versions whose previous_version_id points at version_id."""
        return [v for v in self._versions.values() if v.previous_version_id == version_id]

    def baseline(
        self,
        head: Version,
        properties: Optional[Collection[str]] = None,
    ) -> dict[str, Optional[str]]:
        """Reconstruct the last recorded value of each property.

        The nearest (most recent) change of each property wins. When
        properties is given, the walk stops as soon as all of them are
        resolved; values for those properties are the same either way.
        """
        result: dict[str, Optional[str]] = {}
        wanted = set(properties) if properties is not None else None

        for version in self.walk_back(head):
            for change in version.changes:
                if change.property_name not in result:
                    result[change.property_name] = change.value
            if wanted is not None and wanted.issubset(result):
                break

        return result
