"""
In-memory version store for testing and local use.

Provides the VersionSource query plus transactional staging:
- Unit tests that need a version store without SQLite
- Embedding the versioning core in processes with their own persistence

Invariants:
    - All data is lost on process exit
    - Stored versions are never handed out directly; callers get copies,
      so in-memory flag flips only take effect on commit
    - A commit that would leave two active versions for one identity, or
      that retires a head another commit already retired, is rejected whole

How to change safely:
    - Keep fetch_versions compatible with the VersionSource protocol
    - Keep constraint checks identical to the SQLite store's
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Collection, Dict, Iterator, List, Optional

from ..history.errors import IntegrityError
from ..history.models import CommitResult, Version

logger = logging.getLogger(__name__)


def _copy(version: Version) -> Version:
    return dataclasses.replace(version, changes=list(version.changes))


@dataclass
class InMemoryTransaction:
    """Rows staged inside one transaction() block."""

    versions: List[Version] = field(default_factory=list)
    retired: List[Version] = field(default_factory=list)

    def stage(self, result: CommitResult) -> None:
        self.versions.extend(result.versions)
        self.retired.extend(result.retired)


class InMemoryVersionStore:
    """Dictionary-backed version store.

    Thread safety:
        Reads and commits are serialized with an internal lock.

    Example:
        >>> store = InMemoryVersionStore()
        >>> with store.transaction() as tx:
        ...     tx.stage(coordinator.commit(entries, source=store))
    """

    def __init__(self) -> None:
        self._versions: Dict[str, Version] = {}
        self._lock = threading.RLock()

    def fetch_versions(self, object_ids: Collection[str]) -> List[Version]:
        """Return copies of every version whose object_id is in object_ids."""
        wanted = set(object_ids)
        with self._lock:
            return [_copy(v) for v in self._versions.values() if v.object_id in wanted]

    def get_version(self, version_id: str) -> Optional[Version]:
        with self._lock:
            version = self._versions.get(version_id)
            return _copy(version) if version is not None else None

    def get_versions(self, entity_type: str, object_id: str) -> List[Version]:
        """All versions of one identity, oldest first."""
        with self._lock:
            found = [
                _copy(v)
                for v in self._versions.values()
                if v.entity_type == entity_type and v.object_id == object_id
            ]
        return sorted(found, key=lambda v: v.created_at)

    def get_head(self, entity_type: str, object_id: str) -> Optional[Version]:
        heads = [v for v in self.get_versions(entity_type, object_id) if v.is_actual]
        return heads[0] if heads else None

    def __len__(self) -> int:
        return len(self._versions)

    @contextmanager
    def transaction(self) -> Iterator[InMemoryTransaction]:
        """Stage commit results and apply them atomically on exit.

        Anything staged is discarded if the block raises.
        """
        tx = InMemoryTransaction()
        try:
            yield tx
        except Exception:
            logger.debug(
                "Discarding staged versions",
                extra={"versions": len(tx.versions), "retired": len(tx.retired)},
            )
            raise
        self.apply(CommitResult(versions=tx.versions, retired=tx.retired))

    def apply(self, result: CommitResult) -> None:
        """Apply a commit result atomically.

        Raises:
            IntegrityError: If a retired head is no longer active, a version
                id is reused, or an identity would end up with two heads
        """
        with self._lock:
            updated = dict(self._versions)

            for head in result.retired:
                stored = updated.get(head.id)
                if stored is None or not stored.is_actual:
                    raise IntegrityError(
                        f"Head {head.id} of '{head.object_id}' was modified concurrently",
                        object_id=head.object_id,
                        entity_type=head.entity_type,
                        reason="stale_head",
                    )
                updated[head.id] = dataclasses.replace(stored, is_actual=False)

            for version in result.versions:
                if version.id in updated:
                    raise IntegrityError(
                        f"Version id {version.id} already exists",
                        object_id=version.object_id,
                        entity_type=version.entity_type,
                        reason="duplicate_version",
                    )
                updated[version.id] = _copy(version)

            touched = {v.key for v in result.versions}
            active: Dict[tuple[str, str], int] = defaultdict(int)
            for version in updated.values():
                if version.is_actual and version.key in touched:
                    active[version.key] += 1
            for (entity_type, object_id), count in active.items():
                if count > 1:
                    raise IntegrityError(
                        f"Commit would leave {count} active versions for "
                        f"{entity_type} '{object_id}'",
                        object_id=object_id,
                        entity_type=entity_type,
                        reason="multiple_heads",
                    )

            self._versions = updated

        logger.debug(
            "Applied version history",
            extra={"versions": len(result.versions), "retired": len(result.retired)},
        )
