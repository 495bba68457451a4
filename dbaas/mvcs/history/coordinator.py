"""
Commit coordinator for version history.

Runs the versioning pipeline over one batch of pending mutations:

    1. Eligibility filter drops entries whose type is not versioned
    2. Identity deriver computes each remaining entry's key
    3. Head resolver loads existing heads with one batched query
    4. Diff engine produces one new version per entry

The coordinator only stages rows. The caller appends them to the same
transaction that persists the entity mutations, so a rollback discards
entity changes and history together.

Invariants:
    - Any error aborts the whole batch; no partial result is returned
    - Each eligible entry yields exactly one version, even with no changes
    - Entries for the same identity chain onto each other in batch order
    - Only heads loaded from the store are reported as retired

How to change safely:
    - Keep the head lookup batched; per-entry queries break the single-pass
      contract with the storage layer
    - Never commit or flush from here
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

from ..schema.registry import EntityRegistry
from .diff import DiffEngine
from .eligibility import EligibilityFilter
from .encoder import ValueEncoder
from .heads import HeadResolver, VersionKey, VersionSource
from .identity import IdentityDeriver
from .models import ChangeType, CommitResult, EntityEntry

logger = logging.getLogger(__name__)


class CommitCoordinator:
    """Orchestrates versioning of one transactional batch.

    Example:
        >>> coordinator = CommitCoordinator(registry)
        >>> result = coordinator.commit(entries, source=store, actor="user:42")
        >>> store.stage(result)
    """

    def __init__(
        self,
        registry: EntityRegistry,
        encoder: ValueEncoder | None = None,
        deriver: IdentityDeriver | None = None,
        baseline_early_stop: bool = True,
    ) -> None:
        self.registry = registry
        self.eligibility = EligibilityFilter(registry)
        self.deriver = deriver or IdentityDeriver()
        self.diff_engine = DiffEngine(
            registry,
            encoder=encoder or ValueEncoder(),
            deriver=self.deriver,
            baseline_early_stop=baseline_early_stop,
        )

    def commit(
        self,
        entries: Iterable[EntityEntry],
        source: VersionSource,
        actor: Optional[str] = None,
        ts_ms: Optional[int] = None,
    ) -> CommitResult:
        """Compute the version rows for a batch of pending mutations.

        Args:
            entries: Pending mutations of one transaction
            source: Version store to resolve heads against
            actor: Who performed the changes
            ts_ms: Timestamp for every new version (Unix ms)

        Returns:
            CommitResult with new versions and retired heads

        Raises:
            IdentityError: A primary key is missing
            IntegrityError: Heads are inconsistent with the batch
            SerializationError: A tracked value cannot be encoded
        """
        if ts_ms is None:
            ts_ms = int(time.time() * 1000)

        pending: list[tuple[EntityEntry, str]] = []
        for entry in entries:
            if not self.eligibility.needs_version(entry.entity_type):
                continue
            definition = self.registry.get(entry.entity_type)
            if definition is None:
                continue
            pending.append((entry, self.deriver.derive_id(definition, entry.values)))

        if not pending:
            return CommitResult()

        keys: set[VersionKey] = {(entry.entity_type, object_id) for entry, object_id in pending}
        heads, arena = HeadResolver(source).resolve(keys)
        stored_heads = {head.id for head in heads.values()}

        result = CommitResult()
        for entry, object_id in pending:
            key = (entry.entity_type, object_id)
            head = heads.get(key)

            # Tombstones carry no changes
            captured = []
            if entry.change_type != ChangeType.DELETED:
                scalars, collections = self.eligibility.checked_properties(entry.entity_type)
                captured = self.diff_engine.capture(entry.values, scalars, collections)
            version = self.diff_engine.diff(
                entry, object_id, captured, head, arena, actor=actor, ts_ms=ts_ms
            )

            if head is not None and head.id in stored_heads:
                result.retired.append(head)
                stored_heads.discard(head.id)

            arena.add(version)
            heads[key] = version
            result.versions.append(version)

            logger.debug(
                "Versioned entity",
                extra={
                    "entity_type": entry.entity_type,
                    "object_id": object_id,
                    "change_type": version.change_type.value,
                    "changes": len(version.changes),
                    "previous_version_id": version.previous_version_id,
                },
            )

        logger.info(
            "Staged version history",
            extra={"versions": len(result.versions), "retired": len(result.retired)},
        )
        return result

