"""
Head resolution for a pending commit.

One batched lookup fetches every stored version of every identity touched
by the commit. Results are grouped by (entity_type, object_id) and the
single version flagged is_actual becomes that identity's head.

Invariants:
    - Exactly one query against the version source per commit
    - More than one active version for an identity is an IntegrityError
    - Recorded versions with no active one is an IntegrityError
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Collection, Dict, List, Protocol, Tuple, runtime_checkable

from .chain import VersionArena
from .errors import IntegrityError
from .models import Version

logger = logging.getLogger(__name__)

VersionKey = Tuple[str, str]


@runtime_checkable
class VersionSource(Protocol):
    """Query capability of the version store.

    Implementations return every stored version whose object_id is in
    object_ids, regardless of type or is_actual; the resolver does the
    grouping.
    """

    def fetch_versions(self, object_ids: Collection[str]) -> List[Version]:
        ...


class HeadResolver:
    """Batch-loads existing versions and selects the head per identity."""

    def __init__(self, source: VersionSource) -> None:
        self.source = source

    def resolve(self, keys: Collection[VersionKey]) -> Tuple[Dict[VersionKey, Version], VersionArena]:
        """Resolve heads for the given identities.

        Args:
            keys: (entity_type, object_id) pairs touched by the commit

        Returns:
            Tuple of (heads by key, arena holding every fetched version).
            Keys with no stored versions have no entry in heads.

        Raises:
            IntegrityError: If an identity has more than one active version,
                or has recorded versions but none active
        """
        wanted = set(keys)
        if not wanted:
            return {}, VersionArena()

        fetched = self.source.fetch_versions(sorted({object_id for _, object_id in wanted}))
        arena = VersionArena(fetched)

        active: Dict[VersionKey, list[Version]] = defaultdict(list)
        recorded: set[VersionKey] = set()
        for version in fetched:
            if version.key not in wanted:
                continue
            recorded.add(version.key)
            if version.is_actual:
                active[version.key].append(version)

        # A chain always keeps its last version active, tombstones included
        for key in sorted(recorded - set(active)):
            logger.error(
                "Recorded versions without an active head",
                extra={"entity_type": key[0], "object_id": key[1]},
            )
            raise IntegrityError(
                f"{key[0]} '{key[1]}' has recorded versions but no active version",
                object_id=key[1],
                entity_type=key[0],
                reason="no_head",
            )

        heads: Dict[VersionKey, Version] = {}
        for key, candidates in active.items():
            if len(candidates) > 1:
                logger.error(
                    "Multiple active versions for identity",
                    extra={
                        "entity_type": key[0],
                        "object_id": key[1],
                        "version_ids": [v.id for v in candidates],
                    },
                )
                raise IntegrityError(
                    f"{len(candidates)} active versions found for {key[0]} '{key[1]}'",
                    object_id=key[1],
                    entity_type=key[0],
                    reason="multiple_heads",
                )
            heads[key] = candidates[0]

        logger.debug(
            "Resolved heads",
            extra={"identities": len(wanted), "fetched": len(fetched), "heads": len(heads)},
        )
        return heads, arena
