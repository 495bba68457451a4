"""
History module for MVCS - the diff-and-chain versioning core.

This module handles:
- Deciding which pending mutations need versions (eligibility)
- Deriving identity keys from primary keys
- Resolving the active head of each identity in one batched lookup
- Reconstructing baselines by walking chains and computing minimal diffs
- Staging new versions and retired heads for the caller's transaction

Invariants:
    - At most one active version (head) per identity
    - Chains are acyclic and end at a Created version with no previous
    - A version records only properties that differ from its baseline
    - Every eligible entry in a commit yields exactly one version

How to change safely:
    - Keep the core free of I/O other than the single VersionSource query
    - Changing the encoder changes textual comparisons; existing chains
      will then record spurious changes on their next update
"""

from .chain import VersionArena
from .coordinator import CommitCoordinator
from .diff import DiffEngine
from .eligibility import EligibilityFilter
from .encoder import ValueEncoder
from .errors import IdentityError, IntegrityError, SerializationError, VersioningError
from .heads import HeadResolver, VersionSource
from .identity import IdentityDeriver, IdentityEncoding
from .models import Change, ChangeType, CommitResult, EntityEntry, Version

__all__ = [
    "Change",
    "ChangeType",
    "CommitCoordinator",
    "CommitResult",
    "DiffEngine",
    "EligibilityFilter",
    "EntityEntry",
    "HeadResolver",
    "IdentityDeriver",
    "IdentityEncoding",
    "IdentityError",
    "IntegrityError",
    "SerializationError",
    "ValueEncoder",
    "Version",
    "VersionArena",
    "VersionSource",
    "VersioningError",
]
