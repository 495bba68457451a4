"""
MVCS - incremental version history for tenant SQLite stores.

Every create, update or delete of a versioned entity produces an immutable
version that records only the properties changed since the previous
recorded state. Versions of one entity form a backward chain; the newest
one is the head.

Architecture:
    ┌──────────────┐     ┌────────────────────┐     ┌───────────────┐
    │ EntityEntry  │────▶│ CommitCoordinator  │────▶│ CommitResult  │
    │ (pending)    │     │ eligibility        │     │ new versions  │
    └──────────────┘     │ identity           │     │ retired heads │
                         │ heads (1 query)    │     └───────┬───────┘
                         │ diff               │             │
                         └─────────┬──────────┘             ▼
                                   │              ┌──────────────────┐
                                   └─────────────▶│ VersionedStore   │
                                     VersionSource│ (one transaction)│
                                                  └──────────────────┘

Invariants:
    - At most one active version (head) per identity
    - Chains are acyclic and end at a Created version with no previous
    - Versions are append-only; only the old head's is_actual flag changes
    - History is staged inside the caller's transaction, never committed alone

How to change safely:
    - Register every entity type before the first commit
    - Never change identity or encoder settings for an existing history
"""

from ._version import __version__

__all__ = ["__version__"]
