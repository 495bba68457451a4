"""
Store module for MVCS - persistence of entities and version history.

This module provides:
- VersionedStore: per-tenant SQLite store writing entities and versions
  in one transaction
- InMemoryVersionStore: dictionary-backed version store with transactional
  staging, for tests and embedding

Invariants:
    - Version rows are append-only; only is_actual of a retired head changes
    - Both stores reject a commit that would leave two heads for an identity

How to change safely:
    - Keep both stores' constraint checks in step
    - Test rollback paths whenever write ordering changes
"""

from .memory import InMemoryTransaction, InMemoryVersionStore
from .sqlite_store import (
    SqliteVersionSource,
    TenantNotFoundError,
    UnknownEntityTypeError,
    VersionedStore,
)

__all__ = [
    "InMemoryTransaction",
    "InMemoryVersionStore",
    "SqliteVersionSource",
    "TenantNotFoundError",
    "UnknownEntityTypeError",
    "VersionedStore",
]
