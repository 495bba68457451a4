"""
Versioned tenant SQLite store for MVCS.

This module manages the per-tenant SQLite database that stores:
- Entities with their current payloads
- The append-only version history of versioned entities

Entity mutations and their version rows are written in one transaction:
the commit coordinator stages rows against a connection that already holds
the write lock, and a rollback discards entity changes and history together.

Invariants:
    - One SQLite file per tenant
    - save_changes is atomic (single BEGIN IMMEDIATE transaction)
    - At most one row per (entity_type, object_id) has is_actual = 1,
      enforced by a partial unique index
    - Old heads are retired before new versions are inserted
    - Version rows are never deleted

How to change safely:
    - Schema migrations must be backward compatible
    - Never relax the head index; it is the guard against concurrent writers
    - Use transactions for all write operations

Table schema:
    entities:
        - entity_type TEXT
        - object_id TEXT (identity)
        - payload_json TEXT
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (entity_type, object_id)

    versions:
        - id TEXT PRIMARY KEY (UUID)
        - object_id TEXT
        - entity_type TEXT
        - change_type TEXT (created, updated, deleted)
        - changes_json TEXT (JSON list of {property, value})
        - is_actual INTEGER (0/1)
        - previous_version_id TEXT REFERENCES versions(id)
        - actor TEXT
        - created_at INTEGER (Unix ms)
        - UNIQUE (entity_type, object_id) WHERE is_actual = 1
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Collection, Iterable, Optional

from ..history.chain import VersionArena
from ..history.coordinator import CommitCoordinator
from ..history.encoder import ValueEncoder
from ..history.errors import IntegrityError
from ..history.identity import IdentityDeriver, read_value
from ..history.models import ChangeType, CommitResult, EntityEntry, Version
from ..schema.registry import EntityRegistry
from ..schema.types import EntityTypeDef

logger = logging.getLogger(__name__)


class TenantNotFoundError(Exception):
    """Tenant database does not exist."""

    pass


class UnknownEntityTypeError(Exception):
    """Entity type is not registered."""

    pass


def _row_to_version(row: sqlite3.Row) -> Version:
    return Version(
        id=row["id"],
        object_id=row["object_id"],
        entity_type=row["entity_type"],
        change_type=ChangeType(row["change_type"]),
        changes=Version.parse_changes(row["changes_json"]),
        is_actual=bool(row["is_actual"]),
        previous_version_id=row["previous_version_id"],
        actor=row["actor"],
        created_at=row["created_at"],
    )


class SqliteVersionSource:
    """VersionSource bound to an open connection (and its transaction)."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def fetch_versions(self, object_ids: Collection[str]) -> list[Version]:
        # One query for the whole batch; ids travel as a single JSON array
        cursor = self.conn.execute(
            """
            SELECT * FROM versions
            WHERE object_id IN (SELECT value FROM json_each(?))
            ORDER BY created_at, rowid
            """,
            (json.dumps(list(object_ids)),),
        )
        return [_row_to_version(row) for row in cursor.fetchall()]


class VersionedStore:
    """Per-tenant SQLite store for entities and their version history.

    Thread safety:
        Each database connection is created per-operation.
        Writers serialize on BEGIN IMMEDIATE; the head index rejects any
        commit that slips past that.

    Example:
        >>> store = VersionedStore("/var/lib/mvcs", registry)
        >>> await store.initialize_tenant("tenant_123")
        >>> result = await store.save_changes(
        ...     "tenant_123",
        ...     [EntityEntry.created("Order", {"id": 1, "status": "new"})],
        ...     actor="user:42",
        ... )
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        registry: EntityRegistry,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
        coordinator: CommitCoordinator | None = None,
    ) -> None:
        """Initialize the versioned store.

        Args:
            data_dir: Directory for SQLite database files
            registry: Policy table for entity types
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
            coordinator: Versioning pipeline (built from registry if omitted)
        """
        self.data_dir = Path(data_dir)
        self.registry = registry
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self.coordinator = coordinator or CommitCoordinator(registry)
        self._lock = asyncio.Lock()

    @property
    def encoder(self) -> ValueEncoder:
        return self.coordinator.diff_engine.encoder

    @property
    def deriver(self) -> IdentityDeriver:
        return self.coordinator.deriver

    def _get_db_path(self, tenant_id: str) -> Path:
        """Get database file path for a tenant."""
        # Sanitize tenant_id to prevent path traversal
        safe_id = "".join(c for c in tenant_id if c.isalnum() or c in "-_")
        return self.data_dir / f"tenant_{safe_id}.db"

    @contextmanager
    def _get_connection(self, tenant_id: str, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection for a tenant.

        Raises:
            TenantNotFoundError: If database doesn't exist and create=False
        """
        db_path = self._get_db_path(tenant_id)

        if not create and not db_path.exists():
            raise TenantNotFoundError(f"Tenant database not found: {tenant_id}")

        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS entities (
                entity_type TEXT NOT NULL,
                object_id TEXT NOT NULL,
                payload_json TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (entity_type, object_id)
            );

            CREATE TABLE IF NOT EXISTS versions (
                id TEXT PRIMARY KEY,
                object_id TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                change_type TEXT NOT NULL,
                changes_json TEXT NOT NULL DEFAULT '[]',
                is_actual INTEGER NOT NULL DEFAULT 1,
                previous_version_id TEXT REFERENCES versions(id),
                actor TEXT,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_versions_object ON versions(object_id);
            CREATE INDEX IF NOT EXISTS idx_versions_previous ON versions(previous_version_id);

            -- Single active head per identity
            CREATE UNIQUE INDEX IF NOT EXISTS uq_versions_head
                ON versions(entity_type, object_id) WHERE is_actual = 1;

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize_tenant(self, tenant_id: str) -> None:
        """Create the tenant database and schema if they don't exist."""
        async with self._lock:
            with self._get_connection(tenant_id, create=True) as conn:
                self._create_schema(conn)
                logger.info(f"Initialized tenant database: {tenant_id}")

    async def tenant_exists(self, tenant_id: str) -> bool:
        """Check if tenant database exists."""
        return self._get_db_path(tenant_id).exists()

    async def save_changes(
        self,
        tenant_id: str,
        entries: Iterable[EntityEntry],
        actor: Optional[str] = None,
        ts_ms: Optional[int] = None,
    ) -> CommitResult:
        """Persist entity mutations together with their version history.

        Args:
            tenant_id: Tenant identifier
            entries: Pending mutations, applied in order
            actor: Who performed the changes
            ts_ms: Optional commit timestamp

        Returns:
            CommitResult with the version rows written

        Raises:
            IdentityError: A primary key is missing
            IntegrityError: History or entity rows are inconsistent
            SerializationError: A value cannot be encoded
            UnknownEntityTypeError: An entry's type is not registered
        """
        entries = list(entries)
        now = ts_ms if ts_ms is not None else int(time.time() * 1000)

        with self._get_connection(tenant_id) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                result = self.coordinator.commit(
                    entries, SqliteVersionSource(conn), actor=actor, ts_ms=now
                )
                for entry in entries:
                    self._write_entity(conn, entry, now)
                self._write_versions(conn, result)

                conn.execute("COMMIT")

            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                logger.error(
                    "Storage rejected commit",
                    extra={"tenant_id": tenant_id, "error": str(e)},
                )
                raise IntegrityError(
                    f"Storage constraint violated: {e}",
                    reason="storage_constraint",
                ) from e
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Saved changes",
            extra={
                "tenant_id": tenant_id,
                "entries": len(entries),
                "versions": len(result.versions),
                "retired": len(result.retired),
            },
        )
        return result

    def _definition(self, entity_type: str) -> EntityTypeDef:
        definition = self.registry.get(entity_type)
        if definition is None:
            raise UnknownEntityTypeError(f"Entity type not registered: {entity_type}")
        return definition

    def _entity_payload(self, definition: EntityTypeDef, values: Any) -> str:
        payload: dict[str, Any] = {}
        for p in definition.properties:
            value = read_value(values, p.name)
            if p.is_collection:
                target = self._definition(p.target_type or "")
                payload[p.name] = [self.deriver.derive_id(target, item) for item in value or []]
            else:
                payload[p.name] = value
        return self.encoder.encode(payload) or "{}"

    def _write_entity(self, conn: sqlite3.Connection, entry: EntityEntry, now: int) -> None:
        definition = self._definition(entry.entity_type)
        object_id = self.deriver.derive_id(definition, entry.values)

        if entry.change_type == ChangeType.CREATED:
            conn.execute(
                """
                INSERT INTO entities (entity_type, object_id, payload_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.entity_type,
                    object_id,
                    self._entity_payload(definition, entry.values),
                    now,
                    now,
                ),
            )
            return

        if entry.change_type == ChangeType.UPDATED:
            cursor = conn.execute(
                """
                UPDATE entities SET payload_json = ?, updated_at = ?
                WHERE entity_type = ? AND object_id = ?
                """,
                (self._entity_payload(definition, entry.values), now, entry.entity_type, object_id),
            )
        else:
            cursor = conn.execute(
                "DELETE FROM entities WHERE entity_type = ? AND object_id = ?",
                (entry.entity_type, object_id),
            )

        if cursor.rowcount == 0:
            raise IntegrityError(
                f"Cannot apply {entry.change_type.value} to missing {entry.entity_type} "
                f"'{object_id}'",
                object_id=object_id,
                entity_type=entry.entity_type,
                reason="entity_missing",
            )

    def _write_versions(self, conn: sqlite3.Connection, result: CommitResult) -> None:
        # Retire first so the head index never sees two active rows
        for head in result.retired:
            cursor = conn.execute(
                "UPDATE versions SET is_actual = 0 WHERE id = ? AND is_actual = 1",
                (head.id,),
            )
            if cursor.rowcount == 0:
                raise IntegrityError(
                    f"Head {head.id} of '{head.object_id}' was modified concurrently",
                    object_id=head.object_id,
                    entity_type=head.entity_type,
                    reason="stale_head",
                )

        for version in result.versions:
            conn.execute(
                """
                INSERT INTO versions (id, object_id, entity_type, change_type, changes_json,
                                      is_actual, previous_version_id, actor, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    version.id,
                    version.object_id,
                    version.entity_type,
                    version.change_type.value,
                    version.changes_json(),
                    int(version.is_actual),
                    version.previous_version_id,
                    version.actor,
                    version.created_at,
                ),
            )

    async def get_entity(
        self,
        tenant_id: str,
        entity_type: str,
        object_id: str,
    ) -> Optional[dict[str, Any]]:
        """Get the current payload of an entity, or None if absent."""
        with self._get_connection(tenant_id) as conn:
            cursor = conn.execute(
                "SELECT payload_json FROM entities WHERE entity_type = ? AND object_id = ?",
                (entity_type, object_id),
            )
            row = cursor.fetchone()
            return json.loads(row["payload_json"]) if row else None

    async def get_version(self, tenant_id: str, version_id: str) -> Optional[Version]:
        with self._get_connection(tenant_id) as conn:
            cursor = conn.execute("SELECT * FROM versions WHERE id = ?", (version_id,))
            row = cursor.fetchone()
            return _row_to_version(row) if row else None

    async def get_versions(
        self,
        tenant_id: str,
        entity_type: str,
        object_id: str,
    ) -> list[Version]:
        """All versions of one identity, oldest first."""
        with self._get_connection(tenant_id) as conn:
            return self._select_versions(conn, entity_type, object_id)

    def _select_versions(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        object_id: str,
    ) -> list[Version]:
        cursor = conn.execute(
            """
            SELECT * FROM versions
            WHERE entity_type = ? AND object_id = ?
            ORDER BY created_at, rowid
            """,
            (entity_type, object_id),
        )
        return [_row_to_version(row) for row in cursor.fetchall()]

    async def get_head(
        self,
        tenant_id: str,
        entity_type: str,
        object_id: str,
    ) -> Optional[Version]:
        """Get the active version of an identity."""
        with self._get_connection(tenant_id) as conn:
            cursor = conn.execute(
                """
                SELECT * FROM versions
                WHERE entity_type = ? AND object_id = ? AND is_actual = 1
                """,
                (entity_type, object_id),
            )
            row = cursor.fetchone()
            return _row_to_version(row) if row else None

    async def get_history(
        self,
        tenant_id: str,
        entity_type: str,
        object_id: str,
    ) -> list[Version]:
        """The current chain of an identity, from head back to its Created version."""
        versions = await self.get_versions(tenant_id, entity_type, object_id)
        heads = [v for v in versions if v.is_actual]
        if not heads:
            return []
        return list(VersionArena(versions).walk_back(heads[0]))

    async def get_next_versions(self, tenant_id: str, version_id: str) -> list[Version]:
        """Versions whose previous version is version_id."""
        with self._get_connection(tenant_id) as conn:
            cursor = conn.execute(
                "SELECT * FROM versions WHERE previous_version_id = ? ORDER BY created_at, rowid",
                (version_id,),
            )
            return [_row_to_version(row) for row in cursor.fetchall()]

    async def get_state_at(self, tenant_id: str, version_id: str) -> Optional[dict[str, Optional[str]]]:
        """Reconstruct the recorded property values as of a version.

        Values are in their serialized form. For a tombstone this is the
        last state before deletion.

        Returns:
            Mapping of property name to serialized value, or None if the
            version does not exist
        """
        with self._get_connection(tenant_id) as conn:
            cursor = conn.execute("SELECT * FROM versions WHERE id = ?", (version_id,))
            row = cursor.fetchone()
            if not row:
                return None
            target = _row_to_version(row)
            arena = VersionArena(self._select_versions(conn, target.entity_type, target.object_id))

        return arena.baseline(target)

    async def get_stats(self, tenant_id: str) -> dict[str, int]:
        """Get entity and version counts for a tenant."""
        with self._get_connection(tenant_id) as conn:
            stats = {}

            cursor = conn.execute("SELECT COUNT(*) FROM entities")
            stats["entities"] = cursor.fetchone()[0]

            cursor = conn.execute("SELECT COUNT(*) FROM versions")
            stats["versions"] = cursor.fetchone()[0]

            cursor = conn.execute("SELECT COUNT(*) FROM versions WHERE is_actual = 1")
            stats["heads"] = cursor.fetchone()[0]

            return stats

    def get_db_path(self, tenant_id: str) -> Path:
        """Get the database file path for a tenant."""
        return self._get_db_path(tenant_id)
