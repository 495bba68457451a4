"""
Integration tests for VersionedStore with SQLite.

Tests cover:
- Entity mutations and version history written together
- History queries (chain, forward links, state reconstruction)
- Whole-batch rollback
- The single-head index and duplicate-head detection
"""

import sqlite3
import tempfile

import pytest

from dbaas.mvcs.history.errors import IdentityError, IntegrityError
from dbaas.mvcs.history.models import Change, ChangeType, EntityEntry
from dbaas.mvcs.store.sqlite_store import (
    TenantNotFoundError,
    UnknownEntityTypeError,
    VersionedStore,
)

TENANT = "tenant_1"


class TestVersionedStore:
    """Integration tests for VersionedStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def store(self, data_dir, registry):
        """Create versioned store."""
        return VersionedStore(data_dir, registry, wal_mode=False)

    async def scenario(self, store):
        """Create, update and delete Item 1; return the three versions."""
        await store.initialize_tenant(TENANT)
        r1 = await store.save_changes(
            TENANT, [EntityEntry.created("Item", {"id": 1, "x": 1, "y": 2})], ts_ms=1000
        )
        r2 = await store.save_changes(
            TENANT, [EntityEntry.updated("Item", {"id": 1, "x": 5, "y": 2})], ts_ms=2000
        )
        r3 = await store.save_changes(
            TENANT, [EntityEntry.deleted("Item", {"id": 1})], ts_ms=3000
        )
        return r1.versions[0], r2.versions[0], r3.versions[0]

    @pytest.mark.asyncio
    async def test_entities_and_versions_written_together(self, store):
        """Entity payloads track the latest state alongside history."""
        await store.initialize_tenant(TENANT)

        result = await store.save_changes(
            TENANT,
            [EntityEntry.created("Item", {"id": 1, "x": 1, "y": 2})],
            actor="user:42",
        )

        assert await store.get_entity(TENANT, "Item", "1") == {"id": 1, "x": 1, "y": 2}
        head = await store.get_head(TENANT, "Item", "1")
        assert head.id == result.versions[0].id
        assert head.changes == [Change("x", "1"), Change("y", "2")]
        assert head.actor == "user:42"

    @pytest.mark.asyncio
    async def test_scenario_persisted(self, store):
        """Create, update and delete leave one chain with one head."""
        v1, v2, v3 = await self.scenario(store)

        stored = await store.get_versions(TENANT, "Item", "1")

        assert [v.id for v in stored] == [v1.id, v2.id, v3.id]
        assert [v.is_actual for v in stored] == [False, False, True]
        assert stored[1].changes == [Change("x", "5")]
        assert stored[1].previous_version_id == v1.id
        assert stored[2].change_type == ChangeType.DELETED
        assert stored[2].changes == []
        assert await store.get_entity(TENANT, "Item", "1") is None

    @pytest.mark.asyncio
    async def test_history_queries(self, store):
        """History walks back from the head; forward links are derived."""
        v1, v2, v3 = await self.scenario(store)

        history = await store.get_history(TENANT, "Item", "1")
        assert [v.id for v in history] == [v3.id, v2.id, v1.id]

        assert [v.id for v in await store.get_next_versions(TENANT, v1.id)] == [v2.id]
        assert await store.get_next_versions(TENANT, v3.id) == []

    @pytest.mark.asyncio
    async def test_state_at_version(self, store):
        """Recorded state is reconstructed from incremental versions."""
        v1, v2, v3 = await self.scenario(store)

        assert await store.get_state_at(TENANT, v1.id) == {"x": "1", "y": "2"}
        assert await store.get_state_at(TENANT, v2.id) == {"x": "5", "y": "2"}
        assert await store.get_state_at(TENANT, v3.id) == {"x": "5", "y": "2"}
        assert await store.get_state_at(TENANT, "missing") is None

    @pytest.mark.asyncio
    async def test_collections_stored_as_identities(self, store):
        """Collections are persisted and versioned as related identities."""
        await store.initialize_tenant(TENANT)
        lines = [
            {"order_id": 7, "line_no": 1, "sku": "A"},
            {"order_id": 7, "line_no": 2, "sku": "B"},
        ]

        result = await store.save_changes(
            TENANT,
            [
                EntityEntry.created("OrderLine", lines[0]),
                EntityEntry.created("OrderLine", lines[1]),
                EntityEntry.created("Order", {"id": 7, "status": "new", "lines": lines}),
            ],
        )

        assert len(result.versions) == 3
        order = await store.get_entity(TENANT, "Order", "7")
        assert order["lines"] == ["7_1", "7_2"]
        head = await store.get_head(TENANT, "Order", "7")
        assert Change("lines", '["7_1","7_2"]') in head.changes

    @pytest.mark.asyncio
    async def test_ineligible_types_persist_without_history(self, store):
        """Types that are not versioned are stored with no versions."""
        await store.initialize_tenant(TENANT)

        result = await store.save_changes(
            TENANT, [EntityEntry.created("AuditNote", {"id": 1, "body": "hello"})]
        )

        assert result.versions == []
        assert await store.get_entity(TENANT, "AuditNote", "1") == {"id": 1, "body": "hello"}
        assert (await store.get_stats(TENANT))["versions"] == 0

    @pytest.mark.asyncio
    async def test_failed_batch_rolls_back(self, store):
        """A failing entry discards the whole batch, history included."""
        await store.initialize_tenant(TENANT)

        with pytest.raises(IntegrityError) as exc_info:
            await store.save_changes(
                TENANT,
                [
                    EntityEntry.created("Item", {"id": 30, "x": 1}),
                    EntityEntry.updated("AuditNote", {"id": 5, "body": "missing"}),
                ],
            )

        assert exc_info.value.reason == "entity_missing"
        assert await store.get_entity(TENANT, "Item", "30") is None
        assert await store.get_stats(TENANT) == {"entities": 0, "versions": 0, "heads": 0}

    @pytest.mark.asyncio
    async def test_update_without_head_rolls_back(self, store):
        """An update with no recorded history aborts before any write."""
        await store.initialize_tenant(TENANT)

        with pytest.raises(IntegrityError, match="no_head"):
            await store.save_changes(
                TENANT,
                [
                    EntityEntry.created("Item", {"id": 1, "x": 1}),
                    EntityEntry.updated("Item", {"id": 2, "x": 1}),
                ],
            )

        assert (await store.get_stats(TENANT))["entities"] == 0

    @pytest.mark.asyncio
    async def test_missing_key_rolls_back(self, store):
        """A missing primary key aborts the batch."""
        await store.initialize_tenant(TENANT)

        with pytest.raises(IdentityError):
            await store.save_changes(TENANT, [EntityEntry.created("Item", {"x": 1})])

        assert (await store.get_stats(TENANT))["versions"] == 0

    @pytest.mark.asyncio
    async def test_unknown_entity_type(self, store):
        """Unregistered types cannot be persisted."""
        await store.initialize_tenant(TENANT)

        with pytest.raises(UnknownEntityTypeError):
            await store.save_changes(TENANT, [EntityEntry.created("Ghost", {"id": 1})])

    @pytest.mark.asyncio
    async def test_recreate_after_delete(self, store):
        """A re-created identity starts a new chain with a single head."""
        _, _, tombstone = await self.scenario(store)

        result = await store.save_changes(
            TENANT, [EntityEntry.created("Item", {"id": 1, "x": 9})], ts_ms=4000
        )

        assert [v.id for v in result.retired] == [tombstone.id]
        assert result.versions[0].previous_version_id is None
        assert (await store.get_stats(TENANT))["heads"] == 1
        assert await store.get_entity(TENANT, "Item", "1") == {"id": 1, "x": 9, "y": None}

    @pytest.mark.asyncio
    async def test_head_index_rejects_second_head(self, store):
        """The storage layer refuses two active versions for one identity."""
        await store.initialize_tenant(TENANT)
        await store.save_changes(TENANT, [EntityEntry.created("Item", {"id": 1, "x": 1})])

        conn = sqlite3.connect(str(store.get_db_path(TENANT)))
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    """
                    INSERT INTO versions (id, object_id, entity_type, change_type, is_actual, created_at)
                    VALUES ('rogue', '1', 'Item', 'created', 1, 0)
                    """
                )
        finally:
            conn.close()

    @pytest.mark.asyncio
    async def test_duplicate_heads_detected(self, store):
        """Duplicate heads in existing data abort the next commit."""
        await store.initialize_tenant(TENANT)
        await store.save_changes(TENANT, [EntityEntry.created("Item", {"id": 1, "x": 1})])

        conn = sqlite3.connect(str(store.get_db_path(TENANT)), isolation_level=None)
        try:
            conn.execute("DROP INDEX uq_versions_head")
            conn.execute(
                """
                INSERT INTO versions (id, object_id, entity_type, change_type, is_actual, created_at)
                VALUES ('rogue', '1', 'Item', 'created', 1, 0)
                """
            )
        finally:
            conn.close()

        with pytest.raises(IntegrityError) as exc_info:
            await store.save_changes(TENANT, [EntityEntry.updated("Item", {"id": 1, "x": 2})])

        assert exc_info.value.reason == "multiple_heads"
        assert await store.get_entity(TENANT, "Item", "1") == {"id": 1, "x": 1, "y": None}

    @pytest.mark.asyncio
    async def test_tenant_not_found(self, store):
        """Operations on a missing tenant raise TenantNotFoundError."""
        assert not await store.tenant_exists("nope")

        with pytest.raises(TenantNotFoundError):
            await store.save_changes("nope", [EntityEntry.created("Item", {"id": 1})])

    @pytest.mark.asyncio
    async def test_stats(self, store):
        """Stats count entities, versions and heads."""
        await self.scenario(store)
        await store.save_changes(
            TENANT, [EntityEntry.created("Item", {"id": 2, "x": 1})], ts_ms=5000
        )

        assert await store.get_stats(TENANT) == {"entities": 1, "versions": 4, "heads": 2}
