"""
Unit tests for the in-memory version store.

Tests cover:
- Transaction commit and rollback
- Concurrent commits against the same head
- Copies handed out to callers
"""

import pytest

from dbaas.mvcs.history.errors import IntegrityError
from dbaas.mvcs.history.models import CommitResult, EntityEntry
from dbaas.mvcs.store.memory import InMemoryVersionStore


class TestInMemoryVersionStore:
    """Tests for InMemoryVersionStore."""

    def test_transaction_applies_on_exit(self, coordinator, memory_store):
        """Staged rows become visible when the block exits."""
        with memory_store.transaction() as tx:
            tx.stage(
                coordinator.commit(
                    [EntityEntry.created("Item", {"id": 1, "x": 1})], source=memory_store
                )
            )
            assert len(memory_store) == 0

        assert len(memory_store) == 1
        assert memory_store.get_head("Item", "1") is not None

    def test_transaction_rolls_back_on_error(self, coordinator, memory_store):
        """An exception in the block discards everything staged."""
        with pytest.raises(RuntimeError):
            with memory_store.transaction() as tx:
                tx.stage(
                    coordinator.commit(
                        [EntityEntry.created("Item", {"id": 1, "x": 1})], source=memory_store
                    )
                )
                raise RuntimeError("entity write failed")

        assert len(memory_store) == 0

    def test_concurrent_commits_on_same_head(self, coordinator, memory_store, commit):
        """The second of two commits computed against one head is rejected."""
        commit(EntityEntry.created("Item", {"id": 1, "x": 1}))

        first = coordinator.commit(
            [EntityEntry.updated("Item", {"id": 1, "x": 2})], source=memory_store
        )
        second = coordinator.commit(
            [EntityEntry.updated("Item", {"id": 1, "x": 3})], source=memory_store
        )

        memory_store.apply(first)
        with pytest.raises(IntegrityError) as exc_info:
            memory_store.apply(second)

        assert exc_info.value.reason == "stale_head"
        assert memory_store.get_head("Item", "1").id == first.versions[0].id
        assert len(memory_store) == 2

    def test_concurrent_creates_rejected(self, coordinator, memory_store):
        """Two creates of the same identity cannot both become head."""
        first = coordinator.commit(
            [EntityEntry.created("Item", {"id": 1, "x": 1})], source=memory_store
        )
        second = coordinator.commit(
            [EntityEntry.created("Item", {"id": 1, "x": 2})], source=memory_store
        )

        memory_store.apply(first)
        with pytest.raises(IntegrityError) as exc_info:
            memory_store.apply(second)

        assert exc_info.value.reason == "multiple_heads"
        assert len(memory_store) == 1

    def test_duplicate_version_id_rejected(self, coordinator, memory_store):
        """Version ids are never reused."""
        result = coordinator.commit(
            [EntityEntry.created("Item", {"id": 1, "x": 1})], source=memory_store
        )
        memory_store.apply(result)

        with pytest.raises(IntegrityError, match="already exists"):
            memory_store.apply(CommitResult(versions=result.versions))

    def test_fetch_returns_copies(self, commit, memory_store):
        """Mutating fetched versions does not change stored rows."""
        version = commit(EntityEntry.created("Item", {"id": 1, "x": 1})).versions[0]

        fetched = memory_store.fetch_versions(["1"])[0]
        fetched.is_actual = False
        fetched.changes.clear()

        stored = memory_store.get_version(version.id)
        assert stored.is_actual is True
        assert len(stored.changes) == 1

    def test_fetch_filters_by_object_id(self, commit, memory_store):
        """Only versions of the requested identities are returned."""
        commit(
            EntityEntry.created("Item", {"id": 1, "x": 1}),
            EntityEntry.created("Item", {"id": 2, "x": 2}),
        )

        fetched = memory_store.fetch_versions(["2"])

        assert [v.object_id for v in fetched] == ["2"]
        assert InMemoryVersionStore().fetch_versions(["2"]) == []

    def test_versions_oldest_first(self, coordinator, memory_store):
        """get_versions orders by creation time."""
        for ts, state in ((1000, 1), (2000, 2), (3000, 3)):
            with memory_store.transaction() as tx:
                entry = (
                    EntityEntry.created("Item", {"id": 1, "x": state})
                    if ts == 1000
                    else EntityEntry.updated("Item", {"id": 1, "x": state})
                )
                tx.stage(coordinator.commit([entry], source=memory_store, ts_ms=ts))

        versions = memory_store.get_versions("Item", "1")

        assert [v.created_at for v in versions] == [1000, 2000, 3000]
        assert [v.is_actual for v in versions] == [False, False, True]
