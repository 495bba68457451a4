"""
Shared fixtures for the MVCS test suite.

The policy table used across tests:
    Item       type-level opt-in, id excluded       tracked: x, y
    Order      type-level opt-in, notes excluded    tracked: id, status, lines
    OrderLine  property-level opt-in                tracked: sku
    AuditNote  not versioned
"""

import pytest

from dbaas.mvcs.history.coordinator import CommitCoordinator
from dbaas.mvcs.schema.registry import EntityRegistry
from dbaas.mvcs.schema.types import EntityTypeDef, prop
from dbaas.mvcs.store.memory import InMemoryVersionStore


def build_registry() -> EntityRegistry:
    registry = EntityRegistry()

    registry.register(
        EntityTypeDef(
            name="Item",
            primary_key=("id",),
            properties=(prop("id", versioned=False), prop("x"), prop("y")),
            versioned=True,
        )
    )
    registry.register(
        EntityTypeDef(
            name="OrderLine",
            primary_key=("order_id", "line_no"),
            properties=(
                prop("order_id"),
                prop("line_no"),
                prop("sku", versioned=True),
                prop("qty"),
            ),
        )
    )
    registry.register(
        EntityTypeDef(
            name="Order",
            primary_key=("id",),
            properties=(
                prop("id"),
                prop("status"),
                prop("notes", versioned=False),
                prop("lines", "collection", target_type="OrderLine"),
            ),
            versioned=True,
        )
    )
    registry.register(
        EntityTypeDef(
            name="AuditNote",
            primary_key=("id",),
            properties=(prop("id"), prop("body")),
        )
    )
    return registry


@pytest.fixture
def make_registry():
    """Factory for fresh, unfrozen registries with the shared test types."""
    return build_registry


@pytest.fixture
def registry():
    """Frozen registry with the shared test types."""
    reg = build_registry()
    reg.freeze()
    return reg


@pytest.fixture
def coordinator(registry):
    return CommitCoordinator(registry)


@pytest.fixture
def memory_store():
    return InMemoryVersionStore()


@pytest.fixture
def commit(coordinator, memory_store):
    """Run one batch through the coordinator inside a store transaction."""

    def _commit(*entries, actor=None):
        with memory_store.transaction() as tx:
            result = coordinator.commit(entries, source=memory_store, actor=actor)
            tx.stage(result)
        return result

    return _commit
