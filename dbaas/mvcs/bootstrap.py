"""
Startup wiring for MVCS.

Builds the components a host application needs from configuration:
- Logging (JSON or text, on the root logger)
- The commit coordinator, with encoder and identity settings from config
- The versioned SQLite store

Usage:
    >>> config = MvcsConfig.from_env()
    >>> setup_logging(config)
    >>> registry = get_registry()
    >>> registry.register(Order)
    >>> store = create_store(config, registry)

Invariants:
    - The registry is frozen before the store serves its first commit
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import MvcsConfig
from .history.coordinator import CommitCoordinator
from .schema.registry import EntityRegistry
from .store.sqlite_store import VersionedStore

logger = logging.getLogger(__name__)


def setup_logging(config: MvcsConfig) -> None:
    """Configure logging based on configuration."""
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


def create_coordinator(config: MvcsConfig, registry: EntityRegistry) -> CommitCoordinator:
    """Build the versioning pipeline from configuration."""
    return CommitCoordinator(
        registry,
        encoder=config.history.build_encoder(),
        deriver=config.history.build_deriver(),
        baseline_early_stop=config.history.baseline_early_stop,
    )


def create_store(config: MvcsConfig, registry: EntityRegistry) -> VersionedStore:
    """Build the versioned store, freezing the registry if needed.

    Raises:
        ValueError: If a collection references an unregistered type
    """
    errors = registry.validate_all()
    if errors:
        raise ValueError(f"Invalid entity registry: {'; '.join(errors)}")

    if not registry.frozen:
        registry.freeze()

    config.log_config()
    return VersionedStore(
        config.storage.data_dir,
        registry,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
        cache_size_pages=config.storage.cache_size_pages,
        coordinator=create_coordinator(config, registry),
    )
