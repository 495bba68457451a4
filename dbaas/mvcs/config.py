"""
Configuration management for MVCS.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - identity_delimiter and identity_encoding never change for a tenant
      that already has recorded versions; identities would stop matching

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Changing JSON encoding options makes the next update of every entity
      record spurious changes
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .history.encoder import ValueEncoder
from .history.identity import IdentityDeriver, IdentityEncoding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for SQLite databases
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/mvcs"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("MVCS_DATA_DIR", "/var/lib/mvcs"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class HistoryConfig:
    """Versioning core configuration.

    Attributes:
        identity_delimiter: Separator between primary-key components
        identity_encoding: joined or length_prefixed
        json_sort_keys: Sort mapping keys when encoding values
        json_ensure_ascii: Escape non-ASCII characters in encoded values
        baseline_early_stop: Stop chain walks once all tracked properties resolve
    """

    identity_delimiter: str = "_"
    identity_encoding: str = IdentityEncoding.JOINED.value
    json_sort_keys: bool = True
    json_ensure_ascii: bool = False
    baseline_early_stop: bool = True

    @classmethod
    def from_env(cls) -> HistoryConfig:
        """Load configuration from environment variables."""
        return cls(
            identity_delimiter=os.getenv("MVCS_IDENTITY_DELIMITER", "_"),
            identity_encoding=os.getenv("MVCS_IDENTITY_ENCODING", "joined").lower(),
            json_sort_keys=os.getenv("MVCS_JSON_SORT_KEYS", "true").lower() == "true",
            json_ensure_ascii=os.getenv("MVCS_JSON_ENSURE_ASCII", "false").lower() == "true",
            baseline_early_stop=os.getenv("MVCS_BASELINE_EARLY_STOP", "true").lower() == "true",
        )

    def build_encoder(self) -> ValueEncoder:
        return ValueEncoder(sort_keys=self.json_sort_keys, ensure_ascii=self.json_ensure_ascii)

    def build_deriver(self) -> IdentityDeriver:
        return IdentityDeriver(
            delimiter=self.identity_delimiter,
            encoding=IdentityEncoding(self.identity_encoding),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )


@dataclass
class MvcsConfig:
    """Complete configuration.

    Attributes:
        storage: Local storage configuration
        history: Versioning core configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> MvcsConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            history=HistoryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.history.identity_delimiter:
            raise ValueError("MVCS_IDENTITY_DELIMITER cannot be empty")

        valid_encodings = [e.value for e in IdentityEncoding]
        if self.history.identity_encoding not in valid_encodings:
            raise ValueError(
                f"Invalid MVCS_IDENTITY_ENCODING '{self.history.identity_encoding}'. "
                f"Must be one of: {', '.join(valid_encodings)}"
            )

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "MVCS configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "wal_mode": self.storage.wal_mode,
                "identity_delimiter": self.history.identity_delimiter,
                "identity_encoding": self.history.identity_encoding,
                "baseline_early_stop": self.history.baseline_early_stop,
                "log_level": self.observability.log_level,
            },
        )
