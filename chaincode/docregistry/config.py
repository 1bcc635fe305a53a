"""
Configuration management for DocRegistry.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Collection names must differ between private documents and audit logs
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
    - Document all new settings in the section docstrings below
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class LedgerBackend(Enum):
    """Supported host ledger backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class StorageConfig:
    """SQLite ledger storage configuration.

    Attributes:
        data_dir: Directory for the ledger database
        db_filename: Ledger database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/docregistry"
    db_filename: str = "ledger.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/docregistry"),
            db_filename=os.getenv("LEDGER_DB_FILE", "ledger.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ScanConfig:
    """Range scan configuration.

    Attributes:
        page_size: Pairs requested per range scan page
        ledger_scan_limit: Host iteration cap per scan (0 = unlimited)
    """

    page_size: int = 500
    ledger_scan_limit: int = 0

    @classmethod
    def from_env(cls) -> ScanConfig:
        """Load configuration from environment variables."""
        return cls(
            page_size=int(os.getenv("QUERY_PAGE_SIZE", "500")),
            ledger_scan_limit=int(os.getenv("LEDGER_SCAN_LIMIT", "0")),
        )


@dataclass(frozen=True)
class CollectionConfig:
    """Private data collection names.

    Public documents and their audit entries live in the world state;
    private documents and their audit entries live in two collections.

    Attributes:
        private_documents: Collection holding private documents
        private_audit_logs: Collection holding private audit entries
    """

    private_documents: str = "collectionPrivateDocs"
    private_audit_logs: str = "collectionAuditLogs"

    @classmethod
    def from_env(cls) -> CollectionConfig:
        """Load configuration from environment variables."""
        return cls(
            private_documents=os.getenv("PRIVATE_DOCS_COLLECTION", "collectionPrivateDocs"),
            private_audit_logs=os.getenv("PRIVATE_AUDIT_COLLECTION", "collectionAuditLogs"),
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
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class RegistryConfig:
    """Complete registry configuration.

    Attributes:
        ledger_backend: Which host ledger to use
        storage: SQLite storage configuration
        scan: Range scan configuration
        collections: Private collection names
        observability: Logging configuration
    """

    ledger_backend: LedgerBackend = LedgerBackend.MEMORY
    storage: StorageConfig = field(default_factory=StorageConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    collections: CollectionConfig = field(default_factory=CollectionConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> RegistryConfig:
        """Load complete configuration from environment variables.

        Returns:
            RegistryConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("LEDGER_BACKEND", "memory").lower()
        try:
            ledger_backend = LedgerBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid LEDGER_BACKEND '{backend_str}'. Must be one of: memory, sqlite"
            )

        config = cls(
            ledger_backend=ledger_backend,
            storage=StorageConfig.from_env(),
            scan=ScanConfig.from_env(),
            collections=CollectionConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.scan.page_size <= 0:
            raise ValueError("QUERY_PAGE_SIZE must be a positive integer")
        if self.scan.ledger_scan_limit < 0:
            raise ValueError("LEDGER_SCAN_LIMIT must be zero (unlimited) or positive")

        if not self.collections.private_documents or not self.collections.private_audit_logs:
            raise ValueError("Private collection names must not be empty")
        if self.collections.private_documents == self.collections.private_audit_logs:
            raise ValueError(
                "PRIVATE_DOCS_COLLECTION and PRIVATE_AUDIT_COLLECTION must differ"
            )

        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")

        if self.ledger_backend == LedgerBackend.SQLITE:
            if not self.storage.data_dir:
                raise ValueError("DATA_DIR is required when LEDGER_BACKEND=sqlite")
            if not os.path.exists(self.storage.data_dir):
                logger.warning(
                    f"Data directory does not exist: {self.storage.data_dir}. "
                    "It will be created on connect."
                )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Registry configuration loaded",
            extra={
                "ledger_backend": self.ledger_backend.value,
                "data_dir": self.storage.data_dir
                if self.ledger_backend == LedgerBackend.SQLITE
                else None,
                "query_page_size": self.scan.page_size,
                "ledger_scan_limit": self.scan.ledger_scan_limit,
                "private_documents": self.collections.private_documents,
                "private_audit_logs": self.collections.private_audit_logs,
                "log_level": self.observability.log_level,
            },
        )
