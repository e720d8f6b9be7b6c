"""Services package."""

from envelope_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    Database,
    SqlAuditStorage,
    StorageError,
    lock_rows,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "Database",
    "SqlAuditStorage",
    "StorageError",
    "lock_rows",
]
