"""
Storage Services Package

Provides the relational store (SQLAlchemy) the ledger lives in and the
audit storage interface with its SQL implementation.
"""

from envelope_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    StorageError,
)
from envelope_ledger.services.storage.database import Database, lock_rows
from envelope_ledger.services.storage.audit_store import SqlAuditStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # SQL implementation
    "Database",
    "SqlAuditStorage",
    "lock_rows",
]
