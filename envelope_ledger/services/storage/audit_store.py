"""
SQL Audit Storage

Audit events live in the same database as the ledger, in an
append-only table. Writes use their own short transaction so an
audit row never depends on the outcome of the operation it describes.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from envelope_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from envelope_ledger.services.storage.database import Database
from envelope_ledger.services.storage.interface import AuditStorageInterface, StorageError
from envelope_ledger.services.storage.tables import AuditEventRow


class SqlAuditStorage(AuditStorageInterface):
    """SQLAlchemy implementation of audit log storage."""

    def __init__(self, database: Database):
        self._db = database

    def _event_to_row(self, event: AuditEvent) -> AuditEventRow:
        return AuditEventRow(
            event_id=event.event_id,
            timestamp=event.timestamp,
            event_type=event.event_type.value,
            severity=event.severity.value,
            ledger_id=event.ledger_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            correlation_id=event.correlation_id,
            description=event.description,
            details=event.details,
            error_code=event.error_code,
            error_message=event.error_message,
        )

    def _row_to_event(self, row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=row.event_id,
            timestamp=row.timestamp,
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            ledger_id=row.ledger_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            correlation_id=row.correlation_id,
            description=row.description,
            details=row.details or {},
            error_code=row.error_code,
            error_message=row.error_message,
        )

    def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            with self._db.transaction() as session:
                session.add(self._event_to_row(event))
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write audit event: {e}") from e

    def _query(self, stmt) -> list[AuditEvent]:
        try:
            with self._db.read_session() as session:
                return [self._row_to_event(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == correlation_id)
            .order_by(AuditEventRow.timestamp)
        )

    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(
                AuditEventRow.entity_type == entity_type,
                AuditEventRow.entity_id == entity_id,
            )
            .order_by(AuditEventRow.timestamp)
        )

    def get_recent_events(
        self,
        ledger_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = select(AuditEventRow)
        if ledger_id is not None:
            stmt = stmt.where(AuditEventRow.ledger_id == ledger_id)
        return self._query(stmt.order_by(AuditEventRow.timestamp.desc()).limit(limit))
