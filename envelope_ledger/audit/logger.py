"""
Audit Logger

DESIGN DECISION: Every mutating ledger operation is logged.
This provides:
1. Complete traceability of money movements
2. Debugging capability for failed batch items
3. Per-ledger history the user can review

The audit logger:
- Runs inside the request, after the operation's transaction committed
- Gracefully handles failures (a broken audit table never fails a posting)
- Supports correlation IDs to trace the items of one batch run
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from envelope_ledger.config import AppSettings
from envelope_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from envelope_ledger.services.storage import AuditStorageInterface


def configure_logging(settings: Optional[AppSettings] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    JSON output by default; the console renderer when log_json is off
    (handy while debugging locally).
    """
    settings = settings or AppSettings()
    level = logging.DEBUG if settings.debug_mode else getattr(logging, settings.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_events table (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("envelope_ledger.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_rejection(
        self,
        ledger_id: Optional[UUID],
        operation: str,
        error_kind: str,
        error_message: str,
    ) -> None:
        """Log a domain error that aborted an operation."""
        self.log(AuditEventBuilder.operation_rejected(
            ledger_id=ledger_id,
            operation=operation,
            error_kind=error_kind,
            error_message=error_message,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a batch run (e.g., a recurring sweep).
    Pass it through all subsequent per-item events.
    """
    return uuid4()
