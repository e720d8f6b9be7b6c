"""
Audit Models for Envelope Ledger

Every mutating ledger operation is recorded as an audit event.
This provides:
1. Complete traceability of postings and budget moves
2. Debugging information when a batch item fails
3. A history the user can review per ledger

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every mutating operation of the engine has its own event type.
    """
    # Ledger structure
    LEDGER_CREATED = "ledger_created"
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DEACTIVATED = "account_deactivated"

    # Postings
    TRANSACTION_POSTED = "transaction_posted"
    CLEARED_STATUS_CHANGED = "cleared_status_changed"

    # Allocation
    CATEGORY_ASSIGNED = "category_assigned"
    MONEY_MOVED = "money_moved"
    OVERSPENDING_COVERED = "overspending_covered"
    OVERSPENDING_DEFERRED = "overspending_deferred"

    # Goals
    GOAL_SET = "goal_set"
    GOAL_DELETED = "goal_deleted"
    GOAL_FUNDING_APPLIED = "goal_funding_applied"

    # Schedules
    RECURRING_TEMPLATE_CREATED = "recurring_template_created"
    RECURRING_SWEEP_COMPLETED = "recurring_sweep_completed"
    RECURRING_TEMPLATE_DISABLED = "recurring_template_disabled"
    INSTALLMENT_PLAN_CREATED = "installment_plan_created"
    INSTALLMENT_PROCESSED = "installment_processed"
    INSTALLMENT_SKIPPED = "installment_skipped"
    LOAN_CREATED = "loan_created"
    LOAN_PAYMENT_RECORDED = "loan_payment_recorded"
    CREDIT_CARD_PAID = "credit_card_paid"

    # Reconciliation
    ACCOUNT_RECONCILED = "account_reconciled"

    # Failures
    OPERATION_REJECTED = "operation_rejected"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every mutating operation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - which ledger and entity is this about?
    ledger_id: Optional[UUID] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'category', 'template')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all items of one sweep)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "ledger_id": str(self.ledger_id) if self.ledger_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


def format_cents(amount_cents: int) -> str:
    sign = "-" if amount_cents < 0 else ""
    value = abs(amount_cents)
    return f"{sign}{value // 100}.{value % 100:02d}"


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_posted(ledger_id, txn_id, 1250, "Groceries")
        event = AuditEventBuilder.money_moved(ledger_id, from_id, to_id, 500)
    """

    @staticmethod
    def ledger_created(ledger_id: UUID, owner_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_CREATED,
            ledger_id=ledger_id,
            entity_type="ledger",
            entity_id=ledger_id,
            description=f"Ledger created: {name}",
            details={"owner_id": owner_id},
        )

    @staticmethod
    def account_created(
        ledger_id: UUID,
        account_id: UUID,
        name: str,
        account_type: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            ledger_id=ledger_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Account created: {name} ({account_type})",
            details={"account_type": account_type},
        )

    @staticmethod
    def account_deactivated(ledger_id: UUID, account_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DEACTIVATED,
            ledger_id=ledger_id,
            entity_type="account",
            entity_id=account_id,
            description="Account deactivated",
        )

    @staticmethod
    def transaction_posted(
        ledger_id: UUID,
        transaction_id: UUID,
        amount_cents: int,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_POSTED,
            ledger_id=ledger_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Posted {format_cents(amount_cents)}: {description}"[:500],
            details={"amount_cents": amount_cents},
        )

    @staticmethod
    def cleared_status_changed(
        ledger_id: UUID,
        transaction_id: UUID,
        new_status: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLEARED_STATUS_CHANGED,
            ledger_id=ledger_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Cleared status set to {new_status}",
            details={"cleared_status": new_status},
        )

    @staticmethod
    def category_assigned(
        ledger_id: UUID,
        category_id: UUID,
        month: str,
        delta_cents: int,
        ready_to_assign_warning: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_ASSIGNED,
            severity=AuditSeverity.WARNING if ready_to_assign_warning else AuditSeverity.INFO,
            ledger_id=ledger_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Assigned {format_cents(delta_cents)} for {month}",
            details={
                "month": month,
                "delta_cents": delta_cents,
                "ready_to_assign_negative": ready_to_assign_warning,
            },
        )

    @staticmethod
    def money_moved(
        ledger_id: UUID,
        from_category_id: UUID,
        to_category_id: UUID,
        amount_cents: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONEY_MOVED,
            ledger_id=ledger_id,
            entity_type="category",
            entity_id=from_category_id,
            description=f"Moved {format_cents(amount_cents)} between categories",
            details={
                "from_category_id": str(from_category_id),
                "to_category_id": str(to_category_id),
                "amount_cents": amount_cents,
            },
        )

    @staticmethod
    def overspending_covered(
        ledger_id: UUID,
        category_id: UUID,
        policy: str,
        covered_cents: int,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.OVERSPENDING_DEFERRED
            if policy == "defer"
            else AuditEventType.OVERSPENDING_COVERED
        )
        return AuditEvent(
            event_type=event_type,
            ledger_id=ledger_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Overspending handled ({policy}): {format_cents(covered_cents)} covered",
            details={"policy": policy, "covered_cents": covered_cents},
        )

    @staticmethod
    def goal_changed(
        ledger_id: UUID,
        category_id: UUID,
        goal_type: Optional[str],
    ) -> AuditEvent:
        if goal_type is None:
            return AuditEvent(
                event_type=AuditEventType.GOAL_DELETED,
                ledger_id=ledger_id,
                entity_type="category",
                entity_id=category_id,
                description="Goal deleted",
            )
        return AuditEvent(
            event_type=AuditEventType.GOAL_SET,
            ledger_id=ledger_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Goal set: {goal_type}",
            details={"goal_type": goal_type},
        )

    @staticmethod
    def goal_funding_applied(
        ledger_id: UUID,
        suggestion_count: int,
        total_cents: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_FUNDING_APPLIED,
            ledger_id=ledger_id,
            entity_type="ledger",
            entity_id=ledger_id,
            description=f"Funded {suggestion_count} goal(s) with {format_cents(total_cents)}",
            details={"suggestion_count": suggestion_count, "total_cents": total_cents},
        )

    @staticmethod
    def schedule_created(
        ledger_id: UUID,
        entity_type: str,
        entity_id: UUID,
        description: str,
    ) -> AuditEvent:
        event_type = {
            "recurring_template": AuditEventType.RECURRING_TEMPLATE_CREATED,
            "installment_plan": AuditEventType.INSTALLMENT_PLAN_CREATED,
            "loan": AuditEventType.LOAN_CREATED,
        }[entity_type]
        return AuditEvent(
            event_type=event_type,
            ledger_id=ledger_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description[:500],
        )

    @staticmethod
    def recurring_sweep_completed(
        ledger_id: UUID,
        created: int,
        skipped: int,
        failed: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_SWEEP_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            ledger_id=ledger_id,
            entity_type="ledger",
            entity_id=ledger_id,
            correlation_id=correlation_id,
            description=f"Recurring sweep: {created} created, {skipped} skipped, {failed} failed",
            details={"created": created, "skipped": skipped, "failed": failed},
        )

    @staticmethod
    def recurring_template_disabled(
        ledger_id: UUID,
        template_id: UUID,
        failure_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_TEMPLATE_DISABLED,
            severity=AuditSeverity.WARNING,
            ledger_id=ledger_id,
            entity_type="recurring_template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Template disabled after {failure_count} failed attempts",
            details={"failure_count": failure_count},
        )

    @staticmethod
    def installment_handled(
        ledger_id: UUID,
        item_id: UUID,
        processed: bool,
        amount_cents: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.INSTALLMENT_PROCESSED
                if processed
                else AuditEventType.INSTALLMENT_SKIPPED
            ),
            ledger_id=ledger_id,
            entity_type="schedule_item",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=(
                f"Installment processed: {format_cents(amount_cents)}"
                if processed
                else "Installment skipped"
            ),
            details={"amount_cents": amount_cents},
        )

    @staticmethod
    def loan_payment_recorded(
        ledger_id: UUID,
        payment_id: UUID,
        principal_cents: int,
        interest_cents: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_PAYMENT_RECORDED,
            ledger_id=ledger_id,
            entity_type="loan_payment",
            entity_id=payment_id,
            description=(
                f"Loan payment recorded: principal {format_cents(principal_cents)}, "
                f"interest {format_cents(interest_cents)}"
            ),
            details={"principal_cents": principal_cents, "interest_cents": interest_cents},
        )

    @staticmethod
    def credit_card_paid(
        ledger_id: UUID,
        card_account_id: UUID,
        amount_cents: int,
        payment_category_balance_cents: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDIT_CARD_PAID,
            severity=(
                AuditSeverity.WARNING if payment_category_balance_cents < 0 else AuditSeverity.INFO
            ),
            ledger_id=ledger_id,
            entity_type="account",
            entity_id=card_account_id,
            description=f"Credit card paid: {format_cents(amount_cents)}",
            details={
                "amount_cents": amount_cents,
                "payment_category_balance_cents": payment_category_balance_cents,
            },
        )

    @staticmethod
    def account_reconciled(
        ledger_id: UUID,
        account_id: UUID,
        difference_cents: int,
        cleared_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_RECONCILED,
            severity=AuditSeverity.WARNING if difference_cents else AuditSeverity.INFO,
            ledger_id=ledger_id,
            entity_type="account",
            entity_id=account_id,
            description=(
                f"Reconciled {cleared_count} transaction(s); "
                f"adjustment {format_cents(difference_cents)}"
            ),
            details={"difference_cents": difference_cents, "cleared_count": cleared_count},
        )

    @staticmethod
    def operation_rejected(
        ledger_id: Optional[UUID],
        operation: str,
        error_kind: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.WARNING,
            ledger_id=ledger_id,
            description=f"{operation} rejected: {error_kind}",
            error_code=error_kind,
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
