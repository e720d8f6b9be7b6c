"""
Data Models Package

This package contains all Pydantic models used in Envelope Ledger.
All data flowing out of the engine conforms to these schemas.
"""

from envelope_ledger.models.ledger import (
    Account,
    AccountRole,
    AccountType,
    ClearedStatus,
    Frequency,
    Goal,
    GoalType,
    InstallmentPlan,
    Ledger,
    LedgerContext,
    Loan,
    LoanPayment,
    LoanPaymentStatus,
    LoanStatus,
    PlanStatus,
    ReconciliationRecord,
    RecurringDirection,
    RecurringTemplate,
    ScheduleItem,
    ScheduleStatus,
    Transaction,
    TransactionSource,
)
from envelope_ledger.models.budget import (
    AmortizationLine,
    AssignmentResult,
    BatchSummary,
    BudgetTotals,
    CardPaymentResult,
    CoverPolicy,
    CoverResult,
    EnvelopeLine,
    EnvelopeState,
    EnvelopeStatus,
    FundingSuggestion,
    InstallmentLine,
    ItemFailed,
    ItemResult,
    ItemSkipped,
    ItemSucceeded,
    MoveResult,
    ReconciliationResult,
    ValidationIssue,
    ValidationResult,
)
from envelope_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger records
    "Account",
    "AccountRole",
    "AccountType",
    "ClearedStatus",
    "Frequency",
    "Goal",
    "GoalType",
    "InstallmentPlan",
    "Ledger",
    "LedgerContext",
    "Loan",
    "LoanPayment",
    "LoanPaymentStatus",
    "LoanStatus",
    "PlanStatus",
    "ReconciliationRecord",
    "RecurringDirection",
    "RecurringTemplate",
    "ScheduleItem",
    "ScheduleStatus",
    "Transaction",
    "TransactionSource",
    # Views and results
    "AmortizationLine",
    "AssignmentResult",
    "BatchSummary",
    "BudgetTotals",
    "CardPaymentResult",
    "CoverPolicy",
    "CoverResult",
    "EnvelopeLine",
    "EnvelopeState",
    "EnvelopeStatus",
    "FundingSuggestion",
    "InstallmentLine",
    "ItemFailed",
    "ItemResult",
    "ItemSkipped",
    "ItemSucceeded",
    "MoveResult",
    "ReconciliationResult",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
