"""
Budget View and Result Models

Everything the engine hands back to collaborators that is not a stored
record: envelope views, operation results, schedule lines and the
per-item results of batch runs.
"""

from datetime import date
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field


class EnvelopeState(str, Enum):
    """
    Three-way classification of a category balance.

    Drives all color-coding: ties go to ZERO, never to either side.
    """
    OVERSPENT = "overspent"
    ZERO = "zero"
    FUNDED = "funded"

    @classmethod
    def classify(cls, balance_cents: int) -> "EnvelopeState":
        if balance_cents < 0:
            return cls.OVERSPENT
        if balance_cents > 0:
            return cls.FUNDED
        return cls.ZERO


class CoverPolicy(str, Enum):
    """How an overspent category is dealt with."""
    MOVE = "move"    # take money from another category now
    DEFER = "defer"  # let the negative balance roll into next month


# =============================================================================
# ENVELOPE VIEWS
# =============================================================================

class EnvelopeLine(BaseModel):
    """One category row of the monthly budget."""

    category_id: UUID
    category_name: str
    group_id: Optional[UUID] = None
    budgeted_cents: int
    activity_cents: int
    balance_cents: int

    @property
    def state(self) -> EnvelopeState:
        return EnvelopeState.classify(self.balance_cents)


class BudgetTotals(BaseModel):
    """Ledger-wide totals for one month."""

    month: date
    budgeted_cents: int
    activity_cents: int
    balance_cents: int
    ready_to_assign_cents: int

    @property
    def is_overassigned(self) -> bool:
        return self.ready_to_assign_cents < 0


class EnvelopeStatus(BaseModel):
    month: date
    categories: list[EnvelopeLine] = Field(default_factory=list)
    ready_to_assign_cents: int

    def line_for(self, category_id: UUID) -> Optional[EnvelopeLine]:
        for line in self.categories:
            if line.category_id == category_id:
                return line
        return None

    @property
    def overspent(self) -> list[EnvelopeLine]:
        return [line for line in self.categories if line.state == EnvelopeState.OVERSPENT]


# =============================================================================
# ALLOCATION RESULTS
# =============================================================================

class AssignmentResult(BaseModel):
    """
    Outcome of an assign call.

    ready_to_assign_warning is True when the assignment was allowed
    even though it left Ready-to-Assign negative.
    """

    category_id: UUID
    month: date
    assigned_cents: int
    balance_cents: int
    ready_to_assign_cents: int
    ready_to_assign_warning: bool = False


class MoveResult(BaseModel):
    from_category_id: UUID
    to_category_id: UUID
    month: date
    amount_cents: int
    from_balance_cents: int
    to_balance_cents: int


class CoverResult(BaseModel):
    overspent_category_id: UUID
    policy: CoverPolicy
    covered_cents: int = 0
    source_category_id: Optional[UUID] = None
    move: Optional[MoveResult] = None
    remaining_balance_cents: int


class FundingSuggestion(BaseModel):
    category_id: UUID
    goal_id: UUID
    goal_type: str
    needed_cents: int
    suggested_amount_cents: int
    reason: str


# =============================================================================
# SCHEDULE LINES
# =============================================================================

class InstallmentLine(BaseModel):
    installment_number: int
    due_date: date
    amount_cents: int


class AmortizationLine(BaseModel):
    period: int
    due_date: date
    payment_cents: int
    principal_cents: int
    interest_cents: int
    balance_cents: int


# =============================================================================
# RECONCILIATION
# =============================================================================

class ReconciliationResult(BaseModel):
    """
    What reconcile_account reports back.

    A non-zero difference is not an error: it is closed by the
    adjustment transaction.
    """

    reconciliation_id: UUID
    account_id: UUID
    statement_balance_cents: int
    ledger_balance_before_cents: int
    difference_cents: int
    adjustment_transaction_id: Optional[UUID] = None
    cleared_count: int = 0
    replayed: bool = False


class CardPaymentResult(BaseModel):
    """
    What pay_credit_card reports back.

    A negative payment category balance means the card was paid with
    more than had been set aside for it.
    """

    card_account_id: UUID
    bank_account_id: UUID
    amount_cents: int
    payment_transaction_id: UUID
    category_transaction_id: UUID
    payment_category_id: UUID
    payment_category_balance_cents: int


# =============================================================================
# BATCH RESULTS - tagged union per processed item
# =============================================================================

class ItemSucceeded(BaseModel):
    outcome: Literal["success"] = "success"
    item_id: UUID
    transaction_id: UUID
    occurrence_date: Optional[date] = None


class ItemSkipped(BaseModel):
    outcome: Literal["skipped"] = "skipped"
    item_id: UUID
    reason: str


class ItemFailed(BaseModel):
    outcome: Literal["error"] = "error"
    item_id: UUID
    error_kind: str
    reason: str


ItemResult = Annotated[
    Union[ItemSucceeded, ItemSkipped, ItemFailed],
    Field(discriminator="outcome"),
]


class BatchSummary(BaseModel):
    """Aggregate of a batch run; one item's failure never hides another's result."""

    results: list[ItemResult] = Field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(1 for r in self.results if r.outcome == "success")

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.outcome == "skipped")

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome == "error")

    def for_item(self, item_id: UUID) -> list[ItemResult]:
        return [r for r in self.results if r.item_id == item_id]


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Error kind the issue maps to (e.g., 'InvalidAccount')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage posting validation.

    Stage 1: Schema validation (types, amounts, distinct legs)
    Stage 2: Semantic validation (accounts exist in the ledger and are postable)
    """

    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def first_error(self) -> Optional[ValidationIssue]:
        for issue in self.issues:
            if issue.severity == "error":
                return issue
        return None
