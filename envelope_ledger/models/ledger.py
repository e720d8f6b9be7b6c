"""
Core Ledger Models for Envelope Ledger

These models define the strict schemas of every record the engine reads
and returns. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be built directly from ORM rows (from_attributes)

DESIGN DECISION: Money is always an integer number of cents.
No model in this package accepts a float or Decimal amount.
"""

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """
    Account types of the double-entry system.

    Assets are debit-normal; everything else is credit-normal.
    Non-group equity accounts are budget categories (envelopes).
    """
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"


class AccountRole(str, Enum):
    """System role of an account inside its ledger."""
    STANDARD = "standard"
    READY_TO_ASSIGN = "ready_to_assign"  # income account all inflows land in
    ADJUSTMENT = "adjustment"            # reconciliation and card-payment counter-account


class ClearedStatus(str, Enum):
    """Bank-clearing state of a transaction."""
    UNCLEARED = "uncleared"
    CLEARED = "cleared"
    RECONCILED = "reconciled"


class TransactionSource(str, Enum):
    """Which flow created a transaction."""
    MANUAL = "manual"
    RECURRING = "recurring"
    INSTALLMENT = "installment"
    LOAN_PAYMENT = "loan_payment"
    CARD_PAYMENT = "card_payment"
    RECONCILIATION = "reconciliation"


class GoalType(str, Enum):
    MONTHLY_FUNDING = "monthly_funding"
    TARGET_BALANCE = "target_balance"
    TARGET_BY_DATE = "target_by_date"


class Frequency(str, Enum):
    """Period lengths for schedules, templates and goal repeats."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class RecurringDirection(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    PROCESSED = "processed"
    SKIPPED = "skipped"


class LoanStatus(str, Enum):
    ACTIVE = "active"
    PAID_OFF = "paid_off"


class LoanPaymentStatus(str, Enum):
    SCHEDULED = "scheduled"
    PAID = "paid"


# =============================================================================
# CONTEXT
# =============================================================================

class LedgerContext(BaseModel):
    """
    Explicit scope of every core operation.

    Carries the acting user, the ledger being worked on and the
    business date used for "this month" / "today" decisions.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Identifier of the acting user (row-level security boundary)"
    )
    ledger_id: UUID = Field(
        ...,
        description="Ledger every query is scoped to"
    )
    today: date = Field(
        default_factory=date.today,
        description="Business date of the request"
    )

    @property
    def current_month(self) -> date:
        return self.today.replace(day=1)


# =============================================================================
# LEDGER STRUCTURE
# =============================================================================

class Ledger(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    name: str = Field(..., min_length=1, max_length=200)
    created_at: datetime


class Account(BaseModel):
    """
    An account of a ledger.

    Accounts are never hard-deleted while referenced by a posting;
    they are deactivated instead.
    """
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ledger_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType
    role: AccountRole = AccountRole.STANDARD
    is_group: bool = False
    parent_id: Optional[UUID] = None
    is_active: bool = True
    balance_cents: int = Field(
        default=0,
        description="Cached raw balance: sum(debits) - sum(credits)"
    )

    @property
    def is_category(self) -> bool:
        """Non-group, standard equity accounts are budget envelopes."""
        return (
            self.type == AccountType.EQUITY
            and not self.is_group
            and self.role == AccountRole.STANDARD
        )

    @property
    def is_debit_normal(self) -> bool:
        return self.type == AccountType.ASSET

    @property
    def natural_balance_cents(self) -> int:
        """Balance with the sign a user expects for this account type."""
        return self.balance_cents if self.is_debit_normal else -self.balance_cents


class Transaction(BaseModel):
    """
    A balanced two-leg posting.

    CRITICAL: Transactions are immutable. Only the cleared status
    changes after creation, and only through reconciliation flows.
    """
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    ledger_id: UUID
    date: dt.date
    amount_cents: StrictInt = Field(..., gt=0)
    debit_account_id: UUID
    credit_account_id: UUID
    description: str = ""
    cleared_status: ClearedStatus = ClearedStatus.UNCLEARED
    source: TransactionSource = TransactionSource.MANUAL
    created_at: datetime

    @model_validator(mode='after')
    def validate_legs(self) -> 'Transaction':
        if self.debit_account_id == self.credit_account_id:
            raise ValueError("Debit and credit account must differ")
        return self


# =============================================================================
# GOALS AND SCHEDULES
# =============================================================================

class Goal(BaseModel):
    """Funding goal of a category. One active goal per category."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ledger_id: UUID
    category_id: UUID
    goal_type: GoalType
    target_amount_cents: StrictInt = Field(..., gt=0)
    target_date: Optional[date] = None
    repeat_frequency: Optional[Frequency] = None

    @model_validator(mode='after')
    def validate_target_date(self) -> 'Goal':
        if self.goal_type == GoalType.TARGET_BY_DATE and self.target_date is None:
            raise ValueError("target_by_date goals require a target date")
        return self


class RecurringTemplate(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ledger_id: UUID
    account_id: UUID
    category_id: Optional[UUID] = None
    amount_cents: StrictInt = Field(..., gt=0)
    direction: RecurringDirection
    description: str = ""
    frequency: Frequency
    start_date: date
    next_date: date
    end_date: Optional[date] = None
    enabled: bool = True
    auto_create: bool = True
    occurrences: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    last_transaction_id: Optional[UUID] = None

    def is_due(self, as_of: date) -> bool:
        if not (self.enabled and self.auto_create):
            return False
        if self.end_date is not None and self.next_date > self.end_date:
            return False
        return self.next_date <= as_of


class ScheduleItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    plan_id: UUID
    installment_number: int = Field(..., ge=1)
    due_date: date
    scheduled_amount_cents: int = Field(..., ge=0)
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    processed_date: Optional[date] = None
    transaction_id: Optional[UUID] = None


class InstallmentPlan(BaseModel):
    """
    A purchase split into installments.

    Invariant: the scheduled amounts sum to the purchase amount exactly.
    """
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ledger_id: UUID
    description: str = ""
    purchase_amount_cents: StrictInt = Field(..., gt=0)
    number_of_installments: int = Field(..., ge=2)
    frequency: Frequency
    start_date: date
    credit_card_account_id: UUID
    category_id: UUID
    completed_installments: int = Field(default=0, ge=0)
    status: PlanStatus = PlanStatus.ACTIVE
    schedule: list[ScheduleItem] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_schedule_sum(self) -> 'InstallmentPlan':
        if self.schedule:
            total = sum(item.scheduled_amount_cents for item in self.schedule)
            if total != self.purchase_amount_cents:
                raise ValueError(
                    f"Schedule sums to {total}, expected {self.purchase_amount_cents}"
                )
        return self


class LoanPayment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_id: UUID
    payment_number: int = Field(..., ge=1)
    due_date: date
    payment_cents: int = Field(..., ge=0)
    principal_cents: int = Field(..., ge=0)
    interest_cents: int = Field(..., ge=0)
    remaining_balance_cents: int = Field(..., ge=0)
    status: LoanPaymentStatus = LoanPaymentStatus.SCHEDULED
    paid_date: Optional[date] = None
    principal_transaction_id: Optional[UUID] = None
    interest_transaction_id: Optional[UUID] = None


class Loan(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ledger_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    principal_cents: StrictInt = Field(..., gt=0)
    annual_rate_percent: Decimal = Field(
        ...,
        ge=0,
        le=100,
        description="Annual interest rate in percent, e.g. 6.5"
    )
    term_months: int = Field(..., ge=1)
    start_date: date
    account_id: UUID
    interest_category_id: Optional[UUID] = None
    status: LoanStatus = LoanStatus.ACTIVE
    payments: list[LoanPayment] = Field(default_factory=list)


# =============================================================================
# RECONCILIATION
# =============================================================================

class ReconciliationRecord(BaseModel):
    """
    Result of one completed reconciliation.

    CRITICAL: Immutable after creation. Retrying with different inputs
    creates a new record; earlier adjustments are never reversed here.
    """
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    ledger_id: UUID
    account_id: UUID
    statement_date: date
    statement_balance_cents: int
    ledger_balance_cents: int
    difference_cents: int
    cleared_transaction_ids: list[UUID] = Field(default_factory=list)
    adjustment_transaction_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime

    @field_validator('cleared_transaction_ids', mode='before')
    @classmethod
    def parse_ids(cls, v):
        # Stored as a JSON list of strings
        if v is None:
            return []
        return [UUID(str(item)) for item in v]
