"""
SQLAlchemy ORM schema declarations (tables, columns, constraints, indexes).

No business logic lives here. Every table is scoped by ledger_id and
money columns are BIGINT cents.
"""

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


class LedgerRow(Base):
    __tablename__ = "ledgers"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class AccountRow(Base):
    __tablename__ = "accounts"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("ledgers.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="standard")
    is_group: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # sum(debits) - sum(credits), maintained under row lock by the posting engine
    balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("ledger_id", "name", name="uq_accounts_ledger_name"),
        Index("ix_accounts_ledger_type", "ledger_id", "type"),
    )


class TransactionRow(Base):
    __tablename__ = "transactions"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("ledgers.id"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    debit_account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    credit_account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    cleared_status: Mapped[str] = mapped_column(String(16), nullable=False, default="uncleared")
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_transactions_positive_amount"),
        CheckConstraint("debit_account_id <> credit_account_id", name="ck_transactions_distinct_legs"),
        Index("ix_transactions_ledger_date", "ledger_id", "date"),
        Index("ix_transactions_debit", "debit_account_id", "date"),
        Index("ix_transactions_credit", "credit_account_id", "date"),
    )


class CategoryAssignmentRow(Base):
    __tablename__ = "category_assignments"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("ledgers.id"), nullable=False)
    category_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    month: Mapped[dt.date] = mapped_column(Date, nullable=False)
    assigned_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("category_id", "month", name="uq_assignments_category_month"),
        Index("ix_assignments_ledger_month", "ledger_id", "month"),
    )


class GoalRow(Base):
    __tablename__ = "goals"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("ledgers.id"), nullable=False, index=True)
    category_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False, unique=True)
    goal_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    target_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    repeat_frequency: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class RecurringTemplateRow(Base):
    __tablename__ = "recurring_templates"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("ledgers.id"), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    next_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_create: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    occurrences: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("transactions.id"), nullable=True)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_recurring_positive_amount"),
        Index("ix_recurring_due", "ledger_id", "enabled", "next_date"),
    )


class InstallmentPlanRow(Base):
    __tablename__ = "installment_plans"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("ledgers.id"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    purchase_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    number_of_installments: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    credit_card_account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    category_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    completed_installments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    schedule: Mapped[list["ScheduleItemRow"]] = relationship(
        back_populates="plan",
        order_by="ScheduleItemRow.installment_number",
        lazy="selectin",
    )


class ScheduleItemRow(Base):
    __tablename__ = "installment_schedule_items"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("installment_plans.id"), nullable=False)
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    scheduled_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled")
    processed_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("transactions.id"), nullable=True)

    plan: Mapped[InstallmentPlanRow] = relationship(back_populates="schedule")

    __table_args__ = (
        UniqueConstraint("plan_id", "installment_number", name="uq_schedule_plan_number"),
        Index("ix_schedule_due", "status", "due_date"),
    )


class LoanRow(Base):
    __tablename__ = "loans"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("ledgers.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    principal_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    annual_rate_percent: Mapped[Decimal] = mapped_column(Numeric(9, 6), nullable=False)
    term_months: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    interest_category_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    payments: Mapped[list["LoanPaymentRow"]] = relationship(
        back_populates="loan",
        order_by="LoanPaymentRow.payment_number",
        lazy="selectin",
    )


class LoanPaymentRow(Base):
    __tablename__ = "loan_payments"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    loan_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("loans.id"), nullable=False)
    payment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    payment_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    principal_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    interest_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    remaining_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled")
    paid_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    principal_transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("transactions.id"), nullable=True)
    interest_transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("transactions.id"), nullable=True)

    loan: Mapped[LoanRow] = relationship(back_populates="payments")

    __table_args__ = (
        UniqueConstraint("loan_id", "payment_number", name="uq_loan_payment_number"),
    )


class ReconciliationRow(Base):
    __tablename__ = "reconciliations"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("ledgers.id"), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    statement_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    statement_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    ledger_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    difference_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    cleared_transaction_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    adjustment_transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("transactions.id"), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_reconciliations_account_date", "account_id", "statement_date"),
    )


class AuditEventRow(Base):
    __tablename__ = "audit_events"
    event_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    timestamp: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    ledger_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    correlation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)

    __table_args__ = (
        Index("ix_audit_correlation", "correlation_id"),
        Index("ix_audit_entity", "entity_type", "entity_id"),
        Index("ix_audit_ledger_time", "ledger_id", "timestamp"),
    )
