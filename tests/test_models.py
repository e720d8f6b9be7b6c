"""
Tests for Envelope Ledger

Test strategy:
1. Unit tests for individual components (models, validators, schedule math)
2. Flow tests through the orchestrator against in-memory SQLite
3. No external services in tests
"""

import pytest
from datetime import date, datetime, timezone
from uuid import uuid4

from envelope_ledger.audit import AuditLogger
from envelope_ledger.engine.errors import InvalidAccount, ZeroOrNegativeAmount
from envelope_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    format_cents,
)
from envelope_ledger.models.budget import (
    BatchSummary,
    ItemFailed,
    ItemSkipped,
    ItemSucceeded,
    ValidationIssue,
    ValidationResult,
)
from envelope_ledger.models.ledger import (
    AccountType,
    Frequency,
    Goal,
    GoalType,
    InstallmentPlan,
    LedgerContext,
    ReconciliationRecord,
    RecurringDirection,
    RecurringTemplate,
    ScheduleItem,
    Transaction,
)
from envelope_ledger.validation import PostingValidator, raise_for_result


NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class TestLedgerModels:
    """Tests for ledger record models."""

    def test_transaction_creation(self):
        """Test Transaction model creation."""
        txn = Transaction(
            id=uuid4(),
            ledger_id=uuid4(),
            date=date(2024, 3, 15),
            amount_cents=1250,
            debit_account_id=uuid4(),
            credit_account_id=uuid4(),
            created_at=NOW,
        )
        assert txn.amount_cents == 1250
        assert txn.description == ""

    def test_transaction_rejects_float_amount(self):
        """Test that money is never a float."""
        with pytest.raises(ValueError):
            Transaction(
                id=uuid4(),
                ledger_id=uuid4(),
                date=date(2024, 3, 15),
                amount_cents=12.5,
                debit_account_id=uuid4(),
                credit_account_id=uuid4(),
                created_at=NOW,
            )

    def test_transaction_rejects_same_legs(self):
        """Test that debit and credit must differ."""
        account_id = uuid4()
        with pytest.raises(ValueError):
            Transaction(
                id=uuid4(),
                ledger_id=uuid4(),
                date=date(2024, 3, 15),
                amount_cents=100,
                debit_account_id=account_id,
                credit_account_id=account_id,
                created_at=NOW,
            )

    def test_goal_by_date_needs_date(self):
        """Test that target_by_date goals require a date."""
        with pytest.raises(ValueError):
            Goal(
                id=uuid4(),
                ledger_id=uuid4(),
                category_id=uuid4(),
                goal_type=GoalType.TARGET_BY_DATE,
                target_amount_cents=10_000,
            )

    def test_context_current_month(self):
        """Test that the context derives the month from its business date."""
        ctx = LedgerContext(user_id="user-1", ledger_id=uuid4(), today=date(2024, 3, 15))
        assert ctx.current_month == date(2024, 3, 1)

    def test_recurring_template_is_due(self):
        """Test the due rule of a template."""
        template = RecurringTemplate(
            id=uuid4(),
            ledger_id=uuid4(),
            account_id=uuid4(),
            amount_cents=5000,
            direction=RecurringDirection.OUTFLOW,
            frequency=Frequency.MONTHLY,
            start_date=date(2024, 1, 1),
            next_date=date(2024, 3, 1),
            end_date=date(2024, 2, 28),
        )
        assert template.is_due(date(2024, 3, 15)) is False
        assert template.model_copy(update={"end_date": None}).is_due(date(2024, 3, 15)) is True
        assert template.model_copy(update={"end_date": None, "enabled": False}).is_due(date(2024, 3, 15)) is False

    def test_installment_plan_schedule_must_sum(self):
        """Test that a plan whose schedule does not add up is rejected."""
        plan_id = uuid4()
        items = [
            ScheduleItem(id=uuid4(), plan_id=plan_id, installment_number=i, due_date=date(2024, i, 1),
                         scheduled_amount_cents=333)
            for i in (1, 2, 3)
        ]
        with pytest.raises(ValueError):
            InstallmentPlan(
                id=plan_id,
                ledger_id=uuid4(),
                purchase_amount_cents=1000,
                number_of_installments=3,
                frequency=Frequency.MONTHLY,
                start_date=date(2024, 1, 1),
                credit_card_account_id=uuid4(),
                category_id=uuid4(),
                schedule=items,
            )

    def test_reconciliation_record_parses_stored_ids(self):
        """Test that ids stored as JSON strings come back as UUIDs."""
        txn_id = uuid4()
        record = ReconciliationRecord(
            id=uuid4(),
            ledger_id=uuid4(),
            account_id=uuid4(),
            statement_date=date(2024, 3, 31),
            statement_balance_cents=100,
            ledger_balance_cents=100,
            difference_cents=0,
            cleared_transaction_ids=[str(txn_id)],
            created_at=NOW,
        )
        assert record.cleared_transaction_ids == [txn_id]


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_POSTED,
            description="Posted 12.50: Groceries",
        )
        assert event.event_type == AuditEventType.TRANSACTION_POSTED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.MONEY_MOVED,
            description="Moved 5.00 between categories",
            details={"amount_cents": 500},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "money_moved"
        assert log_dict["details"]["amount_cents"] == 500

    def test_builder_assignment_warning(self):
        """Test that an overdrawn assignment is logged as a warning."""
        event = AuditEventBuilder.category_assigned(uuid4(), uuid4(), "2024-03-01", 1500, True)
        assert event.severity == AuditSeverity.WARNING
        assert event.details["ready_to_assign_negative"] is True

    def test_builder_sweep_carries_correlation(self):
        """Test AuditEventBuilder.recurring_sweep_completed."""
        correlation_id = uuid4()
        event = AuditEventBuilder.recurring_sweep_completed(uuid4(), 3, 1, 0, correlation_id)
        assert event.correlation_id == correlation_id
        assert event.details == {"created": 3, "skipped": 1, "failed": 0}

    def test_format_cents(self):
        """Test cents rendering in audit descriptions."""
        assert format_cents(1250) == "12.50"
        assert format_cents(-5) == "-0.05"
        assert format_cents(0) == "0.00"

    def test_logger_survives_broken_storage(self):
        """Test that an audit storage failure never propagates."""
        class BrokenStorage:
            def append_event(self, event):
                raise RuntimeError("disk full")

        logger = AuditLogger(BrokenStorage())
        event = AuditEventBuilder.account_deactivated(uuid4(), uuid4())
        assert logger.log(event) is False
        assert AuditLogger().log(event) is True


class TestBatchSummary:
    """Tests for batch result aggregation."""

    def test_counts_by_outcome(self):
        """Test created / skipped / failed counters."""
        item_id = uuid4()
        summary = BatchSummary(results=[
            ItemSucceeded(item_id=item_id, transaction_id=uuid4()),
            ItemSucceeded(item_id=item_id, transaction_id=uuid4()),
            ItemSkipped(item_id=uuid4(), reason="already done"),
            ItemFailed(item_id=uuid4(), error_kind="InvalidAccount", reason="inactive"),
        ])
        assert (summary.created, summary.skipped, summary.failed) == (2, 1, 1)
        assert len(summary.for_item(item_id)) == 2

    def test_results_are_tagged(self):
        """Test that results round-trip through their outcome tag."""
        summary = BatchSummary.model_validate({"results": [
            {"outcome": "skipped", "item_id": str(uuid4()), "reason": "not due"},
        ]})
        assert isinstance(summary.results[0], ItemSkipped)


class TestValidation:
    """Tests for the two-stage posting validator."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            schema_valid=False,
            semantic_valid=False,
            issues=[
                ValidationIssue(
                    field="amount_cents",
                    issue_type="ZeroOrNegativeAmount",
                    message="Amount must be greater than zero",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.is_valid is False

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=True,
            issues=[
                ValidationIssue(
                    field="description",
                    issue_type="InvalidRequest",
                    message="Long memo",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        raise_for_result(result)

    def test_schema_stage_maps_to_error_kinds(self):
        """Test that schema issues raise the matching domain error."""
        validator = PostingValidator()
        with pytest.raises(ZeroOrNegativeAmount):
            raise_for_result(validator.validate_schema(0, uuid4(), uuid4()))
        same = uuid4()
        with pytest.raises(InvalidAccount):
            raise_for_result(validator.validate_schema(100, same, same))

    def test_semantic_stage_skipped_after_schema_failure(self):
        """Test that stage 2 only runs when stage 1 passes."""
        result = PostingValidator().validate(
            ledger_id=uuid4(),
            amount_cents=-1,
            debit_account_id=uuid4(),
            credit_account_id=uuid4(),
            accounts={},
        )
        assert result.schema_valid is False
        assert result.semantic_valid is False
        assert len(result.issues) == 1


class TestEnums:
    """Tests for enum values stored in the database."""

    def test_account_type_values(self):
        """Test account type string values."""
        assert [t.value for t in AccountType] == ["asset", "liability", "equity", "income"]

    def test_frequency_values(self):
        """Test that every schedule frequency exists."""
        for value in ("weekly", "biweekly", "monthly", "quarterly", "yearly"):
            assert Frequency(value) is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
