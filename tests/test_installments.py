"""
Tests for installment plans on credit cards.
"""

import pytest
from datetime import date
from uuid import uuid4

from envelope_ledger.engine.errors import (
    AlreadyProcessed,
    InvalidAccount,
    InvalidRequest,
    ScheduleNotFound,
    ZeroOrNegativeAmount,
)
from envelope_ledger.models.audit import AuditEventType, AuditSeverity
from envelope_ledger.models.ledger import Frequency, PlanStatus, ScheduleStatus, TransactionSource


@pytest.fixture
def tv_plan(orchestrator, ledger):
    """A 1000-cent purchase on the Visa card in three monthly installments."""
    return orchestrator.create_installment_plan(
        ledger.ctx, ledger.card, ledger.fun, 1_000, 3, Frequency.MONTHLY, date(2024, 3, 15), "TV",
    )


def _line_by_name(status, name):
    for line in status.categories:
        if line.category_name == name:
            return line
    return None


class TestCreatePlan:
    """Tests for plan creation."""

    def test_schedule_splits_purchase(self, tv_plan):
        """Test that the stored schedule sums to the purchase."""
        assert [i.scheduled_amount_cents for i in tv_plan.schedule] == [333, 333, 334]
        assert [i.due_date for i in tv_plan.schedule] == [
            date(2024, 3, 15), date(2024, 4, 15), date(2024, 5, 15),
        ]
        assert all(i.status == ScheduleStatus.SCHEDULED for i in tv_plan.schedule)
        assert tv_plan.status == PlanStatus.ACTIVE

    def test_plan_can_be_read_back(self, orchestrator, ledger, tv_plan):
        """Test get_installment_plan."""
        stored = orchestrator.get_installment_plan(ledger.ctx, tv_plan.id)
        assert stored.purchase_amount_cents == 1_000
        assert len(stored.schedule) == 3

    def test_card_must_be_liability(self, orchestrator, ledger):
        """Test that installments need a credit card account."""
        with pytest.raises(InvalidAccount):
            orchestrator.create_installment_plan(
                ledger.ctx, ledger.checking, ledger.fun, 1_000, 3, Frequency.MONTHLY, date(2024, 3, 15),
            )

    @pytest.mark.parametrize("n", [1, 61])
    def test_installment_count_limits(self, orchestrator, ledger, n):
        """Test the 2..max_installments range."""
        with pytest.raises(InvalidRequest):
            orchestrator.create_installment_plan(
                ledger.ctx, ledger.card, ledger.fun, 100_000, n, Frequency.MONTHLY, date(2024, 3, 15),
            )

    def test_purchase_too_small(self, orchestrator, ledger):
        """Test that every installment must be at least one cent."""
        with pytest.raises(InvalidRequest):
            orchestrator.create_installment_plan(
                ledger.ctx, ledger.card, ledger.fun, 2, 3, Frequency.MONTHLY, date(2024, 3, 15),
            )

    def test_unknown_plan(self, orchestrator, ledger):
        """Test ScheduleNotFound for an unknown plan."""
        with pytest.raises(ScheduleNotFound):
            orchestrator.get_installment_plan(ledger.ctx, uuid4())

    def test_generate_schedule_respects_limit(self, orchestrator):
        """Test the pure generator's upper bound."""
        with pytest.raises(InvalidRequest):
            orchestrator.generate_installment_schedule(100_000, 61, Frequency.MONTHLY, date(2024, 3, 1))
        lines = orchestrator.generate_installment_schedule(1_000, 3, Frequency.WEEKLY, date(2024, 3, 1))
        assert [l.amount_cents for l in lines] == [333, 333, 334]


class TestProcessInstallment:
    """Tests for processing and skipping single installments."""

    def test_process_moves_budget_to_card_payment(self, orchestrator, ledger, tv_plan):
        """Test that an installment moves its share into the card payment category."""
        first = tv_plan.schedule[0]
        item = orchestrator.process_installment(ledger.ctx, first.id)

        assert item.status == ScheduleStatus.PROCESSED
        assert item.processed_date == date(2024, 3, 15)
        assert item.transaction_id is not None

        status = orchestrator.get_envelope_status(ledger.ctx)
        assert status.line_for(ledger.fun).activity_cents == -333
        payment_line = _line_by_name(status, "CC Payment: Visa")
        assert payment_line is not None
        assert payment_line.balance_cents == 333

    def test_payment_category_is_reused(self, orchestrator, ledger, tv_plan):
        """Test that later installments land in the same payment category."""
        orchestrator.process_installment(ledger.ctx, tv_plan.schedule[0].id)
        orchestrator.process_installment(ledger.ctx, tv_plan.schedule[1].id, date(2024, 3, 20))

        status = orchestrator.get_envelope_status(ledger.ctx)
        payment_lines = [l for l in status.categories if l.category_name.startswith("CC Payment")]
        assert len(payment_lines) == 1
        assert payment_lines[0].balance_cents == 666

    def test_process_twice_rejected(self, orchestrator, ledger, tv_plan):
        """Test that an installment can only be processed once."""
        orchestrator.process_installment(ledger.ctx, tv_plan.schedule[0].id)
        with pytest.raises(AlreadyProcessed):
            orchestrator.process_installment(ledger.ctx, tv_plan.schedule[0].id)

    def test_skip_then_process_rejected(self, orchestrator, ledger, tv_plan):
        """Test that a skipped installment is no longer open."""
        skipped = orchestrator.skip_installment(ledger.ctx, tv_plan.schedule[0].id)
        assert skipped.status == ScheduleStatus.SKIPPED
        with pytest.raises(AlreadyProcessed):
            orchestrator.process_installment(ledger.ctx, tv_plan.schedule[0].id)

    def test_plan_completes(self, orchestrator, ledger, tv_plan):
        """Test that the plan completes when no installment is left open."""
        orchestrator.process_installment(ledger.ctx, tv_plan.schedule[0].id)
        orchestrator.skip_installment(ledger.ctx, tv_plan.schedule[1].id)
        orchestrator.process_installment(ledger.ctx, tv_plan.schedule[2].id)

        plan = orchestrator.get_installment_plan(ledger.ctx, tv_plan.id)
        assert plan.status == PlanStatus.COMPLETED
        assert plan.completed_installments == 2

    def test_unknown_item(self, orchestrator, ledger):
        """Test ScheduleNotFound for an unknown installment."""
        with pytest.raises(ScheduleNotFound):
            orchestrator.process_installment(ledger.ctx, uuid4())


class TestProcessDueInstallments:
    """Tests for the batch run over due installments."""

    def test_only_due_items_are_processed(self, orchestrator, ledger, tv_plan):
        """Test that installments due later are left alone."""
        summary = orchestrator.process_due_installments(ledger.ctx)
        assert summary.created == 1
        assert summary.results[0].item_id == tv_plan.schedule[0].id

        later = orchestrator.process_due_installments(ledger.ctx, date(2024, 5, 31))
        assert later.created == 2

        plan = orchestrator.get_installment_plan(ledger.ctx, tv_plan.id)
        assert plan.status == PlanStatus.COMPLETED

    def test_batch_is_idempotent(self, orchestrator, ledger, tv_plan):
        """Test that a second run finds nothing left to do."""
        orchestrator.process_due_installments(ledger.ctx, date(2024, 5, 31))
        assert orchestrator.process_due_installments(ledger.ctx, date(2024, 5, 31)).results == []

    def test_failures_are_per_item(self, orchestrator, ledger, tv_plan):
        """Test that each failing installment is reported on its own."""
        orchestrator.deactivate_account(ledger.ctx, ledger.fun)

        summary = orchestrator.process_due_installments(ledger.ctx, date(2024, 4, 30))
        assert summary.failed == 2
        assert {r.error_kind for r in summary.results} == {"InvalidAccount"}

        plan = orchestrator.get_installment_plan(ledger.ctx, tv_plan.id)
        assert all(i.status == ScheduleStatus.SCHEDULED for i in plan.schedule)


class TestPayCreditCard:
    """Tests for paying a card out of its payment category."""

    def test_payment_spends_payment_category(self, orchestrator, ledger, tv_plan, receive_income, spend):
        """Test that a payment lowers the card, the bank and the payment category together."""
        receive_income(100_000)
        spend(ledger.groceries, 5_000, account_id=ledger.card)
        orchestrator.process_installment(ledger.ctx, tv_plan.schedule[0].id)

        result = orchestrator.pay_credit_card(ledger.ctx, ledger.card, ledger.checking, 333)

        assert result.payment_category_balance_cents == 0
        assert orchestrator.account_balance(ledger.ctx, ledger.card) == 5_000 - 333
        assert orchestrator.account_balance(ledger.ctx, ledger.checking) == 100_000 - 333

        status = orchestrator.get_envelope_status(ledger.ctx)
        payment_line = _line_by_name(status, "CC Payment: Visa")
        assert payment_line.category_id == result.payment_category_id
        assert payment_line.balance_cents == 0
        assert payment_line.activity_cents == 0
        assert status.ready_to_assign_cents == 100_000

    def test_overpayment_overspends_category(self, orchestrator, ledger, tv_plan, audit_storage):
        """Test that paying more than was set aside leaves the category overspent."""
        orchestrator.process_installment(ledger.ctx, tv_plan.schedule[0].id)
        result = orchestrator.pay_credit_card(ledger.ctx, ledger.card, ledger.checking, 500, memo="March bill")

        assert result.payment_category_balance_cents == -167
        overspent = orchestrator.overspent_categories(ledger.ctx)
        assert result.payment_category_id in {line.category_id for line in overspent}

        [event] = [
            e for e in audit_storage.get_events_by_entity("account", ledger.card)
            if e.event_type == AuditEventType.CREDIT_CARD_PAID
        ]
        assert event.severity == AuditSeverity.WARNING
        assert event.details["amount_cents"] == 500

    def test_payment_creates_missing_category(self, orchestrator, ledger):
        """Test that the first payment of a card creates its payment category."""
        result = orchestrator.pay_credit_card(ledger.ctx, ledger.card, ledger.checking, 1_000)
        line = orchestrator.get_envelope_status(ledger.ctx).line_for(result.payment_category_id)
        assert line.category_name == "CC Payment: Visa"
        assert line.balance_cents == -1_000

    def test_payment_memo_and_date(self, orchestrator, ledger):
        """Test that both postings carry the memo and the payment date."""
        result = orchestrator.pay_credit_card(
            ledger.ctx, ledger.card, ledger.checking, 1_000, date(2024, 3, 20), "Autopay",
        )
        open_items = orchestrator.uncleared_transactions(ledger.ctx, ledger.checking)
        [payment] = [t for t in open_items if t.id == result.payment_transaction_id]
        assert payment.description == "Autopay"
        assert payment.date == date(2024, 3, 20)
        assert payment.source == TransactionSource.CARD_PAYMENT

    def test_accounts_must_be_card_and_bank(self, orchestrator, ledger):
        """Test that the legs cannot be swapped or pointed at categories."""
        with pytest.raises(InvalidAccount):
            orchestrator.pay_credit_card(ledger.ctx, ledger.checking, ledger.card, 1_000)
        with pytest.raises(InvalidAccount):
            orchestrator.pay_credit_card(ledger.ctx, ledger.card, ledger.fun, 1_000)

    def test_invalid_amount_leaves_nothing_behind(self, orchestrator, ledger):
        """Test that a rejected payment does not create the payment category."""
        with pytest.raises(ZeroOrNegativeAmount):
            orchestrator.pay_credit_card(ledger.ctx, ledger.card, ledger.checking, 0)
        status = orchestrator.get_envelope_status(ledger.ctx)
        assert _line_by_name(status, "CC Payment: Visa") is None
