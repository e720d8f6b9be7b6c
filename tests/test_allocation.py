"""
Tests for assigning, moving and covering overspending.
"""

import pytest
from datetime import date

from envelope_ledger.engine.errors import (
    CategoryNotOverspent,
    InsufficientCategoryBalance,
    InvalidAccount,
    InvalidRequest,
    ReadyToAssignWouldGoNegative,
    ZeroOrNegativeAmount,
)
from envelope_ledger.models.audit import AuditEventType, AuditSeverity
from envelope_ledger.models.budget import CoverPolicy
from envelope_ledger.orchestrator import BudgetOrchestrator


MARCH = date(2024, 3, 1)
APRIL = date(2024, 4, 1)


class TestAssign:
    """Tests for assigning money from Ready to Assign."""

    def test_assign_updates_budgeted_and_rta(self, orchestrator, ledger, receive_income):
        """Test a plain assignment."""
        receive_income(100_000, date(2024, 3, 1))
        result = orchestrator.assign(ledger.ctx, ledger.groceries, 40_000)

        assert result.month == MARCH
        assert result.assigned_cents == 40_000
        assert result.balance_cents == 40_000
        assert result.ready_to_assign_cents == 60_000
        assert result.ready_to_assign_warning is False

    def test_assignments_accumulate(self, orchestrator, ledger, receive_income):
        """Test that repeated assigns add to the same month row."""
        receive_income(100_000, date(2024, 3, 1))
        orchestrator.assign(ledger.ctx, ledger.groceries, 10_000)
        result = orchestrator.assign(ledger.ctx, ledger.groceries, 5_000)
        assert result.assigned_cents == 15_000

    def test_negative_delta_returns_money(self, orchestrator, ledger, receive_income):
        """Test un-assigning back to Ready to Assign."""
        receive_income(100_000, date(2024, 3, 1))
        orchestrator.assign(ledger.ctx, ledger.groceries, 40_000)
        result = orchestrator.assign(ledger.ctx, ledger.groceries, -15_000)
        assert result.assigned_cents == 25_000
        assert result.ready_to_assign_cents == 75_000

    def test_rejects_overassignment(self, orchestrator, ledger, receive_income):
        """Test that RTA cannot go negative by default and nothing changes."""
        receive_income(10_000, date(2024, 3, 1))
        with pytest.raises(ReadyToAssignWouldGoNegative):
            orchestrator.assign(ledger.ctx, ledger.groceries, 10_001)

        status = orchestrator.get_envelope_status(ledger.ctx, MARCH)
        assert status.ready_to_assign_cents == 10_000
        assert status.line_for(ledger.groceries).budgeted_cents == 0

    def test_exact_amount_is_allowed(self, orchestrator, ledger, receive_income):
        """Test that RTA may reach exactly zero."""
        receive_income(10_000, date(2024, 3, 1))
        result = orchestrator.assign(ledger.ctx, ledger.groceries, 10_000)
        assert result.ready_to_assign_cents == 0

    def test_overdraft_flag_allows_and_warns(self, orchestrator, ledger, receive_income, audit_storage):
        """Test that an explicit overdraft is allowed but flagged."""
        receive_income(10_000, date(2024, 3, 1))
        result = orchestrator.assign(ledger.ctx, ledger.groceries, 15_000, allow_overdraft=True)

        assert result.ready_to_assign_warning is True
        assert result.ready_to_assign_cents == -5_000
        assigned = [
            e for e in audit_storage.get_events_by_entity("category", ledger.groceries)
            if e.event_type == AuditEventType.CATEGORY_ASSIGNED
        ]
        assert assigned[-1].severity == AuditSeverity.WARNING

    def test_overdraft_policy_from_settings(self, monkeypatch, database, audit_storage, ledger, receive_income):
        """Test that BUDGET_ALLOW_NEGATIVE_READY_TO_ASSIGN lifts the block."""
        from envelope_ledger.audit import AuditLogger
        from envelope_ledger.config import get_settings

        receive_income(10_000, date(2024, 3, 1))
        monkeypatch.setenv("BUDGET_ALLOW_NEGATIVE_READY_TO_ASSIGN", "true")
        get_settings.cache_clear()
        permissive = BudgetOrchestrator(database, AuditLogger(audit_storage))

        result = permissive.assign(ledger.ctx, ledger.groceries, 25_000)
        assert result.ready_to_assign_warning is True
        assert result.ready_to_assign_cents == -15_000

    def test_later_month_commitments_are_protected(self, orchestrator, ledger, receive_income):
        """Test that March cannot spend money already assigned in April."""
        receive_income(1_000, date(2024, 3, 1))
        orchestrator.assign(ledger.ctx, ledger.rent, 1_000, APRIL)

        with pytest.raises(ReadyToAssignWouldGoNegative):
            orchestrator.assign(ledger.ctx, ledger.groceries, 500, MARCH)

    def test_next_month_income_does_not_fund_this_month(self, orchestrator, ledger, receive_income):
        """Test that April income cannot be assigned in March."""
        receive_income(50_000, date(2024, 4, 1))
        with pytest.raises(ReadyToAssignWouldGoNegative):
            orchestrator.assign(ledger.ctx, ledger.groceries, 1, MARCH)
        assert orchestrator.assign(ledger.ctx, ledger.groceries, 50_000, APRIL).ready_to_assign_cents == 0

    def test_month_is_normalized(self, orchestrator, ledger, receive_income):
        """Test that any day of the month addresses that month."""
        receive_income(10_000, date(2024, 3, 1))
        result = orchestrator.assign(ledger.ctx, ledger.groceries, 1_000, date(2024, 3, 27))
        assert result.month == MARCH

    def test_rejects_zero_and_non_int(self, orchestrator, ledger):
        """Test delta validation."""
        with pytest.raises(ZeroOrNegativeAmount):
            orchestrator.assign(ledger.ctx, ledger.groceries, 0)
        with pytest.raises(ZeroOrNegativeAmount):
            orchestrator.assign(ledger.ctx, ledger.groceries, 10.0)

    def test_rejects_non_category(self, orchestrator, ledger, receive_income):
        """Test that only budget categories can receive assignments."""
        receive_income(10_000, date(2024, 3, 1))
        with pytest.raises(InvalidAccount):
            orchestrator.assign(ledger.ctx, ledger.checking, 1_000)
        with pytest.raises(InvalidAccount):
            orchestrator.assign(ledger.ctx, ledger.adjustment, 1_000)


class TestMoveMoney:
    """Tests for moving budget between categories."""

    def test_move_bounds(self, orchestrator, ledger, receive_income):
        """Test that a move can take the whole balance but not a cent more."""
        receive_income(10_000, date(2024, 3, 1))
        orchestrator.assign(ledger.ctx, ledger.fun, 400)

        with pytest.raises(InsufficientCategoryBalance):
            orchestrator.move_money(ledger.ctx, ledger.fun, ledger.groceries, 401)

        result = orchestrator.move_money(ledger.ctx, ledger.fun, ledger.groceries, 400)
        assert result.from_balance_cents == 0
        assert result.to_balance_cents == 400

    def test_move_keeps_ready_to_assign(self, orchestrator, ledger, receive_income):
        """Test that moving never changes Ready to Assign."""
        receive_income(10_000, date(2024, 3, 1))
        orchestrator.assign(ledger.ctx, ledger.fun, 4_000)
        before = orchestrator.get_envelope_status(ledger.ctx).ready_to_assign_cents

        orchestrator.move_money(ledger.ctx, ledger.fun, ledger.rent, 1_500)

        status = orchestrator.get_envelope_status(ledger.ctx)
        assert status.ready_to_assign_cents == before
        assert status.line_for(ledger.fun).budgeted_cents == 2_500
        assert status.line_for(ledger.rent).budgeted_cents == 1_500

    def test_move_counts_spending(self, orchestrator, ledger, receive_income, spend):
        """Test that the available balance is net of activity."""
        receive_income(10_000, date(2024, 3, 1))
        orchestrator.assign(ledger.ctx, ledger.fun, 4_000)
        spend(ledger.fun, 3_000)

        with pytest.raises(InsufficientCategoryBalance):
            orchestrator.move_money(ledger.ctx, ledger.fun, ledger.rent, 1_001)

    def test_move_rejects_same_category(self, orchestrator, ledger):
        """Test that source and destination must differ."""
        with pytest.raises(InvalidRequest):
            orchestrator.move_money(ledger.ctx, ledger.fun, ledger.fun, 100)

    @pytest.mark.parametrize("amount", [0, -100])
    def test_move_rejects_non_positive(self, orchestrator, ledger, amount):
        """Test amount validation."""
        with pytest.raises(ZeroOrNegativeAmount):
            orchestrator.move_money(ledger.ctx, ledger.fun, ledger.rent, amount)


class TestCoverOverspending:
    """Tests for covering overspent categories."""

    def _overspend_groceries(self, orchestrator, ledger, receive_income, spend):
        receive_income(100_000, date(2024, 3, 1))
        orchestrator.assign(ledger.ctx, ledger.groceries, 10_000)
        orchestrator.assign(ledger.ctx, ledger.fun, 20_000)
        spend(ledger.groceries, 13_000)

    def test_cover_full_overspending(self, orchestrator, ledger, receive_income, spend):
        """Test that the default amount is exactly the overspent part."""
        self._overspend_groceries(orchestrator, ledger, receive_income, spend)

        result = orchestrator.cover_overspending(ledger.ctx, ledger.groceries, ledger.fun)
        assert result.covered_cents == 3_000
        assert result.remaining_balance_cents == 0
        assert result.move.from_balance_cents == 17_000
        assert orchestrator.overspent_categories(ledger.ctx) == []

    def test_cover_partial_amount(self, orchestrator, ledger, receive_income, spend):
        """Test covering only part of the overspending."""
        self._overspend_groceries(orchestrator, ledger, receive_income, spend)

        result = orchestrator.cover_overspending(ledger.ctx, ledger.groceries, ledger.fun, amount_cents=1_000)
        assert result.covered_cents == 1_000
        assert result.remaining_balance_cents == -2_000

    def test_cover_needs_overspending(self, orchestrator, ledger, receive_income):
        """Test that a funded category cannot be covered."""
        receive_income(10_000, date(2024, 3, 1))
        orchestrator.assign(ledger.ctx, ledger.fun, 1_000)
        with pytest.raises(CategoryNotOverspent):
            orchestrator.cover_overspending(ledger.ctx, ledger.groceries, ledger.fun)

    def test_cover_limited_by_source(self, orchestrator, ledger, receive_income, spend):
        """Test that the source must hold enough."""
        receive_income(100_000, date(2024, 3, 1))
        orchestrator.assign(ledger.ctx, ledger.fun, 1_000)
        spend(ledger.groceries, 5_000)
        with pytest.raises(InsufficientCategoryBalance):
            orchestrator.cover_overspending(ledger.ctx, ledger.groceries, ledger.fun)

    def test_cover_requires_source(self, orchestrator, ledger, receive_income, spend):
        """Test that the move policy needs a source category."""
        self._overspend_groceries(orchestrator, ledger, receive_income, spend)
        with pytest.raises(InvalidRequest):
            orchestrator.cover_overspending(ledger.ctx, ledger.groceries)

    def test_defer_changes_nothing(self, orchestrator, ledger, receive_income, spend):
        """Test that deferring leaves the negative balance to roll over."""
        self._overspend_groceries(orchestrator, ledger, receive_income, spend)

        result = orchestrator.cover_overspending(ledger.ctx, ledger.groceries, policy=CoverPolicy.DEFER)
        assert result.covered_cents == 0
        assert result.move is None
        assert result.remaining_balance_cents == -3_000

        april = orchestrator.get_envelope_status(ledger.ctx, APRIL).line_for(ledger.groceries)
        assert april.balance_cents == -3_000
