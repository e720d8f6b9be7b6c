"""
Tests for reconciling accounts against bank statements.
"""

import pytest
from datetime import date
from uuid import uuid4

from envelope_ledger.engine.errors import InvalidAccount, InvalidRequest, TransactionNotFound
from envelope_ledger.models.audit import AuditEventType


STATEMENT_DATE = date(2024, 3, 31)


class TestReconcile:
    """Tests for closing the gap between ledger and statement."""

    def test_asset_account_adjusted_down(self, orchestrator, ledger, receive_income, spend):
        """Test that a lower statement balance posts a downward adjustment."""
        paycheck = receive_income(100_000)
        purchase = spend(ledger.groceries, 2_000)

        result = orchestrator.reconcile_account(
            ledger.ctx, ledger.checking, STATEMENT_DATE, 97_500, [paycheck.id, purchase.id]
        )

        assert result.ledger_balance_before_cents == 98_000
        assert result.difference_cents == -500
        assert result.adjustment_transaction_id is not None
        assert result.cleared_count == 2
        assert result.replayed is False
        assert orchestrator.account_balance(ledger.ctx, ledger.checking) == 97_500

    def test_asset_account_adjusted_up(self, orchestrator, ledger, receive_income):
        """Test that a higher statement balance posts an upward adjustment."""
        paycheck = receive_income(100_000)
        result = orchestrator.reconcile_account(
            ledger.ctx, ledger.checking, STATEMENT_DATE, 100_250, [paycheck.id]
        )
        assert result.difference_cents == 250
        assert orchestrator.account_balance(ledger.ctx, ledger.checking) == 100_250

    def test_liability_account_adjusted(self, orchestrator, ledger, spend):
        """Test that a card statement showing more debt raises the debt."""
        purchase = spend(ledger.fun, 7_500, account_id=ledger.card)
        result = orchestrator.reconcile_account(
            ledger.ctx, ledger.card, STATEMENT_DATE, 8_000, [purchase.id]
        )
        assert result.difference_cents == 500
        assert orchestrator.account_balance(ledger.ctx, ledger.card) == 8_000

    def test_matching_statement_needs_no_adjustment(self, orchestrator, ledger, receive_income):
        """Test that a zero difference posts nothing."""
        paycheck = receive_income(50_000)
        result = orchestrator.reconcile_account(
            ledger.ctx, ledger.checking, STATEMENT_DATE, 50_000, [paycheck.id]
        )
        assert result.difference_cents == 0
        assert result.adjustment_transaction_id is None

    def test_cleared_transactions_become_reconciled(self, orchestrator, ledger, receive_income):
        """Test that reconciled transactions leave the open list."""
        paycheck = receive_income(50_000)
        orchestrator.reconcile_account(ledger.ctx, ledger.checking, STATEMENT_DATE, 50_000, [paycheck.id])
        assert orchestrator.uncleared_transactions(ledger.ctx, ledger.checking) == []

    def test_adjustment_is_audited(self, orchestrator, ledger, receive_income, audit_storage):
        """Test that a reconciliation leaves an account_reconciled event."""
        paycheck = receive_income(50_000)
        orchestrator.reconcile_account(ledger.ctx, ledger.checking, STATEMENT_DATE, 49_000, [paycheck.id])

        events = audit_storage.get_events_by_entity("account", ledger.checking)
        reconciled = [e for e in events if e.event_type == AuditEventType.ACCOUNT_RECONCILED]
        assert len(reconciled) == 1
        assert reconciled[0].details["difference_cents"] == -1_000


class TestReconcileRetries:
    """Tests for repeating a reconciliation."""

    def test_identical_retry_is_replayed(self, orchestrator, ledger, receive_income):
        """Test that the same inputs return the stored record and post nothing new."""
        paycheck = receive_income(100_000)
        first = orchestrator.reconcile_account(
            ledger.ctx, ledger.checking, STATEMENT_DATE, 99_000, [paycheck.id]
        )
        second = orchestrator.reconcile_account(
            ledger.ctx, ledger.checking, STATEMENT_DATE, 99_000, [paycheck.id]
        )

        assert second.replayed is True
        assert second.reconciliation_id == first.reconciliation_id
        assert second.adjustment_transaction_id == first.adjustment_transaction_id
        assert orchestrator.account_balance(ledger.ctx, ledger.checking) == 99_000
        assert len(orchestrator.reconciliation_history(ledger.ctx, ledger.checking)) == 1

    def test_different_inputs_make_new_attempt(self, orchestrator, ledger, receive_income):
        """Test that a corrected statement creates a second record."""
        paycheck = receive_income(100_000)
        first = orchestrator.reconcile_account(
            ledger.ctx, ledger.checking, STATEMENT_DATE, 99_000, [paycheck.id]
        )
        second = orchestrator.reconcile_account(
            ledger.ctx, ledger.checking, STATEMENT_DATE, 98_500, [paycheck.id]
        )

        assert second.replayed is False
        assert second.reconciliation_id != first.reconciliation_id
        assert second.ledger_balance_before_cents == 99_000
        assert second.difference_cents == -500
        history = orchestrator.reconciliation_history(ledger.ctx, ledger.checking)
        assert {r.id for r in history} == {first.reconciliation_id, second.reconciliation_id}


class TestReconcileValidation:
    """Tests for rejected reconciliations."""

    def test_transaction_of_other_account(self, orchestrator, ledger, spend):
        """Test that only the account's own transactions can be cleared."""
        card_purchase = spend(ledger.fun, 1_000, account_id=ledger.card)
        with pytest.raises(TransactionNotFound):
            orchestrator.reconcile_account(
                ledger.ctx, ledger.checking, STATEMENT_DATE, 0, [card_purchase.id]
            )

    def test_unknown_transaction(self, orchestrator, ledger):
        """Test that unknown transaction ids are rejected and nothing is stored."""
        with pytest.raises(TransactionNotFound):
            orchestrator.reconcile_account(ledger.ctx, ledger.checking, STATEMENT_DATE, 0, [uuid4()])
        assert orchestrator.reconciliation_history(ledger.ctx, ledger.checking) == []

    def test_malformed_transaction_id(self, orchestrator, ledger):
        """Test that an id that is not a UUID is reported as an unknown transaction."""
        with pytest.raises(TransactionNotFound):
            orchestrator.reconcile_account(ledger.ctx, ledger.checking, STATEMENT_DATE, 0, ["not-a-uuid"])
        assert orchestrator.reconciliation_history(ledger.ctx, ledger.checking) == []

    def test_string_ids_are_accepted(self, orchestrator, ledger, receive_income):
        """Test that ids passed as strings clear the same transactions."""
        paycheck = receive_income(50_000)
        result = orchestrator.reconcile_account(
            ledger.ctx, ledger.checking, STATEMENT_DATE, 50_000, [str(paycheck.id).upper()]
        )
        assert result.cleared_count == 1
        assert orchestrator.uncleared_transactions(ledger.ctx, ledger.checking) == []

    def test_categories_cannot_be_reconciled(self, orchestrator, ledger):
        """Test that only asset and liability accounts have statements."""
        with pytest.raises(InvalidAccount):
            orchestrator.reconcile_account(ledger.ctx, ledger.groceries, STATEMENT_DATE, 0, [])

    def test_statement_balance_must_be_cents(self, orchestrator, ledger):
        """Test that a float statement balance is rejected."""
        with pytest.raises(InvalidRequest):
            orchestrator.reconcile_account(ledger.ctx, ledger.checking, STATEMENT_DATE, 100.5, [])
