"""
Tests for concurrent calls against one ledger.

These run on a file-backed SQLite database so every thread gets its own
connection; the in-memory database shares a single connection and would
hide lost updates.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

from envelope_ledger.engine.errors import ReadyToAssignWouldGoNegative
from envelope_ledger.models.ledger import Frequency, RecurringDirection, TransactionSource
from envelope_ledger.services.storage import Database


ROUNDS = 10


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    db.create_schema()
    yield db
    db.drop_schema()
    db.dispose()


def _run_together(*calls):
    """Start every call at the same moment on its own thread and return their results."""
    barrier = threading.Barrier(len(calls))

    def run(call):
        barrier.wait()
        return call()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        futures = [pool.submit(run, call) for call in calls]
        return [f.result() for f in futures]


class TestConcurrentAllocation:
    """Tests for interleaved assignment changes on the same category."""

    def test_parallel_assigns_are_not_lost(self, orchestrator, ledger, receive_income):
        """Test that two writers assigning to one category both land."""
        receive_income(100_000)

        def assign_many():
            for _ in range(ROUNDS):
                orchestrator.assign(ledger.ctx, ledger.fun, 1_000)

        _run_together(assign_many, assign_many)

        status = orchestrator.get_envelope_status(ledger.ctx)
        assert status.line_for(ledger.fun).budgeted_cents == 2 * ROUNDS * 1_000
        assert status.ready_to_assign_cents == 100_000 - 2 * ROUNDS * 1_000

    def test_assign_and_move_interleaved(self, orchestrator, ledger, receive_income):
        """Test that a move racing an assignment keeps both effects."""
        receive_income(100_000)
        orchestrator.assign(ledger.ctx, ledger.fun, ROUNDS * 1_000)

        def assign_many():
            for _ in range(ROUNDS):
                orchestrator.assign(ledger.ctx, ledger.fun, 1_000)

        def move_many():
            for _ in range(ROUNDS):
                orchestrator.move_money(ledger.ctx, ledger.fun, ledger.groceries, 1_000)

        _run_together(assign_many, move_many)

        status = orchestrator.get_envelope_status(ledger.ctx)
        assert status.line_for(ledger.fun).balance_cents == ROUNDS * 1_000
        assert status.line_for(ledger.groceries).balance_cents == ROUNDS * 1_000
        assert status.ready_to_assign_cents == 100_000 - 2 * ROUNDS * 1_000

    def test_racing_assigns_cannot_overdraw(self, orchestrator, ledger, receive_income):
        """Test that Ready to Assign is checked under the lock, not before it."""
        receive_income(ROUNDS * 1_000)

        def assign_until_empty():
            landed = 0
            for _ in range(ROUNDS):
                try:
                    orchestrator.assign(ledger.ctx, ledger.fun, 1_000)
                    landed += 1
                except ReadyToAssignWouldGoNegative:
                    pass
            return landed

        landed = _run_together(assign_until_empty, assign_until_empty)

        assert sum(landed) == ROUNDS
        assert orchestrator.get_envelope_status(ledger.ctx).ready_to_assign_cents == 0


class TestConcurrentRecurring:
    """Tests for overlapping recurring sweeps."""

    def test_overlapping_sweeps_create_once(self, orchestrator, ledger):
        """Test that two sweeps at once materialize a due occurrence exactly once."""
        template = orchestrator.create_recurring_template(
            ledger.ctx, ledger.checking, 120_000, RecurringDirection.OUTFLOW,
            Frequency.MONTHLY, date(2024, 3, 1), "Rent", category_id=ledger.rent,
        )

        summaries = _run_together(
            lambda: orchestrator.materialize_due_recurring(ledger.ctx),
            lambda: orchestrator.materialize_due_recurring(ledger.ctx),
        )

        assert sum(s.created for s in summaries) == 1
        assert sum(s.failed for s in summaries) == 0

        recurring = [
            t for t in orchestrator.uncleared_transactions(ledger.ctx, ledger.checking)
            if t.source == TransactionSource.RECURRING
        ]
        assert len(recurring) == 1
        assert orchestrator.account_balance(ledger.ctx, ledger.checking) == -120_000
        assert orchestrator.get_recurring_template(ledger.ctx, template.id).next_date == date(2024, 4, 1)
