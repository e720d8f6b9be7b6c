"""
Envelope Balance Calculator

Read-only. For a month M and every category:

    budgeted(M) = assignment row for (category, M)
    activity(M) = credits - debits on the category dated inside M
    balance(M)  = balance(M-1) + budgeted(M) + activity(M)

The rolling balance is evaluated in closed form as the sum of all
assignments for months <= M plus all activity dated on or before the
end of M, so a negative balance carries into the next month untouched.

Ready-to-Assign(M) = net income credited to income accounts up to the
end of M, minus every assignment for months <= M.

IMPORTANT: Mutating operations must call these methods only after
taking their row locks; a display read is never a precondition check.
"""

from collections import defaultdict
from datetime import date
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select

from envelope_ledger.engine.periods import month_end, month_start
from envelope_ledger.models.budget import BudgetTotals, EnvelopeLine, EnvelopeStatus
from envelope_ledger.models.ledger import AccountRole, AccountType
from envelope_ledger.services.storage.tables import (
    AccountRow,
    CategoryAssignmentRow,
    TransactionRow,
)


class EnvelopeCalculator:
    """Computes envelope views and Ready-to-Assign from postings and assignments."""

    # =========================================================================
    # RAW AGGREGATES
    # =========================================================================

    def _flows(
        self,
        session,
        ledger_id: UUID,
        account_ids: Optional[Iterable[UUID]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict[UUID, int]:
        """credits - debits per account over an optional date window."""
        ids = list(account_ids) if account_ids is not None else None
        if ids is not None and not ids:
            return {}

        result: dict[UUID, int] = defaultdict(int)
        for column, sign in (
            (TransactionRow.credit_account_id, 1),
            (TransactionRow.debit_account_id, -1),
        ):
            stmt = (
                select(column, func.sum(TransactionRow.amount_cents))
                .where(TransactionRow.ledger_id == ledger_id)
                .group_by(column)
            )
            if ids is not None:
                stmt = stmt.where(column.in_(ids))
            if start is not None:
                stmt = stmt.where(TransactionRow.date >= start)
            if end is not None:
                stmt = stmt.where(TransactionRow.date <= end)
            for account_id, total in session.execute(stmt):
                result[account_id] += sign * int(total)
        return dict(result)

    def _assigned(
        self,
        session,
        ledger_id: UUID,
        month: date,
        cumulative: bool,
        category_ids: Optional[Iterable[UUID]] = None,
    ) -> dict[UUID, int]:
        stmt = (
            select(CategoryAssignmentRow.category_id, func.sum(CategoryAssignmentRow.assigned_cents))
            .where(CategoryAssignmentRow.ledger_id == ledger_id)
            .group_by(CategoryAssignmentRow.category_id)
        )
        if cumulative:
            stmt = stmt.where(CategoryAssignmentRow.month <= month)
        else:
            stmt = stmt.where(CategoryAssignmentRow.month == month)
        if category_ids is not None:
            stmt = stmt.where(CategoryAssignmentRow.category_id.in_(list(category_ids)))
        return {category_id: int(total) for category_id, total in session.execute(stmt)}

    def _income_account_ids(self, session, ledger_id: UUID) -> list[UUID]:
        return list(session.scalars(
            select(AccountRow.id).where(
                AccountRow.ledger_id == ledger_id,
                AccountRow.type == AccountType.INCOME.value,
            )
        ))

    def _monthly_income_and_assignments(
        self,
        session,
        ledger_id: UUID,
    ) -> tuple[dict[date, int], dict[date, int]]:
        income: dict[date, int] = defaultdict(int)
        income_ids = self._income_account_ids(session, ledger_id)
        if income_ids:
            for column, sign in (
                (TransactionRow.credit_account_id, 1),
                (TransactionRow.debit_account_id, -1),
            ):
                stmt = (
                    select(TransactionRow.date, func.sum(TransactionRow.amount_cents))
                    .where(TransactionRow.ledger_id == ledger_id, column.in_(income_ids))
                    .group_by(TransactionRow.date)
                )
                for posted_on, total in session.execute(stmt):
                    income[month_start(posted_on)] += sign * int(total)

        assigned_stmt = (
            select(CategoryAssignmentRow.month, func.sum(CategoryAssignmentRow.assigned_cents))
            .where(CategoryAssignmentRow.ledger_id == ledger_id)
            .group_by(CategoryAssignmentRow.month)
        )
        assigned = {month: int(total) for month, total in session.execute(assigned_stmt)}
        return dict(income), assigned

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    def categories(self, session, ledger_id: UUID) -> list[AccountRow]:
        return list(session.scalars(
            select(AccountRow)
            .where(
                AccountRow.ledger_id == ledger_id,
                AccountRow.type == AccountType.EQUITY.value,
                AccountRow.role == AccountRole.STANDARD.value,
                AccountRow.is_group.is_(False),
                AccountRow.is_active.is_(True),
            )
            .order_by(AccountRow.name)
        ))

    def category_balance(self, session, ledger_id: UUID, category_id: UUID, month: date) -> int:
        """Rolling balance of one category at the end of `month`."""
        month = month_start(month)
        assigned = self._assigned(session, ledger_id, month, cumulative=True, category_ids=[category_id])
        flows = self._flows(session, ledger_id, [category_id], end=month_end(month))
        return assigned.get(category_id, 0) + flows.get(category_id, 0)

    def lifetime_balance(self, session, ledger_id: UUID, category_id: UUID) -> int:
        """Every assignment plus every posting, future months included."""
        assigned = session.scalar(
            select(func.coalesce(func.sum(CategoryAssignmentRow.assigned_cents), 0)).where(
                CategoryAssignmentRow.ledger_id == ledger_id,
                CategoryAssignmentRow.category_id == category_id,
            )
        )
        flows = self._flows(session, ledger_id, [category_id])
        return int(assigned) + flows.get(category_id, 0)

    def assigned_in_month(self, session, ledger_id: UUID, category_id: UUID, month: date) -> int:
        assigned = self._assigned(
            session, ledger_id, month_start(month), cumulative=False, category_ids=[category_id]
        )
        return assigned.get(category_id, 0)

    # =========================================================================
    # READY TO ASSIGN
    # =========================================================================

    def ready_to_assign(self, session, ledger_id: UUID, month: date) -> int:
        month = month_start(month)
        income_ids = self._income_account_ids(session, ledger_id)
        income = sum(self._flows(session, ledger_id, income_ids, end=month_end(month)).values())
        assigned = sum(self._assigned(session, ledger_id, month, cumulative=True).values())
        return income - assigned

    def available_to_assign(self, session, ledger_id: UUID, month: date) -> int:
        """
        Lowest Ready-to-Assign over `month` and every later month with data.

        An assignment in `month` lowers Ready-to-Assign of that month and
        of every month after it by the same amount, so this is the most
        that can be assigned without any month going negative.
        """
        month = month_start(month)
        income, assigned = self._monthly_income_and_assignments(session, ledger_id)
        checkpoints = {month} | {m for m in income if m > month} | {m for m in assigned if m > month}

        def at(checkpoint: date) -> int:
            return (
                sum(v for m, v in income.items() if m <= checkpoint)
                - sum(v for m, v in assigned.items() if m <= checkpoint)
            )

        return min(at(checkpoint) for checkpoint in checkpoints)

    # =========================================================================
    # VIEWS
    # =========================================================================

    def envelope_status(self, session, ledger_id: UUID, month: date) -> EnvelopeStatus:
        month = month_start(month)
        end = month_end(month)
        categories = self.categories(session, ledger_id)
        ids = [c.id for c in categories]

        budgeted = self._assigned(session, ledger_id, month, cumulative=False, category_ids=ids)
        assigned_to_date = self._assigned(session, ledger_id, month, cumulative=True, category_ids=ids)
        activity = self._flows(session, ledger_id, ids, start=month, end=end)
        flows_to_date = self._flows(session, ledger_id, ids, end=end)

        lines = [
            EnvelopeLine(
                category_id=c.id,
                category_name=c.name,
                group_id=c.parent_id,
                budgeted_cents=budgeted.get(c.id, 0),
                activity_cents=activity.get(c.id, 0),
                balance_cents=assigned_to_date.get(c.id, 0) + flows_to_date.get(c.id, 0),
            )
            for c in categories
        ]
        return EnvelopeStatus(
            month=month,
            categories=lines,
            ready_to_assign_cents=self.ready_to_assign(session, ledger_id, month),
        )

    def budget_totals(self, session, ledger_id: UUID, month: date) -> BudgetTotals:
        status = self.envelope_status(session, ledger_id, month)
        return BudgetTotals(
            month=status.month,
            budgeted_cents=sum(line.budgeted_cents for line in status.categories),
            activity_cents=sum(line.activity_cents for line in status.categories),
            balance_cents=sum(line.balance_cents for line in status.categories),
            ready_to_assign_cents=status.ready_to_assign_cents,
        )
