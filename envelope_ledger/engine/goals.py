"""
Goal Funding Engine

Suggests how much to assign to each goal-carrying category this month:

- monthly_funding: target - assigned this month
- target_balance:  target - balance this month
- target_by_date:  (target - balance) spread evenly over the months left,
                   floor per month, the final month takes the remainder

Suggestions never add up to more than what can be assigned. When money
is short the most urgent goals come first: target_by_date (nearest
date first), then monthly_funding, then target_balance.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select

from envelope_ledger.engine.accounts import AccountManager
from envelope_ledger.engine.allocation import AllocationEngine
from envelope_ledger.engine.envelopes import EnvelopeCalculator
from envelope_ledger.engine.errors import GoalNotFound, InvalidRequest, ZeroOrNegativeAmount
from envelope_ledger.engine.periods import add_periods, months_between
from envelope_ledger.models.audit import format_cents
from envelope_ledger.models.budget import AssignmentResult, FundingSuggestion
from envelope_ledger.models.ledger import AccountRole, Frequency, GoalType, LedgerContext
from envelope_ledger.services.storage import lock_rows
from envelope_ledger.services.storage.tables import AccountRow, GoalRow


logger = structlog.get_logger(__name__)

_URGENCY = {
    GoalType.TARGET_BY_DATE.value: 0,
    GoalType.MONTHLY_FUNDING.value: 1,
    GoalType.TARGET_BALANCE.value: 2,
}


def effective_target_date(goal: GoalRow, today: date) -> Optional[date]:
    """
    Target date of a goal as of today.

    A repeating goal whose date has passed rolls forward by whole
    periods, always counted from the stored date.
    """
    if goal.target_date is None or goal.repeat_frequency is None:
        return goal.target_date
    frequency = Frequency(goal.repeat_frequency)
    periods = 0
    rolled = goal.target_date
    while rolled < today:
        periods += 1
        rolled = add_periods(goal.target_date, frequency, periods)
    return rolled


class GoalEngine:
    def __init__(
        self,
        accounts: AccountManager,
        calculator: EnvelopeCalculator,
        allocation: AllocationEngine,
    ):
        self._accounts = accounts
        self._calculator = calculator
        self._allocation = allocation

    # =========================================================================
    # GOAL RECORDS
    # =========================================================================

    def set_goal(
        self,
        session,
        ledger_id: UUID,
        category_id: UUID,
        goal_type: GoalType,
        target_amount_cents: int,
        target_date: Optional[date] = None,
        repeat_frequency: Optional[Frequency] = None,
    ) -> GoalRow:
        """Create or replace the goal of a category."""
        self._accounts.get_category(session, ledger_id, category_id)
        if isinstance(target_amount_cents, bool) or not isinstance(target_amount_cents, int) \
                or target_amount_cents <= 0:
            raise ZeroOrNegativeAmount("Goal target must be a positive number of cents")
        if goal_type == GoalType.TARGET_BY_DATE and target_date is None:
            raise InvalidRequest("target_by_date goals require a target date")
        if repeat_frequency is not None and goal_type != GoalType.TARGET_BY_DATE:
            raise InvalidRequest("Only target_by_date goals can repeat")

        goal = session.scalars(select(GoalRow).where(GoalRow.category_id == category_id)).first()
        if goal is None:
            goal = GoalRow(ledger_id=ledger_id, category_id=category_id)
            session.add(goal)
        goal.goal_type = goal_type.value
        goal.target_amount_cents = target_amount_cents
        goal.target_date = target_date
        goal.repeat_frequency = repeat_frequency.value if repeat_frequency else None
        session.flush()
        return goal

    def get_goal(self, session, ledger_id: UUID, category_id: UUID) -> GoalRow:
        goal = session.scalars(
            select(GoalRow).where(
                GoalRow.ledger_id == ledger_id,
                GoalRow.category_id == category_id,
            )
        ).first()
        if goal is None:
            raise GoalNotFound("Category has no goal", category_id=category_id)
        return goal

    def delete_goal(self, session, ledger_id: UUID, category_id: UUID) -> None:
        session.delete(self.get_goal(session, ledger_id, category_id))
        session.flush()

    def goals(self, session, ledger_id: UUID) -> list[GoalRow]:
        return list(session.scalars(
            select(GoalRow)
            .join(AccountRow, AccountRow.id == GoalRow.category_id)
            .where(GoalRow.ledger_id == ledger_id, AccountRow.is_active.is_(True))
        ))

    # =========================================================================
    # SUGGESTIONS
    # =========================================================================

    def _needed(self, session, ctx: LedgerContext, goal: GoalRow) -> tuple[int, str, Optional[date]]:
        month = ctx.current_month
        target = goal.target_amount_cents

        if goal.goal_type == GoalType.MONTHLY_FUNDING.value:
            assigned = self._calculator.assigned_in_month(session, ctx.ledger_id, goal.category_id, month)
            needed = max(0, target - assigned)
            reason = f"{format_cents(needed)} more to reach the monthly target of {format_cents(target)}"
            return needed, reason, None

        balance = self._calculator.category_balance(session, ctx.ledger_id, goal.category_id, month)
        if goal.goal_type == GoalType.TARGET_BALANCE.value:
            needed = max(0, target - balance)
            reason = f"{format_cents(needed)} short of the target balance of {format_cents(target)}"
            return needed, reason, None

        target_date = effective_target_date(goal, ctx.today)
        months_remaining = max(1, months_between(ctx.today, target_date))
        remaining = target - balance
        if remaining <= 0:
            return 0, "", target_date
        if months_remaining == 1:
            needed = remaining
        else:
            needed = remaining // months_remaining
        reason = (
            f"{format_cents(needed)} this month to reach {format_cents(target)} by "
            f"{target_date.isoformat()} ({months_remaining} month(s) left)"
        )
        return needed, reason, target_date

    def suggest(self, session, ctx: LedgerContext) -> list[FundingSuggestion]:
        """
        Funding suggestions for the current month, most urgent first.

        The amount at the cut-off point gets whatever money is left and
        the list ends there.
        """
        available = self._calculator.available_to_assign(session, ctx.ledger_id, ctx.current_month)
        if available <= 0:
            return []

        candidates = []
        for goal in self.goals(session, ctx.ledger_id):
            needed, reason, target_date = self._needed(session, ctx, goal)
            if needed <= 0:
                continue
            urgency = (_URGENCY[goal.goal_type], target_date or date.max)
            candidates.append((urgency, goal, needed, reason))
        candidates.sort(key=lambda c: (c[0], str(c[1].category_id)))

        suggestions = []
        remaining = available
        for _, goal, needed, reason in candidates:
            amount = min(needed, remaining)
            suggestions.append(FundingSuggestion(
                category_id=goal.category_id,
                goal_id=goal.id,
                goal_type=goal.goal_type,
                needed_cents=needed,
                suggested_amount_cents=amount,
                reason=reason if amount == needed else f"{reason}; limited to {format_cents(amount)} available",
            ))
            remaining -= amount
            if remaining <= 0:
                break
        return suggestions

    def apply_suggestions(self, session, ctx: LedgerContext) -> list[AssignmentResult]:
        """Assign every current suggestion in one transaction."""
        rta = self._accounts.system_account(session, ctx.ledger_id, AccountRole.READY_TO_ASSIGN)
        lock_rows(session, AccountRow, [rta.id])

        results = []
        for suggestion in self.suggest(session, ctx):
            results.append(self._allocation.assign(
                session,
                ctx,
                suggestion.category_id,
                suggestion.suggested_amount_cents,
                month=ctx.current_month,
            ))

        # Persist rolled-forward dates of repeating goals
        for goal in self.goals(session, ctx.ledger_id):
            rolled = effective_target_date(goal, ctx.today)
            if rolled != goal.target_date:
                goal.target_date = rolled
        session.flush()

        logger.info(
            "goal_funding_applied",
            ledger_id=str(ctx.ledger_id),
            count=len(results),
        )
        return results
