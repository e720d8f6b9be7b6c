"""
Allocation & Transfer Engine

Moves budget between Ready-to-Assign and categories, and between
categories. All changes go through the category_assignments table; no
posting is ever created here.

Locking: every operation locks the affected category rows together with
the ledger's Ready-to-Assign account row in one ordered statement. The
Ready-to-Assign row is the per-ledger serialization point for the
"would Ready-to-Assign go negative" check.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select

from envelope_ledger.config import BudgetSettings
from envelope_ledger.engine.accounts import AccountManager, is_category
from envelope_ledger.engine.envelopes import EnvelopeCalculator
from envelope_ledger.engine.errors import (
    CategoryNotOverspent,
    InsufficientCategoryBalance,
    InvalidAccount,
    InvalidRequest,
    ReadyToAssignWouldGoNegative,
    ZeroOrNegativeAmount,
)
from envelope_ledger.engine.periods import month_start
from envelope_ledger.models.budget import (
    AssignmentResult,
    CoverPolicy,
    CoverResult,
    MoveResult,
)
from envelope_ledger.models.ledger import AccountRole, LedgerContext
from envelope_ledger.services.storage import lock_rows
from envelope_ledger.services.storage.tables import AccountRow, CategoryAssignmentRow


logger = structlog.get_logger(__name__)


def _require_int(value, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ZeroOrNegativeAmount(f"{name} must be an integer number of cents", **{name: value})


class AllocationEngine:
    """assign / move / cover_overspending."""

    def __init__(
        self,
        accounts: AccountManager,
        calculator: EnvelopeCalculator,
        settings: BudgetSettings,
    ):
        self._accounts = accounts
        self._calculator = calculator
        self._settings = settings

    def _lock_categories(self, session, ledger_id: UUID, category_ids: list[UUID]) -> dict:
        rta = self._accounts.system_account(session, ledger_id, AccountRole.READY_TO_ASSIGN)
        locked = lock_rows(session, AccountRow, [*category_ids, rta.id])
        for category_id in category_ids:
            account = locked.get(category_id)
            if account is None or account.ledger_id != ledger_id or not is_category(account):
                raise InvalidAccount(
                    f"Account {category_id} is not a budget category of this ledger",
                    account_id=category_id,
                )
            if not account.is_active:
                raise InvalidAccount(f"Category '{account.name}' is inactive", account_id=category_id)
        return locked

    def _apply_assignment(
        self,
        session,
        ledger_id: UUID,
        category_id: UUID,
        month: date,
        delta_cents: int,
    ) -> CategoryAssignmentRow:
        """Upsert the (category, month) row. Caller holds the category lock."""
        row = session.scalars(
            select(CategoryAssignmentRow)
            .where(
                CategoryAssignmentRow.category_id == category_id,
                CategoryAssignmentRow.month == month,
            )
            .with_for_update()
        ).first()
        if row is None:
            row = CategoryAssignmentRow(
                ledger_id=ledger_id,
                category_id=category_id,
                month=month,
                assigned_cents=0,
            )
            session.add(row)
        row.assigned_cents += delta_cents
        session.flush()
        return row

    # =========================================================================
    # ASSIGN
    # =========================================================================

    def assign(
        self,
        session,
        ctx: LedgerContext,
        category_id: UUID,
        delta_cents: int,
        month: Optional[date] = None,
        allow_overdraft: bool = False,
    ) -> AssignmentResult:
        """
        Adjust the amount assigned to a category for a month.

        A positive delta that would leave Ready-to-Assign negative in this
        or any later month raises ReadyToAssignWouldGoNegative, unless
        overdraft is allowed by the caller or by settings. An allowed
        overdraft is reported through ready_to_assign_warning.
        """
        _require_int(delta_cents, "delta_cents")
        if delta_cents == 0:
            raise ZeroOrNegativeAmount("Assignment change must be non-zero")
        month = month_start(month or ctx.current_month)
        ledger_id = ctx.ledger_id

        self._lock_categories(session, ledger_id, [category_id])

        # Re-checked under the Ready-to-Assign lock
        available_after = self._calculator.available_to_assign(session, ledger_id, month) - delta_cents
        overdraft_ok = allow_overdraft or self._settings.allow_negative_ready_to_assign
        if delta_cents > 0 and available_after < 0 and not overdraft_ok:
            raise ReadyToAssignWouldGoNegative(
                "Not enough money in Ready to Assign",
                requested_cents=delta_cents,
                available_cents=available_after + delta_cents,
            )

        row = self._apply_assignment(session, ledger_id, category_id, month, delta_cents)
        result = AssignmentResult(
            category_id=category_id,
            month=month,
            assigned_cents=row.assigned_cents,
            balance_cents=self._calculator.category_balance(session, ledger_id, category_id, month),
            ready_to_assign_cents=self._calculator.ready_to_assign(session, ledger_id, month),
            ready_to_assign_warning=available_after < 0,
        )
        if result.ready_to_assign_warning:
            logger.warning(
                "ready_to_assign_negative",
                ledger_id=str(ledger_id),
                category_id=str(category_id),
                available_cents=available_after,
            )
        return result

    # =========================================================================
    # MOVE
    # =========================================================================

    def move(
        self,
        session,
        ctx: LedgerContext,
        from_category_id: UUID,
        to_category_id: UUID,
        amount_cents: int,
        month: Optional[date] = None,
    ) -> MoveResult:
        """
        Move budget from one category to another within a month.

        Ready-to-Assign is untouched. The source balance is re-read under
        lock; moving more than it holds raises InsufficientCategoryBalance.
        """
        _require_int(amount_cents, "amount_cents")
        if amount_cents <= 0:
            raise ZeroOrNegativeAmount("Amount to move must be positive", amount_cents=amount_cents)
        if from_category_id == to_category_id:
            raise InvalidRequest("Source and destination category must differ")
        month = month_start(month or ctx.current_month)
        ledger_id = ctx.ledger_id

        locked = self._lock_categories(session, ledger_id, [from_category_id, to_category_id])

        available = self._calculator.category_balance(session, ledger_id, from_category_id, month)
        if available < amount_cents:
            raise InsufficientCategoryBalance(
                f"'{locked[from_category_id].name}' only has {available} cents available",
                available_cents=available,
                requested_cents=amount_cents,
            )

        self._apply_assignment(session, ledger_id, from_category_id, month, -amount_cents)
        self._apply_assignment(session, ledger_id, to_category_id, month, amount_cents)

        return MoveResult(
            from_category_id=from_category_id,
            to_category_id=to_category_id,
            month=month,
            amount_cents=amount_cents,
            from_balance_cents=self._calculator.category_balance(session, ledger_id, from_category_id, month),
            to_balance_cents=self._calculator.category_balance(session, ledger_id, to_category_id, month),
        )

    # =========================================================================
    # COVER OVERSPENDING
    # =========================================================================

    def cover_overspending(
        self,
        session,
        ctx: LedgerContext,
        overspent_category_id: UUID,
        source_category_id: Optional[UUID] = None,
        amount_cents: Optional[int] = None,
        policy: CoverPolicy = CoverPolicy.MOVE,
        month: Optional[date] = None,
    ) -> CoverResult:
        month = month_start(month or ctx.current_month)
        ledger_id = ctx.ledger_id

        if policy == CoverPolicy.DEFER:
            # Acknowledgement only: the negative balance rolls into next month
            self._accounts.get_category(session, ledger_id, overspent_category_id)
            return CoverResult(
                overspent_category_id=overspent_category_id,
                policy=policy,
                remaining_balance_cents=self._calculator.category_balance(
                    session, ledger_id, overspent_category_id, month
                ),
            )

        if source_category_id is None:
            raise InvalidRequest("Covering overspending needs a source category")

        self._lock_categories(session, ledger_id, [overspent_category_id, source_category_id])
        if amount_cents is None:
            balance = self._calculator.category_balance(session, ledger_id, overspent_category_id, month)
            if balance >= 0:
                raise CategoryNotOverspent(
                    "Category is not overspent",
                    category_id=overspent_category_id,
                    balance_cents=balance,
                )
            amount_cents = -balance

        move = self.move(
            session,
            ctx,
            from_category_id=source_category_id,
            to_category_id=overspent_category_id,
            amount_cents=amount_cents,
            month=month,
        )
        return CoverResult(
            overspent_category_id=overspent_category_id,
            policy=policy,
            covered_cents=amount_cents,
            source_category_id=source_category_id,
            move=move,
            remaining_balance_cents=move.to_balance_cents,
        )
