"""
Installment plans.

A credit-card purchase split into installments. Processing an
installment moves its share of the spending from the plan's category
into the card's payment category ("CC Payment: <card>") so the money to
pay the card is set aside one installment at a time. Paying the card
spends that category.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select

from envelope_ledger.config import BudgetSettings
from envelope_ledger.engine.accounts import AccountManager
from envelope_ledger.engine.errors import (
    AlreadyProcessed,
    InvalidAccount,
    InvalidRequest,
    ScheduleNotFound,
)
from envelope_ledger.engine.posting import PostingEngine
from envelope_ledger.engine.schedules import installment_schedule
from envelope_ledger.models.ledger import (
    AccountRole,
    AccountType,
    Frequency,
    PlanStatus,
    ScheduleStatus,
    TransactionSource,
)
from envelope_ledger.services.storage import lock_rows
from envelope_ledger.services.storage.tables import (
    AccountRow,
    InstallmentPlanRow,
    ScheduleItemRow,
    TransactionRow,
)


logger = structlog.get_logger(__name__)


class InstallmentEngine:
    def __init__(
        self,
        accounts: AccountManager,
        posting: PostingEngine,
        settings: BudgetSettings,
    ):
        self._accounts = accounts
        self._posting = posting
        self._settings = settings

    def create_plan(
        self,
        session,
        ledger_id: UUID,
        credit_card_account_id: UUID,
        category_id: UUID,
        purchase_amount_cents: int,
        number_of_installments: int,
        frequency: Frequency,
        start_date: date,
        description: str = "",
    ) -> InstallmentPlanRow:
        card = self._accounts.get_account(session, ledger_id, credit_card_account_id)
        if card.type != AccountType.LIABILITY.value or card.is_group or not card.is_active:
            raise InvalidAccount(
                f"'{card.name}' is not an active credit card account",
                account_id=credit_card_account_id,
            )
        self._accounts.get_category(session, ledger_id, category_id)

        if not 2 <= number_of_installments <= self._settings.max_installments:
            raise InvalidRequest(
                f"Number of installments must be between 2 and {self._settings.max_installments}",
                number_of_installments=number_of_installments,
            )
        if isinstance(purchase_amount_cents, int) and purchase_amount_cents < number_of_installments:
            # Every installment has to be postable, i.e. at least one cent
            raise InvalidRequest(
                "Purchase amount is too small for that many installments",
                purchase_amount_cents=purchase_amount_cents,
            )

        lines = installment_schedule(purchase_amount_cents, number_of_installments, frequency, start_date)
        plan = InstallmentPlanRow(
            ledger_id=ledger_id,
            description=description or "",
            purchase_amount_cents=purchase_amount_cents,
            number_of_installments=number_of_installments,
            frequency=frequency.value,
            start_date=start_date,
            credit_card_account_id=credit_card_account_id,
            category_id=category_id,
        )
        plan.schedule = [
            ScheduleItemRow(
                installment_number=line.installment_number,
                due_date=line.due_date,
                scheduled_amount_cents=line.amount_cents,
            )
            for line in lines
        ]
        session.add(plan)
        session.flush()
        return plan

    def get_plan(self, session, ledger_id: UUID, plan_id: UUID) -> InstallmentPlanRow:
        plan = session.get(InstallmentPlanRow, plan_id)
        if plan is None or plan.ledger_id != ledger_id:
            raise ScheduleNotFound("Installment plan not found", plan_id=plan_id)
        return plan

    def _lock_item(self, session, ledger_id: UUID, item_id: UUID) -> ScheduleItemRow:
        item = lock_rows(session, ScheduleItemRow, [item_id]).get(item_id)
        if item is None or item.plan.ledger_id != ledger_id:
            raise ScheduleNotFound("Scheduled installment not found", item_id=item_id)
        if item.status != ScheduleStatus.SCHEDULED.value:
            raise AlreadyProcessed(
                f"Installment {item.installment_number} is already {item.status}",
                item_id=item_id,
            )
        if item.plan.status != PlanStatus.ACTIVE.value:
            raise InvalidRequest(f"Installment plan is {item.plan.status}", plan_id=item.plan_id)
        return item

    def _finish_if_done(self, plan: InstallmentPlanRow) -> None:
        if all(i.status != ScheduleStatus.SCHEDULED.value for i in plan.schedule):
            plan.status = PlanStatus.COMPLETED.value

    def process_installment(
        self,
        session,
        ledger_id: UUID,
        item_id: UUID,
        on_date: Optional[date] = None,
    ) -> ScheduleItemRow:
        item = self._lock_item(session, ledger_id, item_id)
        plan = item.plan
        card = self._accounts.get_account(session, ledger_id, plan.credit_card_account_id)
        payment_category = self.payment_category(session, ledger_id, card)
        processed_on = on_date or item.due_date

        txn = self._posting.post(
            session,
            ledger_id,
            debit_account_id=plan.category_id,
            credit_account_id=payment_category.id,
            amount_cents=item.scheduled_amount_cents,
            on_date=processed_on,
            description=(
                f"Installment {item.installment_number}/{plan.number_of_installments}: "
                f"{plan.description}"
            )[:500],
            source=TransactionSource.INSTALLMENT,
        )
        item.status = ScheduleStatus.PROCESSED.value
        item.processed_date = processed_on
        item.transaction_id = txn.id
        plan.completed_installments += 1
        self._finish_if_done(plan)
        session.flush()
        return item

    def skip_installment(self, session, ledger_id: UUID, item_id: UUID) -> ScheduleItemRow:
        item = self._lock_item(session, ledger_id, item_id)
        item.status = ScheduleStatus.SKIPPED.value
        self._finish_if_done(item.plan)
        session.flush()
        return item

    def due_item_ids(self, session, ledger_id: UUID, as_of: date) -> list[UUID]:
        return list(session.scalars(
            select(ScheduleItemRow.id)
            .join(InstallmentPlanRow, InstallmentPlanRow.id == ScheduleItemRow.plan_id)
            .where(
                InstallmentPlanRow.ledger_id == ledger_id,
                InstallmentPlanRow.status == PlanStatus.ACTIVE.value,
                ScheduleItemRow.status == ScheduleStatus.SCHEDULED.value,
                ScheduleItemRow.due_date <= as_of,
            )
            .order_by(ScheduleItemRow.due_date, ScheduleItemRow.installment_number)
        ))
    # =========================================================================
    # CARD PAYMENTS
    # =========================================================================

    def payment_category(self, session, ledger_id: UUID, card: AccountRow) -> AccountRow:
        return self._accounts.find_or_create_category(
            session,
            ledger_id,
            f"{self._settings.cc_payment_category_prefix}{card.name}",
        )

    def pay_credit_card(
        self,
        session,
        ledger_id: UUID,
        card_account_id: UUID,
        bank_account_id: UUID,
        amount_cents: int,
        on_date: date,
        memo: str = "",
    ) -> tuple[TransactionRow, TransactionRow, AccountRow]:
        """
        Pay down a credit card from a bank account.

        Two postings in the caller's transaction: the payment itself
        (debit card / credit bank) and the spending of the card's payment
        category (debit "CC Payment: <card>" / credit the adjustment
        account). Paying more than the category holds leaves it
        overspent; that is allowed.
        """
        card = self._accounts.get_account(session, ledger_id, card_account_id)
        if card.type != AccountType.LIABILITY.value or card.is_group:
            raise InvalidAccount(f"'{card.name}' is not a credit card account", account_id=card_account_id)
        bank = self._accounts.get_account(session, ledger_id, bank_account_id)
        if bank.type != AccountType.ASSET.value or bank.is_group:
            raise InvalidAccount(f"'{bank.name}' is not a bank account", account_id=bank_account_id)

        payment_category = self.payment_category(session, ledger_id, card)
        clearing = self._accounts.system_account(session, ledger_id, AccountRole.ADJUSTMENT)
        description = (memo or f"Payment: {card.name}")[:500]

        payment = self._posting.post(
            session,
            ledger_id,
            debit_account_id=card.id,
            credit_account_id=bank.id,
            amount_cents=amount_cents,
            on_date=on_date,
            description=description,
            source=TransactionSource.CARD_PAYMENT,
        )
        spent = self._posting.post(
            session,
            ledger_id,
            debit_account_id=payment_category.id,
            credit_account_id=clearing.id,
            amount_cents=amount_cents,
            on_date=on_date,
            description=description,
            source=TransactionSource.CARD_PAYMENT,
        )
        logger.info(
            "credit_card_paid",
            ledger_id=str(ledger_id),
            card_account_id=str(card.id),
            amount_cents=amount_cents,
        )
        return payment, spent, payment_category
