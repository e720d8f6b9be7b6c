"""
Recurring transaction templates.

One occurrence = one database transaction: lock the template row,
re-check that it is still due, post, advance next_date. A concurrent
or repeated sweep that finds the template already advanced gets
DuplicateMaterialization and reports a skip.

next_date is always start_date + occurrences periods, so monthly
templates starting on the 31st keep landing on month ends.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import or_, select

from envelope_ledger.engine.accounts import AccountManager
from envelope_ledger.engine.errors import (
    DuplicateMaterialization,
    InvalidAccount,
    InvalidRequest,
    ScheduleNotFound,
    ZeroOrNegativeAmount,
)
from envelope_ledger.engine.periods import add_periods
from envelope_ledger.engine.posting import PostingEngine
from envelope_ledger.models.ledger import (
    AccountRole,
    AccountType,
    Frequency,
    RecurringDirection,
    TransactionSource,
)
from envelope_ledger.services.storage import lock_rows
from envelope_ledger.services.storage.tables import RecurringTemplateRow, TransactionRow


logger = structlog.get_logger(__name__)


def template_is_due(template: RecurringTemplateRow, as_of: date) -> bool:
    if not (template.enabled and template.auto_create):
        return False
    if template.end_date is not None and template.next_date > template.end_date:
        return False
    return template.next_date <= as_of


class RecurringEngine:
    def __init__(self, accounts: AccountManager, posting: PostingEngine):
        self._accounts = accounts
        self._posting = posting

    def create_template(
        self,
        session,
        ledger_id: UUID,
        account_id: UUID,
        amount_cents: int,
        direction: RecurringDirection,
        frequency: Frequency,
        start_date: date,
        description: str = "",
        category_id: Optional[UUID] = None,
        end_date: Optional[date] = None,
        auto_create: bool = True,
    ) -> RecurringTemplateRow:
        account = self._accounts.get_account(session, ledger_id, account_id)
        if account.type not in (AccountType.ASSET.value, AccountType.LIABILITY.value) or account.is_group:
            raise InvalidAccount(
                f"'{account.name}' is not an asset or liability account",
                account_id=account_id,
            )
        if category_id is not None:
            self._accounts.get_category(session, ledger_id, category_id)
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise ZeroOrNegativeAmount("Template amount must be a positive number of cents")
        if end_date is not None and end_date < start_date:
            raise InvalidRequest("End date is before start date")

        template = RecurringTemplateRow(
            ledger_id=ledger_id,
            account_id=account_id,
            category_id=category_id,
            amount_cents=amount_cents,
            direction=direction.value,
            description=description or "",
            frequency=frequency.value,
            start_date=start_date,
            next_date=start_date,
            end_date=end_date,
            auto_create=auto_create,
        )
        session.add(template)
        session.flush()
        return template

    def get_template(self, session, ledger_id: UUID, template_id: UUID) -> RecurringTemplateRow:
        template = session.get(RecurringTemplateRow, template_id)
        if template is None or template.ledger_id != ledger_id:
            raise ScheduleNotFound("Recurring template not found", template_id=template_id)
        return template

    def due_template_ids(self, session, ledger_id: UUID, as_of: date) -> list[UUID]:
        return list(session.scalars(
            select(RecurringTemplateRow.id)
            .where(
                RecurringTemplateRow.ledger_id == ledger_id,
                RecurringTemplateRow.enabled.is_(True),
                RecurringTemplateRow.auto_create.is_(True),
                RecurringTemplateRow.next_date <= as_of,
                or_(
                    RecurringTemplateRow.end_date.is_(None),
                    RecurringTemplateRow.next_date <= RecurringTemplateRow.end_date,
                ),
            )
            .order_by(RecurringTemplateRow.next_date, RecurringTemplateRow.id)
        ))

    def _legs(self, session, template: RecurringTemplateRow) -> tuple[UUID, UUID]:
        """(debit, credit) for one occurrence."""
        counter_id = template.category_id
        if counter_id is None:
            counter_id = self._accounts.system_account(
                session, template.ledger_id, AccountRole.READY_TO_ASSIGN
            ).id
        if template.direction == RecurringDirection.INFLOW.value:
            return template.account_id, counter_id
        return counter_id, template.account_id

    def materialize_next(
        self,
        session,
        ledger_id: UUID,
        template_id: UUID,
        as_of: date,
    ) -> tuple[TransactionRow, date]:
        """
        Create the next due occurrence of a template.

        Returns the posted transaction and its occurrence date.
        Raises DuplicateMaterialization when nothing is due any more.
        """
        template = lock_rows(session, RecurringTemplateRow, [template_id]).get(template_id)
        if template is None or template.ledger_id != ledger_id:
            raise ScheduleNotFound("Recurring template not found", template_id=template_id)
        if not template_is_due(template, as_of):
            raise DuplicateMaterialization(
                "Occurrence already materialized or template not due",
                template_id=template_id,
                next_date=template.next_date,
            )

        occurrence = template.next_date
        debit_id, credit_id = self._legs(session, template)
        txn = self._posting.post(
            session,
            ledger_id,
            debit_account_id=debit_id,
            credit_account_id=credit_id,
            amount_cents=template.amount_cents,
            on_date=occurrence,
            description=template.description,
            source=TransactionSource.RECURRING,
        )

        template.occurrences += 1
        template.next_date = add_periods(
            template.start_date, Frequency(template.frequency), template.occurrences
        )
        template.last_transaction_id = txn.id
        template.failure_count = 0
        session.flush()
        return txn, occurrence

    def record_failure(self, session, ledger_id: UUID, template_id: UUID, max_failures: int) -> bool:
        """Count a failed attempt. Returns True when the template got disabled."""
        template = lock_rows(session, RecurringTemplateRow, [template_id]).get(template_id)
        if template is None or template.ledger_id != ledger_id:
            return False
        template.failure_count += 1
        disabled = template.failure_count >= max_failures
        if disabled:
            template.enabled = False
            logger.warning(
                "recurring_template_disabled",
                template_id=str(template_id),
                failure_count=template.failure_count,
            )
        session.flush()
        return disabled
