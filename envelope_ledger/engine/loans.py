"""
Loans and their payment schedules.

The amortization table is generated once when the loan is created and
stored row by row. Recording a payment posts the principal against the
loan's liability account and the interest against an interest category.
"""

from datetime import date
from decimal import Decimal
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
from envelope_ledger.engine.schedules import amortization_schedule
from envelope_ledger.models.ledger import (
    AccountType,
    LoanPaymentStatus,
    LoanStatus,
    TransactionSource,
)
from envelope_ledger.services.storage import lock_rows
from envelope_ledger.services.storage.tables import LoanPaymentRow, LoanRow


logger = structlog.get_logger(__name__)


class LoanEngine:
    def __init__(
        self,
        accounts: AccountManager,
        posting: PostingEngine,
        settings: BudgetSettings,
    ):
        self._accounts = accounts
        self._posting = posting
        self._settings = settings

    def create_loan(
        self,
        session,
        ledger_id: UUID,
        name: str,
        principal_cents: int,
        annual_rate_percent: Decimal,
        term_months: int,
        start_date: date,
        account_id: UUID,
        interest_category_id: Optional[UUID] = None,
    ) -> LoanRow:
        account = self._accounts.get_account(session, ledger_id, account_id)
        if account.type != AccountType.LIABILITY.value or account.is_group or not account.is_active:
            raise InvalidAccount(f"'{account.name}' is not an active liability account", account_id=account_id)
        if interest_category_id is not None:
            self._accounts.get_category(session, ledger_id, interest_category_id)
        if not 1 <= term_months <= self._settings.max_loan_term_months:
            raise InvalidRequest(
                f"Loan term must be between 1 and {self._settings.max_loan_term_months} months",
                term_months=term_months,
            )
        rate = Decimal(str(annual_rate_percent))
        if not Decimal(0) <= rate <= Decimal(100):
            raise InvalidRequest("Annual rate must be between 0 and 100 percent", annual_rate_percent=rate)

        lines = amortization_schedule(principal_cents, rate, term_months, start_date)
        loan = LoanRow(
            ledger_id=ledger_id,
            name=name,
            principal_cents=principal_cents,
            annual_rate_percent=rate,
            term_months=term_months,
            start_date=start_date,
            account_id=account_id,
            interest_category_id=interest_category_id,
        )
        loan.payments = [
            LoanPaymentRow(
                payment_number=line.period,
                due_date=line.due_date,
                payment_cents=line.payment_cents,
                principal_cents=line.principal_cents,
                interest_cents=line.interest_cents,
                remaining_balance_cents=line.balance_cents,
            )
            for line in lines
        ]
        session.add(loan)
        session.flush()
        return loan

    def get_loan(self, session, ledger_id: UUID, loan_id: UUID) -> LoanRow:
        loan = session.get(LoanRow, loan_id)
        if loan is None or loan.ledger_id != ledger_id:
            raise ScheduleNotFound("Loan not found", loan_id=loan_id)
        return loan

    def payments(
        self,
        session,
        ledger_id: UUID,
        loan_id: UUID,
        unpaid_only: bool = False,
    ) -> list[LoanPaymentRow]:
        self.get_loan(session, ledger_id, loan_id)
        stmt = select(LoanPaymentRow).where(LoanPaymentRow.loan_id == loan_id)
        if unpaid_only:
            stmt = stmt.where(LoanPaymentRow.status == LoanPaymentStatus.SCHEDULED.value)
        return list(session.scalars(stmt.order_by(LoanPaymentRow.payment_number)))

    def record_payment(
        self,
        session,
        ledger_id: UUID,
        payment_id: UUID,
        from_account_id: UUID,
        paid_date: date,
    ) -> LoanPaymentRow:
        """Post principal and interest of one scheduled payment."""
        payment = lock_rows(session, LoanPaymentRow, [payment_id]).get(payment_id)
        if payment is None or payment.loan.ledger_id != ledger_id:
            raise ScheduleNotFound("Loan payment not found", payment_id=payment_id)
        if payment.status == LoanPaymentStatus.PAID.value:
            raise AlreadyProcessed(f"Payment {payment.payment_number} is already paid", payment_id=payment_id)
        loan = payment.loan
        if payment.interest_cents > 0 and loan.interest_category_id is None:
            raise InvalidAccount("Loan has no interest category to post interest to", loan_id=loan.id)

        if payment.principal_cents > 0:
            principal_txn = self._posting.post(
                session,
                ledger_id,
                debit_account_id=loan.account_id,
                credit_account_id=from_account_id,
                amount_cents=payment.principal_cents,
                on_date=paid_date,
                description=f"{loan.name} payment {payment.payment_number} (principal)",
                source=TransactionSource.LOAN_PAYMENT,
            )
            payment.principal_transaction_id = principal_txn.id
        if payment.interest_cents > 0:
            interest_txn = self._posting.post(
                session,
                ledger_id,
                debit_account_id=loan.interest_category_id,
                credit_account_id=from_account_id,
                amount_cents=payment.interest_cents,
                on_date=paid_date,
                description=f"{loan.name} payment {payment.payment_number} (interest)",
                source=TransactionSource.LOAN_PAYMENT,
            )
            payment.interest_transaction_id = interest_txn.id

        payment.status = LoanPaymentStatus.PAID.value
        payment.paid_date = paid_date
        if all(p.status == LoanPaymentStatus.PAID.value for p in loan.payments):
            loan.status = LoanStatus.PAID_OFF.value
        session.flush()
        return payment
