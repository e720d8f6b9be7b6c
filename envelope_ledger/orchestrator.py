"""
Main Orchestrator for Envelope Ledger

This module ties the engines together and is the single entry point
collaborators (web handlers, the cron job, bots) call:
1. Postings and account management
2. Envelope views, assignment and moving money
3. Goals, recurring templates, installment plans, card payments and loans
4. Reconciliation

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every mutating call runs in exactly one database transaction
- Every call is scoped by an explicit LedgerContext the user must own
- Every successful mutation and every rejection is audited

Batch runs (recurring sweep, due installments) give each item its own
transaction, so one item's failure never touches its siblings.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional, TypeVar
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from envelope_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from envelope_ledger.config import get_settings
from envelope_ledger.engine.accounts import AccountManager
from envelope_ledger.engine.allocation import AllocationEngine
from envelope_ledger.engine.envelopes import EnvelopeCalculator
from envelope_ledger.engine.errors import (
    AlreadyProcessed,
    DuplicateMaterialization,
    InvalidRequest,
    LedgerError,
)
from envelope_ledger.engine.goals import GoalEngine
from envelope_ledger.engine.installments import InstallmentEngine
from envelope_ledger.engine.loans import LoanEngine
from envelope_ledger.engine.posting import PostingEngine
from envelope_ledger.engine.reconciliation import ReconciliationEngine, natural_balance
from envelope_ledger.engine.recurring import RecurringEngine
from envelope_ledger.engine.schedules import amortization_schedule, installment_schedule
from envelope_ledger.models.audit import AuditEvent, AuditEventBuilder
from envelope_ledger.models.budget import (
    AmortizationLine,
    AssignmentResult,
    BatchSummary,
    BudgetTotals,
    CardPaymentResult,
    CoverPolicy,
    CoverResult,
    EnvelopeLine,
    EnvelopeStatus,
    FundingSuggestion,
    InstallmentLine,
    ItemFailed,
    ItemResult,
    ItemSkipped,
    ItemSucceeded,
    MoveResult,
    ReconciliationResult,
)
from envelope_ledger.models.ledger import (
    Account,
    AccountType,
    ClearedStatus,
    Frequency,
    Goal,
    GoalType,
    InstallmentPlan,
    Ledger,
    LedgerContext,
    Loan,
    LoanPayment,
    ReconciliationRecord,
    RecurringDirection,
    RecurringTemplate,
    ScheduleItem,
    Transaction,
)
from envelope_ledger.services.storage import Database, SqlAuditStorage


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class BudgetOrchestrator:
    """
    Facade over the ledger engines.

    Usage:
        orchestrator = create_orchestrator()
        ledger = orchestrator.create_ledger("user-1", "Household")
        ctx = LedgerContext(user_id="user-1", ledger_id=ledger.id)
        orchestrator.post_transaction(ctx, checking_id, rta_id, 250_000)
    """

    def __init__(
        self,
        database: Database,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._db = database
        self._audit_logger = audit_logger or AuditLogger()
        self._budget = get_settings().budget

        self._calculator = EnvelopeCalculator()
        self._accounts = AccountManager(self._budget, self._calculator)
        self._posting = PostingEngine()
        self._allocation = AllocationEngine(self._accounts, self._calculator, self._budget)
        self._goals = GoalEngine(self._accounts, self._calculator, self._allocation)
        self._recurring = RecurringEngine(self._accounts, self._posting)
        self._installments = InstallmentEngine(self._accounts, self._posting, self._budget)
        self._loans = LoanEngine(self._accounts, self._posting, self._budget)
        self._reconciliation = ReconciliationEngine(self._accounts, self._posting)

    # =========================================================================
    # PLUMBING
    # =========================================================================

    def _audit(self, event: AuditEvent) -> None:
        self._audit_logger.log(event)

    def _mutate(self, ctx: LedgerContext, operation: str, work: Callable[..., T]) -> T:
        """
        Run `work(session)` in one transaction scoped to the context's ledger.

        A domain error rolls the transaction back, is audited as a
        rejection and propagates to the caller unchanged.
        """
        try:
            with self._db.transaction() as session:
                self._accounts.require_ledger(session, ctx)
                return work(session)
        except LedgerError as e:
            self._audit_logger.log_rejection(ctx.ledger_id, operation, e.kind, e.reason)
            raise

    def _read(self, ctx: LedgerContext, work: Callable[..., T]) -> T:
        with self._db.read_session() as session:
            self._accounts.require_ledger(session, ctx)
            return work(session)

    # =========================================================================
    # LEDGERS AND ACCOUNTS
    # =========================================================================

    def create_ledger(self, owner_id: str, name: str) -> Ledger:
        with self._db.transaction() as session:
            ledger = Ledger.model_validate(self._accounts.create_ledger(session, owner_id, name))
        self._audit(AuditEventBuilder.ledger_created(ledger.id, owner_id, name))
        return ledger

    def create_account(
        self,
        ctx: LedgerContext,
        name: str,
        account_type: AccountType,
        is_group: bool = False,
        parent_id: Optional[UUID] = None,
    ) -> Account:
        account = self._mutate(ctx, "create_account", lambda s: Account.model_validate(
            self._accounts.create_account(s, ctx.ledger_id, name, account_type, is_group, parent_id)
        ))
        self._audit(AuditEventBuilder.account_created(
            ctx.ledger_id, account.id, account.name, account.type.value
        ))
        return account

    def create_category(
        self,
        ctx: LedgerContext,
        name: str,
        group_id: Optional[UUID] = None,
    ) -> Account:
        account = self._mutate(ctx, "create_category", lambda s: Account.model_validate(
            self._accounts.create_category(s, ctx.ledger_id, name, group_id)
        ))
        self._audit(AuditEventBuilder.account_created(
            ctx.ledger_id, account.id, account.name, "category"
        ))
        return account

    def deactivate_account(self, ctx: LedgerContext, account_id: UUID) -> Account:
        account = self._mutate(ctx, "deactivate_account", lambda s: Account.model_validate(
            self._accounts.deactivate_account(s, ctx.ledger_id, account_id)
        ))
        self._audit(AuditEventBuilder.account_deactivated(ctx.ledger_id, account_id))
        return account

    def get_account(self, ctx: LedgerContext, account_id: UUID) -> Account:
        return self._read(ctx, lambda s: Account.model_validate(
            self._accounts.get_account(s, ctx.ledger_id, account_id)
        ))

    def account_balance(self, ctx: LedgerContext, account_id: UUID) -> int:
        """Natural-sign balance: positive cash in an asset, positive debt in a liability."""
        return self._read(ctx, lambda s: natural_balance(
            self._accounts.get_account(s, ctx.ledger_id, account_id)
        ))

    # =========================================================================
    # POSTINGS
    # =========================================================================

    def post_transaction(
        self,
        ctx: LedgerContext,
        debit_account_id: UUID,
        credit_account_id: UUID,
        amount_cents: int,
        on_date: Optional[date] = None,
        description: str = "",
    ) -> Transaction:
        txn = self._mutate(ctx, "post_transaction", lambda s: Transaction.model_validate(
            self._posting.post(
                s,
                ctx.ledger_id,
                debit_account_id,
                credit_account_id,
                amount_cents,
                on_date or ctx.today,
                description,
            )
        ))
        self._audit(AuditEventBuilder.transaction_posted(
            ctx.ledger_id, txn.id, txn.amount_cents, txn.description
        ))
        return txn

    def toggle_cleared(self, ctx: LedgerContext, transaction_id: UUID) -> Transaction:
        txn = self._mutate(ctx, "toggle_cleared", lambda s: Transaction.model_validate(
            self._posting.toggle_cleared(s, ctx.ledger_id, transaction_id)
        ))
        self._audit(AuditEventBuilder.cleared_status_changed(
            ctx.ledger_id, txn.id, txn.cleared_status.value
        ))
        return txn

    def uncleared_transactions(self, ctx: LedgerContext, account_id: UUID) -> list[Transaction]:
        def work(session) -> list[Transaction]:
            self._accounts.get_account(session, ctx.ledger_id, account_id)
            rows = self._posting.transactions_for_account(
                session, ctx.ledger_id, account_id, [ClearedStatus.UNCLEARED, ClearedStatus.CLEARED]
            )
            return [Transaction.model_validate(row) for row in rows]
        return self._read(ctx, work)

    # =========================================================================
    # ENVELOPES
    # =========================================================================

    def get_envelope_status(self, ctx: LedgerContext, month: Optional[date] = None) -> EnvelopeStatus:
        return self._read(ctx, lambda s: self._calculator.envelope_status(
            s, ctx.ledger_id, month or ctx.current_month
        ))

    def overspent_categories(self, ctx: LedgerContext, month: Optional[date] = None) -> list[EnvelopeLine]:
        return self.get_envelope_status(ctx, month).overspent

    def budget_totals(self, ctx: LedgerContext, month: Optional[date] = None) -> BudgetTotals:
        return self._read(ctx, lambda s: self._calculator.budget_totals(
            s, ctx.ledger_id, month or ctx.current_month
        ))

    # =========================================================================
    # ALLOCATION
    # =========================================================================

    def assign(
        self,
        ctx: LedgerContext,
        category_id: UUID,
        delta_cents: int,
        month: Optional[date] = None,
        allow_overdraft: bool = False,
    ) -> AssignmentResult:
        result = self._mutate(ctx, "assign", lambda s: self._allocation.assign(
            s, ctx, category_id, delta_cents, month, allow_overdraft
        ))
        self._audit(AuditEventBuilder.category_assigned(
            ctx.ledger_id,
            category_id,
            result.month.isoformat(),
            delta_cents,
            result.ready_to_assign_warning,
        ))
        return result

    def move_money(
        self,
        ctx: LedgerContext,
        from_category_id: UUID,
        to_category_id: UUID,
        amount_cents: int,
        month: Optional[date] = None,
    ) -> MoveResult:
        result = self._mutate(ctx, "move_money", lambda s: self._allocation.move(
            s, ctx, from_category_id, to_category_id, amount_cents, month
        ))
        self._audit(AuditEventBuilder.money_moved(
            ctx.ledger_id, from_category_id, to_category_id, amount_cents
        ))
        return result

    def cover_overspending(
        self,
        ctx: LedgerContext,
        category_id: UUID,
        source_category_id: Optional[UUID] = None,
        amount_cents: Optional[int] = None,
        policy: CoverPolicy = CoverPolicy.MOVE,
        month: Optional[date] = None,
    ) -> CoverResult:
        result = self._mutate(ctx, "cover_overspending", lambda s: self._allocation.cover_overspending(
            s, ctx, category_id, source_category_id, amount_cents, policy, month
        ))
        self._audit(AuditEventBuilder.overspending_covered(
            ctx.ledger_id, category_id, policy.value, result.covered_cents
        ))
        return result

    # =========================================================================
    # GOALS
    # =========================================================================

    def set_goal(
        self,
        ctx: LedgerContext,
        category_id: UUID,
        goal_type: GoalType,
        target_amount_cents: int,
        target_date: Optional[date] = None,
        repeat_frequency: Optional[Frequency] = None,
    ) -> Goal:
        goal = self._mutate(ctx, "set_goal", lambda s: Goal.model_validate(self._goals.set_goal(
            s, ctx.ledger_id, category_id, goal_type, target_amount_cents, target_date, repeat_frequency
        )))
        self._audit(AuditEventBuilder.goal_changed(ctx.ledger_id, category_id, goal_type.value))
        return goal

    def delete_goal(self, ctx: LedgerContext, category_id: UUID) -> None:
        self._mutate(ctx, "delete_goal", lambda s: self._goals.delete_goal(s, ctx.ledger_id, category_id))
        self._audit(AuditEventBuilder.goal_changed(ctx.ledger_id, category_id, None))

    def get_goal(self, ctx: LedgerContext, category_id: UUID) -> Goal:
        return self._read(ctx, lambda s: Goal.model_validate(
            self._goals.get_goal(s, ctx.ledger_id, category_id)
        ))

    def suggest_goal_funding(self, ctx: LedgerContext) -> list[FundingSuggestion]:
        return self._read(ctx, lambda s: self._goals.suggest(s, ctx))

    def apply_goal_funding(self, ctx: LedgerContext) -> list[AssignmentResult]:
        results = self._mutate(ctx, "apply_goal_funding", lambda s: self._goals.apply_suggestions(s, ctx))
        self._audit(AuditEventBuilder.goal_funding_applied(
            ctx.ledger_id,
            len(results),
            sum(r.assigned_cents for r in results),
        ))
        return results

    # =========================================================================
    # SCHEDULE GENERATION (pure)
    # =========================================================================

    def generate_installment_schedule(
        self,
        total_cents: int,
        n: int,
        frequency: Frequency,
        start_date: date,
    ) -> list[InstallmentLine]:
        if n > self._budget.max_installments:
            raise InvalidRequest(
                f"At most {self._budget.max_installments} installments are supported",
                n=n,
            )
        return installment_schedule(total_cents, n, frequency, start_date)

    def generate_amortization_schedule(
        self,
        principal_cents: int,
        annual_rate_percent: Decimal,
        term_months: int,
        start_date: date,
    ) -> list[AmortizationLine]:
        if term_months > self._budget.max_loan_term_months:
            raise InvalidRequest(
                f"Loan term is limited to {self._budget.max_loan_term_months} months",
                term_months=term_months,
            )
        return amortization_schedule(principal_cents, annual_rate_percent, term_months, start_date)

    # =========================================================================
    # RECURRING TEMPLATES
    # =========================================================================

    def create_recurring_template(
        self,
        ctx: LedgerContext,
        account_id: UUID,
        amount_cents: int,
        direction: RecurringDirection,
        frequency: Frequency,
        start_date: date,
        description: str = "",
        category_id: Optional[UUID] = None,
        end_date: Optional[date] = None,
        auto_create: bool = True,
    ) -> RecurringTemplate:
        template = self._mutate(ctx, "create_recurring_template", lambda s: RecurringTemplate.model_validate(
            self._recurring.create_template(
                s, ctx.ledger_id, account_id, amount_cents, direction, frequency,
                start_date, description, category_id, end_date, auto_create,
            )
        ))
        self._audit(AuditEventBuilder.schedule_created(
            ctx.ledger_id, "recurring_template", template.id,
            f"Recurring {direction.value} of {amount_cents} cents, {frequency.value}",
        ))
        return template

    def get_recurring_template(self, ctx: LedgerContext, template_id: UUID) -> RecurringTemplate:
        return self._read(ctx, lambda s: RecurringTemplate.model_validate(
            self._recurring.get_template(s, ctx.ledger_id, template_id)
        ))

    def materialize_due_recurring(self, ctx: LedgerContext, as_of: Optional[date] = None) -> BatchSummary:
        """
        Create every due occurrence of every enabled template.

        Meant to be called by an external scheduler. Running it twice for
        the same date creates nothing the second time.
        """
        as_of = as_of or ctx.today
        correlation_id = create_correlation_id()
        template_ids = self._read(ctx, lambda s: self._recurring.due_template_ids(s, ctx.ledger_id, as_of))

        summary = BatchSummary()
        for template_id in template_ids:
            summary.results.extend(self._materialize_template(ctx, template_id, as_of, correlation_id))

        self._audit(AuditEventBuilder.recurring_sweep_completed(
            ctx.ledger_id, summary.created, summary.skipped, summary.failed, correlation_id
        ))
        return summary

    def _materialize_template(
        self,
        ctx: LedgerContext,
        template_id: UUID,
        as_of: date,
        correlation_id: UUID,
    ) -> list[ItemResult]:
        results: list[ItemResult] = []
        for _ in range(self._budget.recurring_max_catchup):
            try:
                with self._db.transaction() as session:
                    txn, occurrence = self._recurring.materialize_next(
                        session, ctx.ledger_id, template_id, as_of
                    )
                    txn_id, amount, description = txn.id, txn.amount_cents, txn.description
            except DuplicateMaterialization as e:
                # Caught up, or another run got there first
                if not results:
                    results.append(ItemSkipped(item_id=template_id, reason=e.reason))
                break
            except (LedgerError, SQLAlchemyError) as e:
                kind = e.kind if isinstance(e, LedgerError) else type(e).__name__
                reason = e.reason if isinstance(e, LedgerError) else str(e)
                results.append(ItemFailed(item_id=template_id, error_kind=kind, reason=reason))
                logger.warning("recurring_materialization_failed", template_id=str(template_id), kind=kind)
                self._record_template_failure(ctx, template_id, correlation_id)
                break

            results.append(ItemSucceeded(
                item_id=template_id,
                transaction_id=txn_id,
                occurrence_date=occurrence,
            ))
            self._audit(AuditEventBuilder.transaction_posted(
                ctx.ledger_id, txn_id, amount, description, correlation_id=correlation_id
            ))
        return results

    def _record_template_failure(self, ctx: LedgerContext, template_id: UUID, correlation_id: UUID) -> None:
        try:
            with self._db.transaction() as session:
                failures = self._budget.recurring_max_failures
                disabled = self._recurring.record_failure(session, ctx.ledger_id, template_id, failures)
        except SQLAlchemyError as e:
            self._audit_logger.log_error(
                "recurring_failure_count",
                str(e),
                details={"template_id": str(template_id)},
                correlation_id=correlation_id,
            )
            return
        if disabled:
            self._audit(AuditEventBuilder.recurring_template_disabled(
                ctx.ledger_id, template_id, failures, correlation_id
            ))

    # =========================================================================
    # INSTALLMENT PLANS
    # =========================================================================

    def create_installment_plan(
        self,
        ctx: LedgerContext,
        credit_card_account_id: UUID,
        category_id: UUID,
        purchase_amount_cents: int,
        number_of_installments: int,
        frequency: Frequency,
        start_date: date,
        description: str = "",
    ) -> InstallmentPlan:
        plan = self._mutate(ctx, "create_installment_plan", lambda s: InstallmentPlan.model_validate(
            self._installments.create_plan(
                s, ctx.ledger_id, credit_card_account_id, category_id, purchase_amount_cents,
                number_of_installments, frequency, start_date, description,
            )
        ))
        self._audit(AuditEventBuilder.schedule_created(
            ctx.ledger_id, "installment_plan", plan.id,
            f"{number_of_installments} installments of {purchase_amount_cents} cents: {description}",
        ))
        return plan

    def get_installment_plan(self, ctx: LedgerContext, plan_id: UUID) -> InstallmentPlan:
        return self._read(ctx, lambda s: InstallmentPlan.model_validate(
            self._installments.get_plan(s, ctx.ledger_id, plan_id)
        ))

    def process_installment(
        self,
        ctx: LedgerContext,
        item_id: UUID,
        on_date: Optional[date] = None,
    ) -> ScheduleItem:
        item = self._mutate(ctx, "process_installment", lambda s: ScheduleItem.model_validate(
            self._installments.process_installment(s, ctx.ledger_id, item_id, on_date)
        ))
        self._audit(AuditEventBuilder.installment_handled(
            ctx.ledger_id, item.id, True, item.scheduled_amount_cents
        ))
        return item

    def skip_installment(self, ctx: LedgerContext, item_id: UUID) -> ScheduleItem:
        item = self._mutate(ctx, "skip_installment", lambda s: ScheduleItem.model_validate(
            self._installments.skip_installment(s, ctx.ledger_id, item_id)
        ))
        self._audit(AuditEventBuilder.installment_handled(
            ctx.ledger_id, item.id, False, item.scheduled_amount_cents
        ))
        return item

    def process_due_installments(self, ctx: LedgerContext, as_of: Optional[date] = None) -> BatchSummary:
        """Process every scheduled installment due on or before as_of, item by item."""
        as_of = as_of or ctx.today
        correlation_id = create_correlation_id()
        item_ids = self._read(ctx, lambda s: self._installments.due_item_ids(s, ctx.ledger_id, as_of))

        summary = BatchSummary()
        for item_id in item_ids:
            try:
                with self._db.transaction() as session:
                    item = self._installments.process_installment(session, ctx.ledger_id, item_id)
                    txn_id, due, amount = item.transaction_id, item.due_date, item.scheduled_amount_cents
            except AlreadyProcessed as e:
                summary.results.append(ItemSkipped(item_id=item_id, reason=e.reason))
                continue
            except (LedgerError, SQLAlchemyError) as e:
                kind = e.kind if isinstance(e, LedgerError) else type(e).__name__
                reason = e.reason if isinstance(e, LedgerError) else str(e)
                summary.results.append(ItemFailed(item_id=item_id, error_kind=kind, reason=reason))
                logger.warning("installment_processing_failed", item_id=str(item_id), kind=kind)
                continue
            summary.results.append(ItemSucceeded(item_id=item_id, transaction_id=txn_id, occurrence_date=due))
            self._audit(AuditEventBuilder.installment_handled(
                ctx.ledger_id, item_id, True, amount, correlation_id=correlation_id
            ))
        return summary

    # =========================================================================
    # CREDIT CARDS
    # =========================================================================

    def pay_credit_card(
        self,
        ctx: LedgerContext,
        card_account_id: UUID,
        bank_account_id: UUID,
        amount_cents: int,
        on_date: Optional[date] = None,
        memo: str = "",
    ) -> CardPaymentResult:
        """Pay a card from a bank account, spending its "CC Payment" category."""
        on_date = on_date or ctx.today

        def work(session) -> CardPaymentResult:
            payment, spent, category = self._installments.pay_credit_card(
                session, ctx.ledger_id, card_account_id, bank_account_id, amount_cents, on_date, memo
            )
            return CardPaymentResult(
                card_account_id=card_account_id,
                bank_account_id=bank_account_id,
                amount_cents=amount_cents,
                payment_transaction_id=payment.id,
                category_transaction_id=spent.id,
                payment_category_id=category.id,
                payment_category_balance_cents=self._calculator.category_balance(
                    session, ctx.ledger_id, category.id, on_date
                ),
            )

        result = self._mutate(ctx, "pay_credit_card", work)
        self._audit(AuditEventBuilder.credit_card_paid(
            ctx.ledger_id, card_account_id, amount_cents, result.payment_category_balance_cents
        ))
        return result

    # =========================================================================
    # LOANS
    # =========================================================================

    def create_loan(
        self,
        ctx: LedgerContext,
        name: str,
        principal_cents: int,
        annual_rate_percent: Decimal,
        term_months: int,
        start_date: date,
        account_id: UUID,
        interest_category_id: Optional[UUID] = None,
    ) -> Loan:
        loan = self._mutate(ctx, "create_loan", lambda s: Loan.model_validate(
            self._loans.create_loan(
                s, ctx.ledger_id, name, principal_cents, annual_rate_percent,
                term_months, start_date, account_id, interest_category_id,
            )
        ))
        self._audit(AuditEventBuilder.schedule_created(
            ctx.ledger_id, "loan", loan.id,
            f"Loan {name}: {principal_cents} cents over {term_months} months",
        ))
        return loan

    def get_loan(self, ctx: LedgerContext, loan_id: UUID) -> Loan:
        return self._read(ctx, lambda s: Loan.model_validate(self._loans.get_loan(s, ctx.ledger_id, loan_id)))

    def loan_payments(
        self,
        ctx: LedgerContext,
        loan_id: UUID,
        unpaid_only: bool = False,
    ) -> list[LoanPayment]:
        return self._read(ctx, lambda s: [
            LoanPayment.model_validate(row)
            for row in self._loans.payments(s, ctx.ledger_id, loan_id, unpaid_only)
        ])

    def record_loan_payment(
        self,
        ctx: LedgerContext,
        payment_id: UUID,
        from_account_id: UUID,
        paid_date: Optional[date] = None,
    ) -> LoanPayment:
        payment = self._mutate(ctx, "record_loan_payment", lambda s: LoanPayment.model_validate(
            self._loans.record_payment(s, ctx.ledger_id, payment_id, from_account_id, paid_date or ctx.today)
        ))
        self._audit(AuditEventBuilder.loan_payment_recorded(
            ctx.ledger_id, payment.id, payment.principal_cents, payment.interest_cents
        ))
        return payment

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    def reconcile_account(
        self,
        ctx: LedgerContext,
        account_id: UUID,
        statement_date: date,
        statement_balance_cents: int,
        cleared_ids: list[UUID],
        notes: Optional[str] = None,
    ) -> ReconciliationResult:
        def work(session) -> tuple[ReconciliationRecord, bool]:
            row, replayed = self._reconciliation.reconcile(
                session, ctx.ledger_id, account_id, statement_date,
                statement_balance_cents, cleared_ids, notes,
            )
            return ReconciliationRecord.model_validate(row), replayed

        record, replayed = self._mutate(ctx, "reconcile_account", work)
        if not replayed:
            self._audit(AuditEventBuilder.account_reconciled(
                ctx.ledger_id, account_id, record.difference_cents, len(record.cleared_transaction_ids)
            ))
        return ReconciliationResult(
            reconciliation_id=record.id,
            account_id=account_id,
            statement_balance_cents=record.statement_balance_cents,
            ledger_balance_before_cents=record.ledger_balance_cents,
            difference_cents=record.difference_cents,
            adjustment_transaction_id=record.adjustment_transaction_id,
            cleared_count=len(record.cleared_transaction_ids),
            replayed=replayed,
        )

    def reconciliation_history(self, ctx: LedgerContext, account_id: UUID) -> list[ReconciliationRecord]:
        return self._read(ctx, lambda s: [
            ReconciliationRecord.model_validate(row)
            for row in self._reconciliation.history(s, ctx.ledger_id, account_id)
        ])


def create_orchestrator(
    url: Optional[str] = None,
    persist_audit: bool = True,
) -> BudgetOrchestrator:
    """
    Factory function to create a ready-to-use orchestrator.

    Args:
        url: Database URL; defaults to LEDGER_DB_URL.
        persist_audit: Whether audit events go to the audit_events table.
                       Set to False to log them locally only.

    Returns:
        BudgetOrchestrator bound to a connected database with its schema created
    """
    configure_logging(get_settings().app)
    database = Database(url)
    database.connect()
    database.create_schema()

    audit_logger = AuditLogger(SqlAuditStorage(database)) if persist_audit else AuditLogger()
    return BudgetOrchestrator(database, audit_logger)
