"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database and an orchestrator
whose audit events go to the same database.
"""

from datetime import date
from types import SimpleNamespace

import pytest

from envelope_ledger.audit import AuditLogger
from envelope_ledger.config import get_settings
from envelope_ledger.engine.accounts import AccountManager
from envelope_ledger.models.ledger import AccountRole, AccountType, LedgerContext
from envelope_ledger.orchestrator import BudgetOrchestrator
from envelope_ledger.services.storage import Database, SqlAuditStorage


TODAY = date(2024, 3, 15)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached; make env changes in one test invisible to the next."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_schema()
    yield db
    db.drop_schema()
    db.dispose()


@pytest.fixture
def audit_storage(database):
    return SqlAuditStorage(database)


@pytest.fixture
def orchestrator(database, audit_storage):
    return BudgetOrchestrator(database, AuditLogger(audit_storage))


@pytest.fixture
def ledger(orchestrator, database):
    """
    A household ledger with a checking account, a credit card, a car loan
    account and four categories.
    """
    created = orchestrator.create_ledger("user-1", "Household")
    ctx = LedgerContext(user_id="user-1", ledger_id=created.id, today=TODAY)

    checking = orchestrator.create_account(ctx, "Checking", AccountType.ASSET)
    card = orchestrator.create_account(ctx, "Visa", AccountType.LIABILITY)
    car_loan = orchestrator.create_account(ctx, "Car Loan", AccountType.LIABILITY)
    groceries = orchestrator.create_category(ctx, "Groceries")
    rent = orchestrator.create_category(ctx, "Rent")
    fun = orchestrator.create_category(ctx, "Fun Money")
    interest = orchestrator.create_category(ctx, "Loan Interest")

    manager = AccountManager(get_settings().budget)
    with database.read_session() as session:
        rta_id = manager.system_account(session, created.id, AccountRole.READY_TO_ASSIGN).id
        adjustment_id = manager.system_account(session, created.id, AccountRole.ADJUSTMENT).id

    return SimpleNamespace(
        ctx=ctx,
        id=created.id,
        checking=checking.id,
        card=card.id,
        car_loan=car_loan.id,
        groceries=groceries.id,
        rent=rent.id,
        fun=fun.id,
        interest=interest.id,
        rta=rta_id,
        adjustment=adjustment_id,
    )


@pytest.fixture
def receive_income(orchestrator, ledger):
    """Paycheck into checking, credited to Ready to Assign."""
    def _receive(amount_cents, on_date=TODAY):
        return orchestrator.post_transaction(
            ledger.ctx, ledger.checking, ledger.rta, amount_cents, on_date, "Paycheck"
        )
    return _receive


@pytest.fixture
def spend(orchestrator, ledger):
    """Spending from checking (or another account) against a category."""
    def _spend(category_id, amount_cents, on_date=TODAY, account_id=None):
        return orchestrator.post_transaction(
            ledger.ctx, category_id, account_id or ledger.checking, amount_cents, on_date, "Purchase"
        )
    return _spend
