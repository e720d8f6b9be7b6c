"""
Ledger and account management.

A new ledger always gets its two system accounts: the income account
all inflows land in (Ready to Assign) and the equity account that
reconciliation adjustments and card-payment spending are posted against.
"""

from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select

from envelope_ledger.config import BudgetSettings
from envelope_ledger.engine.envelopes import EnvelopeCalculator
from envelope_ledger.engine.errors import InvalidAccount, InvalidRequest, LedgerNotFound
from envelope_ledger.models.ledger import AccountRole, AccountType, LedgerContext
from envelope_ledger.services.storage import lock_rows
from envelope_ledger.services.storage.tables import AccountRow, LedgerRow


logger = structlog.get_logger(__name__)


class AccountManager:
    """Creates ledgers and accounts and resolves them for the other engines."""

    def __init__(self, settings: BudgetSettings, calculator: Optional[EnvelopeCalculator] = None):
        self._settings = settings
        self._calculator = calculator or EnvelopeCalculator()

    # =========================================================================
    # LEDGERS
    # =========================================================================

    def create_ledger(self, session, owner_id: str, name: str) -> LedgerRow:
        if not owner_id or not name:
            raise InvalidRequest("A ledger needs an owner and a name")
        ledger = LedgerRow(owner_id=owner_id, name=name)
        session.add(ledger)
        session.flush()

        session.add_all([
            AccountRow(
                ledger_id=ledger.id,
                name=self._settings.ready_to_assign_account_name,
                type=AccountType.INCOME.value,
                role=AccountRole.READY_TO_ASSIGN.value,
            ),
            AccountRow(
                ledger_id=ledger.id,
                name=self._settings.adjustment_account_name,
                type=AccountType.EQUITY.value,
                role=AccountRole.ADJUSTMENT.value,
            ),
        ])
        session.flush()
        logger.info("ledger_created", ledger_id=str(ledger.id), owner_id=owner_id)
        return ledger

    def require_ledger(self, session, ctx: LedgerContext) -> LedgerRow:
        """Return the context's ledger; LedgerNotFound unless the user owns it."""
        ledger = session.get(LedgerRow, ctx.ledger_id)
        if ledger is None or ledger.owner_id != ctx.user_id:
            raise LedgerNotFound(
                "Ledger not found for this user",
                ledger_id=ctx.ledger_id,
            )
        return ledger

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    def get_account(self, session, ledger_id: UUID, account_id: UUID) -> AccountRow:
        account = session.get(AccountRow, account_id)
        if account is None or account.ledger_id != ledger_id:
            raise InvalidAccount(
                f"Account {account_id} does not exist in this ledger",
                account_id=account_id,
            )
        return account

    def get_category(self, session, ledger_id: UUID, category_id: UUID) -> AccountRow:
        account = self.get_account(session, ledger_id, category_id)
        if not is_category(account):
            raise InvalidAccount(
                f"Account '{account.name}' is not a budget category",
                account_id=category_id,
            )
        if not account.is_active:
            raise InvalidAccount(f"Category '{account.name}' is inactive", account_id=category_id)
        return account

    def system_account(self, session, ledger_id: UUID, role: AccountRole) -> AccountRow:
        account = session.scalars(
            select(AccountRow).where(
                AccountRow.ledger_id == ledger_id,
                AccountRow.role == role.value,
            )
        ).first()
        if account is None:
            raise InvalidAccount(f"Ledger has no {role.value} account", role=role.value)
        return account

    def create_account(
        self,
        session,
        ledger_id: UUID,
        name: str,
        account_type: AccountType,
        is_group: bool = False,
        parent_id: Optional[UUID] = None,
    ) -> AccountRow:
        name = (name or "").strip()
        if not name:
            raise InvalidRequest("Account name is required")

        clash = session.scalars(
            select(AccountRow.id).where(
                AccountRow.ledger_id == ledger_id,
                AccountRow.name == name,
            )
        ).first()
        if clash is not None:
            raise InvalidRequest(f"An account named '{name}' already exists", name=name)

        if parent_id is not None:
            parent = self.get_account(session, ledger_id, parent_id)
            if not parent.is_group or parent.type != account_type.value:
                raise InvalidAccount(
                    f"Parent '{parent.name}' must be a {account_type.value} group",
                    parent_id=parent_id,
                )

        account = AccountRow(
            ledger_id=ledger_id,
            name=name,
            type=account_type.value,
            role=AccountRole.STANDARD.value,
            is_group=is_group,
            parent_id=parent_id,
        )
        session.add(account)
        session.flush()
        logger.info(
            "account_created",
            ledger_id=str(ledger_id),
            account_id=str(account.id),
            account_type=account_type.value,
        )
        return account

    def create_category(
        self,
        session,
        ledger_id: UUID,
        name: str,
        group_id: Optional[UUID] = None,
    ) -> AccountRow:
        return self.create_account(session, ledger_id, name, AccountType.EQUITY, parent_id=group_id)

    def find_or_create_category(self, session, ledger_id: UUID, name: str) -> AccountRow:
        existing = session.scalars(
            select(AccountRow).where(
                AccountRow.ledger_id == ledger_id,
                AccountRow.name == name,
            )
        ).first()
        if existing is not None:
            if not is_category(existing) or not existing.is_active:
                raise InvalidAccount(f"'{name}' exists but is not an active category", name=name)
            return existing
        return self.create_category(session, ledger_id, name)

    def deactivate_account(self, session, ledger_id: UUID, account_id: UUID) -> AccountRow:
        """
        Soft-delete an account.

        System accounts stay. An account still carrying money must be
        emptied first, otherwise that money would silently vanish from
        views. For a category the money is its envelope balance (assigned
        plus activity, future months included), not its posting balance.
        The row is locked so a concurrent assignment cannot slip in.
        """
        account = lock_rows(session, AccountRow, [account_id]).get(account_id)
        if account is None or account.ledger_id != ledger_id:
            raise InvalidAccount(
                f"Account {account_id} does not exist in this ledger",
                account_id=account_id,
            )
        if account.role != AccountRole.STANDARD.value:
            raise InvalidAccount(f"System account '{account.name}' cannot be deactivated")

        if is_category(account):
            balance = self._calculator.lifetime_balance(session, ledger_id, account_id)
        else:
            balance = account.balance_cents
        if balance != 0:
            raise InvalidRequest(
                f"Account '{account.name}' still has a balance",
                balance_cents=balance,
            )
        account.is_active = False
        session.flush()
        return account


def is_category(account: AccountRow) -> bool:
    return (
        account.type == AccountType.EQUITY.value
        and not account.is_group
        and account.role == AccountRole.STANDARD.value
    )
