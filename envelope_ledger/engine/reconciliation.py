"""
Reconciliation Engine

Brings an account in line with a bank statement:

1. Marks the listed transactions reconciled
2. difference = statement balance - natural balance of the account
3. Posts an adjustment of abs(difference) against the ledger's
   adjustment account when the difference is non-zero
4. Stores an immutable ReconciliationRecord

A retry with identical inputs for the same account and statement date
returns the stored record. Different inputs make a new attempt; earlier
adjustments are never reversed here.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select

from envelope_ledger.engine.accounts import AccountManager
from envelope_ledger.engine.errors import InvalidAccount, InvalidRequest, TransactionNotFound
from envelope_ledger.engine.posting import PostingEngine
from envelope_ledger.models.ledger import (
    AccountRole,
    AccountType,
    ClearedStatus,
    TransactionSource,
)
from envelope_ledger.services.storage import lock_rows
from envelope_ledger.services.storage.tables import AccountRow, ReconciliationRow, TransactionRow


logger = structlog.get_logger(__name__)


def natural_balance(account: AccountRow) -> int:
    if account.type == AccountType.ASSET.value:
        return account.balance_cents
    return -account.balance_cents


def _parse_transaction_id(txn_id) -> UUID:
    if isinstance(txn_id, UUID):
        return txn_id
    try:
        return UUID(str(txn_id))
    except ValueError:
        raise TransactionNotFound(
            f"Transaction {txn_id!r} is not a valid transaction id",
            transaction_id=str(txn_id),
        )


class ReconciliationEngine:
    def __init__(self, accounts: AccountManager, posting: PostingEngine):
        self._accounts = accounts
        self._posting = posting

    def _find_replay(
        self,
        session,
        account_id: UUID,
        statement_date: date,
        statement_balance_cents: int,
        cleared_ids: list[str],
    ) -> Optional[ReconciliationRow]:
        previous = session.scalars(
            select(ReconciliationRow)
            .where(
                ReconciliationRow.account_id == account_id,
                ReconciliationRow.statement_date == statement_date,
            )
            .order_by(ReconciliationRow.created_at.desc())
        ).first()
        if (
            previous is not None
            and previous.statement_balance_cents == statement_balance_cents
            and sorted(previous.cleared_transaction_ids) == cleared_ids
        ):
            return previous
        return None

    def reconcile(
        self,
        session,
        ledger_id: UUID,
        account_id: UUID,
        statement_date: date,
        statement_balance_cents: int,
        cleared_transaction_ids: list[UUID],
        notes: Optional[str] = None,
    ) -> tuple[ReconciliationRow, bool]:
        """
        Reconcile an account against a statement.

        Returns the record and whether it was replayed from an
        identical earlier call.
        """
        if isinstance(statement_balance_cents, bool) or not isinstance(statement_balance_cents, int):
            raise InvalidRequest("Statement balance must be an integer number of cents")

        account = lock_rows(session, AccountRow, [account_id]).get(account_id)
        if account is None or account.ledger_id != ledger_id:
            raise InvalidAccount(f"Account {account_id} does not exist in this ledger", account_id=account_id)
        if account.type not in (AccountType.ASSET.value, AccountType.LIABILITY.value) or account.is_group:
            raise InvalidAccount(f"'{account.name}' cannot be reconciled", account_id=account_id)

        cleared_ids = sorted({str(_parse_transaction_id(txn_id)) for txn_id in cleared_transaction_ids})
        replay = self._find_replay(session, account_id, statement_date, statement_balance_cents, cleared_ids)
        if replay is not None:
            return replay, True

        transactions = lock_rows(session, TransactionRow, [UUID(txn_id) for txn_id in cleared_ids])
        for txn_id in cleared_ids:
            txn = transactions.get(UUID(txn_id))
            if (
                txn is None
                or txn.ledger_id != ledger_id
                or account_id not in (txn.debit_account_id, txn.credit_account_id)
            ):
                raise TransactionNotFound(
                    f"Transaction {txn_id} does not belong to this account",
                    transaction_id=txn_id,
                )
            txn.cleared_status = ClearedStatus.RECONCILED.value

        balance_before = natural_balance(account)
        difference = statement_balance_cents - balance_before

        adjustment_id = None
        if difference != 0:
            adjustment_account = self._accounts.system_account(session, ledger_id, AccountRole.ADJUSTMENT)
            raise_raw = (difference > 0) == (account.type == AccountType.ASSET.value)
            debit_id, credit_id = (
                (account_id, adjustment_account.id)
                if raise_raw
                else (adjustment_account.id, account_id)
            )
            adjustment = self._posting.post(
                session,
                ledger_id,
                debit_account_id=debit_id,
                credit_account_id=credit_id,
                amount_cents=abs(difference),
                on_date=statement_date,
                description=f"Reconciliation adjustment {statement_date.isoformat()}",
                source=TransactionSource.RECONCILIATION,
                cleared_status=ClearedStatus.RECONCILED,
            )
            adjustment_id = adjustment.id

        record = ReconciliationRow(
            ledger_id=ledger_id,
            account_id=account_id,
            statement_date=statement_date,
            statement_balance_cents=statement_balance_cents,
            ledger_balance_cents=balance_before,
            difference_cents=difference,
            cleared_transaction_ids=cleared_ids,
            adjustment_transaction_id=adjustment_id,
            notes=notes,
        )
        session.add(record)
        session.flush()

        logger.info(
            "account_reconciled",
            ledger_id=str(ledger_id),
            account_id=str(account_id),
            difference_cents=difference,
        )
        return record, False

    def history(self, session, ledger_id: UUID, account_id: UUID) -> list[ReconciliationRow]:
        self._accounts.get_account(session, ledger_id, account_id)
        return list(session.scalars(
            select(ReconciliationRow)
            .where(
                ReconciliationRow.ledger_id == ledger_id,
                ReconciliationRow.account_id == account_id,
            )
            .order_by(ReconciliationRow.created_at.desc())
        ))
