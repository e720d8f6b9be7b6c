"""
Ledger Posting Engine

The only code path that writes transactions. Every posting is a
balanced two-leg transfer: the debit account's raw balance goes up by
the amount and the credit account's goes down by the same amount, so
the ledger-wide sum of raw balances never leaves zero.

DESIGN DECISION: Account balances are cached on the account row and
updated under a row lock in the same database transaction as the
insert. `recompute_balance` rebuilds the value from the postings.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import func, or_, select

from envelope_ledger.engine.errors import AlreadyProcessed, TransactionNotFound
from envelope_ledger.models.ledger import ClearedStatus, TransactionSource
from envelope_ledger.services.storage import lock_rows
from envelope_ledger.services.storage.tables import AccountRow, TransactionRow
from envelope_ledger.validation import PostingValidator, raise_for_result


logger = structlog.get_logger(__name__)


class PostingEngine:
    """Creates postings and answers balance questions about single accounts."""

    def __init__(self, validator: Optional[PostingValidator] = None):
        self._validator = validator or PostingValidator()

    def post(
        self,
        session,
        ledger_id: UUID,
        debit_account_id: UUID,
        credit_account_id: UUID,
        amount_cents: int,
        on_date: date,
        description: str = "",
        source: TransactionSource = TransactionSource.MANUAL,
        cleared_status: ClearedStatus = ClearedStatus.UNCLEARED,
    ) -> TransactionRow:
        """
        Record one balanced posting.

        Raises:
            ZeroOrNegativeAmount: amount is not a positive integer
            InvalidAccount: an account is missing, foreign, inactive or a group
        """
        description = description or ""

        # Cheap checks first, before any row is locked
        raise_for_result(self._validator.validate_schema(
            amount_cents, debit_account_id, credit_account_id, description
        ))

        accounts = lock_rows(session, AccountRow, [debit_account_id, credit_account_id])
        raise_for_result(self._validator.validate(
            ledger_id=ledger_id,
            amount_cents=amount_cents,
            debit_account_id=debit_account_id,
            credit_account_id=credit_account_id,
            accounts=accounts,
            description=description,
        ))

        txn = TransactionRow(
            ledger_id=ledger_id,
            date=on_date,
            amount_cents=amount_cents,
            debit_account_id=debit_account_id,
            credit_account_id=credit_account_id,
            description=description,
            cleared_status=cleared_status.value,
            source=source.value,
        )
        session.add(txn)
        accounts[debit_account_id].balance_cents += amount_cents
        accounts[credit_account_id].balance_cents -= amount_cents
        session.flush()

        logger.debug(
            "transaction_posted",
            ledger_id=str(ledger_id),
            transaction_id=str(txn.id),
            amount_cents=amount_cents,
            source=source.value,
        )
        return txn

    # =========================================================================
    # BALANCES
    # =========================================================================

    def recompute_balance(self, session, account_id: UUID) -> int:
        """sum(debits) - sum(credits) straight from the postings."""
        debits = session.scalar(
            select(func.coalesce(func.sum(TransactionRow.amount_cents), 0))
            .where(TransactionRow.debit_account_id == account_id)
        )
        credits = session.scalar(
            select(func.coalesce(func.sum(TransactionRow.amount_cents), 0))
            .where(TransactionRow.credit_account_id == account_id)
        )
        return int(debits) - int(credits)

    # =========================================================================
    # CLEARED STATUS
    # =========================================================================

    def get_transaction(self, session, ledger_id: UUID, transaction_id: UUID) -> TransactionRow:
        txn = session.get(TransactionRow, transaction_id)
        if txn is None or txn.ledger_id != ledger_id:
            raise TransactionNotFound(
                f"Transaction {transaction_id} not found",
                transaction_id=transaction_id,
            )
        return txn

    def toggle_cleared(self, session, ledger_id: UUID, transaction_id: UUID) -> TransactionRow:
        """Flip uncleared <-> cleared. Reconciled transactions are frozen."""
        locked = lock_rows(session, TransactionRow, [transaction_id])
        txn = locked.get(transaction_id)
        if txn is None or txn.ledger_id != ledger_id:
            raise TransactionNotFound(
                f"Transaction {transaction_id} not found",
                transaction_id=transaction_id,
            )
        if txn.cleared_status == ClearedStatus.RECONCILED.value:
            raise AlreadyProcessed(
                "Reconciled transactions cannot change cleared status",
                transaction_id=transaction_id,
            )
        txn.cleared_status = (
            ClearedStatus.UNCLEARED.value
            if txn.cleared_status == ClearedStatus.CLEARED.value
            else ClearedStatus.CLEARED.value
        )
        session.flush()
        return txn

    def transactions_for_account(
        self,
        session,
        ledger_id: UUID,
        account_id: UUID,
        statuses: Optional[list[ClearedStatus]] = None,
    ) -> list[TransactionRow]:
        stmt = select(TransactionRow).where(
            TransactionRow.ledger_id == ledger_id,
            or_(
                TransactionRow.debit_account_id == account_id,
                TransactionRow.credit_account_id == account_id,
            ),
        )
        if statuses:
            stmt = stmt.where(TransactionRow.cleared_status.in_([s.value for s in statuses]))
        return list(session.scalars(stmt.order_by(TransactionRow.date, TransactionRow.created_at)))
