"""
Domain errors of the ledger engine.

Every error carries a machine-readable `kind` and a human-readable
reason. They are raised before any write, so the surrounding database
transaction rolls back with nothing to undo.
"""

from typing import Any


class LedgerError(Exception):
    """Base class for all domain errors."""

    kind: str = "LedgerError"

    def __init__(self, reason: str, **details: Any):
        super().__init__(reason)
        self.reason = reason
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "reason": self.reason,
            "details": {k: str(v) for k, v in self.details.items()},
        }


class InvalidAccount(LedgerError):
    """Account missing, inactive, a group, or foreign to the ledger."""
    kind = "InvalidAccount"


class ZeroOrNegativeAmount(LedgerError):
    kind = "ZeroOrNegativeAmount"


class InsufficientCategoryBalance(LedgerError):
    kind = "InsufficientCategoryBalance"


class ReadyToAssignWouldGoNegative(LedgerError):
    """Raised only when the overdraft policy forbids negative Ready-to-Assign."""
    kind = "ReadyToAssignWouldGoNegative"


class GoalNotFound(LedgerError):
    kind = "GoalNotFound"


class ScheduleNotFound(LedgerError):
    kind = "ScheduleNotFound"


class DuplicateMaterialization(LedgerError):
    """The occurrence was already created by another run. Reported as a skip."""
    kind = "DuplicateMaterialization"


class LedgerNotFound(LedgerError):
    kind = "LedgerNotFound"


class TransactionNotFound(LedgerError):
    kind = "TransactionNotFound"


class CategoryNotOverspent(LedgerError):
    kind = "CategoryNotOverspent"


class InvalidRequest(LedgerError):
    """Arguments that are well-typed but make no sense (e.g. n=1 installments)."""
    kind = "InvalidRequest"


class AlreadyProcessed(LedgerError):
    kind = "AlreadyProcessed"
