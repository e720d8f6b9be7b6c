"""
Ledger engine package.

Engines work on an open SQLAlchemy session handed in by the caller;
they never commit. Domain errors are re-exported here.
"""

from envelope_ledger.engine.errors import (
    AlreadyProcessed,
    CategoryNotOverspent,
    DuplicateMaterialization,
    GoalNotFound,
    InsufficientCategoryBalance,
    InvalidAccount,
    InvalidRequest,
    LedgerError,
    LedgerNotFound,
    ReadyToAssignWouldGoNegative,
    ScheduleNotFound,
    TransactionNotFound,
    ZeroOrNegativeAmount,
)

__all__ = [
    "AlreadyProcessed",
    "CategoryNotOverspent",
    "DuplicateMaterialization",
    "GoalNotFound",
    "InsufficientCategoryBalance",
    "InvalidAccount",
    "InvalidRequest",
    "LedgerError",
    "LedgerNotFound",
    "ReadyToAssignWouldGoNegative",
    "ScheduleNotFound",
    "TransactionNotFound",
    "ZeroOrNegativeAmount",
]
