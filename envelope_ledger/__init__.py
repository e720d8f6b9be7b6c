"""
Envelope Ledger - Source Package

A zero-sum ("envelope") budgeting engine on top of a double-entry
ledger: every dollar of income is assigned to a category before it is
spent, and every transaction is a balanced two-leg posting.

DESIGN PRINCIPLES:
1. Money is integer cents, never floats
2. Fail early, fail visibly; nothing is written on a rejected call
3. One database transaction per mutating operation
4. Every step must be auditable
5. Every call is scoped by an explicit LedgerContext
"""

__version__ = "1.0.0"
__author__ = "Envelope Ledger Team"
