"""
Two-Stage Posting Validation

DESIGN DECISION: Every posting is validated in two distinct stages
before anything is written:

STAGE 1 - SCHEMA VALIDATION:
- Amount is an integer number of cents and positive
- Debit and credit legs are different accounts
- Description fits the column

STAGE 2 - SEMANTIC VALIDATION:
- Both accounts exist and belong to the ledger
- Both accounts are active and postable (not groups)

Stage 2 only runs when stage 1 passes; it needs the account rows,
which the posting engine has already locked.

IMPORTANT: Validation NEVER silently fixes issues.
The posting engine raises the error kind of the first error issue.
"""

from typing import Mapping, Optional
from uuid import UUID

from envelope_ledger.engine.errors import (
    InvalidAccount,
    InvalidRequest,
    LedgerError,
    ZeroOrNegativeAmount,
)
from envelope_ledger.models.budget import ValidationIssue, ValidationResult
from envelope_ledger.services.storage.tables import AccountRow


MAX_DESCRIPTION_LENGTH = 500

_ERRORS_BY_KIND: dict[str, type[LedgerError]] = {
    InvalidAccount.kind: InvalidAccount,
    ZeroOrNegativeAmount.kind: ZeroOrNegativeAmount,
    InvalidRequest.kind: InvalidRequest,
}


class PostingValidator:
    """
    Validates a proposed two-leg posting.

    Stage 1: Schema validation (no database access)
    Stage 2: Semantic validation (needs the account rows)
    """

    def _validate_schema(
        self,
        amount_cents: int,
        debit_account_id: Optional[UUID],
        credit_account_id: Optional[UUID],
        description: str,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
            issues.append(ValidationIssue(
                field="amount_cents",
                issue_type=ZeroOrNegativeAmount.kind,
                message=f"Amount must be an integer number of cents, got {type(amount_cents).__name__}",
                severity="error",
            ))
        elif amount_cents <= 0:
            issues.append(ValidationIssue(
                field="amount_cents",
                issue_type=ZeroOrNegativeAmount.kind,
                message=f"Amount must be greater than zero, got {amount_cents}",
                severity="error",
            ))

        if debit_account_id is None or credit_account_id is None:
            issues.append(ValidationIssue(
                field="account",
                issue_type=InvalidAccount.kind,
                message="Both a debit and a credit account are required",
                severity="error",
            ))
        elif debit_account_id == credit_account_id:
            issues.append(ValidationIssue(
                field="credit_account_id",
                issue_type=InvalidAccount.kind,
                message="Debit and credit account must differ",
                severity="error",
            ))

        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            issues.append(ValidationIssue(
                field="description",
                issue_type=InvalidRequest.kind,
                message=f"Description is longer than {MAX_DESCRIPTION_LENGTH} characters",
                severity="error",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _check_account(
        self,
        field: str,
        account_id: UUID,
        account: Optional[AccountRow],
        ledger_id: UUID,
    ) -> Optional[ValidationIssue]:
        if account is None or account.ledger_id != ledger_id:
            message = f"Account {account_id} does not exist in this ledger"
        elif not account.is_active:
            message = f"Account '{account.name}' is inactive"
        elif account.is_group:
            message = f"Account '{account.name}' is a group and cannot be posted to"
        else:
            return None
        return ValidationIssue(
            field=field,
            issue_type=InvalidAccount.kind,
            message=message,
            severity="error",
        )

    def _validate_semantic(
        self,
        ledger_id: UUID,
        debit_account_id: UUID,
        credit_account_id: UUID,
        accounts: Mapping[UUID, AccountRow],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        for field, account_id in (
            ("debit_account_id", debit_account_id),
            ("credit_account_id", credit_account_id),
        ):
            issue = self._check_account(field, account_id, accounts.get(account_id), ledger_id)
            if issue:
                issues.append(issue)

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate_schema(
        self,
        amount_cents: int,
        debit_account_id: Optional[UUID],
        credit_account_id: Optional[UUID],
        description: str = "",
    ) -> ValidationResult:
        schema_valid, issues = self._validate_schema(
            amount_cents, debit_account_id, credit_account_id, description
        )
        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=False,
            issues=issues,
        )

    def validate(
        self,
        ledger_id: UUID,
        amount_cents: int,
        debit_account_id: Optional[UUID],
        credit_account_id: Optional[UUID],
        accounts: Mapping[UUID, AccountRow],
        description: str = "",
    ) -> ValidationResult:
        """
        Run the full two-stage validation pipeline.

        Args:
            ledger_id: Ledger the posting must stay inside
            amount_cents: Posting amount
            debit_account_id: Account to debit
            credit_account_id: Account to credit
            accounts: Already-loaded account rows keyed by id
            description: Free-text memo

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(
            amount_cents, debit_account_id, credit_account_id, description
        )
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(
                ledger_id, debit_account_id, credit_account_id, accounts
            )
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )


def raise_for_result(result: ValidationResult) -> None:
    """Raise the domain error matching the first error issue, if any."""
    issue = result.first_error
    if issue is None:
        return
    error_cls = _ERRORS_BY_KIND.get(issue.issue_type, InvalidRequest)
    raise error_cls(issue.message, field=issue.field)
