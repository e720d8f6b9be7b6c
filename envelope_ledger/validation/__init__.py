"""Validation package."""

from envelope_ledger.validation.validator import PostingValidator, raise_for_result

__all__ = ["PostingValidator", "raise_for_result"]
