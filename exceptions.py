"""
Unified exception hierarchy for the budget engine.

FinanceAppError is the base exception; budget-specific failures hang off
BudgetError so callers can catch the whole reconciliation family at once.
"""

from typing import Optional


class FinanceAppError(Exception):
    """
    Base exception class for all budget engine errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary with additional error context
        original_error: Optional original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        """
        Initialize FinanceAppError.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
            original_error: Optional original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({detail_str})"
        return msg


class ConfigError(FinanceAppError):
    """Raised when configuration loading or validation fails."""
    pass


class DatabaseError(FinanceAppError):
    """Raised when the SQL backend cannot be initialized."""
    pass


class BudgetError(FinanceAppError):
    """Raised when budget management operations fail."""
    pass


class ValidationError(BudgetError):
    """Raised for bad input such as a non-numeric or non-positive limit."""
    pass


class CategoryNotFoundError(BudgetError):
    """Raised when a category name does not resolve to any stored category."""
    pass


class StoreError(BudgetError):
    """Base error for record store failures."""
    pass


class StoreUnavailableError(StoreError):
    """Raised when the record store cannot be reached or rejects a request outright."""
    pass


class PartialBatchFailureError(StoreError):
    """Raised when the store accepted a batch but rejected individual records."""
    pass
