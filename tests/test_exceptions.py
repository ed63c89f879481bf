"""
Unit tests for the unified exception hierarchy.

Tests exception creation, attributes, string representations, and error context.
"""

import pytest
from exceptions import (
    FinanceAppError,
    ConfigError,
    DatabaseError,
    BudgetError,
    ValidationError,
    CategoryNotFoundError,
    StoreError,
    StoreUnavailableError,
    PartialBatchFailureError,
)


class TestFinanceAppError:
    """Test base FinanceAppError class."""

    def test_basic_exception_creation(self):
        """Test creating a basic FinanceAppError."""
        error = FinanceAppError("Test error message")
        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.details == {}
        assert error.original_error is None

    def test_exception_with_details(self):
        """Details are appended to the string form."""
        error = FinanceAppError("Test error", details={"key1": "value1", "key2": 123})
        assert error.details == {"key1": "value1", "key2": 123}
        assert str(error) == "Test error (key1=value1, key2=123)"

    def test_exception_with_original_error(self):
        """The causing exception is kept for inspection."""
        original = ValueError("Original error")
        error = FinanceAppError("Wrapped error", original_error=original)
        assert error.original_error is original


class TestExceptionHierarchy:
    """Test specific exception subclasses."""

    @pytest.mark.parametrize("exc_class", [
        ConfigError,
        DatabaseError,
        BudgetError,
        ValidationError,
        CategoryNotFoundError,
        StoreUnavailableError,
        PartialBatchFailureError,
    ])
    def test_all_inherit_from_base(self, exc_class):
        """Every error can be caught as FinanceAppError."""
        with pytest.raises(FinanceAppError):
            raise exc_class("boom")

    def test_reconciliation_errors_are_budget_errors(self):
        """The reconciler failure family shares BudgetError."""
        for exc_class in (ValidationError, CategoryNotFoundError, StoreUnavailableError, PartialBatchFailureError):
            assert issubclass(exc_class, BudgetError)

    def test_store_errors_share_base(self):
        """Transport and batch failures are both store errors."""
        assert issubclass(StoreUnavailableError, StoreError)
        assert issubclass(PartialBatchFailureError, StoreError)
        assert not issubclass(CategoryNotFoundError, StoreError)

    def test_category_not_found_details(self):
        """CategoryNotFoundError carries the requested name."""
        error = CategoryNotFoundError("Category not found", details={"category": "Travel"})
        assert "category=Travel" in str(error)
