"""
Budget upsert reconciliation.

BudgetReconciler creates the budget for a (category, period) pair when it is
absent and updates it in place otherwise. The record store offers no
uniqueness constraint and the find-then-write sequence is not atomic, so
upserts for the same key are serialized through a KeyedLock: a second call
for a key waits until the first has written, then sees the record and
updates it.
"""

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Hashable, Optional

from exceptions import CategoryNotFoundError, ValidationError
from models import Budget, CategoryRef
from periods import parse_period_key
from record_store import BudgetStore, CategoryStore, budget_update_fields, unwrap_single

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    One asyncio.Lock per key, created on demand and dropped once unused.

    Waiters for a key are served in arrival order.
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


def budget_display_name(category_name: str, period_key: str) -> str:
    """Derived budget name, e.g. "Groceries - 2024-05"."""
    return f"{category_name} - {period_key}"


def _coerce_limit(monthly_limit: Any) -> float:
    if isinstance(monthly_limit, bool):
        raise ValidationError("Monthly limit must be a number", details={"monthly_limit": monthly_limit})
    try:
        limit = float(monthly_limit)
    except (TypeError, ValueError):
        raise ValidationError("Monthly limit must be a number", details={"monthly_limit": monthly_limit})
    if not math.isfinite(limit) or limit < 0:
        raise ValidationError("Monthly limit must be a finite, non-negative number", details={"monthly_limit": monthly_limit})
    return limit


class BudgetReconciler:
    """
    Creates or updates the single budget of a (category, period) pair.
    """

    def __init__(
        self,
        category_store: CategoryStore,
        budget_store: BudgetStore,
        category_type: Optional[str] = None
    ):
        """
        Initialize the reconciler.

        Args:
            category_store: Store used to resolve category names
            budget_store: Store holding the budget records
            category_type: Optional type filter for the category lookup
        """
        self.category_store = category_store
        self.budget_store = budget_store
        self.category_type = category_type
        self._locks = KeyedLock()

    async def resolve_category(self, category_name: str) -> CategoryRef:
        """
        Resolve a category name to its reference.

        Raises:
            CategoryNotFoundError: If no category carries the name
        """
        matches = await self.category_store.find_by_name(category_name, self.category_type)
        if not matches:
            raise CategoryNotFoundError("Category not found", details={"category": category_name})
        if len(matches) > 1:
            logger.warning(
                "Category name '%s' matches %d records; using id %s",
                category_name,
                len(matches),
                matches[0].id
            )
        return matches[0].ref()

    async def upsert(
        self,
        category_name: str,
        monthly_limit: Any,
        period_key: str,
        year: Optional[int] = None
    ) -> Budget:
        """
        Create or update the budget for a category and period.

        Args:
            category_name: Exact category display name
            monthly_limit: Limit to store (0 allowed as a placeholder)
            period_key: "YYYY-MM" period
            year: Year of the period; derived from period_key when omitted

        Returns:
            The created or updated Budget

        Raises:
            ValidationError: For blank names, bad limits, malformed periods or a mismatched year
            CategoryNotFoundError: If the category does not exist
            StoreUnavailableError: If the store cannot be reached
            PartialBatchFailureError: If the store rejected the record
        """
        name = (category_name or "").strip()
        if not name:
            raise ValidationError("Category is required")
        limit = _coerce_limit(monthly_limit)
        period_year, _ = parse_period_key(period_key)
        if year is not None and str(year).strip() != str(period_year):
            raise ValidationError(
                "Year does not match period key",
                details={"year": year, "period_key": period_key}
            )

        category = await self.resolve_category(name)
        async with self._locks.hold((category.id, period_key)):
            return await self._write(name, category, limit, period_key, period_year)

    async def _write(
        self,
        category_name: str,
        category: CategoryRef,
        limit: float,
        period_key: str,
        year: int
    ) -> Budget:
        existing = await self.budget_store.find_by_category_and_period(category.id, period_key)

        if existing is not None:
            logger.info("Updating budget %s for '%s' (%s): %.2f", existing.id, category_name, period_key, limit)
            fields = budget_update_fields(
                monthly_limit=limit,
                month=period_key,
                year=year,
                category=category.id
            )
            response = await self.budget_store.update(existing.id, fields)
            return unwrap_single(response, "update budget")

        logger.info("Creating budget for '%s' (%s): %.2f", category_name, period_key, limit)
        record = Budget(
            id=None,
            name=budget_display_name(category_name, period_key),
            monthly_limit=limit,
            month=period_key,
            year=year,
            category=category,
        )
        response = await self.budget_store.create(record)
        return unwrap_single(response, "create budget")

    async def delete(self, budget_id: int) -> None:
        """Delete a budget (no reconciliation involved)."""
        response = await self.budget_store.delete(budget_id)
        unwrap_single(response, "delete budget")
        logger.info("Deleted budget %s", budget_id)
