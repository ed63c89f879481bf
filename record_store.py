"""
Record store contracts consumed by the budget engine.

The engine never talks to a global client: a RecordStore bundling the
category, transaction and budget stores is constructed by the caller and
passed in. Writes answer with a BatchResponse envelope mirroring a batch
API (the request as a whole can be rejected, or individual records can
fail); unwrap_single turns an envelope into a record or an exception.

InMemoryRecordStore is a complete asynchronous implementation used by the
tests and for local experimentation; database_ops.SQLRecordStore is the
persistent one.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from exceptions import PartialBatchFailureError, StoreUnavailableError
from models import Budget, Category, CategoryRef, Transaction, TransactionType, normalize_category_ref
from periods import period_bounds

logger = logging.getLogger(__name__)

BUDGET_UPDATE_FIELDS = frozenset({"name", "monthly_limit", "month", "year", "category"})


@dataclass
class RecordResult:
    """Outcome of one record inside a batch request."""
    success: bool
    data: Any = None
    message: str = ""


@dataclass
class BatchResponse:
    """
    Envelope returned by store writes.

    Attributes:
        success: False when the store rejected the whole request
        results: Per-record outcomes
        message: Envelope-level message
    """
    success: bool
    results: List[RecordResult] = field(default_factory=list)
    message: str = ""

    @classmethod
    def ok(cls, data: Any) -> "BatchResponse":
        return cls(success=True, results=[RecordResult(success=True, data=data)])

    @classmethod
    def record_failed(cls, message: str) -> "BatchResponse":
        return cls(success=True, results=[RecordResult(success=False, message=message)])


def unwrap_single(response: BatchResponse, action: str) -> Any:
    """
    Return the first record of a batch response.

    Args:
        response: Envelope returned by a store write
        action: Short description used in error messages ("create budget")

    Raises:
        StoreUnavailableError: If the envelope was rejected or carries no results
        PartialBatchFailureError: If any record failed (first failure's message)
    """
    if not response.success:
        raise StoreUnavailableError(response.message or f"Failed to {action}", details={"action": action})

    failed = [result for result in response.results if not result.success]
    if failed:
        logger.error("Failed to %s: %d record(s) rejected", action, len(failed))
        raise PartialBatchFailureError(
            failed[0].message or f"Failed to {action}",
            details={"action": action, "failed": len(failed)}
        )

    if not response.results:
        raise StoreUnavailableError("No response data", details={"action": action})
    return response.results[0].data


class CategoryStore(ABC):
    """Read and write access to categories."""

    @abstractmethod
    async def find_by_name(self, name: str, category_type: Optional[str] = None) -> List[Category]:
        """Exact-name lookup, optionally filtered by type."""

    @abstractmethod
    async def list_by_type(self, category_type: str) -> List[Category]:
        """All categories of one type."""

    @abstractmethod
    async def list_all(self) -> List[Category]:
        """All categories."""

    @abstractmethod
    async def get_by_id(self, category_id: int) -> Optional[Category]:
        """One category, or None."""

    @abstractmethod
    async def create(self, category: Category) -> BatchResponse:
        """Create a category."""

    @abstractmethod
    async def delete(self, category_id: int) -> BatchResponse:
        """Delete a category."""


class TransactionStore(ABC):
    """Read and write access to transactions."""

    @abstractmethod
    async def list_by_period(self, period_key: str) -> List[Transaction]:
        """Transactions dated inside the period, newest first."""

    @abstractmethod
    async def list_by_category(self, category_id: int) -> List[Transaction]:
        """Transactions referencing one category, newest first."""

    @abstractmethod
    async def create(self, transaction: Transaction) -> BatchResponse:
        """Create a transaction."""

    @abstractmethod
    async def delete(self, transaction_id: int) -> BatchResponse:
        """Delete a transaction."""


class BudgetStore(ABC):
    """Read and write access to budgets."""

    @abstractmethod
    async def find_by_category_and_period(self, category_id: int, period_key: str) -> Optional[Budget]:
        """The budget for (category, period), or None."""

    @abstractmethod
    async def list_by_period(self, period_key: str) -> List[Budget]:
        """All budgets of a period."""

    @abstractmethod
    async def get_by_id(self, budget_id: int) -> Optional[Budget]:
        """One budget, or None."""

    @abstractmethod
    async def create(self, budget: Budget) -> BatchResponse:
        """Create a budget."""

    @abstractmethod
    async def update(self, budget_id: int, fields: Mapping[str, Any]) -> BatchResponse:
        """Update only the supplied fields of a budget."""

    @abstractmethod
    async def delete(self, budget_id: int) -> BatchResponse:
        """Delete a budget."""


@dataclass
class RecordStore:
    """The three stores the engine works against."""
    categories: CategoryStore
    transactions: TransactionStore
    budgets: BudgetStore


def budget_update_fields(**fields: Any) -> Dict[str, Any]:
    """Build a partial budget update from the fields that were actually provided."""
    unknown = set(fields) - BUDGET_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Unknown budget fields: {sorted(unknown)}")
    return {key: value for key, value in fields.items() if value is not None}


class _InMemoryTable:
    """Shared id sequence, latency and yielding for the in-memory stores."""

    def __init__(self, latency: float = 0.0):
        self.rows: Dict[int, Any] = {}
        self._ids = itertools.count(1)
        self.latency = latency

    async def pause(self) -> None:
        # every store call is a suspension point, like a network round trip
        await asyncio.sleep(self.latency)

    def next_id(self) -> int:
        return next(self._ids)


class InMemoryCategoryStore(CategoryStore):
    def __init__(self, latency: float = 0.0):
        self._table = _InMemoryTable(latency)

    def names_by_id(self) -> Dict[int, str]:
        return {category_id: category.name for category_id, category in self._table.rows.items()}

    async def find_by_name(self, name: str, category_type: Optional[str] = None) -> List[Category]:
        await self._table.pause()
        wanted_type = TransactionType.parse(category_type) if category_type else None
        return [
            replace(category) for category in self._table.rows.values()
            if category.name == name and (wanted_type is None or category.type is wanted_type)
        ]

    async def list_by_type(self, category_type: str) -> List[Category]:
        await self._table.pause()
        wanted_type = TransactionType.parse(category_type)
        return [replace(category) for category in self._table.rows.values() if category.type is wanted_type]

    async def list_all(self) -> List[Category]:
        await self._table.pause()
        return [replace(category) for category in self._table.rows.values()]

    async def get_by_id(self, category_id: int) -> Optional[Category]:
        await self._table.pause()
        category = self._table.rows.get(category_id)
        return replace(category) if category else None

    async def create(self, category: Category) -> BatchResponse:
        await self._table.pause()
        category_type = TransactionType.parse(category.type)
        if category_type is None:
            return BatchResponse.record_failed(f"Invalid category type: {category.type}")
        duplicate = any(
            row.name == category.name and row.type is category_type for row in self._table.rows.values()
        )
        if duplicate:
            return BatchResponse.record_failed(f"Category '{category.name}' already exists")
        stored = replace(category, id=self._table.next_id(), type=category_type)
        self._table.rows[stored.id] = stored
        return BatchResponse.ok(replace(stored))

    async def delete(self, category_id: int) -> BatchResponse:
        await self._table.pause()
        if self._table.rows.pop(category_id, None) is None:
            return BatchResponse.record_failed(f"Category {category_id} not found")
        return BatchResponse.ok(None)


class InMemoryTransactionStore(TransactionStore):
    def __init__(self, categories: InMemoryCategoryStore, latency: float = 0.0):
        self._table = _InMemoryTable(latency)
        self._categories = categories

    def _present(self, txn: Transaction) -> Transaction:
        # embed the category display name the way a reference field lookup would
        ref = normalize_category_ref(txn.category, self._categories.names_by_id())
        return replace(txn, category=ref)

    def _sorted(self, rows: List[Transaction]) -> List[Transaction]:
        return sorted(rows, key=lambda txn: (txn.date is not None, txn.date), reverse=True)

    async def list_by_period(self, period_key: str) -> List[Transaction]:
        period_start, period_end = period_bounds(period_key)
        await self._table.pause()
        rows = [
            self._present(txn) for txn in self._table.rows.values()
            if txn.date is not None and period_start <= txn.date <= period_end
        ]
        return self._sorted(rows)

    async def list_by_category(self, category_id: int) -> List[Transaction]:
        await self._table.pause()
        rows = [
            self._present(txn) for txn in self._table.rows.values()
            if normalize_category_ref(txn.category).id == category_id
        ]
        return self._sorted(rows)

    async def create(self, transaction: Transaction) -> BatchResponse:
        await self._table.pause()
        stored = replace(transaction, id=self._table.next_id())
        self._table.rows[stored.id] = stored
        return BatchResponse.ok(self._present(stored))

    async def delete(self, transaction_id: int) -> BatchResponse:
        await self._table.pause()
        if self._table.rows.pop(transaction_id, None) is None:
            return BatchResponse.record_failed(f"Transaction {transaction_id} not found")
        return BatchResponse.ok(None)


class InMemoryBudgetStore(BudgetStore):
    def __init__(self, categories: InMemoryCategoryStore, latency: float = 0.0):
        self._table = _InMemoryTable(latency)
        self._categories = categories

    def _present(self, budget: Budget) -> Budget:
        ref = normalize_category_ref(budget.category, self._categories.names_by_id())
        return replace(budget, category=ref)

    def all_records(self) -> List[Budget]:
        """Every stored budget (synchronous, for inspection)."""
        return [self._present(budget) for budget in self._table.rows.values()]

    async def find_by_category_and_period(self, category_id: int, period_key: str) -> Optional[Budget]:
        await self._table.pause()
        for budget in self._table.rows.values():
            if budget.category.id == category_id and budget.month == period_key:
                return self._present(budget)
        return None

    async def list_by_period(self, period_key: str) -> List[Budget]:
        await self._table.pause()
        return [self._present(budget) for budget in self._table.rows.values() if budget.month == period_key]

    async def get_by_id(self, budget_id: int) -> Optional[Budget]:
        await self._table.pause()
        budget = self._table.rows.get(budget_id)
        return self._present(budget) if budget else None

    async def create(self, budget: Budget) -> BatchResponse:
        await self._table.pause()
        if budget.monthly_limit is None or float(budget.monthly_limit) < 0:
            return BatchResponse.record_failed("monthly_limit must not be negative")
        stored = replace(
            budget,
            id=self._table.next_id(),
            monthly_limit=float(budget.monthly_limit),
            category=CategoryRef(id=normalize_category_ref(budget.category).id),
        )
        self._table.rows[stored.id] = stored
        return BatchResponse.ok(self._present(stored))

    async def update(self, budget_id: int, fields: Mapping[str, Any]) -> BatchResponse:
        await self._table.pause()
        budget = self._table.rows.get(budget_id)
        if budget is None:
            return BatchResponse.record_failed(f"Budget {budget_id} not found")
        unknown = set(fields) - BUDGET_UPDATE_FIELDS
        if unknown:
            return BatchResponse.record_failed(f"Unknown budget fields: {sorted(unknown)}")

        changes = dict(fields)
        if "monthly_limit" in changes:
            if float(changes["monthly_limit"]) < 0:
                return BatchResponse.record_failed("monthly_limit must not be negative")
            changes["monthly_limit"] = float(changes["monthly_limit"])
        if "year" in changes:
            changes["year"] = int(changes["year"])
        if "category" in changes:
            changes["category"] = CategoryRef(id=normalize_category_ref(changes["category"]).id)

        updated = replace(budget, **changes)
        self._table.rows[budget_id] = updated
        return BatchResponse.ok(self._present(updated))

    async def delete(self, budget_id: int) -> BatchResponse:
        await self._table.pause()
        if self._table.rows.pop(budget_id, None) is None:
            return BatchResponse.record_failed(f"Budget {budget_id} not found")
        return BatchResponse.ok(None)


class InMemoryRecordStore(RecordStore):
    """RecordStore whose three stores live in process memory."""

    def __init__(self, latency: float = 0.0):
        categories = InMemoryCategoryStore(latency)
        super().__init__(
            categories=categories,
            transactions=InMemoryTransactionStore(categories, latency),
            budgets=InMemoryBudgetStore(categories, latency),
        )
