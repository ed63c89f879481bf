"""
Budgeting module: the per-period budget view.

BudgetViewModel combines the stored budgets, the period's expense
transactions and the progress evaluation into the rows a UI renders, and
works out which categories still have no budget for the period.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from aggregation import filter_by_type, spent_by_category
from models import Budget, Category, normalize_category_ref
from periods import current_period_key
from progress import DEFAULT_CRITICAL_PCT, DEFAULT_WARNING_PCT, AlertLevel, BudgetProgress, evaluate
from record_store import RecordStore

# Configure logging
logger = logging.getLogger(__name__)

OVERVIEW_COLUMNS = [
    "budget_id",
    "category",
    "monthly_limit",
    "spent",
    "remaining",
    "percentage",
    "alert_level",
    "exceeded",
]


@dataclass
class BudgetRow:
    """
    Display state of one budget.

    Attributes:
        budget_id: Store identifier of the budget
        category: Category display name
        monthly_limit: Configured limit
        spent: Amount spent in the period
        progress: Percentage, remaining amount and alert level
    """
    budget_id: Optional[int]
    category: str
    monthly_limit: float
    spent: float
    progress: BudgetProgress

    def to_dict(self) -> Dict[str, Any]:
        return {
            "budget_id": self.budget_id,
            "category": self.category,
            "monthly_limit": self.monthly_limit,
            "spent": self.spent,
            **self.progress.to_dict(),
        }


@dataclass
class BudgetOverview:
    """Everything the budget screen shows for one period."""
    period_key: str
    rows: List[BudgetRow] = field(default_factory=list)
    available_categories: List[Category] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, float]:
        return BudgetViewModel.calculate_budget_summary(self.rows)

    def to_frame(self) -> pd.DataFrame:
        return BudgetViewModel.to_frame(self.rows)


class BudgetViewModel:
    """
    Builds the budget overview for a period from the record store.
    """

    def __init__(
        self,
        store: RecordStore,
        category_type: str = "expense",
        thresholds: Tuple[float, float] = (DEFAULT_WARNING_PCT, DEFAULT_CRITICAL_PCT)
    ):
        """
        Initialize the view model.

        Args:
            store: Record store to read from
            category_type: Category/transaction type budgets track
            thresholds: (warning, critical) alert percentages
        """
        self.store = store
        self.category_type = category_type
        self.thresholds = thresholds

    async def load(self, period_key: Optional[str] = None) -> BudgetOverview:
        """
        Load budgets, categories and transactions for a period and compose the overview.

        Args:
            period_key: "YYYY-MM" period (defaults to the current month)

        Returns:
            BudgetOverview with one row per budget and the unbudgeted categories
        """
        period_key = period_key or current_period_key()
        budgets, categories, transactions = await asyncio.gather(
            self.store.budgets.list_by_period(period_key),
            self.store.categories.list_by_type(self.category_type),
            self.store.transactions.list_by_period(period_key),
        )

        rows = self.build_rows(budgets, categories, transactions, self.category_type, self.thresholds)
        available = self.available_categories(categories, budgets)
        logger.debug(
            "Loaded budget overview for %s: %d budgets, %d available categories",
            period_key,
            len(rows),
            len(available)
        )
        return BudgetOverview(period_key=period_key, rows=rows, available_categories=available)

    @staticmethod
    def build_rows(
        budgets: Iterable[Budget],
        categories: Iterable[Category],
        transactions: Iterable[Any],
        category_type: str = "expense",
        thresholds: Tuple[float, float] = (DEFAULT_WARNING_PCT, DEFAULT_CRITICAL_PCT)
    ) -> List[BudgetRow]:
        """
        Compose display rows.

        Spending is indexed once over the transactions of ``category_type``
        and looked up per budget.
        """
        names_by_id: Mapping[int, str] = {c.id: c.name for c in categories if c.id is not None}
        spending = spent_by_category(filter_by_type(transactions, category_type), names_by_id)
        warning_pct, critical_pct = thresholds

        rows: List[BudgetRow] = []
        for budget in budgets:
            ref = normalize_category_ref(budget.category, names_by_id)
            category_name = ref.name or budget.name
            spent = spending.get(ref.name, 0.0) if ref.name else 0.0
            rows.append(BudgetRow(
                budget_id=budget.id,
                category=category_name,
                monthly_limit=budget.monthly_limit,
                spent=spent,
                progress=evaluate(spent, budget.monthly_limit, warning_pct, critical_pct),
            ))
        return rows

    @staticmethod
    def available_categories(categories: Iterable[Category], budgets: Iterable[Budget]) -> List[Category]:
        """
        Categories that have no budget among ``budgets``.

        A budget claims a category by id when known, otherwise by name.
        """
        budgeted_ids = set()
        budgeted_names = set()
        for budget in budgets:
            ref = normalize_category_ref(budget.category)
            if ref.id is not None:
                budgeted_ids.add(ref.id)
            if ref.name:
                budgeted_names.add(ref.name)

        return [
            category for category in categories
            if category.id not in budgeted_ids and category.name not in budgeted_names
        ]

    @staticmethod
    def calculate_budget_summary(rows: List[BudgetRow]) -> Dict[str, float]:
        """
        Calculate aggregate metrics across rows.

        Returns:
            Dictionary with total_limit, total_spent, total_remaining,
            percentage, exceeded_count and critical_count.
        """
        total_limit = sum(float(row.monthly_limit or 0.0) for row in rows)
        total_spent = sum(row.spent for row in rows)
        summary = {
            "total_limit": total_limit,
            "total_spent": total_spent,
            "total_remaining": sum(row.progress.remaining for row in rows),
            "percentage": (total_spent / total_limit * 100.0) if total_limit > 0 else 0.0,
            "exceeded_count": sum(1 for row in rows if row.progress.exceeded),
            "critical_count": sum(1 for row in rows if row.progress.alert_level is AlertLevel.CRITICAL),
        }
        logger.debug("Budget summary calculated: %s", summary)
        return summary

    @staticmethod
    def to_frame(rows: List[BudgetRow]) -> pd.DataFrame:
        """Tabulate rows (ordered by category) for display or export."""
        if not rows:
            return pd.DataFrame(columns=OVERVIEW_COLUMNS)
        frame = pd.DataFrame([row.to_dict() for row in rows], columns=OVERVIEW_COLUMNS)
        return frame.sort_values("category", key=lambda s: s.str.casefold()).reset_index(drop=True)
