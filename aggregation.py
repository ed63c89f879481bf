"""
Spending aggregation over transaction records.

All functions are pure and never raise on malformed records: missing or
non-numeric amounts count as zero and spending is always summed as
absolute values.
"""

import logging
import math
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from models import Transaction, TransactionType, normalize_category_ref

logger = logging.getLogger(__name__)


def coerce_amount(value: Any) -> float:
    """
    Convert a raw amount to a finite float.

    Returns:
        The numeric value, or 0.0 for None, booleans, non-numeric and
        non-finite input
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def resolve_category_name(value: Any, names_by_id: Optional[Mapping[int, str]] = None) -> Optional[str]:
    """Extract a comparable category name from any reference shape."""
    return normalize_category_ref(value, names_by_id).name


def spent_for(
    category_name: str,
    transactions: Iterable[Transaction],
    names_by_id: Optional[Mapping[int, str]] = None
) -> float:
    """
    Total spent in one category.

    Args:
        category_name: Display name to match
        transactions: Transactions to scan
        names_by_id: Optional id -> name lookup for id-only references

    Returns:
        Sum of absolute amounts of the matching transactions (>= 0)
    """
    total = 0.0
    for txn in transactions:
        if resolve_category_name(txn.category, names_by_id) == category_name:
            total += abs(coerce_amount(txn.amount))
    return total


def spent_by_category(
    transactions: Iterable[Transaction],
    names_by_id: Optional[Mapping[int, str]] = None
) -> Dict[str, float]:
    """
    Index spending by category name in a single pass.

    Transactions whose category cannot be resolved to a name are skipped.
    """
    totals: Dict[str, float] = {}
    for txn in transactions:
        name = resolve_category_name(txn.category, names_by_id)
        if name is None:
            continue
        totals[name] = totals.get(name, 0.0) + abs(coerce_amount(txn.amount))
    return totals


def is_direction_consistent(txn: Transaction) -> bool:
    """True when the amount's sign agrees with the transaction type (zero always agrees)."""
    amount = coerce_amount(txn.amount)
    txn_type = TransactionType.parse(txn.type)
    if amount == 0 or txn_type is None:
        return True
    if txn_type is TransactionType.EXPENSE:
        return amount < 0
    return amount > 0


def filter_by_type(transactions: Iterable[Transaction], txn_type: Any) -> List[Transaction]:
    """
    Keep transactions of the given type.

    The ``type`` field decides; records whose amount sign disagrees are
    kept and logged.
    """
    wanted = TransactionType.parse(txn_type)
    matched: List[Transaction] = []
    for txn in transactions:
        if TransactionType.parse(txn.type) is not wanted:
            continue
        if not is_direction_consistent(txn):
            logger.debug("Transaction %s amount %r disagrees with type %s", txn.id, txn.amount, txn.type)
        matched.append(txn)
    return matched
