"""
Domain records exchanged between the record stores and the budget engine.

Stores return these dataclasses regardless of their backend. Category
references arrive in several shapes (an embedded reference carrying a
display name, a raw identifier, a bare name); normalize_category_ref is the
one place those shapes are turned into a canonical CategoryRef.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


class TransactionType(str, enum.Enum):
    """Direction of a transaction (also used to type categories)."""
    EXPENSE = "expense"
    INCOME = "income"

    @classmethod
    def parse(cls, value: Any) -> Optional["TransactionType"]:
        """Return the matching member, or None for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class CategoryRef:
    """
    Canonical reference to a category.

    Attributes:
        id: Store identifier, when known
        name: Display name, when known
    """
    id: Optional[int] = None
    name: Optional[str] = None


@dataclass
class Category:
    """
    A spending or income category.

    Attributes:
        id: Store identifier (None until created)
        name: Display name, unique within a type
        type: expense or income
        color: Cosmetic color tag
        is_custom: True for user-created categories
    """
    id: Optional[int]
    name: str
    type: TransactionType = TransactionType.EXPENSE
    color: str = ""
    is_custom: bool = False

    def ref(self) -> CategoryRef:
        return CategoryRef(id=self.id, name=self.name)


@dataclass
class Transaction:
    """
    A single income or expense record.

    The amount is signed (negative for expenses); ``type`` is authoritative
    when the two disagree. ``category`` holds whatever reference shape the
    store produced.
    """
    id: Optional[int]
    amount: Any
    type: TransactionType = TransactionType.EXPENSE
    description: str = ""
    date: Optional[date] = None
    category: Any = None

    def category_ref(self, names_by_id: Optional[Mapping[int, str]] = None) -> CategoryRef:
        return normalize_category_ref(self.category, names_by_id)


@dataclass
class Budget:
    """
    Monthly spending limit for one category.

    Attributes:
        id: Store identifier (None until created)
        name: Derived display name ("<category> - <YYYY-MM>")
        monthly_limit: Limit for the month (0 is a placeholder)
        month: Period key "YYYY-MM"
        year: Year component of ``month``
        category: Reference to the budgeted category
    """
    id: Optional[int]
    name: str
    monthly_limit: float
    month: str
    year: int
    category: CategoryRef = field(default_factory=CategoryRef)


def _coerce_id(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _clean_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    name = str(value).strip()
    return name or None


def normalize_category_ref(
    value: Any,
    names_by_id: Optional[Mapping[int, str]] = None
) -> CategoryRef:
    """
    Turn any category reference shape into a CategoryRef.

    Accepted shapes: CategoryRef, Category, a mapping with ``Id``/``Name``
    (or ``id``/``name``) keys, a raw integer id, a bare name string, or None.
    A missing name is looked up in ``names_by_id`` when an id is known.

    Args:
        value: Raw category reference
        names_by_id: Optional id -> display name lookup

    Returns:
        Canonical CategoryRef (both fields None when nothing is known)
    """
    if isinstance(value, CategoryRef):
        ref_id, name = value.id, value.name
    elif isinstance(value, Category):
        ref_id, name = value.id, value.name
    elif isinstance(value, Mapping):
        ref_id = _coerce_id(value.get("Id", value.get("id")))
        name = _clean_name(value.get("Name", value.get("name")))
    elif isinstance(value, bool) or value is None:
        ref_id, name = None, None
    elif isinstance(value, int):
        ref_id, name = value, None
    elif isinstance(value, str):
        ref_id, name = None, _clean_name(value)
    else:
        logger.debug("Unrecognized category reference shape: %r", value)
        ref_id, name = None, None

    if name is None and ref_id is not None and names_by_id:
        name = _clean_name(names_by_id.get(ref_id))
    return CategoryRef(id=ref_id, name=name)
