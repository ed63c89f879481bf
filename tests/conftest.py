from typing import Callable, List

import pytest
import pytest_asyncio

from debounce import Scheduler
from models import Category, TransactionType
from record_store import InMemoryRecordStore


class ManualTimer:
    """Timer handle driven by ManualScheduler."""

    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Scheduler whose clock only moves when advance() is called."""

    def __init__(self):
        self.now = 0.0
        self._timers: List[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for timer in self._timers if not timer.cancelled)

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = sorted(
            (timer for timer in self._timers if not timer.cancelled and timer.when <= self.now),
            key=lambda timer: timer.when
        )
        for timer in due:
            self._timers.remove(timer)
            timer.callback()
        self._timers = [timer for timer in self._timers if not timer.cancelled]


@pytest.fixture
def scheduler():
    """Provide a manually advanced scheduler."""
    return ManualScheduler()


@pytest_asyncio.fixture
async def seeded_store():
    """
    In-memory store with categories:
    1 Groceries, 2 Rent, 3 Dining (expense) and 4 Salary (income).
    """
    store = InMemoryRecordStore()
    for name, category_type in (
        ("Groceries", TransactionType.EXPENSE),
        ("Rent", TransactionType.EXPENSE),
        ("Dining", TransactionType.EXPENSE),
        ("Salary", TransactionType.INCOME),
    ):
        await store.categories.create(Category(id=None, name=name, type=category_type))
    return store
