"""
Debounced auto-save for the budget form.

DebounceCoordinator turns a rapid stream of field edits into at most one
reconciliation per quiet interval:

    IDLE --edit--> PENDING --quiet interval--> VALIDATING --valid--> SAVING --> IDLE
                   PENDING --edit--> PENDING (timer re-armed)
                                     VALIDATING --invalid--> IDLE

Timers are scheduled through a Scheduler so they can be cancelled and
re-armed deterministically; LoopScheduler uses the running asyncio loop.
Only one save runs per coordinator. Edits arriving while it runs are
re-evaluated against the latest field values as soon as it finishes.
"""

import asyncio
import enum
import inspect
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from exceptions import FinanceAppError, ValidationError
from models import Budget
from periods import current_period_key, period_year
from reconciler import BudgetReconciler

logger = logging.getLogger(__name__)

DEFAULT_QUIET_INTERVAL = 0.5

_UNSET: Any = object()


class FormState(enum.Enum):
    """Auto-save state of a budget form."""
    IDLE = "idle"
    PENDING = "pending"
    VALIDATING = "validating"
    SAVING = "saving"


class Scheduler(ABC):
    """Schedules a callback after a delay; the returned handle has cancel()."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> Any:
        ...


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


@dataclass(frozen=True)
class BudgetFormFields:
    """Raw values currently entered in the budget form."""
    category: str = ""
    monthly_limit: str = ""

    def is_empty(self) -> bool:
        return not str(self.category).strip() and not str(self.monthly_limit).strip()


@dataclass(frozen=True)
class SaveRequest:
    """Validated form values ready for reconciliation."""
    category: str
    monthly_limit: float


def parse_limit(raw: Any) -> Optional[float]:
    """
    Parse a limit entry.

    Returns:
        None for an empty entry, otherwise the limit

    Raises:
        ValidationError: If the entry is not a finite number greater than zero
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValidationError("Monthly limit must be a number", details={"monthly_limit": raw})
    text = str(raw).strip()
    if not text:
        return None
    try:
        limit = float(text)
    except ValueError:
        raise ValidationError("Monthly limit must be a number", details={"monthly_limit": raw})
    if not math.isfinite(limit) or limit <= 0:
        raise ValidationError("Monthly limit must be greater than zero", details={"monthly_limit": raw})
    return limit


def validate_fields(fields: BudgetFormFields) -> SaveRequest:
    """
    Check the form values before a save.

    A category is mandatory; an empty limit becomes 0 so a placeholder
    budget can be created before a limit is chosen.

    Raises:
        ValidationError: If the save must be suppressed
    """
    category = str(fields.category).strip()
    if not category:
        raise ValidationError("Category is required")
    limit = parse_limit(fields.monthly_limit)
    return SaveRequest(category=category, monthly_limit=limit if limit is not None else 0.0)


class DebounceCoordinator:
    """
    Coalesces budget form edits into debounced upserts.
    """

    def __init__(
        self,
        reconciler: BudgetReconciler,
        quiet_interval: float = DEFAULT_QUIET_INTERVAL,
        scheduler: Optional[Scheduler] = None,
        period_provider: Callable[[], str] = current_period_key,
        on_saved: Optional[Callable[[Budget], Any]] = None,
        on_error: Optional[Callable[[FinanceAppError], Any]] = None
    ):
        """
        Initialize the coordinator.

        Args:
            reconciler: Performs the upsert
            quiet_interval: Seconds without edits before a save is attempted
            scheduler: Timer source (defaults to the running event loop)
            period_provider: Returns the period key at save time
            on_saved: Called (or awaited) with the saved budget, e.g. to reload the view
            on_error: Called (or awaited) with the failure of a save
        """
        self.reconciler = reconciler
        self.quiet_interval = quiet_interval
        self.scheduler = scheduler or LoopScheduler()
        self.period_provider = period_provider
        self.on_saved = on_saved
        self.on_error = on_error

        self.last_result: Optional[Budget] = None
        self.last_error: Optional[FinanceAppError] = None
        self.save_count = 0

        self._fields = BudgetFormFields()
        self._state = FormState.IDLE
        self._timer: Any = None
        self._task: Optional[asyncio.Task] = None
        self._dirty = False
        self._closed = False
        # bumped by switch_category/cancel/close; a cycle started under an older value is dropped
        self._generation = 0

    @property
    def state(self) -> FormState:
        return self._state

    @property
    def fields(self) -> BudgetFormFields:
        return self._fields

    @property
    def closed(self) -> bool:
        return self._closed

    def edit(self, *, category: Any = _UNSET, monthly_limit: Any = _UNSET) -> None:
        """Record a user edit of one or both fields and (re)arm the timer."""
        if self._closed:
            logger.debug("Ignoring edit on a closed budget form")
            return

        changes = {}
        if category is not _UNSET:
            changes["category"] = "" if category is None else str(category)
        if monthly_limit is not _UNSET:
            changes["monthly_limit"] = "" if monthly_limit is None else str(monthly_limit)
        self._fields = replace(self._fields, **changes)

        if self._state in (FormState.VALIDATING, FormState.SAVING):
            self._dirty = True
            return
        self._arm()

    def switch_category(self, category: str, monthly_limit: Any = "") -> None:
        """
        Load another budget into the form.

        Cancels any pending save without running it; loading values is not
        an edit, so no new timer is armed.
        """
        self.cancel()
        self._fields = BudgetFormFields(
            category="" if category is None else str(category),
            monthly_limit="" if monthly_limit is None else str(monthly_limit),
        )
        self._dirty = False

    def cancel(self) -> None:
        """Drop a pending save, including one whose timer fired but has not started."""
        self._cancel_timer()
        self._generation += 1
        # VALIDATING is only observable from outside before the cycle's first step
        if self._state in (FormState.PENDING, FormState.VALIDATING):
            self._state = FormState.IDLE

    def close(self) -> None:
        """Close the form: cancel the pending save; an in-flight save still completes."""
        self.cancel()
        self._dirty = False
        self._closed = True

    async def wait_idle(self) -> None:
        """Wait for the in-flight validation/save cycle, if any."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def flush(self) -> Optional[Budget]:
        """Attempt a save right away (explicit retry) and return its result."""
        self._cancel_timer()
        if self._task is not None and not self._task.done() and self._state is not FormState.IDLE:
            self._dirty = True
            await self.wait_idle()
            return self.last_result
        self._state = FormState.VALIDATING
        self._task = asyncio.get_running_loop().create_task(self._run_cycle(self._generation))
        return await self._task

    def _arm(self) -> None:
        self._cancel_timer()
        if self._fields.is_empty():
            self._state = FormState.IDLE
            return
        self._timer = self.scheduler.call_later(self.quiet_interval, self._on_timer)
        self._state = FormState.PENDING

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed or self._state is not FormState.PENDING:
            return
        self._state = FormState.VALIDATING
        self._task = asyncio.get_running_loop().create_task(self._run_cycle(self._generation))

    async def _run_cycle(self, generation: int) -> Optional[Budget]:
        if generation != self._generation:
            logger.debug("Auto-save dropped: form was switched or closed")
            return None
        result: Optional[Budget] = None
        try:
            while True:
                self._state = FormState.VALIDATING
                self._dirty = False
                fields = self._fields
                try:
                    request = validate_fields(fields)
                except ValidationError as exc:
                    logger.debug("Auto-save suppressed: %s", exc)
                    return result

                self._state = FormState.SAVING
                result = await self._save(request)

                if not (self._dirty and not self._closed and self._fields != fields):
                    return result
                logger.debug("Fields changed during save; re-evaluating")
        finally:
            self._state = FormState.IDLE

    async def _save(self, request: SaveRequest) -> Optional[Budget]:
        period_key = self.period_provider()
        try:
            budget = await self.reconciler.upsert(
                request.category,
                request.monthly_limit,
                period_key,
                period_year(period_key)
            )
        except FinanceAppError as exc:
            self.last_error = exc
            logger.error("Failed to save budget for '%s': %s", request.category, exc)
            await self._notify(self.on_error, exc)
            return None

        self.save_count += 1
        self.last_result = budget
        self.last_error = None
        logger.info("Budget saved automatically for '%s' (%s)", request.category, period_key)
        await self._notify(self.on_saved, budget)
        return budget

    @staticmethod
    async def _notify(callback: Optional[Callable[[Any], Any]], value: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(value)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Budget form callback %r failed", callback)
