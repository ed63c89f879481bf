"""
Budget progress evaluation.

Turns (spent, limit) into the percentage used, the remaining amount and an
alert level. Never raises: malformed numbers are treated as zero.
"""

import enum
from dataclasses import dataclass
from typing import Any, Dict

from aggregation import coerce_amount

DEFAULT_WARNING_PCT = 75.0
DEFAULT_CRITICAL_PCT = 90.0


class AlertLevel(str, enum.Enum):
    """Classification of how much of a budget has been used."""
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class BudgetProgress:
    """
    Progress of spending against a limit.

    Attributes:
        percentage: Share of the limit used, clamped to 0-100
        remaining: Unspent amount, never negative
        alert_level: ok / warning / critical
        exceeded: True once spent reaches the limit
    """
    percentage: float
    remaining: float
    alert_level: AlertLevel
    exceeded: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "percentage": self.percentage,
            "remaining": self.remaining,
            "alert_level": self.alert_level.value,
            "exceeded": self.exceeded,
        }


def alert_level_for(
    percentage: float,
    warning_pct: float = DEFAULT_WARNING_PCT,
    critical_pct: float = DEFAULT_CRITICAL_PCT
) -> AlertLevel:
    """Map a percentage onto an alert level."""
    if percentage >= critical_pct:
        return AlertLevel.CRITICAL
    if percentage >= warning_pct:
        return AlertLevel.WARNING
    return AlertLevel.OK


def evaluate(
    spent: Any,
    limit: Any,
    warning_pct: float = DEFAULT_WARNING_PCT,
    critical_pct: float = DEFAULT_CRITICAL_PCT
) -> BudgetProgress:
    """
    Evaluate spending against a limit.

    Args:
        spent: Amount spent so far
        limit: Configured monthly limit
        warning_pct: Percentage at which the warning level starts
        critical_pct: Percentage at which the critical level starts

    Returns:
        BudgetProgress; percentage is 0 when limit <= 0
    """
    spent_value = coerce_amount(spent)
    limit_value = coerce_amount(limit)

    if limit_value > 0:
        percentage = min(max(spent_value / limit_value * 100.0, 0.0), 100.0)
    else:
        percentage = 0.0

    return BudgetProgress(
        percentage=percentage,
        remaining=max(0.0, limit_value - spent_value),
        alert_level=alert_level_for(percentage, warning_pct, critical_pct),
        exceeded=spent_value >= limit_value,
    )
