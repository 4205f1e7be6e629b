# backend/lib/volt_core/budget.py
import math
from dataclasses import dataclass
from typing import List

from .errors import VoltError
from .forecast import validate_period
from .models import BudgetAlert


def _finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclass(frozen=True)
class BudgetMonitorConfig:
    warning_pct: float = 80.0
    critical_pct: float = 95.0
    # Average daily cost above this % of the daily budget is overspending
    daily_overspend_pct: float = 150.0


def monitor_budget(current_cost: float, projected_cost: float, budget: float,
                   days_elapsed: int, days_in_period: int,
                   config: BudgetMonitorConfig = BudgetMonitorConfig()) -> List[BudgetAlert]:
    """
    Compare month-to-date and projected cost with a monthly budget.

    Returns the alerts that apply, most severe budget-level alert first.
    """
    if not _finite(budget) or budget <= 0:
        raise VoltError(f"budget must be a finite number > 0, got {budget!r}")
    for name, value in (("current_cost", current_cost), ("projected_cost", projected_cost)):
        if not _finite(value) or value < 0:
            raise VoltError(f"{name} must be a finite number >= 0, got {value!r}")
    validate_period(days_elapsed, days_in_period)

    alerts = []
    used_pct = current_cost / budget * 100
    days_left = days_in_period - days_elapsed

    if current_cost > budget:
        alerts.append(BudgetAlert(
            kind="exceeded_budget",
            severity="critical",
            message=f"Budget of {budget:,.0f} exceeded by {current_cost - budget:,.0f}",
            threshold=budget,
            current_value=current_cost,
            action_required=True,
        ))
    elif used_pct >= config.critical_pct:
        alerts.append(BudgetAlert(
            kind="approaching_limit",
            severity="high",
            message=f"{used_pct:.0f}% of budget used with {days_left} days remaining",
            threshold=config.critical_pct,
            current_value=round(used_pct, 2),
            action_required=True,
        ))
    elif used_pct >= config.warning_pct:
        alerts.append(BudgetAlert(
            kind="approaching_limit",
            severity="medium",
            message=f"{used_pct:.0f}% of budget used",
            threshold=config.warning_pct,
            current_value=round(used_pct, 2),
        ))

    daily_budget = budget / days_in_period
    average_daily_cost = current_cost / days_elapsed
    if average_daily_cost > daily_budget * (config.daily_overspend_pct / 100):
        over_pct = (average_daily_cost / daily_budget - 1) * 100
        alerts.append(BudgetAlert(
            kind="daily_overspend",
            severity="medium",
            message=f"Daily average {average_daily_cost:,.0f} is {over_pct:.0f}% above the daily budget",
            threshold=round(daily_budget, 2),
            current_value=round(average_daily_cost, 2),
            action_required=True,
        ))

    overage = projected_cost - budget
    if overage > 0:
        if overage > budget * 0.2:
            severity = "high"
        elif overage > budget * 0.1:
            severity = "medium"
        else:
            severity = "low"
        alerts.append(BudgetAlert(
            kind="projection_warning",
            severity=severity,
            message=f"Projected bill exceeds budget by {overage:,.0f}",
            threshold=budget,
            current_value=projected_cost,
            action_required=severity != "low",
        ))

    return alerts
