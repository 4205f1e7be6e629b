import math

import pytest

from backend.lib.volt_core.budget import BudgetMonitorConfig, monitor_budget
from backend.lib.volt_core.errors import InvalidPeriodError, VoltError


def kinds(alerts):
    return [(a.kind, a.severity) for a in alerts]


def test_on_track_budget_has_no_alerts():
    assert monitor_budget(2000, 4000, 5000, 15, 30) == []


def test_exceeded_budget():
    alerts = monitor_budget(5500, 9000, 5000, 20, 30)
    assert kinds(alerts)[0] == ("exceeded_budget", "critical")
    assert alerts[0].action_required is True


def test_warning_and_critical_levels():
    assert kinds(monitor_budget(4100, 4900, 5000, 28, 30)) == [("approaching_limit", "medium")]
    assert kinds(monitor_budget(4800, 4990, 5000, 29, 30)) == [("approaching_limit", "high")]


def test_daily_overspend():
    # daily budget 100, average 200 per day over 10 days
    alerts = monitor_budget(2000, 6000, 3000, 10, 30)
    assert ("daily_overspend", "medium") in kinds(alerts)


def test_projection_severity_follows_overage():
    assert ("projection_warning", "low") in kinds(monitor_budget(1000, 5200, 5000, 10, 30))
    assert ("projection_warning", "medium") in kinds(monitor_budget(1000, 5700, 5000, 10, 30))
    assert ("projection_warning", "high") in kinds(monitor_budget(1000, 7000, 5000, 10, 30))


def test_custom_thresholds():
    config = BudgetMonitorConfig(warning_pct=50, critical_pct=60)
    assert kinds(monitor_budget(2600, 4000, 5000, 15, 30, config)) == [("approaching_limit", "medium")]


@pytest.mark.parametrize("budget", [0, -10, None, math.nan, math.inf])
def test_invalid_budget(budget):
    with pytest.raises(VoltError):
        monitor_budget(100, 200, budget, 10, 30)


def test_invalid_period():
    with pytest.raises(InvalidPeriodError):
        monitor_budget(100, 200, 5000, 0, 30)


@pytest.mark.parametrize("current_cost,projected_cost", [
    (math.nan, 200),
    (100, math.inf),
    (-1, 200),
])
def test_invalid_costs(current_cost, projected_cost):
    with pytest.raises(VoltError):
        monitor_budget(current_cost, projected_cost, 5000, 10, 30)
