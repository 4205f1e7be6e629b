# backend/lib/volt_core/forecast.py
"""
End-of-period bill projection.

Uses a linear run rate: the average daily consumption so far is assumed to
hold for the rest of the period. The projected units are priced by the
tariff engine, so the slab warning on the result refers to where the user
is heading, not where they are today.
"""
import math
from decimal import Decimal
from typing import Iterable, List, Optional

from backend.lib.logger import get_logger

from .config import DEFAULT_TARIFF, TariffConfig
from .errors import InvalidPeriodError, ReferenceUnavailableError
from .models import (
    ForecastResult, PeriodComparison, ProjectionRange, ReferencePeriod, SavingsScenario,
)
from .tariff import TariffEngine, round_money, validate_units

logger = get_logger(__name__)

# Spread of the low/high projection around the run-rate estimate
PROJECTION_VARIANCE = Decimal("0.10")


def _positive_finite(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    return math.isfinite(value) and value > 0


def _pct_change(new: float, old: float) -> float:
    change = (Decimal(str(new)) - Decimal(str(old))) / Decimal(str(old)) * 100
    return float(round_money(change))


def compare_to_reference(projected_units: float, projected_cost: float,
                         reference: Optional[ReferencePeriod]) -> PeriodComparison:
    """
    Percentage and absolute change of a projection against a baseline period.

    Raises ReferenceUnavailableError when there is no baseline or its usage
    or cost is not a positive finite number (e.g. the first billing period
    of a new meter).
    """
    if reference is None:
        raise ReferenceUnavailableError("No reference period supplied")
    for value in (reference.usage_units, reference.total_cost):
        if not _positive_finite(value):
            raise ReferenceUnavailableError(
                f"Reference usage and cost must be positive finite numbers, got {value!r}"
            )

    difference = Decimal(str(projected_cost)) - Decimal(str(reference.total_cost))
    return PeriodComparison(
        percentage_change_usage=_pct_change(projected_units, reference.usage_units),
        percentage_change_cost=_pct_change(projected_cost, reference.total_cost),
        absolute_difference_cost=float(round_money(difference)),
    )


def validate_period(days_elapsed, days_in_period) -> None:
    for value in (days_elapsed, days_in_period):
        if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
            raise InvalidPeriodError(f"Period days must be finite numbers, got {value!r}")
    if days_elapsed <= 0:
        raise InvalidPeriodError(f"days_elapsed must be > 0, got {days_elapsed}")
    if days_elapsed > days_in_period:
        raise InvalidPeriodError(
            f"days_elapsed ({days_elapsed}) exceeds days_in_period ({days_in_period})"
        )


class ForecastEngine:
    def __init__(self, tariff_engine: Optional[TariffEngine] = None):
        self.tariff_engine = tariff_engine or TariffEngine()

    def project_period(self, usage_to_date, days_elapsed, days_in_period,
                       reference: Optional[ReferencePeriod] = None) -> ForecastResult:
        """
        Extrapolate month-to-date usage to the whole period and price it.

        Raises InvalidUnitsError for bad usage and InvalidPeriodError when
        days_elapsed is not within (0, days_in_period]. A missing or zero
        reference only leaves `comparison` empty.
        """
        usage = float(validate_units(usage_to_date))
        validate_period(days_elapsed, days_in_period)

        daily_rate = usage / days_elapsed
        projected_units = daily_rate * days_in_period
        projected_cost = self.tariff_engine.price_usage(projected_units)

        try:
            comparison = compare_to_reference(
                projected_units, projected_cost.total_cost, reference
            )
        except ReferenceUnavailableError as e:
            logger.debug("Comparison unavailable: %s", e)
            comparison = None

        return ForecastResult(
            usage_to_date_units=usage,
            days_elapsed=days_elapsed,
            days_in_period=days_in_period,
            daily_rate_units=float(daily_rate),
            projected_usage_units=float(projected_units),
            projected_cost=projected_cost,
            comparison=comparison,
            projection_range=self.projection_range(projected_units),
        )

    def projection_range(self, projected_units,
                         variance: Decimal = PROJECTION_VARIANCE) -> ProjectionRange:
        """
        Usage and bill if the rest of the period runs `variance` below or
        above the expected projection (10% by default).
        """
        expected = validate_units(projected_units)
        variance = Decimal(str(variance))
        if not 0 <= variance <= 1:
            raise ValueError(f"variance must be between 0 and 1, got {variance}")
        low = expected * (1 - variance)
        high = expected * (1 + variance)
        return ProjectionRange(
            low_usage_units=float(low),
            high_usage_units=float(high),
            low_cost=self.tariff_engine.price_usage(low).total_cost,
            high_cost=self.tariff_engine.price_usage(high).total_cost,
        )

    def savings_scenarios(self, projected_units,
                          reductions: Iterable[float] = (0.10, 0.20)) -> List[SavingsScenario]:
        """What the bill would be if usage dropped by each fraction in `reductions`."""
        projected_units = float(validate_units(projected_units))
        baseline = self.tariff_engine.price_usage(projected_units).total_cost
        scenarios = []
        for reduction in reductions:
            if not 0 <= reduction <= 1:
                raise ValueError(f"reduction must be between 0 and 1, got {reduction}")
            units = projected_units * (1 - reduction)
            cost = self.tariff_engine.price_usage(units).total_cost
            saving = Decimal(str(baseline)) - Decimal(str(cost))
            scenarios.append(SavingsScenario(
                reduction_pct=round(reduction * 100, 2),
                usage_units=round(units, 2),
                total_cost=cost,
                saving=float(round_money(saving)),
            ))
        return scenarios


def project_period(usage_to_date, days_elapsed, days_in_period,
                   reference: Optional[ReferencePeriod] = None,
                   tariff: TariffConfig = DEFAULT_TARIFF) -> ForecastResult:
    """Project the end-of-period bill with `tariff` (default: reference table)."""
    engine = ForecastEngine(TariffEngine(tariff))
    return engine.project_period(usage_to_date, days_elapsed, days_in_period, reference)
