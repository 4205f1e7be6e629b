# backend/lib/volt_core/usage.py
import calendar
import math
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from backend.lib.logger import get_logger

from .errors import InvalidPeriodError, InvalidUnitsError
from .models import MeterReading

logger = get_logger(__name__)


def consumed_units(current_reading: float, previous_reading: float) -> float:
    """
    Units consumed between two cumulative meter readings.

    A current reading below the previous one (meter replaced or reset, or
    swapped entries) is reported as 0 rather than negative consumption.
    """
    for value in (current_reading, previous_reading):
        if (isinstance(value, bool) or not isinstance(value, (int, float))
                or not math.isfinite(value)):
            raise InvalidUnitsError(f"Meter readings must be finite numbers, got {value!r}")
    if current_reading < previous_reading:
        logger.warning(
            "Meter reading went backwards (%s -> %s); treating consumption as 0",
            previous_reading, current_reading,
        )
        return 0.0
    return float(current_reading - previous_reading)


def period_progress(on: date) -> Tuple[int, int]:
    """(days elapsed including `on`, days in the calendar month of `on`)."""
    days_in_month = calendar.monthrange(on.year, on.month)[1]
    return on.day, days_in_month


class ReadingAnalyzer:
    def __init__(self, readings: List[MeterReading]):
        # Cumulative readings only make sense in time order
        self.readings = sorted(readings, key=lambda r: (r.meter_id, r.timestamp))

    def _series(self) -> Dict[str, List[MeterReading]]:
        series = defaultdict(list)
        for r in self.readings:
            series[r.meter_id].append(r)
        return series

    def daily_usage(self) -> Dict[str, float]:
        """
        Returns a dict keyed by 'YYYY-MM-DD' -> consumed units.

        Consumption between consecutive readings of a meter is attributed to
        the day of the later reading. Regressions count as 0.
        """
        daily = defaultdict(float)
        for meter_readings in self._series().values():
            for prev, curr in zip(meter_readings, meter_readings[1:]):
                key_date = curr.timestamp.strftime("%Y-%m-%d")
                daily[key_date] += consumed_units(curr.reading, prev.reading)
        return dict(daily)

    def monthly_usage(self) -> Dict[str, float]:
        """
        Aggregates the daily_usage into monthly totals (YYYY-MM).
        """
        daily = self.daily_usage()
        monthly = defaultdict(float)
        for day_str, units in daily.items():
            monthly[day_str[:7]] += units
        return dict(monthly)

    def usage_between(self, start: datetime, end: datetime) -> float:
        """
        Units consumed from `start` up to and including `end`, summed per meter.

        The baseline of each meter is its last reading before `start`, or its
        first reading inside the window when there is none.
        """
        if end < start:
            raise InvalidPeriodError("end must not be before start")
        total = 0.0
        for meter_readings in self._series().values():
            baseline: Optional[MeterReading] = None
            latest: Optional[MeterReading] = None
            for r in meter_readings:
                if r.timestamp < start:
                    baseline = r
                elif r.timestamp <= end:
                    if baseline is None:
                        baseline = r
                    latest = r
            if baseline is not None and latest is not None:
                total += consumed_units(latest.reading, baseline.reading)
        return total

    def month_to_date(self, on: datetime) -> float:
        """Units consumed from the first of the month of `on` through `on`."""
        start = on.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return self.usage_between(start, on)

    def detect_spikes(self, threshold_pct: float = 50.0) -> List[Tuple[str, float, float]]:
        """
        Detects spikes where day N increased by more than threshold_pct compared to previous day.
        Returns list of tuples: (date_str, prev_total, curr_total)
        """
        daily = self.daily_usage()
        items = sorted(daily.items())
        spikes = []
        for i in range(1, len(items)):
            prev_date, prev_val = items[i-1]
            curr_date, curr_val = items[i]
            if prev_val == 0:
                continue
            change_pct = (curr_val - prev_val) / prev_val * 100
            if change_pct > threshold_pct:
                spikes.append((curr_date, round(prev_val, 4), round(curr_val, 4)))
        return spikes
