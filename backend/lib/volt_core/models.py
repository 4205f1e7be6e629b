# backend/lib/volt_core/models.py
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import List, Optional


@dataclass
class MeterReading:
    """A cumulative meter register value (kWh) taken at a point in time."""
    meter_id: str
    timestamp: datetime
    reading: float


@dataclass(frozen=True)
class SlabCharge:
    label: str
    units_charged: float
    rate: float
    cost: float


@dataclass(frozen=True)
class CostBreakdown:
    units: float
    line_items: List[SlabCharge]
    base_cost: float
    surcharge_amount: float
    fixed_charges: float
    subtotal: float
    tax_amount: float
    flat_fee: float
    total_cost: float
    approaching_next_slab: bool = False
    next_slab_threshold_units: Optional[float] = None
    currency: str = "PKR"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ReferencePeriod:
    """Actual usage and bill of the period a forecast is compared with."""
    usage_units: float
    total_cost: float


@dataclass(frozen=True)
class PeriodComparison:
    percentage_change_usage: float
    percentage_change_cost: float
    absolute_difference_cost: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ProjectionRange:
    """Low and high end of a projection, each priced with the same tariff."""
    low_usage_units: float
    high_usage_units: float
    low_cost: float
    high_cost: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ForecastResult:
    usage_to_date_units: float
    days_elapsed: int
    days_in_period: int
    daily_rate_units: float
    projected_usage_units: float
    projected_cost: CostBreakdown
    comparison: Optional[PeriodComparison] = None
    projection_range: Optional[ProjectionRange] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SavingsScenario:
    reduction_pct: float
    usage_units: float
    total_cost: float
    saving: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BudgetAlert:
    kind: str  # exceeded_budget | approaching_limit | daily_overspend | projection_warning
    severity: str  # low | medium | high | critical
    message: str
    threshold: float
    current_value: float
    action_required: bool = False

    def to_dict(self) -> dict:
        return asdict(self)
