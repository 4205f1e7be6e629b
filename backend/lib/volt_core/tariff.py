# backend/lib/volt_core/tariff.py
"""
Slab-based (progressive) electricity tariff engine.

Each slab bills only the units that fall inside it, the way income tax
brackets work. On top of the tiered energy cost the bill adds a per-unit fuel
price adjustment on the full consumption, fixed charges, GST on the subtotal
and a flat TV fee.

Every money figure is rounded half-up to 2 decimals where it is computed,
and later figures are built from the rounded ones. Callers summing the line
items get exactly base_cost.

Example:
    >>> price_usage(150).total_cost
    2378.51
"""
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from backend.lib.logger import get_logger

from .config import DEFAULT_TARIFF, TariffConfig, TariffSlab
from .errors import InvalidUnitsError
from .models import CostBreakdown, SlabCharge

logger = get_logger(__name__)

CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_units(units) -> Decimal:
    """Return units as a Decimal, or raise InvalidUnitsError."""
    if isinstance(units, bool):
        raise InvalidUnitsError(f"units must be a number, got {units!r}")
    try:
        as_float = float(units)
    except (TypeError, ValueError) as e:
        raise InvalidUnitsError(f"units must be a number, got {units!r}") from e
    if not math.isfinite(as_float):
        raise InvalidUnitsError(f"units must be finite, got {units!r}")
    if as_float < 0:
        raise InvalidUnitsError(f"units must be >= 0, got {units!r}")
    if isinstance(units, Decimal):
        return units
    return Decimal(str(units))


class TariffEngine:
    """
    Prices a unit consumption figure against one tariff regime.

    The engine holds nothing but its (immutable) TariffConfig, so one
    instance can be shared by any number of threads or requests.
    """

    def __init__(self, tariff: TariffConfig = DEFAULT_TARIFF):
        self.tariff = tariff

    def price_usage(self, units) -> CostBreakdown:
        """
        Build the itemized bill for `units` kWh consumed in one period.

        Raises InvalidUnitsError for negative, NaN or infinite units.
        """
        qty = validate_units(units)
        tariff = self.tariff

        if qty > tariff.suspicious_usage_units:
            logger.warning(
                "Suspicious usage of %s units; was a meter reading passed instead of usage?",
                qty,
            )

        line_items = []
        base_cost = Decimal("0")
        remaining = qty
        lower = Decimal("0")

        for slab in tariff.slabs:
            if remaining <= 0:
                break
            if slab.bounded:
                capacity = Decimal(slab.max_units) - lower
                billed = min(remaining, capacity)
            else:
                billed = remaining
            cost = round_money(billed * slab.rate)
            base_cost += cost
            line_items.append(SlabCharge(
                label=slab.label,
                units_charged=float(billed),
                rate=float(slab.rate),
                cost=float(cost),
            ))
            remaining -= billed
            if slab.bounded:
                lower = Decimal(slab.max_units)

        base_cost = round_money(base_cost)
        surcharge = round_money(qty * tariff.surcharge_rate)
        subtotal = round_money(base_cost + surcharge + tariff.fixed_charges)
        tax = round_money(subtotal * tariff.tax_rate)
        total = round_money(subtotal + tax + tariff.flat_fee)

        approaching, units_left = self._slab_warning(qty)

        return CostBreakdown(
            units=float(qty),
            line_items=line_items,
            base_cost=float(base_cost),
            surcharge_amount=float(surcharge),
            fixed_charges=float(round_money(tariff.fixed_charges)),
            subtotal=float(subtotal),
            tax_amount=float(tax),
            flat_fee=float(round_money(tariff.flat_fee)),
            total_cost=float(total),
            approaching_next_slab=approaching,
            next_slab_threshold_units=units_left,
            currency=tariff.currency,
        )

    def current_slab(self, units) -> Tuple[int, TariffSlab]:
        """Index and slab that the `units`-th unit is billed in."""
        qty = validate_units(units)
        slabs = self.tariff.slabs
        for index, slab in enumerate(slabs):
            if not slab.bounded or qty <= slab.max_units:
                return index, slab
        # validate_slabs guarantees an unbounded last slab
        return len(slabs) - 1, slabs[-1]

    def _slab_warning(self, qty: Decimal) -> Tuple[bool, Optional[float]]:
        index, slab = self.current_slab(qty)
        if not slab.bounded:
            return False, None
        if index == 0 and not self.tariff.warn_in_first_slab:
            return False, None
        units_left = Decimal(slab.max_units) - qty
        if units_left <= self.tariff.warning_threshold_units:
            return True, float(units_left)
        return False, None


def price_usage(units, tariff: TariffConfig = DEFAULT_TARIFF) -> CostBreakdown:
    """Price `units` kWh with `tariff` (default: the reference LESCO table)."""
    return TariffEngine(tariff).price_usage(units)
