# backend/run_local.py
"""
Print an itemized bill from the command line.

    python -m backend.run_local 150             # price 150 units
    python -m backend.run_local 150 15 30       # 150 units after 15 of 30 days, with forecast
    python -m backend.run_local readings.csv    # bill each meter's readings file
"""
import sys
from pathlib import Path

from backend.lib.volt_core.forecast import project_period
from backend.lib.volt_core.io import parse_csv_file
from backend.lib.volt_core.models import CostBreakdown
from backend.lib.volt_core.tariff import price_usage
from backend.lib.volt_core.usage import ReadingAnalyzer


def print_breakdown(b: CostBreakdown):
    for item in b.line_items:
        print(f"  {item.label:>8} : {item.units_charged:>8.2f} x {item.rate:>6.2f} = {item.cost:>10.2f}")
    print(f"  {'energy':>8} : {b.base_cost:>31.2f}")
    print(f"  {'fuel adj':>8} : {b.surcharge_amount:>31.2f}")
    print(f"  {'fixed':>8} : {b.fixed_charges:>31.2f}")
    print(f"  {'GST':>8} : {b.tax_amount:>31.2f}")
    print(f"  {'TV fee':>8} : {b.flat_fee:>31.2f}")
    print(f"  {'TOTAL':>8} : {b.total_cost:>31.2f} {b.currency}")
    if b.approaching_next_slab:
        print(f"  ! {b.next_slab_threshold_units:.2f} units left before the next slab")


def main(args):
    if args and Path(args[0]).suffix == ".csv":
        readings = parse_csv_file(args[0])
        by_meter = {}
        for r in readings:
            by_meter.setdefault(r.meter_id, []).append(r)
        for meter_id, meter_readings in sorted(by_meter.items()):
            analyzer = ReadingAnalyzer(meter_readings)
            first, last = analyzer.readings[0], analyzer.readings[-1]
            units = analyzer.usage_between(first.timestamp, last.timestamp)
            print(f"{meter_id}: {units:.2f} units")
            print_breakdown(price_usage(units))
        return

    units = float(args[0]) if args else 150.0
    print(f"Bill for {units:.2f} units:")
    print_breakdown(price_usage(units))

    if len(args) >= 3:
        forecast = project_period(units, int(args[1]), int(args[2]))
        print(f"Projected {forecast.projected_usage_units:.2f} units by end of period:")
        print_breakdown(forecast.projected_cost)
        band = forecast.projection_range
        print(f"  range: {band.low_usage_units:.2f}-{band.high_usage_units:.2f} units, "
              f"{band.low_cost:,.2f}-{band.high_cost:,.2f} {forecast.projected_cost.currency}")


if __name__ == "__main__":
    main(sys.argv[1:])
