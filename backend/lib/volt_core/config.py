# backend/lib/volt_core/config.py
"""
Tariff configuration.

A tariff is plain data: an ordered tuple of slabs plus the per-period
constants (fuel adjustment, GST, fixed charges, TV fee). Swapping a schedule
means loading a different TariffConfig, never editing the engine.

JSON tariff file format (see load_tariff):

    {
        "name": "LESCO residential",
        "currency": "PKR",
        "slabs": [
            {"min": 0, "max": 50, "rate": 3.95},
            ...
            {"min": 701, "max": null, "rate": 28.30}
        ],
        "surcharge_rate": 4.77,
        "tax_rate": 0.17,
        "flat_fee": 35,
        "fixed_charges": 200,
        "warning_threshold_units": 20
    }
"""
import json
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional, Tuple

from .errors import InvalidTariffError


def to_decimal(value) -> Decimal:
    """Convert an int/float/str to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidTariffError(f"Not a number: {value!r}") from e


@dataclass(frozen=True)
class TariffSlab:
    min_units: int
    max_units: Optional[int]  # None = unbounded top slab
    rate: Decimal

    @property
    def bounded(self) -> bool:
        return self.max_units is not None

    @property
    def label(self) -> str:
        if self.max_units is None:
            return f"{self.min_units}+"
        return f"{self.min_units}-{self.max_units}"

    def to_dict(self) -> dict:
        return {"min": self.min_units, "max": self.max_units, "rate": float(self.rate)}


@dataclass(frozen=True)
class TariffConfig:
    slabs: Tuple[TariffSlab, ...]
    surcharge_rate: Decimal = Decimal("4.77")
    tax_rate: Decimal = Decimal("0.17")
    flat_fee: Decimal = Decimal("35")
    fixed_charges: Decimal = Decimal("200")
    warning_threshold_units: int = 20
    # The lifeline slab does not raise the approaching-next-slab warning.
    warn_in_first_slab: bool = False
    suspicious_usage_units: int = 3000
    currency: str = "PKR"
    name: str = "default"

    def __post_init__(self):
        object.__setattr__(self, "slabs", tuple(self.slabs))
        for attr in ("surcharge_rate", "tax_rate", "flat_fee", "fixed_charges"):
            value = to_decimal(getattr(self, attr))
            if value < 0:
                raise InvalidTariffError(f"{attr} must be >= 0, got {value}")
            object.__setattr__(self, attr, value)
        if self.warning_threshold_units < 0:
            raise InvalidTariffError("warning_threshold_units must be >= 0")
        validate_slabs(self.slabs)

    @classmethod
    def from_dict(cls, data: dict) -> "TariffConfig":
        try:
            slabs = tuple(
                TariffSlab(
                    min_units=int(s["min"]),
                    max_units=None if s.get("max") is None else int(s["max"]),
                    rate=to_decimal(s["rate"]),
                )
                for s in data["slabs"]
            )
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, InvalidTariffError):
                raise
            raise InvalidTariffError(f"Malformed slab table: {e}") from e

        options = {}
        for key in ("surcharge_rate", "tax_rate", "flat_fee", "fixed_charges"):
            if key in data:
                options[key] = to_decimal(data[key])
        for key in ("warning_threshold_units", "suspicious_usage_units"):
            if key in data:
                options[key] = int(data[key])
        if "warn_in_first_slab" in data:
            options["warn_in_first_slab"] = bool(data["warn_in_first_slab"])
        for key in ("currency", "name"):
            if key in data:
                options[key] = str(data[key])
        return cls(slabs=slabs, **options)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "currency": self.currency,
            "slabs": [s.to_dict() for s in self.slabs],
            "surcharge_rate": float(self.surcharge_rate),
            "tax_rate": float(self.tax_rate),
            "flat_fee": float(self.flat_fee),
            "fixed_charges": float(self.fixed_charges),
            "warning_threshold_units": self.warning_threshold_units,
            "warn_in_first_slab": self.warn_in_first_slab,
            "suspicious_usage_units": self.suspicious_usage_units,
        }


def validate_slabs(slabs: Tuple[TariffSlab, ...]) -> None:
    """
    Check the slab table is usable for progressive billing.

    Rules: non-empty, first slab starts at 0, each slab's max >= min,
    slab[i].max + 1 == slab[i+1].min, non-negative rates, and exactly one
    unbounded slab which is the last one.
    """
    if not slabs:
        raise InvalidTariffError("Tariff needs at least one slab")
    if slabs[0].min_units != 0:
        raise InvalidTariffError("First slab must start at 0 units")

    for i, slab in enumerate(slabs):
        if slab.rate < 0:
            raise InvalidTariffError(f"Slab {slab.label} has a negative rate")
        last = i == len(slabs) - 1
        if slab.max_units is None:
            if not last:
                raise InvalidTariffError(f"Unbounded slab {slab.label} must be the last slab")
            continue
        if last:
            raise InvalidTariffError("Last slab must be unbounded")
        if slab.max_units < slab.min_units:
            raise InvalidTariffError(f"Slab {slab.label} has max below min")
        nxt = slabs[i + 1]
        if slab.max_units + 1 != nxt.min_units:
            raise InvalidTariffError(
                f"Slabs {slab.label} and {nxt.label} are not contiguous"
            )


DEFAULT_TARIFF = TariffConfig(
    slabs=(
        TariffSlab(0, 50, Decimal("3.95")),
        TariffSlab(51, 100, Decimal("7.74")),
        TariffSlab(101, 200, Decimal("10.06")),
        TariffSlab(201, 300, Decimal("18.15")),
        TariffSlab(301, 700, Decimal("22.71")),
        TariffSlab(701, None, Decimal("28.30")),
    ),
    name="LESCO residential",
)


def load_tariff(path) -> TariffConfig:
    """Load a TariffConfig from a JSON file."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidTariffError(f"Cannot read tariff file {path}: {e}") from e
    return TariffConfig.from_dict(data)


def tariff_from_env() -> TariffConfig:
    """Tariff named by VOLT_TARIFF_FILE, or the default table."""
    path = os.getenv("VOLT_TARIFF_FILE")
    if path:
        return load_tariff(path)
    return DEFAULT_TARIFF
