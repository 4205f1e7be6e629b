# backend/lib/volt_core/errors.py


class VoltError(ValueError):
    """Base class for validation failures on caller-supplied input."""


class InvalidUnitsError(VoltError):
    """Consumption (or a meter reading) is negative, NaN or infinite."""


class InvalidPeriodError(VoltError):
    """Elapsed days are not within (0, days_in_period]."""


class ReferenceUnavailableError(VoltError):
    """No usable baseline period to compare a forecast against."""


class InvalidTariffError(VoltError):
    """A tariff table breaks the slab rules or cannot be parsed."""
