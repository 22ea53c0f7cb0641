"""Helper functions shared across the pricing modules."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from collections.abc import Iterator
import time
import numpy as np

from .enums import DayCountConvention, OptionType
from .exceptions import InvalidParametersError

__all__ = [
    "log_timing",
    "calculate_year_fraction",
    "intrinsic_value",
    "require_positive",
    "require_finite",
]

SECONDS_IN_DAY = 86400
TRADING_DAYS_PER_YEAR = 252
CALENDAR_DAYS_PER_YEAR = 365


@contextmanager
def log_timing(logger, label: str, enabled: bool) -> Iterator[None]:
    """Log timing for a code block when enabled is True."""
    if not enabled:
        yield
        return
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.debug("Timing %s: %.6fs", label, elapsed)


_DAYS_PER_YEAR = {
    DayCountConvention.ACT_365F: 365.0,
    DayCountConvention.ACT_360: 360.0,
}


def calculate_year_fraction(
    start_date: datetime,
    end_date: datetime,
    day_count_convention: DayCountConvention = DayCountConvention.ACT_365F,
) -> float:
    """Actual elapsed days between two dates over the convention's year length.

    Negative when ``end_date`` precedes ``start_date``; intraday time counts
    as a fraction of a day.
    """
    try:
        days_per_year = _DAYS_PER_YEAR[day_count_convention]
    except KeyError:
        raise InvalidParametersError(
            f"Unsupported day_count_convention: {day_count_convention!r}"
        ) from None
    return (end_date - start_date).total_seconds() / SECONDS_IN_DAY / days_per_year


def intrinsic_value(spot, strike: float, option_type: OptionType):
    """Immediate-exercise payoff, vectorized over spot."""
    if option_type is OptionType.CALL:
        return np.maximum(np.asarray(spot, dtype=float) - strike, 0.0)
    return np.maximum(strike - np.asarray(spot, dtype=float), 0.0)


def require_finite(name: str, value) -> float:
    """Coerce ``value`` to float and reject NaN/inf."""
    try:
        value = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParametersError(f"{name} must be numeric, got {value!r}") from exc
    if not np.isfinite(value):
        raise InvalidParametersError(f"{name} must be finite, got {value}")
    return value


def require_positive(name: str, value) -> float:
    """Coerce ``value`` to a finite float and require it to be strictly positive."""
    value = require_finite(name, value)
    if value <= 0.0:
        raise InvalidParametersError(f"{name} must be positive, got {value}")
    return value
