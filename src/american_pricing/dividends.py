"""Discrete cash dividend schedules.

A :class:`DividendSchedule` is an immutable, chronologically ordered tuple of
:class:`CashDividend` entries. It feeds the pricing engine in one of two ways:

- spot model: the present value of the dividends going ex before expiry is
  subtracted from spot (floored at zero)
- escrowed model: the dividends become ``(time_in_years, amount)`` jump events,
  i.e. ``V(S) -> V(S - D)`` discontinuities of the boundary in real-spot terms
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
import datetime as dt
import logging
import math

import numpy as np

from .enums import DayCountConvention
from .exceptions import InvalidParametersError
from .utils import calculate_year_fraction

logger = logging.getLogger(__name__)

__all__ = ["CashDividend", "DividendSchedule", "escrow_shift"]

DAYS_PER_YEAR = 365.0


@dataclass(frozen=True, slots=True)
class CashDividend:
    """A single cash dividend going ex on ``ex_date``."""

    ex_date: dt.datetime
    amount: float

    def __post_init__(self) -> None:
        if not isinstance(self.ex_date, dt.datetime):
            raise InvalidParametersError(
                f"ex_date must be a datetime, got {type(self.ex_date).__name__}"
            )
        try:
            amount = float(self.amount)
        except (TypeError, ValueError) as exc:
            raise InvalidParametersError("dividend amount must be numeric") from exc
        if not math.isfinite(amount):
            raise InvalidParametersError(f"dividend amount must be finite, got {amount}")
        if amount < 0.0:
            raise InvalidParametersError(f"dividend amount must be >= 0, got {amount}")
        object.__setattr__(self, "amount", amount)


@dataclass(frozen=True, slots=True)
class DividendSchedule:
    """Validated, chronologically ordered discrete dividends.

    Parameters
    ----------
    dividends
        Iterable of :class:`CashDividend` or ``(ex_date, amount)`` pairs.
    day_count_convention
        Basis for converting dates to year fractions (default ACT/365F).

    Examples
    --------
    >>> schedule = DividendSchedule([(dt.datetime(2025, 3, 1), 0.5)])
    >>> schedule.present_value(dt.datetime(2025, 1, 1), dt.datetime(2026, 1, 1), 0.05)  # doctest: +SKIP
    0.4959...
    """

    dividends: tuple[CashDividend, ...] = ()
    day_count_convention: DayCountConvention = DayCountConvention.ACT_365F

    def __post_init__(self) -> None:
        if not isinstance(self.day_count_convention, DayCountConvention):
            raise InvalidParametersError(
                "day_count_convention must be DayCountConvention enum, "
                f"got {type(self.day_count_convention).__name__}"
            )
        cleaned: list[CashDividend] = []
        for entry in self.dividends:
            if isinstance(entry, CashDividend):
                cleaned.append(entry)
                continue
            try:
                ex_date, amount = entry
            except (TypeError, ValueError) as exc:
                raise InvalidParametersError(
                    "dividends entries must be CashDividend or (datetime, amount) pairs"
                ) from exc
            cleaned.append(CashDividend(ex_date, amount))
        object.__setattr__(self, "dividends", tuple(sorted(cleaned, key=lambda d: d.ex_date)))

    def __len__(self) -> int:
        return len(self.dividends)

    def __iter__(self) -> Iterator[CashDividend]:
        return iter(self.dividends)

    @property
    def is_empty(self) -> bool:
        return not self.dividends

    @classmethod
    def from_continuous_yield(
        cls,
        spot: float,
        dividend_yield: float,
        start_date: dt.datetime,
        end_date: dt.datetime,
        frequency: int = 4,
    ) -> DividendSchedule:
        """Synthesize a periodic schedule equivalent to a continuous yield.

        Each period pays ``spot * (exp(q / frequency) - 1)``, with ex-dates every
        ``365 / frequency`` days after ``start_date`` up to ``end_date``. A
        non-positive yield gives an empty schedule.
        """
        if int(frequency) != frequency or frequency < 1:
            raise InvalidParametersError(f"frequency must be a positive integer, got {frequency}")
        if not math.isfinite(spot) or spot <= 0.0:
            raise InvalidParametersError(f"spot must be positive, got {spot}")
        if not math.isfinite(dividend_yield):
            raise InvalidParametersError(f"dividend_yield must be finite, got {dividend_yield}")
        if end_date <= start_date or dividend_yield <= 0.0:
            return cls()

        amount = spot * math.expm1(dividend_yield / frequency)
        period = dt.timedelta(days=DAYS_PER_YEAR / frequency)
        entries = []
        ex_date = start_date + period
        while ex_date <= end_date:
            entries.append(CashDividend(ex_date, amount))
            ex_date += period
        logger.debug(
            "Synthesized %d dividends of %.6f from yield %.4f", len(entries), amount, dividend_yield
        )
        return cls(tuple(entries))

    def add_dividend(self, ex_date: dt.datetime, amount: float) -> DividendSchedule:
        """Return a new schedule with one more dividend."""
        return DividendSchedule(
            self.dividends + (CashDividend(ex_date, amount),), self.day_count_convention
        )

    def between(
        self, start_date: dt.datetime, end_date: dt.datetime, include_start: bool = True
    ) -> tuple[CashDividend, ...]:
        """Dividends going ex in ``[start_date, end_date]`` (left-open if not ``include_start``)."""
        if include_start:
            return tuple(d for d in self.dividends if start_date <= d.ex_date <= end_date)
        return tuple(d for d in self.dividends if start_date < d.ex_date <= end_date)

    def present_value(
        self,
        valuation_date: dt.datetime,
        expiry_date: dt.datetime,
        rate: float,
    ) -> float:
        """PV at ``valuation_date`` of dividends going ex up to expiry, discounted at ``rate``."""
        pv = 0.0
        for dividend in self.between(valuation_date, expiry_date):
            t = calculate_year_fraction(valuation_date, dividend.ex_date, self.day_count_convention)
            pv += dividend.amount * math.exp(-rate * t)
        return pv

    def adjust_spot(
        self,
        spot: float,
        valuation_date: dt.datetime,
        expiry_date: dt.datetime,
        rate: float,
    ) -> float:
        """Spot-model adjustment: ``max(spot - PV(dividends), 0)``."""
        return max(spot - self.present_value(valuation_date, expiry_date, rate), 0.0)

    def jump_times(
        self, valuation_date: dt.datetime, expiry_date: dt.datetime
    ) -> tuple[tuple[float, float], ...]:
        """Escrowed-model jump events as ``(time_in_years, amount)`` pairs."""
        return tuple(
            (
                calculate_year_fraction(valuation_date, d.ex_date, self.day_count_convention),
                d.amount,
            )
            for d in self.between(valuation_date, expiry_date)
            if d.amount > 0.0
        )


def escrow_shift(jumps: Iterable[tuple[float, float]], calendar_time, rate: float):
    """PV at ``calendar_time`` of the jumps still to come (ex-time >= calendar_time).

    Vectorized over ``calendar_time``; this is the amount by which the
    escrowed-spot boundary is shifted back into real-spot terms.
    """
    t = np.asarray(calendar_time, dtype=float)
    shift = np.zeros_like(t)
    for jump_time, amount in jumps:
        pending = jump_time >= t
        shift = shift + np.where(pending, amount * np.exp(-rate * (jump_time - t)), 0.0)
    if np.ndim(calendar_time) == 0:
        return float(shift)
    return shift
