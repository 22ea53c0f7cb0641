"""Black-Scholes-Merton closed forms with continuous dividend yield.

The European value is the base of every American price (American = European +
early-exercise premium), and the same ``d+/d-`` terms drive the boundary
integral equations, so the helpers here are vectorized over spot ratio and time.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from scipy.stats import norm

from ..enums import OptionType
from ..exceptions import InvalidParametersError

__all__ = [
    "d_plus_minus",
    "european_price",
    "european_delta",
    "european_gamma",
    "EuropeanValuation",
]


class _BSMInputs(NamedTuple):
    """Pre-computed inputs shared by price, delta and gamma."""

    spot: float
    strike: float
    volatility: float
    time_to_expiry: float
    df_r: float
    df_q: float
    d1: float
    d2: float


def d_plus_minus(ratio, tau, rate: float, dividend_yield: float, volatility: float):
    """Return ``(d+, d-)`` for spot/strike ``ratio`` over horizon ``tau``.

    ``d± = (ln(ratio) + (r - q ± sigma^2/2) tau) / (sigma sqrt(tau))``.
    Vectorized over ``ratio`` and ``tau``; ``tau`` must be positive.
    """
    ratio = np.asarray(ratio, dtype=float)
    tau = np.asarray(tau, dtype=float)
    vol_sqrt = volatility * np.sqrt(tau)
    with np.errstate(divide="ignore"):
        log_ratio = np.log(ratio)
    d_plus = (log_ratio + (rate - dividend_yield + 0.5 * volatility * volatility) * tau) / vol_sqrt
    return d_plus, d_plus - vol_sqrt


def _bsm_inputs(
    spot: float,
    strike: float,
    rate: float,
    dividend_yield: float,
    volatility: float,
    time_to_expiry: float,
) -> _BSMInputs:
    if time_to_expiry <= 0:
        raise InvalidParametersError("time_to_expiry must be positive")
    d1, d2 = d_plus_minus(spot / strike, time_to_expiry, rate, dividend_yield, volatility)
    return _BSMInputs(
        spot=spot,
        strike=strike,
        volatility=volatility,
        time_to_expiry=time_to_expiry,
        df_r=float(np.exp(-rate * time_to_expiry)),
        df_q=float(np.exp(-dividend_yield * time_to_expiry)),
        d1=float(d1),
        d2=float(d2),
    )


def european_price(spot, strike, rate, dividend_yield, volatility, time_to_expiry, option_type):
    """Closed-form European value."""
    inp = _bsm_inputs(spot, strike, rate, dividend_yield, volatility, time_to_expiry)
    if option_type is OptionType.CALL:
        return inp.spot * inp.df_q * norm.cdf(inp.d1) - inp.strike * inp.df_r * norm.cdf(inp.d2)
    return inp.strike * inp.df_r * norm.cdf(-inp.d2) - inp.spot * inp.df_q * norm.cdf(-inp.d1)


def european_delta(spot, strike, rate, dividend_yield, volatility, time_to_expiry, option_type):
    """delta = df_q N(d1) for calls, df_q (N(d1) - 1) for puts."""
    inp = _bsm_inputs(spot, strike, rate, dividend_yield, volatility, time_to_expiry)
    if option_type is OptionType.CALL:
        return inp.df_q * norm.cdf(inp.d1)
    return inp.df_q * (norm.cdf(inp.d1) - 1.0)


def european_gamma(spot, strike, rate, dividend_yield, volatility, time_to_expiry):
    """gamma = df_q N'(d1) / (S sigma sqrt(T)); identical for calls and puts."""
    inp = _bsm_inputs(spot, strike, rate, dividend_yield, volatility, time_to_expiry)
    return inp.df_q * norm.pdf(inp.d1) / (inp.spot * inp.volatility * np.sqrt(inp.time_to_expiry))


class EuropeanValuation(NamedTuple):
    """European value with its analytic spot sensitivities."""

    price: float
    delta: float
    gamma: float

    @classmethod
    def from_inputs(
        cls, spot, strike, rate, dividend_yield, volatility, time_to_expiry, option_type
    ) -> EuropeanValuation:
        args = (spot, strike, rate, dividend_yield, volatility, time_to_expiry)
        return cls(
            price=float(european_price(*args, option_type)),
            delta=float(european_delta(*args, option_type)),
            gamma=float(european_gamma(*args)),
        )
