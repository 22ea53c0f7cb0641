"""American option pricing engine (facade).

Orchestrates dividend adjustment, the boundary solve, near-expiry handling and
the premium integral into a price with Greeks:

    American = European (closed form) + early-exercise premium

The premium integrates the discounted exercise cash flow over the exercise
region ``[lo(u), hi(u)]`` at every remaining time to expiry ``u = T - s``:

    omega * int_0^T [ q S e^{-qs} (N(-d+(S/hi)) - N(-d+(S/lo)))
                      - r K e^{-rs} (N(-d-(S/hi)) - N(-d-(S/lo))) ] ds

with ``omega = +1`` for calls and ``-1`` for puts. Delta and gamma follow by
differentiating this integrand (and the European closed form) in ``S``; vega,
theta and rho are bump-and-reprice.

With escrowed dividends ``S`` is the escrowed spot. A put integrates over its
piecewise boundary, split at the ex-dates; a call is also floored by exercise
just before each ex-date (Black's pseudo-American value).

Units follow the usual desk conventions: vega per 1 vol point, rho per 1% rate,
theta per calendar day.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
import datetime as dt
import logging
import math

import numpy as np
from scipy.stats import norm

from ..dividends import DividendSchedule, escrow_shift
from ..enums import (
    BoundaryRegime,
    DividendModel,
    FixedPointEquation,
    NearExpiryRecommendation,
    OptionType,
    RootPath,
)
from ..exceptions import ConfigurationError, InvalidParametersError
from ..numerics.quadrature import adaptive_gauss_kronrod, gauss_legendre, tanh_sinh
from ..numerics.roots import characteristic_roots
from ..utils import CALENDAR_DAYS_PER_YEAR, intrinsic_value, log_timing
from .boundary import (
    ExerciseBoundary,
    ExerciseBoundarySolver,
    classify_regime,
    integrate_piecewise,
    put_space_rates,
)
from .bsm import EuropeanValuation, d_plus_minus
from .near_expiry import NearExpiryHandler
from .params import OptionParameters, PricingSettings
from .workspace import SolverWorkspace

logger = logging.getLogger(__name__)

__all__ = [
    "Greeks",
    "PricingDiagnostics",
    "PricingResult",
    "OptionPricingEngine",
    "compute_boundaries",
    "price",
    "price_with_greeks",
]


@dataclass(frozen=True, slots=True)
class Greeks:
    delta: float
    gamma: float
    vega: float
    theta: float
    rho: float


@dataclass(frozen=True, slots=True)
class PricingDiagnostics:
    """How a price was produced."""

    regime: BoundaryRegime
    sweeps: int
    root_path: RootPath | None
    converged: bool
    near_expiry: NearExpiryRecommendation
    blend_weight: float
    european_price: float
    early_exercise_premium: float
    model_price: float
    fixed_point_equation: FixedPointEquation | None = None
    crossing_time: float | None = None
    exercised: bool = False


@dataclass(frozen=True, slots=True)
class PricingResult:
    """Price, Greeks (None when not requested) and diagnostics."""

    price: float
    greeks: Greeks | None
    diagnostics: PricingDiagnostics

    def as_dict(self) -> dict[str, float]:
        """Flat ``{price, delta, gamma, vega, theta, rho}`` mapping."""
        out = {"price": self.price}
        if self.greeks is None:
            out.update(dict.fromkeys(("delta", "gamma", "vega", "theta", "rho"), math.nan))
        else:
            out.update(asdict(self.greeks))
        return out


@dataclass(frozen=True, slots=True)
class _ModelValue:
    price: float
    delta: float
    gamma: float
    european: float
    premium: float
    exercised: bool


class OptionPricingEngine:
    """Reentrant American option pricer.

    Parameters
    ----------
    settings
        Numerical-quality settings (collocation order, quadrature order,
        tolerance, sweep cap, ...). Defaults to ``PricingSettings()``.

    Notes
    -----
    The engine holds no mutable state; the only shared data are the cached,
    read-only quadrature tables. Independent calls may run concurrently.

    Examples
    --------
    >>> engine = OptionPricingEngine()
    >>> engine.price(100.0, 100.0, 0.05, 0.02, 0.3, 0.5, OptionType.CALL)  # doctest: +SKIP
    8.9...
    """

    def __init__(self, settings: PricingSettings | None = None) -> None:
        if settings is not None and not isinstance(settings, PricingSettings):
            raise ConfigurationError(
                f"settings must be PricingSettings, got {type(settings).__name__}"
            )
        self.settings = settings if settings is not None else PricingSettings()
        self.solver = ExerciseBoundarySolver(self.settings)
        self.near_expiry = NearExpiryHandler(
            self.settings.near_expiry_min_time, self.settings.near_expiry_blend_width
        )
        # warm the read-only quadrature tables used on every call
        for order in (7, 15, self.settings.quadrature_order):
            gauss_legendre(order)

    # -- dividends ---------------------------------------------------

    def _apply_dividends(
        self,
        params: OptionParameters,
        dividends: DividendSchedule | None,
        valuation_date: dt.datetime | None,
    ) -> tuple[float, tuple[tuple[float, float], ...]]:
        """Return the model spot and the escrowed jump events."""
        if dividends is None:
            return params.spot, ()
        if not isinstance(dividends, DividendSchedule):
            raise ConfigurationError(
                f"dividends must be DividendSchedule, got {type(dividends).__name__}"
            )
        if dividends.is_empty:
            return params.spot, ()
        if not isinstance(valuation_date, dt.datetime):
            raise InvalidParametersError("valuation_date is required when a dividend schedule is given")
        expiry = valuation_date + dt.timedelta(days=CALENDAR_DAYS_PER_YEAR * params.time_to_expiry)
        spot = dividends.adjust_spot(params.spot, valuation_date, expiry, params.rate)
        jumps = ()
        if self.settings.dividend_model is DividendModel.ESCROWED:
            jumps = dividends.jump_times(valuation_date, expiry)
        logger.debug(
            "Dividend adjustment (%s): spot %.6f -> %.6f",
            self.settings.dividend_model.value,
            params.spot,
            spot,
        )
        return spot, jumps

    # -- boundary ----------------------------------------------------

    def solve_boundary(
        self,
        params: OptionParameters,
        dividends: DividendSchedule | None = None,
        valuation_date: dt.datetime | None = None,
        *,
        workspace: SolverWorkspace | None = None,
    ) -> ExerciseBoundary:
        """Solve the exercise boundary for ``params`` (after dividend adjustment)."""
        _, jumps = self._apply_dividends(params, dividends, valuation_date)
        return self.solver.solve(params, workspace=workspace, escrow_jumps=jumps)

    def compute_boundaries(
        self,
        spot: float,
        strike: float,
        rate: float,
        dividend_yield: float,
        volatility: float,
        time_to_expiry: float,
        option_type: OptionType = OptionType.PUT,
    ) -> tuple[float, float]:
        """``(upper, lower)`` edges of today's exercise region.

        Puts: ``(B, 0)`` single regime, ``(U, L)`` double regime. Calls:
        ``(inf, B)``. ``(nan, nan)`` when early exercise is never optimal.
        Near expiry the edges blend linearly into the intrinsic fallback.
        """
        params = OptionParameters(
            spot, strike, rate, dividend_yield, volatility, time_to_expiry, option_type
        )
        regime = classify_regime(params.rate, params.dividend_yield, params.option_type)
        if regime is BoundaryRegime.NO_EARLY_EXERCISE:
            return math.nan, math.nan

        assessment = self.near_expiry.assess(params.time_to_expiry)
        fallback = self.near_expiry.fallback_boundary(
            params.strike,
            params.rate,
            params.dividend_yield,
            params.volatility,
            params.time_to_expiry,
            params.option_type,
            regime,
        )
        if assessment.recommendation is NearExpiryRecommendation.INTRINSIC:
            return fallback
        model = self.solver.solve(params).edges(params.time_to_expiry)
        if assessment.recommendation is NearExpiryRecommendation.BLENDED:
            return (
                self.near_expiry.blend(model[0], fallback[0], params.time_to_expiry),
                self.near_expiry.blend(model[1], fallback[1], params.time_to_expiry),
            )
        return model

    # -- premium integral --------------------------------------------

    def _premium_terms(self, boundary: ExerciseBoundary, params: OptionParameters, s, sensitivities):
        spot, strike = params.spot, params.strike
        r, q, sigma = params.rate, params.dividend_yield, params.volatility
        omega = 1.0 if params.option_type is OptionType.CALL else -1.0
        lo, hi = boundary.region(params.time_to_expiry - s)
        with np.errstate(divide="ignore", invalid="ignore"):
            dp_hi, dm_hi = d_plus_minus(spot / hi, s, r, q, sigma)
            dp_lo, dm_lo = d_plus_minus(spot / lo, s, r, q, sigma)
        df_q = np.exp(-q * s)
        df_r = np.exp(-r * s)
        g_plus = norm.cdf(-dp_hi) - norm.cdf(-dp_lo)
        g_minus = norm.cdf(-dm_hi) - norm.cdf(-dm_lo)
        value = omega * (q * spot * df_q * g_plus - r * strike * df_r * g_minus)
        if not sensitivities:
            return value, None, None

        vol_sqrt = sigma * np.sqrt(s)

        def psi(d):
            return norm.pdf(d) / (spot * vol_sqrt)

        def dpsi(d):
            finite = np.isfinite(d)
            d_safe = np.where(finite, d, 0.0)
            out = -norm.pdf(d_safe) * (1.0 + d_safe / vol_sqrt) / (spot * spot * vol_sqrt)
            return np.where(finite, out, 0.0)

        dg_plus = -psi(dp_hi) + psi(dp_lo)
        dg_minus = -psi(dm_hi) + psi(dm_lo)
        d2g_plus = -dpsi(dp_hi) + dpsi(dp_lo)
        d2g_minus = -dpsi(dm_hi) + dpsi(dm_lo)
        delta = omega * (q * df_q * (g_plus + spot * dg_plus) - r * strike * df_r * dg_minus)
        gamma = omega * (
            q * df_q * (2.0 * dg_plus + spot * d2g_plus) - r * strike * df_r * d2g_minus
        )
        return value, delta, gamma

    def _integrate_premium(self, integrand, horizon: float, scale: float, starts=(0.0,)) -> float:
        settings = self.settings
        bulk_tolerance = settings.tolerance * 1e-2 * scale

        def near(f, a, b):
            return tanh_sinh(f, a, b, tolerance=settings.tolerance)

        def bulk(f, a, b):
            return adaptive_gauss_kronrod(f, a, b, tolerance=bulk_tolerance)

        return integrate_piecewise(integrand, horizon, starts, settings.singular_split, near, bulk)

    def _ex_date_exercise(self, params: OptionParameters, jumps) -> EuropeanValuation | None:
        """Most valuable call exercised just before one of the ex-dates (Black's approximation).

        Under the escrowed model a call holder can exercise just before an
        ex-date and keep the dividend. That right is worth at least a European
        call on the escrowed spot, expiring at the ex-date, struck at ``K`` less
        the PV of the dividends still to go ex.
        """
        best = None
        for jump_time, _ in jumps:
            if not 0.0 < jump_time < params.time_to_expiry:
                continue
            strike = params.strike - escrow_shift(jumps, jump_time, params.rate)
            if strike > 0.0:
                candidate = EuropeanValuation.from_inputs(
                    params.spot, strike, params.rate, params.dividend_yield,
                    params.volatility, jump_time, OptionType.CALL,
                )
            else:
                df_q = math.exp(-params.dividend_yield * jump_time)
                forward = params.spot * df_q - strike * math.exp(-params.rate * jump_time)
                candidate = EuropeanValuation(forward, df_q, 0.0)
            if best is None or candidate.price > best.price:
                best = candidate
        return best

    def _model_value(
        self, params: OptionParameters, boundary: ExerciseBoundary, sensitivities: bool, jumps=()
    ) -> _ModelValue:
        model = self._collocation_value(params, boundary, sensitivities, jumps)
        if params.option_type is OptionType.CALL and jumps and not model.exercised:
            early = self._ex_date_exercise(params, jumps)
            if early is not None and early.price > model.price:
                logger.debug(
                    "Exercise before an ex-date dominates: %.6f > %.6f", early.price, model.price
                )
                return _ModelValue(
                    early.price, early.delta, early.gamma, model.european,
                    early.price - model.european, False,
                )
        return model

    def _collocation_value(
        self, params: OptionParameters, boundary: ExerciseBoundary, sensitivities: bool, jumps
    ) -> _ModelValue:
        args = (
            params.spot,
            params.strike,
            params.rate,
            params.dividend_yield,
            params.volatility,
            params.time_to_expiry,
        )
        european = EuropeanValuation.from_inputs(*args, params.option_type)
        if not boundary.has_early_exercise:
            return _ModelValue(
                european.price, european.delta, european.gamma, european.price, 0.0, False
            )

        if boundary.contains(params.spot, params.time_to_expiry):
            # exercising pays on the real spot, escrowed dividends included
            real_spot = params.spot + escrow_shift(jumps, 0.0, params.rate) if jumps else params.spot
            exercise = float(intrinsic_value(real_spot, params.strike, params.option_type))
            delta = 1.0 if params.option_type is OptionType.CALL else -1.0
            return _ModelValue(exercise, delta, 0.0, european.price, exercise - european.price, True)

        horizon, scale, starts = params.time_to_expiry, params.strike, boundary.segment_starts

        def component(index, sensitivities):
            return lambda s: self._premium_terms(boundary, params, s, sensitivities)[index]

        with log_timing(logger, "premium integral", self.settings.log_timings):
            premium = self._integrate_premium(component(0, False), horizon, scale, starts)
            premium_delta = premium_gamma = 0.0
            if sensitivities:
                premium_delta = self._integrate_premium(component(1, True), horizon, scale, starts)
                premium_gamma = self._integrate_premium(component(2, True), horizon, scale, starts)
        premium = max(premium, 0.0)
        return _ModelValue(
            european.price + premium,
            european.delta + premium_delta,
            european.gamma + premium_gamma,
            european.price,
            premium,
            False,
        )

    # -- public API --------------------------------------------------

    def value(
        self,
        params: OptionParameters,
        dividends: DividendSchedule | None = None,
        valuation_date: dt.datetime | None = None,
        *,
        greeks: bool = True,
        workspace: SolverWorkspace | None = None,
    ) -> PricingResult:
        """Full valuation of ``params``: price, optional Greeks and diagnostics.

        Raises
        ------
        ConvergenceError
            If the boundary solve hits its sweep cap. It is not retried; the
            caller decides on a fallback model.
        UnsupportedFeatureError
            For an escrowed-dividend put whose rates give a double exercise boundary.
        """
        if not isinstance(params, OptionParameters):
            raise ConfigurationError(
                f"params must be OptionParameters, got {type(params).__name__}"
            )
        option_type = params.option_type
        intrinsic = float(intrinsic_value(params.spot, params.strike, option_type))
        assessment = self.near_expiry.assess(params.time_to_expiry)
        regime = classify_regime(params.rate, params.dividend_yield, option_type)
        model_spot, jumps = self._apply_dividends(params, dividends, valuation_date)

        if assessment.recommendation is NearExpiryRecommendation.INTRINSIC or model_spot <= 0.0:
            return self._intrinsic_result(params, intrinsic, regime, assessment, greeks)

        model_params = params if model_spot == params.spot else params.replace(spot=model_spot)
        boundary = self.solver.solve(model_params, workspace=workspace, escrow_jumps=jumps)
        model = self._model_value(model_params, boundary, greeks, jumps)

        weight = assessment.blend_weight
        raw = weight * model.price + (1.0 - weight) * intrinsic
        value = max(raw, intrinsic)
        diagnostics = PricingDiagnostics(
            regime=boundary.regime,
            sweeps=boundary.sweeps,
            root_path=boundary.roots.path if boundary.roots is not None else None,
            converged=boundary.converged,
            near_expiry=assessment.recommendation,
            blend_weight=weight,
            european_price=model.european,
            early_exercise_premium=model.premium,
            model_price=model.price,
            fixed_point_equation=boundary.equation,
            crossing_time=boundary.crossing_time,
            exercised=model.exercised,
        )
        if not greeks:
            return PricingResult(value, None, diagnostics)

        fallback = self.near_expiry.intrinsic_greeks(
            params.spot, params.strike, params.volatility, params.time_to_expiry, option_type
        )
        if raw < intrinsic:
            delta, gamma = fallback.delta, 0.0
        else:
            delta = weight * model.delta + (1.0 - weight) * fallback.delta
            gamma = weight * model.gamma + (1.0 - weight) * fallback.gamma
        result_greeks = Greeks(
            delta=delta,
            gamma=gamma,
            vega=self._vega(params, dividends, valuation_date),
            theta=self._theta(params, value, dividends, valuation_date),
            rho=self._rho(params, dividends, valuation_date),
        )
        return PricingResult(value, result_greeks, diagnostics)

    def _intrinsic_result(self, params, intrinsic, regime, assessment, greeks) -> PricingResult:
        r, q = put_space_rates(params.rate, params.dividend_yield, params.option_type)
        roots = characteristic_roots(r, q, params.volatility, horizon=params.time_to_expiry)
        diagnostics = PricingDiagnostics(
            regime=regime,
            sweeps=0,
            root_path=roots.path,
            converged=True,
            near_expiry=assessment.recommendation,
            blend_weight=assessment.blend_weight,
            european_price=math.nan,
            early_exercise_premium=math.nan,
            model_price=math.nan,
            exercised=intrinsic > 0.0,
        )
        if not greeks:
            return PricingResult(intrinsic, None, diagnostics)
        g = self.near_expiry.intrinsic_greeks(
            params.spot, params.strike, params.volatility, params.time_to_expiry, params.option_type
        )
        return PricingResult(
            intrinsic, Greeks(g.delta, g.gamma, g.vega, g.theta, g.rho), diagnostics
        )

    # -- bump-and-reprice Greeks -------------------------------------

    def _reprice(self, params, dividends, valuation_date) -> float:
        return self.value(params, dividends, valuation_date, greeks=False).price

    def _vega(self, params, dividends, valuation_date) -> float:
        h = self.settings.vol_bump
        up = self._reprice(params.replace(volatility=params.volatility + h), dividends, valuation_date)
        if params.volatility - h > 0.0:
            down = self._reprice(
                params.replace(volatility=params.volatility - h), dividends, valuation_date
            )
            return (up - down) / (2.0 * h) / 100.0
        base = self._reprice(params, dividends, valuation_date)
        return (up - base) / h / 100.0

    def _rho(self, params, dividends, valuation_date) -> float:
        h = self.settings.rate_bump
        up = self._reprice(params.replace(rate=params.rate + h), dividends, valuation_date)
        down = self._reprice(params.replace(rate=params.rate - h), dividends, valuation_date)
        return (up - down) / (2.0 * h) / 100.0

    def _theta(self, params, base_price, dividends, valuation_date) -> float:
        days = self.settings.theta_days
        remaining = params.time_to_expiry - days / CALENDAR_DAYS_PER_YEAR
        if remaining <= 0.0:
            later = float(intrinsic_value(params.spot, params.strike, params.option_type))
        else:
            later_date = None
            if valuation_date is not None:
                later_date = valuation_date + dt.timedelta(days=days)
            later = self._reprice(params.replace(time_to_expiry=remaining), dividends, later_date)
        return (later - base_price) / days

    def price(
        self,
        spot: float,
        strike: float,
        rate: float,
        dividend_yield: float,
        volatility: float,
        time_to_expiry: float,
        option_type: OptionType = OptionType.PUT,
        dividends: DividendSchedule | None = None,
        valuation_date: dt.datetime | None = None,
    ) -> float:
        """American option price."""
        params = OptionParameters(
            spot, strike, rate, dividend_yield, volatility, time_to_expiry, option_type
        )
        return self.value(params, dividends, valuation_date, greeks=False).price

    def price_with_greeks(
        self,
        spot: float,
        strike: float,
        rate: float,
        dividend_yield: float,
        volatility: float,
        time_to_expiry: float,
        option_type: OptionType = OptionType.PUT,
        dividends: DividendSchedule | None = None,
        valuation_date: dt.datetime | None = None,
    ) -> PricingResult:
        """Price plus delta, gamma (analytic) and vega, theta, rho (bumped)."""
        params = OptionParameters(
            spot, strike, rate, dividend_yield, volatility, time_to_expiry, option_type
        )
        return self.value(params, dividends, valuation_date, greeks=True)


# ── Function-style wrappers ─────────────────────────────────────────


def compute_boundaries(
    spot, strike, rate, dividend_yield, volatility, time_to_expiry,
    option_type: OptionType = OptionType.PUT,
    settings: PricingSettings | None = None,
) -> tuple[float, float]:
    """See :meth:`OptionPricingEngine.compute_boundaries`."""
    return OptionPricingEngine(settings).compute_boundaries(
        spot, strike, rate, dividend_yield, volatility, time_to_expiry, option_type
    )


def price(
    spot, strike, rate, dividend_yield, volatility, time_to_expiry,
    option_type: OptionType = OptionType.PUT,
    settings: PricingSettings | None = None,
) -> float:
    """See :meth:`OptionPricingEngine.price`."""
    return OptionPricingEngine(settings).price(
        spot, strike, rate, dividend_yield, volatility, time_to_expiry, option_type
    )


def price_with_greeks(
    spot, strike, rate, dividend_yield, volatility, time_to_expiry,
    option_type: OptionType = OptionType.PUT,
    settings: PricingSettings | None = None,
) -> PricingResult:
    """See :meth:`OptionPricingEngine.price_with_greeks`."""
    return OptionPricingEngine(settings).price_with_greeks(
        spot, strike, rate, dividend_yield, volatility, time_to_expiry, option_type
    )
