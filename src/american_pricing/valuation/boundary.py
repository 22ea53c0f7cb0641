"""Early-exercise boundary solver.

The boundary is found by fixed-point iteration on the integral equations of the
American option (Kim / Andersen-Lake-Offengenden form), collocated at
Chebyshev-Lobatto nodes in ``z = sqrt(tau)``.

Regimes
-------
Everything is solved in put space; a call with (r, q) is the put with the rates
swapped (put-call symmetry), and its boundary is ``K**2 / B_put``.

- ``SINGLE`` (put r > 0): one non-increasing boundary ``B(tau)``, exercise when
  ``S <= B``. ``B(0+) = K * min(1, r/q)`` (``K`` when q <= 0).
- ``DOUBLE`` (put q < r < 0): exercise when ``L(tau) <= S <= U(tau)`` with
  ``U(0+) = K`` and ``L(0+) = K r/q``. The two curves meet at a finite
  ``tau*``; for longer maturities the region is empty.
- ``NO_EARLY_EXERCISE``: otherwise. The American value equals the European one.

Algorithm
---------
1. Initial guess from the quadratic (Barone-Adesi-Whaley / QD) approximation,
   solved with ``scipy.optimize.brentq`` at every node. In the double regime it
   also estimates ``tau*``.
2. Sweeps over the nodes (Jacobi or Gauss-Seidel). Each update evaluates the
   integral terms with tanh-sinh next to the ``1/sqrt(s)`` singularity and
   Gauss-Legendre in ``v = sqrt(tau - s)`` for the bulk.
3. After every sweep, PAV projects the iterate onto the monotone cone and the
   double buffers are swapped.
4. The sweeps converge only linearly, so ``scipy.optimize.anderson`` mixes
   the recent ones (Anderson acceleration). Stop when the largest relative
   node change is below tolerance, or raise :class:`ConvergenceError` at the
   sweep cap.
5. Double regime: if the curves keep crossing at interior nodes, the region
   closes earlier than estimated; the horizon is cut back to the crossing and
   the solve restarts from the current iterate.

Escrowed dividends
------------------
For a put under the escrowed model, exercising forfeits the dividends still
to go ex, so the boundary is solved piecewise: the stretch after the last
ex-date as above, then each period before an ex-date with value matching
shifted by the pending dividends (:class:`BoundarySegment`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
import logging
import math
from typing import Callable

import numpy as np
from scipy.optimize import NoConvergence, anderson, brentq
from scipy.stats import norm

from ..dividends import escrow_shift
from ..enums import BoundaryRegime, FixedPointEquation, OptionType, SweepMode
from ..exceptions import ConvergenceError, InvalidParametersError, UnsupportedFeatureError
from ..numerics.chebyshev import (
    barycentric_interpolate,
    differentiation_matrix,
    evaluate_series,
    lobatto_nodes,
    lobatto_weights,
    values_to_coefficients,
)
from ..numerics.isotonic import pool_adjacent_violators
from ..numerics.quadrature import integrate_gauss_legendre, tanh_sinh
from ..numerics.roots import CharacteristicRoots, characteristic_roots
from ..utils import log_timing
from .bsm import d_plus_minus
from .params import OptionParameters, PricingSettings
from .workspace import SolverWorkspace

logger = logging.getLogger(__name__)

__all__ = [
    "BoundarySegment",
    "ExerciseBoundary",
    "ExerciseBoundarySolver",
    "classify_regime",
    "put_space_rates",
    "expiry_limits",
    "edges_from_put_space",
    "quadratic_approximation",
    "integrate_piecewise",
]

AUTO_SMOOTH_PASTING_THRESHOLD = 1e-3
_QD_SCAN_POINTS = 96
_CROSSING_BISECTIONS = 40
_MIN_LOG_RATIO = math.log(1e-12)
_DOUBLE_RELAXATION = 0.5
_CROSSING_PERSISTENCE = 3
_MAX_HORIZON_REFITS = 8


# ── Regime helpers ──────────────────────────────────────────────────


def put_space_rates(rate: float, dividend_yield: float, option_type: OptionType) -> tuple[float, float]:
    """Rates of the equivalent put: unchanged for puts, swapped for calls."""
    if option_type is OptionType.CALL:
        return dividend_yield, rate
    return rate, dividend_yield


def classify_regime(
    rate: float, dividend_yield: float, option_type: OptionType = OptionType.PUT
) -> BoundaryRegime:
    """Select the boundary topology once, from the put-space rates."""
    r, q = put_space_rates(rate, dividend_yield, option_type)
    if r > 0.0:
        return BoundaryRegime.SINGLE
    if q < r < 0.0:
        return BoundaryRegime.DOUBLE
    return BoundaryRegime.NO_EARLY_EXERCISE


def expiry_limits(
    strike: float, rate: float, dividend_yield: float, regime: BoundaryRegime
) -> tuple[float, float]:
    """Put-space ``(upper, lower)`` boundary limits as tau -> 0."""
    if regime is BoundaryRegime.SINGLE:
        if dividend_yield > 0.0:
            return strike * min(1.0, rate / dividend_yield), 0.0
        return strike, 0.0
    if regime is BoundaryRegime.DOUBLE:
        return strike, strike * rate / dividend_yield
    return math.nan, math.nan


def edges_from_put_space(
    option_type: OptionType, regime: BoundaryRegime, strike: float, upper_put, lower_put
):
    """Map put-space boundaries to the ``(upper, lower)`` edges of the exercise region.

    Puts: ``(B, 0)`` or ``(U, L)``. Calls: ``(inf, K^2/B)`` or ``(K^2/L, K^2/U)``.
    No early exercise: ``(nan, nan)``.
    """
    upper_put = np.asarray(upper_put, dtype=float)
    lower_put = np.asarray(lower_put, dtype=float)
    if regime is BoundaryRegime.NO_EARLY_EXERCISE:
        nan = np.full_like(upper_put, np.nan)
        return nan, nan.copy()
    if option_type is OptionType.PUT:
        if regime is BoundaryRegime.SINGLE:
            return upper_put, np.zeros_like(upper_put)
        return upper_put, lower_put
    k2 = strike * strike
    if regime is BoundaryRegime.SINGLE:
        return np.full_like(upper_put, np.inf), k2 / upper_put
    return k2 / lower_put, k2 / upper_put


def _resolve_equation(setting: FixedPointEquation, rate: float, dividend_yield: float):
    if setting is not FixedPointEquation.AUTO:
        return setting
    if abs(rate - dividend_yield) < AUTO_SMOOTH_PASTING_THRESHOLD:
        return FixedPointEquation.SMOOTH_PASTING
    return FixedPointEquation.VALUE_MATCHING


# ── Quadratic approximation (initial guess) ─────────────────────────


def _qd_residual(x, tau, strike, rate, dividend_yield, volatility, lam):
    """K - x - p(x) + x (1 - e^{-q tau} N(-d+)) / lambda, vectorized over x."""
    d_plus, d_minus = d_plus_minus(x / strike, tau, rate, dividend_yield, volatility)
    df_r = math.exp(-rate * tau)
    df_q = math.exp(-dividend_yield * tau)
    european = strike * df_r * norm.cdf(-d_minus) - x * df_q * norm.cdf(-d_plus)
    return strike - x - european + x * (1.0 - df_q * norm.cdf(-d_plus)) / lam


def _scan_roots(fn: Callable, lo: float, hi: float, xtol: float) -> list[float]:
    grid = np.geomspace(lo, hi, _QD_SCAN_POINTS)
    values = fn(grid)
    roots = []
    for i in np.nonzero(np.sign(values[:-1]) * np.sign(values[1:]) < 0.0)[0]:
        roots.append(brentq(lambda x: float(fn(x)), grid[i], grid[i + 1], xtol=xtol))
    roots.extend(float(x) for x in grid[values == 0.0])
    return sorted(roots)


def quadratic_approximation(
    strike: float,
    rate: float,
    dividend_yield: float,
    volatility: float,
    tau: float,
    regime: BoundaryRegime,
) -> tuple[float, float] | None:
    """Put-space ``(upper, lower)`` from the quadratic approximation at ``tau``.

    Returns None when no root exists, which in the double regime means the
    exercise region has closed.
    """
    roots = characteristic_roots(rate, dividend_yield, volatility, horizon=tau)
    upper0, lower0 = expiry_limits(strike, rate, dividend_yield, regime)
    xtol = 1e-12 * strike

    if regime is BoundaryRegime.SINGLE:

        def residual(x):
            return _qd_residual(x, tau, strike, rate, dividend_yield, volatility, roots.lambda2)

        found = _scan_roots(residual, 1e-4 * upper0, upper0, xtol)
        return (found[-1], 0.0) if found else None

    def upper_residual(x):
        return _qd_residual(x, tau, strike, rate, dividend_yield, volatility, roots.lambda2)

    def lower_residual(x):
        return _qd_residual(x, tau, strike, rate, dividend_yield, volatility, roots.lambda1)

    uppers = [x for x in _scan_roots(upper_residual, lower0, upper0, xtol) if x > lower0]
    lowers = _scan_roots(lower_residual, 0.5 * lower0, upper0, xtol)
    if not uppers or not lowers:
        return None
    upper, lower = uppers[-1], max(lowers[0], lower0)
    if upper <= lower:
        return None
    return upper, lower


def _crossing_time(strike, rate, dividend_yield, volatility, horizon) -> float | None:
    """Estimate tau* where the double-boundary region closes, or None if open at ``horizon``."""
    regime = BoundaryRegime.DOUBLE
    if quadratic_approximation(strike, rate, dividend_yield, volatility, horizon, regime):
        return None
    lo, hi = 1e-8 * horizon, horizon
    if quadratic_approximation(strike, rate, dividend_yield, volatility, lo, regime) is None:
        return lo
    for _ in range(_CROSSING_BISECTIONS):
        mid = 0.5 * (lo + hi)
        if quadratic_approximation(strike, rate, dividend_yield, volatility, mid, regime):
            lo = mid
        else:
            hi = mid
    return lo


# ── Piecewise integration ───────────────────────────────────────────


def integrate_piecewise(
    fn: Callable[[np.ndarray], np.ndarray],
    tau: float,
    starts: tuple[float, ...],
    singular_split: float,
    near: Callable,
    bulk: Callable,
) -> float:
    """``int_0^tau fn(s) ds`` for an integrand built on a boundary with breaks at ``starts``.

    ``starts`` are the times to expiry where a boundary piece begins (0 always
    included). The piece ``u = tau - s`` in ``[a, b]`` goes to ``bulk`` in
    ``v = sqrt(u - a)``, which absorbs the square-root behaviour at the start of
    each piece; ``near`` takes ``[0, s_c]``, where ``fn`` may be singular.
    """
    edges = [a for a in starts if a < tau]
    edges.append(tau)
    s_c = singular_split * (tau - edges[-2])
    total = near(fn, 0.0, s_c)
    for a, b in zip(edges[:-1], edges[1:]):
        if b == tau:
            b = tau - s_c
        v_max = math.sqrt(max(b - a, 0.0))
        if v_max == 0.0:
            continue

        def piece(v, a=a):
            return fn(tau - a - v * v) * 2.0 * v

        total += bulk(piece, 0.0, v_max)
    return float(total)


def _piecewise(pieces: list[tuple[float, Callable]]) -> Callable:
    """Boundary callable that switches to each piece's curve from its start time onward."""

    def boundary(u):
        u = np.asarray(u, dtype=float)
        out = np.asarray(pieces[0][1](u), dtype=float)
        for start, curve in pieces[1:]:
            later = u >= start
            if np.any(later):
                out = np.where(later, curve(u), out)
        return out

    return boundary


# ── Boundary representation ─────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class BoundarySegment:
    """Escrowed put boundary between two ex-dates, ``tau in [tau_start, tau_end)``.

    Stored as ``B / K`` at Lobatto nodes in ``sqrt(tau - tau_start)``, with 0
    where exercise is not optimal. Just before an ex-date the boundary drops
    to zero and need not be monotone, so no log transform or PAV is applied.
    """

    tau_start: float
    tau_end: float
    z_nodes: np.ndarray
    weights: np.ndarray
    ratios: np.ndarray
    cap: float
    sweeps: int = 0

    @property
    def nodes(self) -> np.ndarray:
        return self.tau_start + self.z_nodes**2

    def ratio(self, tau):
        """Interpolated ``B / K`` at ``tau``, clipped to ``[0, cap]``."""
        offset = np.asarray(tau, dtype=float) - self.tau_start
        z = np.sqrt(np.clip(offset, 0.0, self.tau_end - self.tau_start))
        return np.clip(barycentric_interpolate(z, self.z_nodes, self.weights, self.ratios), 0.0, self.cap)


@dataclass(frozen=True, slots=True)
class ExerciseBoundary:
    """Collocated exercise boundary with O(n) evaluation at any time to expiry.

    Boundaries are stored in put space as ``ln(B / K)`` at Lobatto nodes in
    ``z = sqrt(tau)`` on ``[0, sqrt(solve_horizon)]``, together with their
    barycentric weights and Chebyshev coefficients. An escrowed put adds one
    :class:`BoundarySegment` per ex-date beyond ``solve_horizon``.

    Attributes
    ==========
    option_type, regime:
        Right of the option and the exercise-region topology.
    strike, rate, time_to_expiry:
        Contract data (``rate`` is the real risk-free rate, used for escrow shifts).
    solve_horizon:
        Upper end of the collocation domain: ``min(T, tau*)``, or the time to
        expiry of the last ex-date for an escrowed put.
    crossing_time:
        ``tau*`` in the double regime if it falls before expiry, else None.
    z_nodes, weights, log_upper, log_lower:
        Collocation data (``log_lower`` is None in the single regime).
    sweeps, converged, max_change, equation, roots:
        Solver diagnostics.
    escrow_jumps:
        ``(time, amount)`` dividend jumps; edges are shifted by their PV.
    segments:
        Escrowed put boundary on each period that ends at an ex-date.
    """

    option_type: OptionType
    regime: BoundaryRegime
    strike: float
    rate: float
    time_to_expiry: float
    solve_horizon: float
    z_nodes: np.ndarray
    weights: np.ndarray
    log_upper: np.ndarray
    log_lower: np.ndarray | None
    sweeps: int
    converged: bool
    max_change: float
    roots: CharacteristicRoots | None
    equation: FixedPointEquation | None = None
    crossing_time: float | None = None
    escrow_jumps: tuple[tuple[float, float], ...] = ()
    segments: tuple[BoundarySegment, ...] = ()
    upper_coefficients: np.ndarray = field(init=False, repr=False)
    lower_coefficients: np.ndarray | None = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.z_nodes.size:
            object.__setattr__(self, "upper_coefficients", values_to_coefficients(self.log_upper))
        else:
            object.__setattr__(self, "upper_coefficients", np.empty(0))
        lower = None
        if self.log_lower is not None and self.z_nodes.size:
            lower = values_to_coefficients(self.log_lower)
        object.__setattr__(self, "lower_coefficients", lower)

    @property
    def has_early_exercise(self) -> bool:
        return self.regime is not BoundaryRegime.NO_EARLY_EXERCISE

    @property
    def nodes(self) -> np.ndarray:
        """Collocation times to expiry ``tau_i = z_i**2``."""
        return self.z_nodes**2

    @property
    def segment_starts(self) -> tuple[float, ...]:
        """Times to expiry where the boundary may jump (0 plus every escrow segment start)."""
        return (0.0,) + tuple(segment.tau_start for segment in self.segments)

    def _z(self, tau) -> np.ndarray:
        tau = np.clip(np.asarray(tau, dtype=float), 0.0, self.solve_horizon)
        return np.sqrt(tau)

    def put_space(self, tau) -> tuple[np.ndarray, np.ndarray]:
        """Put-space ``(upper, lower)`` at ``tau`` (lower is 0 in the single regime).

        Past ``solve_horizon`` the double-regime curves are held at their common
        terminal value, i.e. the exercise region is empty.
        """
        tau_arr = np.atleast_1d(np.asarray(tau, dtype=float))
        if not self.has_early_exercise:
            nan = np.full(tau_arr.shape, np.nan)
            return nan, nan.copy()
        z = self._z(tau_arr)
        upper = self.strike * np.exp(
            barycentric_interpolate(z, self.z_nodes, self.weights, self.log_upper)
        )
        if self.regime is BoundaryRegime.SINGLE:
            for segment in self.segments:
                later = tau_arr >= segment.tau_start
                if later.any():
                    upper[later] = self.strike * segment.ratio(tau_arr[later])
            return upper, np.zeros_like(upper)
        lower = self.strike * np.exp(
            barycentric_interpolate(z, self.z_nodes, self.weights, self.log_lower)
        )
        beyond = tau_arr >= self.solve_horizon
        if self.crossing_time is not None and beyond.any():
            meet = 0.5 * (upper[beyond] + lower[beyond])
            upper[beyond] = meet
            lower[beyond] = meet
        return upper, np.minimum(lower, upper)

    def edges(self, tau, *, shifted: bool = True):
        """``(upper, lower)`` edges of the exercise region at time to expiry ``tau``.

        With ``shifted`` and escrowed dividends, finite positive edges are moved
        into real-spot terms by the PV of dividends still to go ex.
        Scalar ``tau`` gives a tuple of floats.
        """
        upper_put, lower_put = self.put_space(tau)
        upper, lower = edges_from_put_space(
            self.option_type, self.regime, self.strike, upper_put, lower_put
        )
        if shifted and self.escrow_jumps:
            calendar = self.time_to_expiry - np.atleast_1d(np.asarray(tau, dtype=float))
            shift = escrow_shift(self.escrow_jumps, calendar, self.rate)
            upper = np.where(np.isfinite(upper) & (upper > 0.0), upper + shift, upper)
            lower = np.where(np.isfinite(lower) & (lower > 0.0), lower + shift, lower)
        if np.ndim(tau) == 0:
            return float(upper[0]), float(lower[0])
        return upper, lower

    def region(self, tau, *, shifted: bool = False):
        """``(lo, hi)`` of the exercise region, as used by the premium integral."""
        upper, lower = self.edges(tau, shifted=shifted)
        return lower, upper

    def contains(self, spot: float, tau: float, *, shifted: bool = False) -> bool:
        """True if immediate exercise is optimal at ``spot`` with ``tau`` to expiry."""
        if not self.has_early_exercise:
            return False
        lo, hi = self.region(tau, shifted=shifted)
        return bool(lo <= spot <= hi and lo < hi)

    def series_log_upper(self, tau):
        """Clenshaw evaluation of the put-space ``ln(U/K)`` Chebyshev series."""
        return evaluate_series(self.upper_coefficients, self._z(tau), 0.0, float(self.z_nodes[-1]))

    def slope(self, tau):
        """Spectral estimate of ``dU/dtau`` of the put-space (upper) boundary.

        Differentiates ``ln U`` in ``z`` with the Lobatto differentiation
        matrix and converts via ``dU/dtau = U (d lnU/dz) / (2 z)``; infinite
        slope at ``tau = 0`` is returned as ``-inf``. Only the collocated
        stretch up to ``solve_horizon`` is covered.
        """
        dlog_dz = differentiation_matrix(self.z_nodes) @ self.log_upper
        z = self._z(tau)
        derivative = barycentric_interpolate(z, self.z_nodes, self.weights, dlog_dz)
        upper = self.strike * np.exp(
            barycentric_interpolate(z, self.z_nodes, self.weights, self.log_upper)
        )
        with np.errstate(divide="ignore", invalid="ignore"):
            slope = np.where(z > 0.0, upper * derivative / (2.0 * np.where(z > 0.0, z, 1.0)), -np.inf)
        if np.ndim(tau) == 0:
            return float(slope)
        return slope


# ── Solver ──────────────────────────────────────────────────────────


class _HorizonClosed(Exception):
    """The double-regime curves keep crossing before the collocation horizon."""

    def __init__(self, horizon: float, z_nodes, log_upper, log_lower) -> None:
        super().__init__(horizon)
        self.horizon = horizon
        self.warm_start = (z_nodes, log_upper, log_lower)


@dataclass(frozen=True, slots=True)
class _Collocation:
    z_nodes: np.ndarray
    weights: np.ndarray
    log_upper: np.ndarray
    log_lower: np.ndarray | None
    max_change: float


def _meet(log_upper: np.ndarray, log_lower: np.ndarray, at_horizon: bool) -> None:
    """Set crossed nodes (and the horizon node when the region closes there) to their midpoint."""
    crossed = log_lower >= log_upper
    if at_horizon:
        crossed[-1] = True
    if crossed.any():
        mid = 0.5 * (log_upper[crossed] + log_lower[crossed])
        log_upper[crossed] = mid
        log_lower[crossed] = mid


class ExerciseBoundarySolver:
    """Fixed-point collocation solver for the early-exercise boundary.

    Parameters
    ----------
    settings
        Numerical-quality settings; defaults to ``PricingSettings()``.

    Notes
    -----
    The solver is stateless between calls. Scratch arrays come from an explicit
    :class:`SolverWorkspace` (created per call if none is passed), so one
    solver may be used from several threads at once.
    """

    def __init__(self, settings: PricingSettings | None = None) -> None:
        self.settings = settings if settings is not None else PricingSettings()
        self._near = partial(tanh_sinh, tolerance=self.settings.tolerance * 1e-2)
        self._bulk = partial(integrate_gauss_legendre, order=self.settings.quadrature_order)

    # -- integrals ---------------------------------------------------

    def _integrate(self, fn: Callable[[np.ndarray], np.ndarray], tau: float, starts=(0.0,)) -> float:
        """int_0^tau fn(s) ds: tanh-sinh on [0, s_c], Gauss-Legendre per boundary piece."""
        return integrate_piecewise(
            fn, tau, starts, self.settings.singular_split, self._near, self._bulk
        )

    @staticmethod
    def _interpolant(strike: float, z_nodes: np.ndarray, weights: np.ndarray, log_values: np.ndarray):
        horizon = float(z_nodes[-1]) ** 2

        def boundary(u):
            z = np.sqrt(np.clip(u, 0.0, horizon))
            return strike * np.exp(barycentric_interpolate(z, z_nodes, weights, log_values))

        return boundary

    def _single_terms(
        self, tau, x, boundary, equation, strike, r, q, sigma, starts=(0.0,)
    ) -> tuple[float, float]:
        """``(N, D)`` of the single-boundary update ``B = K N / D`` evaluated at ``x``."""
        sqrt_tau = math.sqrt(tau)
        d_plus, d_minus = d_plus_minus(x / strike, tau, r, q, sigma)

        def ratio(s):
            return x / boundary(tau - s)

        if equation is FixedPointEquation.SMOOTH_PASTING:

            def n_integrand(s):
                _, dm = d_plus_minus(ratio(s), s, r, q, sigma)
                return np.exp(-r * s) * norm.pdf(dm) / (sigma * np.sqrt(s))

            def d_integrand(s):
                dp, _ = d_plus_minus(ratio(s), s, r, q, sigma)
                return np.exp(-q * s) * (norm.cdf(dp) + norm.pdf(dp) / (sigma * np.sqrt(s)))

            numerator = math.exp(-r * tau) * norm.pdf(d_minus) / (sigma * sqrt_tau)
            denominator = math.exp(-q * tau) * (
                norm.cdf(d_plus) + norm.pdf(d_plus) / (sigma * sqrt_tau)
            )
        else:

            def n_integrand(s):
                _, dm = d_plus_minus(ratio(s), s, r, q, sigma)
                return np.exp(-r * s) * norm.cdf(dm)

            def d_integrand(s):
                dp, _ = d_plus_minus(ratio(s), s, r, q, sigma)
                return np.exp(-q * s) * norm.cdf(dp)

            numerator = math.exp(-r * tau) * norm.cdf(d_minus)
            denominator = math.exp(-q * tau) * norm.cdf(d_plus)

        if r != 0.0:
            numerator += r * self._integrate(n_integrand, tau, starts)
        if q != 0.0:
            denominator += q * self._integrate(d_integrand, tau, starts)
        return float(numerator), float(denominator)

    def _double_terms(self, tau, x, upper, lower, strike, r, q, sigma):
        def a_r(s):
            u, lo = upper(tau - s), lower(tau - s)
            _, dm_lo = d_plus_minus(x / lo, s, r, q, sigma)
            _, dm_up = d_plus_minus(x / u, s, r, q, sigma)
            return np.exp(-r * s) * (norm.cdf(dm_lo) - norm.cdf(dm_up))

        def a_q(s):
            u, lo = upper(tau - s), lower(tau - s)
            dp_lo, _ = d_plus_minus(x / lo, s, r, q, sigma)
            dp_up, _ = d_plus_minus(x / u, s, r, q, sigma)
            return np.exp(-q * s) * (norm.cdf(dp_lo) - norm.cdf(dp_up))

        d_plus, d_minus = d_plus_minus(x / strike, tau, r, q, sigma)
        rate_term = 1.0 - math.exp(-r * tau) * norm.cdf(-d_minus) - r * self._integrate(a_r, tau)
        yield_exposure = 1.0 - math.exp(-q * tau) * norm.cdf(-d_plus)
        yield_term = q * self._integrate(a_q, tau)
        return float(rate_term), float(yield_exposure), float(yield_term)

    # -- fixed point -------------------------------------------------

    def _fixed_point(self, sweep: Callable, x0: np.ndarray, *, relaxation: float = 1.0, label: str):
        """Iterate ``x <- sweep(x)`` until the largest node change is below tolerance.

        With ``acceleration_depth > 0`` the residual ``sweep(x) - x`` goes to
        ``scipy.optimize.anderson``, which mixes the last sweeps instead of
        taking them one at a time. Otherwise plain (relaxed) sweeps are used.
        Every residual evaluation is one sweep and counts against ``max_sweeps``.

        Returns
        -------
        tuple
            ``(x, sweeps, max_change)``
        """
        settings = self.settings
        sweeps = 0
        change = math.inf

        def capped():
            return ConvergenceError(
                f"{label} did not converge in {settings.max_sweeps} sweeps "
                f"(last max change {change:.3e}, tolerance {settings.tolerance:.1e})",
                sweeps=sweeps,
                max_change=change,
            )

        def residual(x):
            nonlocal sweeps, change
            if sweeps >= settings.max_sweeps:
                raise capped()
            sweeps += 1
            step = sweep(np.asarray(x, dtype=float)) - x
            change = float(np.max(np.abs(step)))
            logger.debug("%s sweep %d: max change %.3e", label, sweeps, change)
            return step

        x = np.array(x0, dtype=float)
        if settings.acceleration_depth == 0:
            while True:
                step = residual(x)
                if change < settings.tolerance:
                    return x + step, sweeps, change
                x = x + relaxation * step
        try:
            x = anderson(
                residual,
                x,
                alpha=relaxation,
                M=int(settings.acceleration_depth),
                f_tol=settings.tolerance,
                maxiter=settings.max_sweeps,
            )
        except NoConvergence as exc:
            raise capped() from exc
        return np.asarray(x, dtype=float), sweeps, change

    # -- initial guess -----------------------------------------------

    def _initial_guess(self, taus, strike, r, q, sigma, regime, upper, lower) -> None:
        upper0, lower0 = expiry_limits(strike, r, q, regime)
        upper[0] = math.log(upper0 / strike)
        if regime is BoundaryRegime.DOUBLE:
            lower[0] = math.log(lower0 / strike)
        else:
            lower[:] = 0.0
        for i in range(1, taus.size):
            guess = quadratic_approximation(strike, r, q, sigma, float(taus[i]), regime)
            if guess is None:
                upper[i] = upper[i - 1]
                if regime is BoundaryRegime.DOUBLE:
                    lower[i] = lower[i - 1]
                continue
            upper[i] = math.log(min(guess[0], upper0) / strike)
            if regime is BoundaryRegime.DOUBLE:
                lower[i] = math.log(min(max(guess[1], lower0), upper0) / strike)

    # -- collocated solve on [0, horizon] ----------------------------

    def _collocate(
        self, strike, r, q, sigma, regime, equation, horizon, crossing, ws, warm_start, refit
    ) -> _Collocation:
        """Solve the log-boundary on the Lobatto nodes of ``[0, horizon]``.

        In the double regime, curves that keep crossing at interior nodes mean
        the region closes before ``horizon``; with ``refit`` the sweep then
        raises :class:`_HorizonClosed` carrying the interpolated closing time.
        """
        settings = self.settings
        n = settings.collocation_order
        z_nodes = lobatto_nodes(n, 0.0, math.sqrt(horizon))
        taus = z_nodes**2
        weights = lobatto_weights(n)
        gauss_seidel = settings.sweep_mode is SweepMode.GAUSS_SEIDEL
        double = regime is BoundaryRegime.DOUBLE
        closes_at_horizon = double and crossing is not None
        upper0, lower0 = expiry_limits(strike, r, q, regime)
        log_upper_cap = math.log(upper0 / strike)
        log_lower_floor = math.log(lower0 / strike) if double else 0.0
        pools = {"pool_means": ws.pool_means, "pool_sizes": ws.pool_sizes}

        if warm_start is None:
            self._initial_guess(taus, strike, r, q, sigma, regime, ws.upper[:n], ws.lower[:n])
        else:
            old_nodes, old_upper, old_lower = warm_start
            z = np.sqrt(taus)
            ws.upper[:n] = barycentric_interpolate(z, old_nodes, weights, old_upper)
            ws.lower[:n] = barycentric_interpolate(z, old_nodes, weights, old_lower)
            ws.upper[0], ws.lower[0] = log_upper_cap, log_lower_floor
        pool_adjacent_violators(ws.upper[:n], increasing=False, out=ws.upper[:n], **pools)
        if double:
            pool_adjacent_violators(ws.lower[:n], increasing=True, out=ws.lower[:n], **pools)
        streak = 0

        def sweep(x):
            nonlocal streak
            work_u, cand_u = ws.upper[:n], ws.upper_candidate[:n]
            work_l, cand_l = ws.lower[:n], ws.lower_candidate[:n]
            work_u[1:] = x[: n - 1]
            if double:
                work_l[1:] = x[n - 1 :]
            cand_u[:] = work_u
            cand_l[:] = work_l
            source_u = cand_u if gauss_seidel else work_u
            source_l = cand_l if gauss_seidel else work_l
            upper_fn = self._interpolant(strike, z_nodes, weights, source_u)
            lower_fn = self._interpolant(strike, z_nodes, weights, source_l)

            for i in range(1, n):
                tau = float(taus[i])
                if not double:
                    b = strike * math.exp(source_u[i])
                    numerator, denominator = self._single_terms(
                        tau, b, upper_fn, equation, strike, r, q, sigma
                    )
                    new = strike * numerator / denominator
                    if math.isfinite(new) and new > 0.0:
                        cand_u[i] = min(max(math.log(new / strike), _MIN_LOG_RATIO), log_upper_cap)
                    continue

                x_up = strike * math.exp(source_u[i])
                rate_term, exposure, yield_term = self._double_terms(
                    tau, x_up, upper_fn, lower_fn, strike, r, q, sigma
                )
                new_up = strike * rate_term / (exposure - yield_term)
                if math.isfinite(new_up) and new_up > 0.0:
                    cand_u[i] = min(max(math.log(new_up / strike), log_lower_floor), 0.0)

                x_lo = strike * math.exp(source_l[i])
                rate_term, exposure, yield_term = self._double_terms(
                    tau, x_lo, upper_fn, lower_fn, strike, r, q, sigma
                )
                new_lo = (strike * rate_term + x_lo * yield_term) / exposure
                if math.isfinite(new_lo) and new_lo > 0.0:
                    cand_l[i] = min(max(math.log(new_lo / strike), log_lower_floor), 0.0)

            pool_adjacent_violators(cand_u, increasing=False, out=cand_u, **pools)
            closing = None
            if double:
                pool_adjacent_violators(cand_l, increasing=True, out=cand_l, **pools)
                gap = cand_u - cand_l
                inside = np.nonzero(gap[1 : n - 1] <= 0.0)[0]
                streak = streak + 1 if inside.size else 0
                if refit and streak >= _CROSSING_PERSISTENCE:
                    j = int(inside[0]) + 1
                    weight = gap[j - 1] / (gap[j - 1] - gap[j])
                    closing = float(taus[j - 1] + weight * (taus[j] - taus[j - 1]))
                _meet(cand_u, cand_l, closes_at_horizon)

            ws.swap()
            if closing is not None:
                raise _HorizonClosed(closing, z_nodes, ws.upper[:n].copy(), ws.lower[:n].copy())
            if double:
                return np.concatenate((ws.upper[1:n], ws.lower[1:n]))
            return ws.upper[1:n].copy()

        x0 = ws.upper[1:n].copy()
        if double:
            x0 = np.concatenate((x0, ws.lower[1:n]))
        x, _, change = self._fixed_point(
            sweep,
            x0,
            relaxation=_DOUBLE_RELAXATION if double else 1.0,
            label="exercise boundary",
        )

        log_upper = np.concatenate(([log_upper_cap], x[: n - 1]))
        log_upper = np.minimum(pool_adjacent_violators(log_upper, increasing=False), log_upper_cap)
        log_lower = None
        if double:
            log_lower = np.concatenate(([log_lower_floor], x[n - 1 :]))
            log_lower = np.clip(
                pool_adjacent_violators(log_lower, increasing=True), log_lower_floor, 0.0
            )
            _meet(log_upper, log_lower, closes_at_horizon)
        return _Collocation(z_nodes, weights, log_upper, log_lower, change)

    # -- escrowed put: periods before each ex-date -------------------

    def _solve_segments(
        self, main_curve, ex_taus, expiry, jumps, strike, r, q, sigma, cap, start_ratio
    ) -> list[BoundarySegment]:
        """Solve the escrowed put boundary on each period that ends at an ex-date.

        Periods are solved in order of increasing time to expiry, each with the
        later ones already fixed. Exercising forfeits the pending dividends, so
        value matching becomes ``B = (K N - PV) / D`` with ``PV`` the value of
        the dividends still to go ex; a node whose numerator is not positive is
        closed (no exercise) and stays closed.
        """
        settings = self.settings
        n = settings.collocation_order
        weights = lobatto_weights(n)
        gauss_seidel = settings.sweep_mode is SweepMode.GAUSS_SEIDEL
        value_matching = FixedPointEquation.VALUE_MATCHING
        pieces = [(0.0, main_curve)]
        segments = []
        ends = list(ex_taus[1:]) + [expiry]

        for start, end in zip(ex_taus, ends):
            z_nodes = lobatto_nodes(n, 0.0, math.sqrt(end - start))
            taus = start + z_nodes**2
            shifts = np.atleast_1d(escrow_shift(jumps, expiry - taus, r))
            starts = tuple(piece_start for piece_start, _ in pieces) + (start,)

            def sweep(x, z_nodes=z_nodes, taus=taus, shifts=shifts, start=start, end=end, starts=starts):
                source = np.clip(x, 0.0, cap)
                new = source if gauss_seidel else source.copy()

                def current(u):
                    z = np.sqrt(np.clip(u - start, 0.0, end - start))
                    return strike * np.clip(barycentric_interpolate(z, z_nodes, weights, source), 0.0, cap)

                boundary = _piecewise(pieces + [(start, current)])
                with np.errstate(divide="ignore"):
                    for j in range(n):
                        x_j = strike * source[j]
                        if x_j <= 0.0:
                            new[j] = 0.0
                            continue
                        numerator, denominator = self._single_terms(
                            float(taus[j]), x_j, boundary, value_matching, strike, r, q, sigma, starts
                        )
                        b = (strike * numerator - shifts[j]) / denominator
                        new[j] = min(b / strike, cap) if math.isfinite(b) and b > 0.0 else 0.0
                return new

            label = f"escrowed boundary before ex-date at tau={start:.6f}"
            x, sweeps, _ = self._fixed_point(sweep, np.full(n, start_ratio), label=label)
            ratios = np.clip(x, 0.0, cap)
            # closed nodes map to exactly 0; the iterate only lands within tolerance
            ratios[ratios < settings.tolerance] = 0.0
            segment = BoundarySegment(
                tau_start=start,
                tau_end=end,
                z_nodes=z_nodes,
                weights=weights,
                ratios=ratios,
                cap=cap,
                sweeps=sweeps,
            )
            logger.debug(
                "%s: %d sweeps, %d of %d nodes open", label, sweeps, int(np.count_nonzero(segment.ratios)), n
            )
            segments.append(segment)
            pieces.append((start, lambda u, segment=segment: strike * segment.ratio(u)))
        return segments

    # -- main entry --------------------------------------------------

    def solve(
        self,
        params: OptionParameters,
        *,
        workspace: SolverWorkspace | None = None,
        escrow_jumps: tuple[tuple[float, float], ...] = (),
    ) -> ExerciseBoundary:
        """Solve the exercise boundary over ``(0, T]`` for ``params``.

        ``escrow_jumps`` are ``(time, amount)`` dividends of the escrowed model,
        with ``params.spot`` already net of their PV. For a put they split the
        solve at every ex-date; for a call they only shift the reported edges.

        Raises
        ------
        ConvergenceError
            If the sweep cap is reached before the node changes fall below tolerance.
        UnsupportedFeatureError
            For an escrowed put in the double regime.
        """
        settings = self.settings
        option_type = params.option_type
        strike, sigma, expiry = params.strike, params.volatility, params.time_to_expiry
        r, q = put_space_rates(params.rate, params.dividend_yield, option_type)
        regime = classify_regime(params.rate, params.dividend_yield, option_type)
        roots = characteristic_roots(r, q, sigma, horizon=expiry)
        jumps = tuple(escrow_jumps)

        if regime is BoundaryRegime.NO_EARLY_EXERCISE:
            logger.debug("No early exercise for %s with r=%s q=%s", option_type.value, r, q)
            empty = np.empty(0)
            return ExerciseBoundary(
                option_type=option_type,
                regime=regime,
                strike=strike,
                rate=params.rate,
                time_to_expiry=expiry,
                solve_horizon=expiry,
                z_nodes=empty,
                weights=empty,
                log_upper=empty,
                log_lower=None,
                sweeps=0,
                converged=True,
                max_change=0.0,
                roots=roots,
                escrow_jumps=jumps,
            )

        pending = tuple((t, amount) for t, amount in jumps if 0.0 < t < expiry and amount > 0.0)
        ex_taus = []
        if option_type is OptionType.PUT:
            ex_taus = sorted({expiry - t for t, _ in pending})
        if ex_taus and regime is BoundaryRegime.DOUBLE:
            raise UnsupportedFeatureError(
                "escrowed dividends are not supported for a put with a double exercise boundary"
            )

        horizon = ex_taus[0] if ex_taus else expiry
        crossing = None
        if regime is BoundaryRegime.DOUBLE:
            crossing = _crossing_time(strike, r, q, sigma, horizon)
            if crossing is not None:
                logger.debug("Double-boundary region closes at tau*=%.6f", crossing)
                horizon = crossing

        n = settings.collocation_order
        if workspace is None:
            workspace = SolverWorkspace(n)
        elif not workspace.fits(n):
            raise InvalidParametersError(
                f"workspace holds {workspace.size} nodes, collocation_order needs {n}"
            )

        equation = _resolve_equation(settings.fixed_point_equation, r, q)
        with workspace.borrow() as ws, log_timing(logger, "boundary solve", settings.log_timings):
            warm_start = None
            for refits in range(_MAX_HORIZON_REFITS + 1):
                try:
                    fit = self._collocate(
                        strike, r, q, sigma, regime, equation, horizon, crossing, ws,
                        warm_start, refit=refits < _MAX_HORIZON_REFITS,
                    )
                    break
                except _HorizonClosed as closed:
                    logger.debug(
                        "Boundaries cross before tau=%.6f, refitting with tau*=%.6f",
                        horizon,
                        closed.horizon,
                    )
                    horizon = crossing = closed.horizon
                    warm_start = closed.warm_start
            sweeps = ws.swaps

            segments = []
            if ex_taus:
                cap = expiry_limits(strike, r, q, regime)[0] / strike
                main_curve = self._interpolant(strike, fit.z_nodes, fit.weights, fit.log_upper)
                segments = self._solve_segments(
                    main_curve, ex_taus, expiry, jumps, strike, r, q, sigma, cap,
                    math.exp(fit.log_upper[-1]),
                )
                sweeps += sum(segment.sweeps for segment in segments)

        logger.debug(
            "Boundary solved: regime=%s equation=%s sweeps=%d", regime.value, equation.value, sweeps
        )
        return ExerciseBoundary(
            option_type=option_type,
            regime=regime,
            strike=strike,
            rate=params.rate,
            time_to_expiry=expiry,
            solve_horizon=horizon,
            z_nodes=fit.z_nodes,
            weights=fit.weights,
            log_upper=fit.log_upper,
            log_lower=fit.log_lower,
            sweeps=sweeps,
            converged=True,
            max_change=fit.max_change,
            roots=roots,
            equation=equation if regime is BoundaryRegime.SINGLE else FixedPointEquation.VALUE_MATCHING,
            crossing_time=crossing,
            escrow_jumps=jumps,
            segments=tuple(segments),
        )
